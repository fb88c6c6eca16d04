"""Configuration schema dataclasses for devbridge.

Defines the structure of configuration at all levels (system, user, project).
All fields have defaults so partial configs merge together cleanly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class AgentMode(Enum):
    """What the router does after a prompt has been injected into the agent.

    - FIRE_AND_FORGET: acknowledge and return; completion arrives through
      agent event hooks, if any
    - CORRELATED: embed a response-file instruction in the prompt and wait
      for the agent to write its answer there
    """

    FIRE_AND_FORGET = "fire_and_forget"
    CORRELATED = "correlated"


@dataclass
class BridgeConfig:
    """Chat-facing behaviour of the command router.

    Example config.yaml:
        bridge:
          allowed_chat_ids: [123456789]
          confine_to_workspace: true
          max_sessions: 5
    """

    allowed_chat_ids: list[int] = field(default_factory=list)  # Empty = nobody
    workspace_root: str | None = None  # Default: directory given at startup
    confine_to_workspace: bool = True  # Reject /cd outside workspace_root
    max_sessions: int = 5
    default_session: str = "default"
    follow_up_delay: float = 3.0  # Seconds before auto /out after /run (0 = off)


@dataclass
class TerminalConfig:
    """Execution session limits."""

    command_timeout: float = 600.0  # Seconds, 0 disables the timeout
    max_buffer_chars: int = 120_000
    snapshot_lines: int = 60
    snapshot_chars: int = 3500
    env_passthrough: list[str] = field(default_factory=list)  # Extra env prefixes


@dataclass
class AgentConfig:
    """Agent injection and response correlation.

    Example config.yaml:
        agent:
          mode: correlated
          response_dir: .code-bridge
          response_timeout: 300
          inject_command: ["cursor-agent", "--print", "{prompt}"]
    """

    mode: AgentMode = AgentMode.FIRE_AND_FORGET
    response_dir: str = ".code-bridge"  # Relative to the workspace root
    response_timeout: float = 300.0
    poll_interval: float = 0.5  # Seconds between response dir scans
    settle_delay: float = 0.3  # Pause before a confirm/deny keystroke
    inject_command: list[str] | None = None  # None = agent bridge unavailable
    keystrokes: bool = True  # Simulate confirm/deny keystrokes on yes/no
    hook_events: bool = True  # Relay events dropped by `devbridge hook`


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str | None = None  # DEBUG, INFO, WARNING, ERROR
    verbose: int | None = None  # 0-4, takes precedence over level
    file: str | None = None  # Log file path


@dataclass
class Config:
    """Root configuration object.

    Aggregates all configuration sections. All fields use default factories
    to ensure partial configs work correctly with deep merging.
    """

    bridge: BridgeConfig = field(default_factory=BridgeConfig)
    terminal: TerminalConfig = field(default_factory=TerminalConfig)
    agent: AgentConfig = field(default_factory=AgentConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Extension point for future config sections
    extra: dict[str, Any] = field(default_factory=dict)
