"""Configuration file loading and caching.

Handles:
- YAML file parsing
- Environment variable overrides
- Config caching with reload support
- Conversion from dict to typed Config dataclass
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml

from devbridge.config.merge import merge_configs
from devbridge.config.paths import get_config_paths
from devbridge.config.schema import (
    AgentConfig,
    AgentMode,
    BridgeConfig,
    Config,
    LoggingConfig,
    TerminalConfig,
)

# Module logger (may not be configured yet at import time)
_log = logging.getLogger("devbridge.config")

_cached_config: Config | None = None


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file, returning empty dict if not found or invalid."""
    if not path.exists():
        return {}

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
            return data if isinstance(data, dict) else {}
    except yaml.YAMLError as e:
        _log.warning("Invalid YAML in %s: %s", path, e)
        return {}
    except PermissionError:
        _log.debug("Permission denied reading %s", path)
        return {}
    except OSError as e:
        _log.warning("Error reading %s: %s", path, e)
        return {}


def parse_chat_ids(raw: str) -> list[int]:
    """Parse a comma-separated list of chat ids, skipping junk entries."""
    ids: list[int] = []
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            ids.append(int(part))
        except ValueError:
            _log.warning("Ignoring invalid chat id %r", part)
    return ids


def env_overrides() -> dict[str, Any]:
    """Build config dict from environment variables.

    Note: the auth secret is NOT loaded here - use fetch_auth_secret().
    """
    overrides: dict[str, Any] = {}

    log_path = os.environ.get("DEVBRIDGE_LOG")
    if log_path:
        overrides.setdefault("logging", {})["file"] = log_path

    chat_ids = os.environ.get("DEVBRIDGE_ALLOWED_CHAT_IDS")
    if chat_ids:
        overrides.setdefault("bridge", {})["allowed_chat_ids"] = parse_chat_ids(chat_ids)

    mode = os.environ.get("DEVBRIDGE_AGENT_MODE")
    if mode:
        overrides.setdefault("agent", {})["mode"] = mode

    return overrides


def _parse_agent_mode(value: Any) -> AgentMode:
    if isinstance(value, AgentMode):
        return value
    try:
        return AgentMode(str(value).strip().lower().replace("-", "_"))
    except ValueError:
        _log.warning("Unknown agent mode %r, using fire_and_forget", value)
        return AgentMode.FIRE_AND_FORGET


def dict_to_config(data: dict[str, Any]) -> Config:
    """Convert merged dict to typed Config dataclass."""
    bridge_data = data.get("bridge", {})
    chat_ids = bridge_data.get("allowed_chat_ids", [])
    if isinstance(chat_ids, str | int):
        chat_ids = parse_chat_ids(str(chat_ids))
    elif isinstance(chat_ids, list):
        chat_ids = parse_chat_ids(",".join(str(c) for c in chat_ids))
    else:
        chat_ids = []
    bridge = BridgeConfig(
        allowed_chat_ids=chat_ids,
        workspace_root=bridge_data.get("workspace_root"),
        confine_to_workspace=bridge_data.get("confine_to_workspace", True),
        max_sessions=int(bridge_data.get("max_sessions", 5)),
        default_session=bridge_data.get("default_session", "default"),
        follow_up_delay=float(bridge_data.get("follow_up_delay", 3.0)),
    )

    terminal_data = data.get("terminal", {})
    terminal = TerminalConfig(
        command_timeout=float(terminal_data.get("command_timeout", 600.0)),
        max_buffer_chars=int(terminal_data.get("max_buffer_chars", 120_000)),
        snapshot_lines=int(terminal_data.get("snapshot_lines", 60)),
        snapshot_chars=int(terminal_data.get("snapshot_chars", 3500)),
        env_passthrough=[
            p for p in terminal_data.get("env_passthrough", []) if isinstance(p, str)
        ],
    )

    agent_data = data.get("agent", {})
    inject_command = agent_data.get("inject_command")
    if isinstance(inject_command, str):
        inject_command = [inject_command]
    agent = AgentConfig(
        mode=_parse_agent_mode(agent_data.get("mode", AgentMode.FIRE_AND_FORGET)),
        response_dir=agent_data.get("response_dir", ".code-bridge"),
        response_timeout=float(agent_data.get("response_timeout", 300.0)),
        poll_interval=float(agent_data.get("poll_interval", 0.5)),
        settle_delay=float(agent_data.get("settle_delay", 0.3)),
        inject_command=[str(a) for a in inject_command] if inject_command else None,
        keystrokes=agent_data.get("keystrokes", True),
        hook_events=agent_data.get("hook_events", True),
    )

    log_data = data.get("logging", {})
    logging_config = LoggingConfig(
        level=log_data.get("level"),
        verbose=log_data.get("verbose"),
        file=log_data.get("file"),
    )

    known_keys = {"bridge", "terminal", "agent", "logging"}
    extra = {k: v for k, v in data.items() if k not in known_keys}

    return Config(
        bridge=bridge,
        terminal=terminal,
        agent=agent,
        logging=logging_config,
        extra=extra,
    )


def load_config(session_root: str | None = None, reload: bool = False) -> Config:
    """Load and merge config from all sources.

    Priority order (highest to lowest):
    1. Environment variables
    2. Project config ($session_root/.devbridge/config.yaml)
    3. User config (~/.config/devbridge/config.yaml or %APPDATA%)
    4. System config (/etc/devbridge/ or %PROGRAMDATA%)

    Args:
        session_root: Workspace directory for project-level config.
        reload: Force reload even if cached.

    Returns:
        Merged Config object.
    """
    global _cached_config

    if _cached_config is not None and not reload and session_root is None:
        return _cached_config

    configs: list[dict[str, Any]] = []

    for path in get_config_paths(session_root):
        config_data = load_yaml_file(path)
        if config_data:
            _log.debug("Loaded config from %s", path)
            configs.append(config_data)

    env_config = env_overrides()
    if env_config:
        configs.append(env_config)

    config = dict_to_config(merge_configs(*configs))

    # Cache only global config (no session_root)
    if session_root is None:
        _cached_config = config

    return config


def get_config() -> Config:
    """Get the cached global config, loading it if needed."""
    if _cached_config is None:
        return load_config()
    return _cached_config


def reset_config() -> None:
    """Reset cached config. Useful for testing or forcing a reload."""
    global _cached_config
    _cached_config = None
