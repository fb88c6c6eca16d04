"""Shell execution for chat-driven sessions.

Provides the per-session process runner, its bounded output buffer, the
child environment allow-list and the destructive-command filter.
"""

from devbridge.terminal.buffer import OutputBuffer
from devbridge.terminal.env import SAFE_ENV_PREFIXES, build_child_env
from devbridge.terminal.filter import (
    DEFAULT_DENY_RULES,
    DenyRule,
    FilterDecision,
    classify,
    is_command_denied,
)
from devbridge.terminal.result import OutputSnapshot, SessionInfo
from devbridge.terminal.session import ExecutionSession, SessionBusyError

__all__ = [
    "DEFAULT_DENY_RULES",
    "DenyRule",
    "ExecutionSession",
    "FilterDecision",
    "OutputBuffer",
    "OutputSnapshot",
    "SAFE_ENV_PREFIXES",
    "SessionBusyError",
    "SessionInfo",
    "build_child_env",
    "classify",
    "is_command_denied",
]
