"""Chat command bridge.

The CommandRouter turns operator messages into session, approval and agent
actions. Its collaborators (chat transport, agent injector, keystroke
controller) are described by the protocols in ``devbridge.bridge.protocols``.
"""

from devbridge.bridge.events import APPROVAL_EVENT, format_agent_event, is_approval_event
from devbridge.bridge.hooks import build_hooks_config, hook_reply, write_hooks_config
from devbridge.bridge.injection import CommandInjector
from devbridge.bridge.keyboard import OSKeystrokeController, keystroke_command
from devbridge.bridge.protocols import (
    AgentInjector,
    ChatTransport,
    IncomingMessage,
    InjectionError,
    KeystrokeController,
    KeystrokeError,
)
from devbridge.bridge.router import FAILURE_REPLY, CommandRouter, build_correlated_prompt

__all__ = [
    "APPROVAL_EVENT",
    "FAILURE_REPLY",
    "AgentInjector",
    "ChatTransport",
    "CommandInjector",
    "CommandRouter",
    "IncomingMessage",
    "InjectionError",
    "KeystrokeController",
    "KeystrokeError",
    "OSKeystrokeController",
    "build_correlated_prompt",
    "build_hooks_config",
    "format_agent_event",
    "hook_reply",
    "is_approval_event",
    "keystroke_command",
    "write_hooks_config",
]
