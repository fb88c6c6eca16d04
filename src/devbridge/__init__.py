"""devbridge: drive local shell sessions and a coding agent from a chat."""

__version__ = "0.1.0"

# Public API
from devbridge.bridge import (
    CommandInjector,
    CommandRouter,
    IncomingMessage,
    OSKeystrokeController,
)
from devbridge.config import AgentMode, Config, get_config, load_config
from devbridge.runtime import BridgeRuntime
from devbridge.session import SessionRegistry
from devbridge.terminal import ExecutionSession, OutputSnapshot, classify
from devbridge.transport import ConsoleTransport
from devbridge.watching import ResponseWatcher

__all__ = [
    # Main entry points
    "BridgeRuntime",
    "CommandRouter",
    "IncomingMessage",
    # Config
    "AgentMode",
    "Config",
    "get_config",
    "load_config",
    # Sessions
    "ExecutionSession",
    "OutputSnapshot",
    "SessionRegistry",
    "classify",
    # Collaborators
    "CommandInjector",
    "ConsoleTransport",
    "OSKeystrokeController",
    "ResponseWatcher",
]
