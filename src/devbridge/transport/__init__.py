"""Chat transports for devbridge."""

from devbridge.transport.console import ConsoleTransport, is_allowed_chat, rejection_text

__all__ = [
    "ConsoleTransport",
    "is_allowed_chat",
    "rejection_text",
]
