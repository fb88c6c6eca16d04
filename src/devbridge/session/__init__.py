"""Session registry for devbridge."""

from devbridge.session.registry import (
    SESSION_NAME_RE,
    InvalidSessionNameError,
    RegistryError,
    RegistryInvariantError,
    SessionExistsError,
    SessionLimitError,
    SessionRegistry,
    UnknownSessionError,
    is_valid_session_name,
)

__all__ = [
    "SESSION_NAME_RE",
    "InvalidSessionNameError",
    "RegistryError",
    "RegistryInvariantError",
    "SessionExistsError",
    "SessionLimitError",
    "SessionRegistry",
    "UnknownSessionError",
    "is_valid_session_name",
]
