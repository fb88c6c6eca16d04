"""Registry of named execution sessions with an active-session pointer."""

from __future__ import annotations

import asyncio
import re
from pathlib import Path
from typing import TYPE_CHECKING

from devbridge.logging import get_logger
from devbridge.terminal.result import SessionInfo
from devbridge.terminal.session import ExecutionSession

if TYPE_CHECKING:
    from devbridge.config.schema import TerminalConfig

log = get_logger("session")

SESSION_NAME_RE = re.compile(r"[A-Za-z0-9_-]{1,32}")


class RegistryError(Exception):
    """Base class for session registry failures reported back to the operator."""


class InvalidSessionNameError(RegistryError):
    def __init__(self, name: str) -> None:
        super().__init__("Invalid name. Use letters, numbers, '-', '_' (max 32 chars).")
        self.name = name


class SessionExistsError(RegistryError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Session already exists: {name}")
        self.name = name


class SessionLimitError(RegistryError):
    def __init__(self, limit: int) -> None:
        super().__init__(
            f"Session limit reached ({limit}). Kill or reuse an existing session."
        )
        self.limit = limit


class UnknownSessionError(RegistryError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Session not found: {name}")
        self.name = name


class RegistryInvariantError(RegistryError):
    """The active pointer does not resolve. Indicates a bug, never user error."""


def is_valid_session_name(name: str) -> bool:
    return SESSION_NAME_RE.fullmatch(name) is not None


class SessionRegistry:
    """Ordered name -> ExecutionSession mapping.

    Insertion order is display order. The active session always exists: the
    default session is created up front and sessions are never removed while
    the registry lives.
    """

    def __init__(
        self,
        root_cwd: str | Path,
        *,
        max_sessions: int = 5,
        default_name: str = "default",
        terminal: TerminalConfig | None = None,
    ) -> None:
        if max_sessions < 1:
            raise ValueError("max_sessions must be at least 1")
        if not is_valid_session_name(default_name):
            raise InvalidSessionNameError(default_name)

        self._max_sessions = max_sessions
        self._terminal = terminal
        self._sessions: dict[str, ExecutionSession] = {}
        self._sessions[default_name] = self._new_session(default_name, root_cwd)
        self._active_name = default_name

    @property
    def max_sessions(self) -> int:
        return self._max_sessions

    @property
    def active_name(self) -> str:
        return self._active_name

    @property
    def active(self) -> ExecutionSession:
        session = self._sessions.get(self._active_name)
        if session is None:
            raise RegistryInvariantError(f"Active session missing: {self._active_name}")
        return session

    def _new_session(self, name: str, cwd: str | Path) -> ExecutionSession:
        terminal = self._terminal
        if terminal is None:
            return ExecutionSession(name, cwd)
        return ExecutionSession(
            name,
            cwd,
            buffer_limit=terminal.max_buffer_chars,
            snapshot_lines=terminal.snapshot_lines,
            snapshot_chars=terminal.snapshot_chars,
            env_prefixes=terminal.env_passthrough,
        )

    def create(self, name: str, cwd: str | Path | None = None) -> ExecutionSession:
        """Create a session, starting in ``cwd`` or the active session's cwd.

        Raises:
            InvalidSessionNameError: Checked before anything else.
            SessionExistsError: Name already taken.
            SessionLimitError: Registry is full.
        """
        if not is_valid_session_name(name):
            raise InvalidSessionNameError(name)
        if name in self._sessions:
            raise SessionExistsError(name)
        if len(self._sessions) >= self._max_sessions:
            raise SessionLimitError(self._max_sessions)

        session = self._new_session(name, cwd if cwd is not None else self.active.cwd)
        self._sessions[name] = session
        log.info("Created session %s (cwd %s)", name, session.cwd)
        return session

    def switch_to(self, name: str) -> ExecutionSession:
        session = self._sessions.get(name)
        if session is None:
            raise UnknownSessionError(name)
        self._active_name = name
        return session

    def get(self, name: str) -> ExecutionSession | None:
        return self._sessions.get(name)

    def list(self) -> list[SessionInfo]:
        return [
            SessionInfo(name=name, running=session.is_running(), active=name == self._active_name)
            for name, session in self._sessions.items()
        ]

    async def close(self, grace: float = 2.0) -> None:
        """Force-kill every running command and wait briefly for them to exit."""
        running = [s for s in self._sessions.values() if s.terminate()]
        for session in running:
            try:
                await session.wait(timeout=grace)
            except asyncio.TimeoutError:
                log.warning("Session %s did not exit within %gs", session.name, grace)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, name: object) -> bool:
        return name in self._sessions

    def __iter__(self):
        return iter(self._sessions.values())
