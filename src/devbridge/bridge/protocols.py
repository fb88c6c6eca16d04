"""Contracts between the command router and its external collaborators.

The router never talks to a chat service, an editor or the OS directly; it
goes through these protocols so each side can be swapped or faked in tests.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class IncomingMessage:
    """A text message from an allow-listed chat."""

    chat_id: int
    text: str


class InjectionError(Exception):
    """The agent surface did not accept the prompt."""


class KeystrokeError(Exception):
    """A simulated confirm/deny keystroke could not be delivered."""


@runtime_checkable
class ChatTransport(Protocol):
    """Outbound side of the chat service."""

    async def send_message(self, chat_id: int, text: str) -> None:
        """Deliver ``text`` to ``chat_id``."""
        ...


@runtime_checkable
class AgentInjector(Protocol):
    """Delivers a prompt into whatever live agent surface exists.

    Implementations raise InjectionError on failure.
    """

    @property
    def name(self) -> str: ...

    async def inject(self, prompt: str) -> None: ...


@runtime_checkable
class KeystrokeController(Protocol):
    """Accepts or rejects an approval dialog surfaced by the agent's host."""

    async def confirm(self) -> None: ...

    async def deny(self) -> None: ...
