"""Local console transport.

Stands in for a chat service: lines typed at the prompt arrive as messages
from one fixed chat id, and replies are printed to the terminal. The same
allow-list rules apply as for a remote chat, so a console run with an empty
``allowed_chat_ids`` is rejected exactly like an unknown chat would be.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from typing import TYPE_CHECKING

from prompt_toolkit import PromptSession
from prompt_toolkit.auto_suggest import AutoSuggestFromHistory
from prompt_toolkit.history import FileHistory
from rich.console import Console
from rich.text import Text

from devbridge.bridge.protocols import IncomingMessage
from devbridge.logging import get_logger

if TYPE_CHECKING:
    from pathlib import Path

log = get_logger("transport.console")

MessageHandler = Callable[[IncomingMessage], Awaitable[None]]

QUIT_COMMANDS = frozenset({"/quit", "/exit"})


def is_allowed_chat(chat_id: int, allowed: Iterable[int]) -> bool:
    """An empty allow-list admits nobody."""
    return chat_id in set(allowed)


def rejection_text(chat_id: int) -> str:
    return (
        "This chat is not authorized.\n\n"
        f"Your chat ID is: {chat_id}\n"
        "Add it to bridge.allowed_chat_ids in config."
    )


class ConsoleTransport:
    """ChatTransport that reads from a prompt and prints replies."""

    def __init__(
        self,
        chat_id: int,
        allowed_chat_ids: Iterable[int],
        on_message: MessageHandler | None = None,
        history_file: Path | None = None,
        console: Console | None = None,
    ) -> None:
        self._chat_id = chat_id
        self._allowed = list(allowed_chat_ids)
        self._on_message = on_message
        self._history_file = history_file
        self._console = console or Console(highlight=False)
        self._session: PromptSession[str] | None = None
        self._running = False

    @property
    def chat_id(self) -> int:
        return self._chat_id

    def set_handler(self, on_message: MessageHandler) -> None:
        self._on_message = on_message

    async def send_message(self, chat_id: int, text: str) -> None:
        if chat_id != self._chat_id:
            self._console.print(f"[dim]-> chat {chat_id}[/dim]")
        self._console.print(Text(text))
        self._console.print()

    async def handle_line(self, line: str) -> bool:
        """Deliver one typed line. Returns False when the operator quits."""
        line = line.strip()
        if not line:
            return True
        if line.lower() in QUIT_COMMANDS:
            return False

        if not is_allowed_chat(self._chat_id, self._allowed):
            log.warning("Rejected message from unauthorized chat %s", self._chat_id)
            await self.send_message(self._chat_id, rejection_text(self._chat_id))
            return True

        if self._on_message is None:
            log.warning("No message handler set, dropping: %s", line)
            return True
        await self._on_message(IncomingMessage(chat_id=self._chat_id, text=line))
        return True

    async def run(self) -> None:
        """Read lines until /quit or EOF."""
        history = FileHistory(str(self._history_file)) if self._history_file else None
        self._session = PromptSession(history=history, auto_suggest=AutoSuggestFromHistory())
        self._running = True

        self._console.print("[bold]devbridge[/bold] - local console")
        self._console.print("Type [bold]/help[/bold] for commands, [bold]/quit[/bold] to exit.\n")

        session = self._session
        while self._running:
            try:
                line = await asyncio.get_running_loop().run_in_executor(
                    None,
                    lambda: session.prompt("bridge> "),
                )
                if not await self.handle_line(line):
                    break
            except KeyboardInterrupt:
                continue
            except EOFError:
                break

        self._running = False

    def stop(self) -> None:
        self._running = False
