"""Tests for the local console transport."""

from __future__ import annotations

import io

import pytest
from rich.console import Console

from devbridge.bridge.protocols import ChatTransport, IncomingMessage
from devbridge.transport.console import ConsoleTransport, is_allowed_chat, rejection_text


def make_console() -> tuple[Console, io.StringIO]:
    out = io.StringIO()
    return Console(file=out, width=120, color_system=None, highlight=False), out


class TestAllowList:
    def test_empty_list_admits_nobody(self) -> None:
        assert not is_allowed_chat(1, [])

    def test_membership(self) -> None:
        assert is_allowed_chat(5, [4, 5])
        assert not is_allowed_chat(6, [4, 5])

    def test_rejection_reveals_chat_id(self) -> None:
        assert rejection_text(42) == (
            "This chat is not authorized.\n\n"
            "Your chat ID is: 42\n"
            "Add it to bridge.allowed_chat_ids in config."
        )


class TestConsoleTransport:
    @pytest.mark.asyncio
    async def test_delivers_allowed_lines(self) -> None:
        received: list[IncomingMessage] = []

        async def handler(message: IncomingMessage) -> None:
            received.append(message)

        console, _ = make_console()
        transport = ConsoleTransport(7, [7], on_message=handler, console=console)
        assert await transport.handle_line("  /status  ") is True
        assert received == [IncomingMessage(chat_id=7, text="/status")]

    @pytest.mark.asyncio
    async def test_rejects_unlisted_chat(self) -> None:
        received: list[IncomingMessage] = []

        async def handler(message: IncomingMessage) -> None:
            received.append(message)

        console, out = make_console()
        transport = ConsoleTransport(0, [], on_message=handler, console=console)
        await transport.handle_line("/run ls")
        assert received == []
        assert "Your chat ID is: 0" in out.getvalue()

    @pytest.mark.asyncio
    async def test_quit_and_blank(self) -> None:
        console, _ = make_console()
        transport = ConsoleTransport(7, [7], console=console)
        assert await transport.handle_line("") is True
        assert await transport.handle_line("/quit") is False
        assert await transport.handle_line("/EXIT") is False

    @pytest.mark.asyncio
    async def test_send_prints_plain_text(self) -> None:
        console, out = make_console()
        transport = ConsoleTransport(7, [7], console=console)
        assert isinstance(transport, ChatTransport)
        await transport.send_message(7, "[session: default]\ncwd: /tmp")
        assert "[session: default]\ncwd: /tmp" in out.getvalue()
