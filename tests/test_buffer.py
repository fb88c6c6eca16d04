"""Tests for OutputBuffer and the snapshot/listing dataclasses."""

from __future__ import annotations

import pytest

from devbridge.terminal.buffer import OutputBuffer
from devbridge.terminal.result import OutputSnapshot, SessionInfo


class TestOutputBuffer:
    def test_append_and_text(self) -> None:
        buf = OutputBuffer(limit=100)
        buf.append("hello ")
        buf.append("world")
        assert buf.text == "hello world"
        assert len(buf) == 11
        assert buf.truncated is False

    def test_keeps_most_recent_suffix(self) -> None:
        buf = OutputBuffer(limit=5)
        buf.append("abcdefgh")
        buf.append("ij")
        assert buf.text == "fghij"
        assert buf.truncated is True

    def test_empty_append_ignored(self) -> None:
        buf = OutputBuffer(limit=5)
        buf.append("")
        assert not buf

    def test_ensure_newline(self) -> None:
        buf = OutputBuffer()
        buf.ensure_newline()
        assert buf.text == ""
        buf.append("partial")
        buf.ensure_newline()
        buf.ensure_newline()
        assert buf.text == "partial\n"

    def test_clear(self) -> None:
        buf = OutputBuffer(limit=3)
        buf.append("abcdef")
        buf.clear()
        assert buf.text == ""
        assert buf.truncated is False

    def test_invalid_limit(self) -> None:
        with pytest.raises(ValueError):
            OutputBuffer(limit=0)


class TestOutputSnapshot:
    def test_render_with_output(self) -> None:
        snap = OutputSnapshot(command="make", lines=["ok", "done"], running=False)
        assert snap.render() == "Output snapshot (finished): make\n\nok\ndone"

    def test_render_running(self) -> None:
        snap = OutputSnapshot(command="make", lines=["building"], running=True)
        assert snap.render().startswith("Output snapshot (running): make")

    def test_render_empty_idle(self) -> None:
        snap = OutputSnapshot(command="", lines=[], running=False)
        assert snap.empty
        assert snap.render() == "No output captured yet. Run a command with /run first."

    def test_render_empty_running_includes_status(self) -> None:
        snap = OutputSnapshot(
            command="sleep 5", lines=[], running=True, status_text="Status: running (1s)"
        )
        assert snap.render() == "No output yet.\n\nStatus: running (1s)"


class TestSessionInfo:
    def test_active_marker(self) -> None:
        assert SessionInfo(name="default", running=False, active=True).render() == "* default (idle)"
        assert SessionInfo(name="build", running=True, active=False).render() == "  build (running)"
