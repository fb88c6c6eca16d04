"""Snapshot and status dataclasses reported by execution sessions."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class OutputSnapshot:
    """Tail of a session's captured output.

    Attributes:
        command: The command that produced the output ("" if none ran yet).
        lines: The most recent output lines, after line and char caps.
        running: True if the process was still running at snapshot time.
        truncated: True if older output was left out of ``lines``.
        status_text: Session status, included when there is no output yet.
    """

    command: str
    lines: list[str]
    running: bool
    truncated: bool = False
    status_text: str | None = None

    @property
    def empty(self) -> bool:
        return not self.lines

    @property
    def body(self) -> str:
        return "\n".join(self.lines)

    def render(self) -> str:
        """Operator-facing text for /out."""
        if self.empty:
            if self.running:
                return f"No output yet.\n\n{self.status_text or ''}".rstrip()
            return "No output captured yet. Run a command with /run first."

        state = "running" if self.running else "finished"
        header = f"Output snapshot ({state}): {self.command}"
        return f"{header}\n\n{self.body}"

    def __str__(self) -> str:
        return self.render()


@dataclass
class SessionInfo:
    """One row of the session listing."""

    name: str
    running: bool
    active: bool

    def render(self) -> str:
        marker = "*" if self.active else " "
        status = "running" if self.running else "idle"
        return f"{marker} {self.name} ({status})"
