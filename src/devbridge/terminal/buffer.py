"""Bounded output accumulator for a running command."""

from __future__ import annotations


class OutputBuffer:
    """Append-only text buffer that keeps only the most recent ``limit`` chars.

    Whatever has been appended, ``text`` is always a suffix of the full
    logical output, at most ``limit`` characters long.
    """

    def __init__(self, limit: int = 120_000) -> None:
        if limit <= 0:
            raise ValueError("limit must be positive")
        self._limit = limit
        self._text = ""
        self._total = 0

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def text(self) -> str:
        return self._text

    @property
    def truncated(self) -> bool:
        return self._total > len(self._text)

    def append(self, chunk: str) -> None:
        if not chunk:
            return
        self._total += len(chunk)
        self._text += chunk
        if len(self._text) > self._limit:
            self._text = self._text[-self._limit :]

    def ensure_newline(self) -> None:
        """Terminate a partial last line so trailer markers start on their own line."""
        if self._text and not self._text.endswith("\n"):
            self.append("\n")

    def clear(self) -> None:
        self._text = ""
        self._total = 0

    def __len__(self) -> int:
        return len(self._text)

    def __bool__(self) -> bool:
        return bool(self._text)
