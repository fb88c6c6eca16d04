"""Directory watching implementation using polling.

Polling is preferred over native file watchers for cross-platform
reliability; the response directory holds a handful of small files, so a
scan every half second is cheap.
"""

from __future__ import annotations

import asyncio
import fnmatch
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from devbridge.logging import get_logger

log = get_logger("watching")


@dataclass
class WatchedFile:
    """Tracks a watched file's state."""

    path: Path
    mtime: float | None = None
    size: int | None = None


@dataclass
class FileChangeEvent:
    """Represents a detected file change."""

    path: Path
    change_type: str  # "created", "modified", "deleted"
    old_mtime: float | None
    new_mtime: float | None
    timestamp: float = field(default_factory=time.time)


class DirectoryWatcher:
    """Watches one directory for files matching a glob pattern.

    Files present when the watcher is created are recorded as the baseline
    and are not reported as created. Afterwards each scan reports new files,
    mtime/size changes and removals.

    Example:
        watcher = DirectoryWatcher(Path(".code-bridge"), "response-*.md")

        def on_change(event: FileChangeEvent) -> None:
            print(event.change_type, event.path)

        await watcher.start(on_change)
    """

    def __init__(
        self,
        directory: Path,
        pattern: str = "*",
        poll_interval: float = 0.5,
    ) -> None:
        """Initialize the directory watcher.

        Args:
            directory: Directory to scan (non-recursive).
            pattern: fnmatch pattern applied to file names.
            poll_interval: Seconds between polling cycles.
        """
        self._directory = directory
        self._pattern = pattern
        self._poll_interval = max(0.01, poll_interval)

        self._watched: dict[Path, WatchedFile] = {}

        self._running = False
        self._task: asyncio.Task[None] | None = None

        for path, stat in self._scan().items():
            self._watched[path] = WatchedFile(path=path, mtime=stat[0], size=stat[1])

    @property
    def directory(self) -> Path:
        return self._directory

    @property
    def poll_interval(self) -> float:
        return self._poll_interval

    def _scan(self) -> dict[Path, tuple[float, int]]:
        """Return mtime/size for every matching regular file."""
        found: dict[Path, tuple[float, int]] = {}
        try:
            entries = sorted(self._directory.iterdir())
        except FileNotFoundError:
            return found
        except OSError as e:
            log.warning("Error scanning %s: %s", self._directory, e)
            return found

        for entry in entries:
            if not fnmatch.fnmatch(entry.name, self._pattern):
                continue
            try:
                stat = entry.stat()
            except FileNotFoundError:
                continue
            except OSError as e:
                log.warning("Error checking %s: %s", entry, e)
                continue
            if entry.is_file():
                found[entry] = (stat.st_mtime, stat.st_size)
        return found

    def check_changes(self) -> list[FileChangeEvent]:
        """Scan once and return the changes since the previous scan."""
        events: list[FileChangeEvent] = []
        current = self._scan()

        for path, (mtime, size) in current.items():
            watched = self._watched.get(path)
            if watched is None:
                self._watched[path] = WatchedFile(path=path, mtime=mtime, size=size)
                events.append(FileChangeEvent(path, "created", None, mtime))
            elif watched.mtime != mtime or watched.size != size:
                old_mtime = watched.mtime
                watched.mtime = mtime
                watched.size = size
                events.append(FileChangeEvent(path, "modified", old_mtime, mtime))

        for path in [p for p in self._watched if p not in current]:
            watched = self._watched.pop(path)
            events.append(FileChangeEvent(path, "deleted", watched.mtime, None))

        return events

    async def start(self, callback: Callable[[FileChangeEvent], None]) -> None:
        """Run the polling loop until stopped or cancelled.

        Args:
            callback: Called for each change. Exceptions are logged and the
                loop keeps going.
        """
        if self._running:
            log.warning("DirectoryWatcher already running")
            return

        self._running = True
        self._task = asyncio.current_task()
        log.info(
            "Watching %s/%s (interval: %.2fs)",
            self._directory,
            self._pattern,
            self._poll_interval,
        )

        try:
            while self._running:
                for event in self.check_changes():
                    try:
                        callback(event)
                    except Exception:
                        log.exception("Error in file change callback for %s", event.path)

                await asyncio.sleep(self._poll_interval)

        except asyncio.CancelledError:
            log.debug("DirectoryWatcher cancelled")
        finally:
            self._running = False
            self._task = None

    def stop(self) -> None:
        """Stop the polling loop."""
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()

    def is_running(self) -> bool:
        return self._running
