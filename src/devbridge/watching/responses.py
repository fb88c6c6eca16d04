"""Correlate agent prompts with the response files the agent writes later.

The agent has no return channel, so each prompt carries an instruction to
write its final answer to ``<response_dir>/response-<id>.md``. This module
mints those ids, keeps one pending future per id with an expiry timer, and
resolves it when a non-empty file for that id shows up.
"""

from __future__ import annotations

import asyncio
import contextlib
import re
import uuid
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from devbridge.logging import get_logger
from devbridge.watching.watcher import DirectoryWatcher, FileChangeEvent

log = get_logger("watching.responses")

RESPONSE_GLOB = "response-*.md"
_RESPONSE_NAME_RE = re.compile(r"response-(.+)\.md")


class ResponseTimeoutError(TimeoutError):
    """No usable response file appeared before the deadline."""

    def __init__(self, request_id: str, relative_path: str, timeout: float) -> None:
        super().__init__(f"Timed out after {timeout:g}s waiting for response file {relative_path}")
        self.request_id = request_id
        self.relative_path = relative_path
        self.timeout = timeout


class WatcherDisposedError(RuntimeError):
    """The watcher shut down while a response was still pending."""


@dataclass
class _PendingResponse:
    future: asyncio.Future[str]
    timer: asyncio.TimerHandle


class ResponseWatcher:
    """Resolves pending response waits from files dropped in one directory.

    Each id resolves at most once: the first non-empty file wins, and files
    for ids that already resolved, timed out or were never requested are
    left alone.
    """

    def __init__(
        self,
        root: str | Path,
        response_dir: str = ".code-bridge",
        poll_interval: float = 0.5,
    ) -> None:
        self._root = Path(root)
        self._relative_dir = PurePosixPath(response_dir.replace("\\", "/")).as_posix()
        self._directory = self._root / self._relative_dir
        self._poll_interval = poll_interval

        self._pending: dict[str, _PendingResponse] = {}
        self._watcher: DirectoryWatcher | None = None
        self._task: asyncio.Task[None] | None = None
        self._disposed = False

    @property
    def directory(self) -> Path:
        return self._directory

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def is_pending(self, request_id: str) -> bool:
        return request_id in self._pending

    async def start(self) -> None:
        """Create the response directory and start polling it."""
        if self._task is not None:
            return
        if self._disposed:
            raise WatcherDisposedError("Response watcher has been disposed")
        try:
            self._directory.mkdir(parents=True, exist_ok=True)
        except OSError:
            log.error("Could not create response directory %s", self._directory)
            raise

        self._watcher = DirectoryWatcher(
            self._directory, RESPONSE_GLOB, poll_interval=self._poll_interval
        )
        self._task = asyncio.create_task(
            self._watcher.start(self.handle_change), name="devbridge-response-watcher"
        )
        log.info("Watching response files in '%s'", self._relative_dir)

    def new_request_id(self) -> str:
        return uuid.uuid4().hex

    def relative_response_path(self, request_id: str) -> str:
        """Path the agent is told to write to, relative to the workspace root."""
        return f"{self._relative_dir}/response-{request_id}.md"

    def response_path(self, request_id: str) -> Path:
        return self._directory / f"response-{request_id}.md"

    async def wait_for_response(self, request_id: str, timeout: float) -> str:
        """Suspend until the response for ``request_id`` arrives.

        Returns:
            The trimmed file content.

        Raises:
            ResponseTimeoutError: Deadline passed without a non-empty file.
            WatcherDisposedError: The watcher was disposed first.
            ValueError: Someone is already waiting on this id.
        """
        if self._disposed:
            raise WatcherDisposedError("Response watcher has been disposed")
        if request_id in self._pending:
            raise ValueError(f"Already waiting for response {request_id}")

        loop = asyncio.get_running_loop()
        future: asyncio.Future[str] = loop.create_future()
        timer = loop.call_later(timeout, self._expire, request_id, timeout)
        entry = _PendingResponse(future=future, timer=timer)
        self._pending[request_id] = entry

        # The agent may have been faster than the registration
        self._try_resolve(self.response_path(request_id))

        try:
            return await future
        finally:
            if self._pending.get(request_id) is entry:
                del self._pending[request_id]
            timer.cancel()

    def handle_change(self, event: FileChangeEvent) -> None:
        """DirectoryWatcher callback."""
        if event.change_type == "deleted":
            return
        self._try_resolve(event.path)

    def _try_resolve(self, path: Path) -> bool:
        match = _RESPONSE_NAME_RE.fullmatch(path.name)
        if not match:
            return False
        request_id = match.group(1)
        entry = self._pending.get(request_id)
        if entry is None:
            log.debug("Ignoring response file without a pending request: %s", path.name)
            return False

        try:
            text = path.read_text(encoding="utf-8", errors="replace").strip()
        except FileNotFoundError:
            return False
        except OSError as e:
            log.warning("Failed reading response file '%s': %s", path, e)
            return False

        if not text:
            # Still being written
            return False

        del self._pending[request_id]
        entry.timer.cancel()
        if not entry.future.done():
            entry.future.set_result(text)

        try:
            path.unlink()
        except OSError as e:
            log.warning("Could not delete response file '%s': %s", path, e)
        log.info("Resolved response for id %s", request_id)
        return True

    def _expire(self, request_id: str, timeout: float) -> None:
        entry = self._pending.pop(request_id, None)
        if entry is None or entry.future.done():
            return
        log.warning("Response %s timed out after %gs", request_id, timeout)
        entry.future.set_exception(
            ResponseTimeoutError(request_id, self.relative_response_path(request_id), timeout)
        )

    async def dispose(self) -> None:
        """Fail every pending wait and stop watching."""
        self._disposed = True
        pending, self._pending = self._pending, {}
        for request_id, entry in pending.items():
            entry.timer.cancel()
            if not entry.future.done():
                entry.future.set_exception(
                    WatcherDisposedError(
                        f"Watcher disposed before response received for {request_id}"
                    )
                )

        if self._watcher is not None:
            self._watcher.stop()
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        self._watcher = None
        self._task = None
