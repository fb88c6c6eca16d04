"""Hand-off of agent hook events from the hook process to the running bridge.

The editor runs ``devbridge hook`` as a short-lived process for every hook
it fires. That process drops the payload as ``event-*.json`` into
``<response_dir>/events``; the bridge polls the directory, reads each file
once, deletes it and delivers the payloads in the order they were written.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import os
import time
import uuid
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

from devbridge.logging import get_logger
from devbridge.watching.watcher import DirectoryWatcher, FileChangeEvent

log = get_logger("watching.inbox")

EVENTS_SUBDIR = "events"
EVENT_GLOB = "event-*.json"

EventHandler = Callable[[dict[str, Any]], Awaitable[None]]


def events_directory(root: str | Path, response_dir: str) -> Path:
    return Path(root) / response_dir.replace("\\", "/") / EVENTS_SUBDIR


def write_hook_event(directory: str | Path, payload: dict[str, Any]) -> Path:
    """Atomically drop ``payload`` into the events directory.

    The name starts with a zero-padded nanosecond timestamp, so sorting by
    name is sorting by arrival.
    """
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    name = f"event-{time.time_ns():020d}-{uuid.uuid4().hex[:8]}.json"
    target = directory / name
    partial = directory / f".{name}.tmp"
    partial.write_text(json.dumps(payload), encoding="utf-8")
    os.replace(partial, target)
    return target


def read_hook_event(path: Path) -> dict[str, Any] | None:
    """Load one event file; None if it is gone or not a JSON object."""
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return None
    except (OSError, ValueError) as e:
        log.warning("Discarding unreadable hook event '%s': %s", path.name, e)
        return None
    if not isinstance(data, dict):
        log.warning("Discarding hook event '%s': not a JSON object", path.name)
        return None
    return data


class HookEventInbox:
    """Polls the events directory and feeds payloads to ``on_event``.

    Files left over from before ``start`` describe dialogs that are long
    gone, so they are removed unread.
    """

    def __init__(
        self,
        directory: str | Path,
        on_event: EventHandler,
        poll_interval: float = 0.5,
    ) -> None:
        self._directory = Path(directory)
        self._on_event = on_event
        self._poll_interval = poll_interval
        self._queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        self._watcher: DirectoryWatcher | None = None
        self._tasks: list[asyncio.Task[None]] = []

    async def start(self) -> None:
        if self._tasks:
            return
        self._directory.mkdir(parents=True, exist_ok=True)
        stale = 0
        for path in self._directory.glob(EVENT_GLOB):
            with contextlib.suppress(FileNotFoundError):
                path.unlink()
                stale += 1
        if stale:
            log.info("Dropped %d hook event(s) from before startup", stale)

        self._watcher = DirectoryWatcher(
            self._directory, EVENT_GLOB, poll_interval=self._poll_interval
        )
        self._tasks = [
            asyncio.create_task(
                self._watcher.start(self.handle_change), name="devbridge-hook-watcher"
            ),
            asyncio.create_task(self._deliver(), name="devbridge-hook-delivery"),
        ]
        log.info("Listening for hook events in %s", self._directory)

    def handle_change(self, event: FileChangeEvent) -> None:
        """DirectoryWatcher callback."""
        if event.change_type != "created":
            return
        payload = read_hook_event(event.path)
        try:
            event.path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            log.warning("Could not delete hook event '%s': %s", event.path, e)
        if payload is not None:
            log.debug("Hook event %s queued", payload.get("hook_event_name"))
            self._queue.put_nowait(payload)

    async def _deliver(self) -> None:
        while True:
            payload = await self._queue.get()
            try:
                await self._on_event(payload)
            except Exception:
                log.exception("Error delivering hook event %s", payload.get("hook_event_name"))

    async def stop(self) -> None:
        if self._watcher is not None:
            self._watcher.stop()
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._watcher = None
