"""File watching for devbridge.

Provides polling-based directory watching, the response watcher that
matches agent-written response files to pending prompts, and the inbox
that relays hook events to the running bridge.
"""

from devbridge.watching.inbox import HookEventInbox, events_directory, write_hook_event
from devbridge.watching.responses import (
    ResponseTimeoutError,
    ResponseWatcher,
    WatcherDisposedError,
)
from devbridge.watching.watcher import (
    DirectoryWatcher,
    FileChangeEvent,
    WatchedFile,
)

__all__ = [
    "DirectoryWatcher",
    "FileChangeEvent",
    "HookEventInbox",
    "ResponseTimeoutError",
    "ResponseWatcher",
    "WatchedFile",
    "WatcherDisposedError",
    "events_directory",
    "write_hook_event",
]
