"""Editor hook registration and the reply a hook process gives the editor.

The editor reads ``.cursor/hooks.json`` and runs the listed command for each
hook, passing the event as JSON on stdin and reading a JSON reply from
stdout. devbridge registers ``devbridge hook`` for the approval and stop
events; the reply asks the editor to show its own confirmation dialog, which
the operator then answers with yes/no from chat.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from devbridge.bridge.events import APPROVAL_EVENT, STOP_EVENT, is_approval_event
from devbridge.logging import get_logger

log = get_logger("bridge.hooks")

HOOKS_FILE = Path(".cursor") / "hooks.json"
DEFAULT_HOOK_COMMAND = "devbridge hook"
APPROVAL_HOOK_TIMEOUT = 10


def build_hooks_config(command: str = DEFAULT_HOOK_COMMAND) -> dict[str, Any]:
    return {
        "version": 1,
        "hooks": {
            APPROVAL_EVENT: [{"command": command, "timeout": APPROVAL_HOOK_TIMEOUT}],
            STOP_EVENT: [{"command": command}],
        },
    }


def write_hooks_config(
    root: str | Path,
    command: str = DEFAULT_HOOK_COMMAND,
    *,
    overwrite: bool = False,
) -> Path | None:
    """Write ``<root>/.cursor/hooks.json`` registering ``command``.

    An existing file belongs to the user and is kept unless ``overwrite``.

    Returns:
        The written path, or None if an existing file was kept.
    """
    path = Path(root) / HOOKS_FILE
    if path.exists() and not overwrite:
        log.info("Keeping existing %s", path)
        return None
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(build_hooks_config(command), indent=2) + "\n", encoding="utf-8")
    log.info("Wrote %s", path)
    return path


def hook_reply(event: Mapping[str, Any]) -> dict[str, Any]:
    """JSON the hook prints back to the editor."""
    if is_approval_event(event):
        return {"permission": "ask"}
    return {}
