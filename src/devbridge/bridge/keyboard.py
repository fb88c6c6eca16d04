"""OS-level keystroke simulation for agent approval dialogs.

confirm() presses Enter and deny() presses Escape in the foreground window,
using osascript on macOS, PowerShell SendKeys on Windows and xdotool
elsewhere. This is best-effort: it needs a desktop session and the right
window in front.
"""

from __future__ import annotations

import asyncio
import sys

from devbridge.bridge.protocols import KeystrokeError
from devbridge.logging import get_logger

log = get_logger("keyboard")

# macOS virtual key codes
_MAC_KEY_CODES = {"confirm": 36, "deny": 53}
_WINDOWS_KEYS = {"confirm": "{ENTER}", "deny": "{ESC}"}
_XDOTOOL_KEYS = {"confirm": "Return", "deny": "Escape"}


def keystroke_command(
    action: str,
    platform: str | None = None,
    app_bundle_id: str | None = None,
) -> list[str]:
    """Build the argv that presses the key for ``action`` on ``platform``.

    Args:
        action: "confirm" or "deny".
        platform: sys.platform value; defaults to the current one.
        app_bundle_id: macOS only, application to activate first.
    """
    if action not in _XDOTOOL_KEYS:
        raise ValueError(f"Unknown keystroke action: {action}")
    platform = platform or sys.platform

    if platform == "darwin":
        activate = f'tell application id "{app_bundle_id}" to activate\n' if app_bundle_id else ""
        script = (
            f"{activate}delay 0.2\n"
            f'tell application "System Events" to key code {_MAC_KEY_CODES[action]}'
        )
        return ["osascript", "-e", script]

    if platform == "win32":
        script = (
            "Add-Type -AssemblyName System.Windows.Forms; "
            "Start-Sleep -Milliseconds 200; "
            f"[System.Windows.Forms.SendKeys]::SendWait('{_WINDOWS_KEYS[action]}')"
        )
        return ["powershell", "-NoProfile", "-Command", script]

    return ["xdotool", "key", _XDOTOOL_KEYS[action]]


class OSKeystrokeController:
    """KeystrokeController backed by platform keystroke tools."""

    def __init__(
        self,
        platform: str | None = None,
        app_bundle_id: str | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._platform = platform or sys.platform
        self._app_bundle_id = app_bundle_id
        self._timeout = timeout

    async def confirm(self) -> None:
        await self._press("confirm")

    async def deny(self) -> None:
        await self._press("deny")

    async def _press(self, action: str) -> None:
        argv = keystroke_command(action, self._platform, self._app_bundle_id)
        log.debug("Sending %s keystroke via %s", action, argv[0])
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise KeystrokeError(f"{argv[0]} is not available: {e}") from e

        try:
            _, stderr = await asyncio.wait_for(process.communicate(), self._timeout)
        except asyncio.TimeoutError as e:
            process.kill()
            await process.wait()
            raise KeystrokeError(f"{argv[0]} timed out after {self._timeout:g}s") from e

        if process.returncode != 0:
            detail = stderr.decode("utf-8", errors="replace").strip()
            raise KeystrokeError(
                f"{argv[0]} exited with code {process.returncode}: {detail or 'no output'}"
            )
