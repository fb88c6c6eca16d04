"""Command-line entry point.

Usage:
    python -m devbridge --root /path/to/project
    devbridge --chat-id 123456789 --mode correlated -vv
    devbridge --root /path/to/project install-hooks
    devbridge hook < event.json

Without a subcommand, runs the bridge against a workspace with the local
console transport. ``install-hooks`` registers ``devbridge hook`` in the
editor's hooks.json; the editor then runs ``hook`` for each agent event and
the running bridge relays it to chat.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import IO, Any

from devbridge import __version__
from devbridge.bridge.hooks import (
    DEFAULT_HOOK_COMMAND,
    HOOKS_FILE,
    hook_reply,
    write_hooks_config,
)
from devbridge.config import AgentMode, load_config
from devbridge.logging import get_logger, setup_logging
from devbridge.runtime import BridgeRuntime, resolve_workspace_root
from devbridge.transport.console import ConsoleTransport
from devbridge.watching.inbox import events_directory, write_hook_event

log = get_logger()

PROJECT_DIR_ENV = "CURSOR_PROJECT_DIR"


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="devbridge",
        description="Drive local shell sessions and a coding agent from chat commands",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "--root",
        type=Path,
        help="Workspace root (default: current directory)",
    )
    parser.add_argument(
        "--chat-id",
        type=int,
        help="Chat id the console speaks as (default: first allowed chat id)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (can be repeated)",
    )
    parser.add_argument(
        "--mode",
        choices=[mode.value for mode in AgentMode],
        help="Override agent.mode from config",
    )

    subparsers = parser.add_subparsers(dest="command", help="Run the bridge if omitted")

    subparsers.add_parser(
        "hook",
        help="Relay an editor hook event (JSON on stdin) to the running bridge",
    )

    install_parser = subparsers.add_parser(
        "install-hooks",
        help="Register the hook command in .cursor/hooks.json",
    )
    install_parser.add_argument(
        "--hook-command",
        default=DEFAULT_HOOK_COMMAND,
        help=f"Command the editor should run (default: {DEFAULT_HOOK_COMMAND!r})",
    )
    install_parser.add_argument(
        "--force",
        action="store_true",
        help="Replace an existing hooks.json",
    )

    return parser


def read_hook_input(stdin: IO[str]) -> dict[str, Any]:
    """Parse the editor's hook payload; anything but a JSON object reads as {}."""
    raw = stdin.read().strip()
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def hook_project_root(root: Path | None, event: Mapping[str, Any]) -> Path:
    """--root, else the editor's project dir, else the event's first workspace root."""
    if root is not None:
        return root
    project_dir = os.environ.get(PROJECT_DIR_ENV)
    if project_dir:
        return Path(project_dir)
    roots = event.get("workspace_roots")
    if isinstance(roots, list) and roots and isinstance(roots[0], str):
        return Path(roots[0])
    return Path.cwd()


def run_hook(root: Path | None, stdin: IO[str], stdout: IO[str]) -> int:
    """Queue one hook event for the bridge and answer the editor.

    Always exits 0 with a reply on stdout: a broken bridge must not block
    the agent.
    """
    event = read_hook_input(stdin)
    project = hook_project_root(root, event).expanduser().resolve()
    config = load_config(session_root=str(project))
    setup_logging(config.logging)

    if config.agent.hook_events:
        directory = events_directory(
            resolve_workspace_root(config, project), config.agent.response_dir
        )
        try:
            path = write_hook_event(directory, event)
        except OSError as e:
            log.warning("Could not queue hook event for the bridge: %s", e)
        else:
            log.debug("Queued hook event %s as %s", event.get("hook_event_name"), path.name)

    stdout.write(json.dumps(hook_reply(event)))
    stdout.flush()
    return 0


def run_install_hooks(root: Path, command: str, force: bool) -> int:
    path = write_hooks_config(root, command, overwrite=force)
    if path is None:
        print(f"{root / HOOKS_FILE} already exists; use --force to replace it")
        return 1
    print(f"Wrote {path}")
    return 0


async def run_console(runtime: BridgeRuntime, transport: ConsoleTransport) -> int:
    transport.set_handler(runtime.handle_message)
    async with runtime:
        await transport.run()
    return 0


def run_cli(args: Sequence[str]) -> int:
    """Run the CLI with the given arguments."""
    parser = create_parser()
    parsed = parser.parse_args(args)

    if parsed.command == "hook":
        return run_hook(parsed.root, sys.stdin, sys.stdout)

    root = (parsed.root or Path.cwd()).expanduser().resolve()
    if not root.is_dir():
        parser.error(f"workspace root is not a directory: {root}")

    if parsed.command == "install-hooks":
        return run_install_hooks(root, parsed.hook_command, parsed.force)

    config = load_config(session_root=str(root))
    if parsed.verbose:
        config.logging.verbose = min(4, 1 + parsed.verbose)
    if parsed.mode:
        config.agent.mode = AgentMode(parsed.mode)
    setup_logging(config.logging)

    allowed = config.bridge.allowed_chat_ids
    chat_id = parsed.chat_id if parsed.chat_id is not None else (allowed[0] if allowed else 0)

    transport = ConsoleTransport(chat_id, allowed, history_file=root / ".devbridge_history")
    runtime = BridgeRuntime(config, root, transport)
    try:
        return asyncio.run(run_console(runtime, transport))
    except KeyboardInterrupt:
        return 130


def main() -> None:
    sys.exit(run_cli(sys.argv[1:]))


if __name__ == "__main__":
    main()
