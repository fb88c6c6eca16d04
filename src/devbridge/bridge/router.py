"""Command router between the chat transport and the local dev session.

Every inbound message goes through ``CommandRouter.handle_message``, which
routes it under a lock so session and approval state change one message at
a time. Child processes, timeouts, follow-up snapshots and correlated agent
responses run in their own tasks and only report back through session state
or outbound messages.

Routing precedence:
    1. empty text
    2. /auth <secret>
    3. authentication gate (only when a secret is configured)
    4. yes / y / run          -> confirm pending approval
    5. no / n / deny / skip   -> deny pending approval
    6. slash commands (/help, session commands, /agent)
    7. anything else          -> unknown command
"""

from __future__ import annotations

import asyncio
import hmac
from collections.abc import Awaitable, Callable, Coroutine, Iterable, Mapping
from pathlib import Path
from typing import TYPE_CHECKING, Any

from devbridge.bridge.events import format_agent_event, is_approval_event
from devbridge.bridge.protocols import InjectionError, IncomingMessage, KeystrokeError
from devbridge.config.schema import AgentMode, Config
from devbridge.logging import get_logger
from devbridge.session.registry import RegistryError
from devbridge.terminal.filter import classify
from devbridge.terminal.session import SessionBusyError
from devbridge.watching.responses import ResponseTimeoutError, WatcherDisposedError

if TYPE_CHECKING:
    from devbridge.bridge.protocols import AgentInjector, ChatTransport, KeystrokeController
    from devbridge.session.registry import SessionRegistry
    from devbridge.watching.responses import ResponseWatcher

log = get_logger("router")

AFFIRMATIVE = frozenset({"yes", "y", "run"})
NEGATIVE = frozenset({"no", "n", "deny", "skip"})

FAILURE_REPLY = "Bridge failed to process your message. Check logs."

Handler = Callable[[int, str], Awaitable[None]]


def build_correlated_prompt(prompt: str, relative_path: str) -> str:
    """Append the response-file instruction to an operator prompt."""
    return (
        f"{prompt}\n\n"
        f"When you are done, write your final answer as plain text to the file "
        f"`{relative_path}` (relative to the workspace root). "
        f"Write the complete answer in one go; do not leave the file empty."
    )


def is_within(path: Path, root: Path) -> bool:
    """True if ``path`` is ``root`` or below it (both already resolved)."""
    return path == root or root in path.parents


class CommandRouter:
    """Routes chat text to sessions, approvals and the agent bridge.

    Agent prompts are handled in exactly one mode, fixed by
    ``config.agent.mode``: fire-and-forget (acknowledge and return) or
    correlated (wait for a response file in the background and post it).
    """

    def __init__(
        self,
        transport: ChatTransport,
        registry: SessionRegistry,
        *,
        workspace_root: str | Path,
        config: Config | None = None,
        auth_secret: str | None = None,
        injector: AgentInjector | None = None,
        keystrokes: KeystrokeController | None = None,
        watcher: ResponseWatcher | None = None,
    ) -> None:
        config = config or Config()
        self._transport = transport
        self._registry = registry
        self._workspace_root = Path(workspace_root).resolve()
        self._bridge = config.bridge
        self._terminal = config.terminal
        self._agent = config.agent
        self._auth_secret = auth_secret or None
        self._injector = injector
        self._keystrokes = keystrokes
        self._watcher = watcher

        if self._agent.mode is AgentMode.CORRELATED and injector is not None and watcher is None:
            raise ValueError("Correlated agent mode requires a ResponseWatcher")

        self._authenticated: set[int] = set()
        self._pending_approval = False
        self._lock = asyncio.Lock()
        self._background: set[asyncio.Task[None]] = set()

        self._handlers: dict[str, Handler] = {
            "/help": self._cmd_help,
            "/run": self._cmd_run,
            "/out": self._cmd_out,
            "/status": self._cmd_status,
            "/pwd": self._cmd_pwd,
            "/cd": self._cmd_cd,
            "/kill": self._cmd_kill,
            "/new": self._cmd_new,
            "/use": self._cmd_use,
            "/sessions": self._cmd_sessions,
            "/agent": self._cmd_agent,
        }

    @property
    def pending_approval(self) -> bool:
        return self._pending_approval

    @property
    def agent_mode(self) -> AgentMode:
        return self._agent.mode

    def is_authenticated(self, chat_id: int) -> bool:
        return self._auth_secret is None or chat_id in self._authenticated

    # -------------------------------------------------------------------------
    # Entry points
    # -------------------------------------------------------------------------

    async def handle_message(self, message: IncomingMessage) -> None:
        """Route one inbound message. Never raises."""
        async with self._lock:
            try:
                await self._route(message.chat_id, message.text)
            except Exception:
                log.exception("Failed handling message from chat %s", message.chat_id)
                await self._safe_send(message.chat_id, FAILURE_REPLY)

    async def on_agent_event(self, event: Mapping[str, Any], chat_ids: Iterable[int]) -> None:
        """Relay an agent hook event to the operator chats.

        An approval-needed event arms the pending-approval flag so a plain
        yes/no answers the dialog.
        """
        async with self._lock:
            if is_approval_event(event):
                self._pending_approval = True
            text = format_agent_event(event)
            for chat_id in chat_ids:
                await self._safe_send(chat_id, text)

    async def wait_background(self) -> None:
        """Wait for follow-up snapshots and correlated waits to finish."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def close(self) -> None:
        """Cancel background work. Sessions and the watcher are closed by their owner."""
        tasks = list(self._background)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._background.clear()

    # -------------------------------------------------------------------------
    # Routing
    # -------------------------------------------------------------------------

    async def _route(self, chat_id: int, raw: str) -> None:
        text = raw.strip()
        if not text:
            await self._send(chat_id, "Empty message ignored.")
            return

        parts = text.split(maxsplit=1)
        # Strip the "@botname" suffix some chat clients add to commands
        command = parts[0].lower().split("@", 1)[0]
        arg = parts[1].strip() if len(parts) > 1 else ""

        if command == "/auth":
            await self._cmd_auth(chat_id, arg)
            return

        if not self.is_authenticated(chat_id):
            await self._send(chat_id, "Not authenticated. Send /auth <secret> first.")
            return

        word = text.lower()
        if word in AFFIRMATIVE:
            await self._approve(chat_id)
            return
        if word in NEGATIVE:
            await self._deny(chat_id)
            return

        handler = self._handlers.get(command)
        if handler is None:
            await self._send(chat_id, "Unknown command. Use /help.")
            return
        await handler(chat_id, arg)

    # -------------------------------------------------------------------------
    # Auth and approvals
    # -------------------------------------------------------------------------

    async def _cmd_auth(self, chat_id: int, secret: str) -> None:
        if self._auth_secret is None:
            await self._send(chat_id, "Auth is not configured. All allowed chats have access.")
            return
        if not secret:
            await self._send(chat_id, "Usage: /auth <secret>")
            return
        if hmac.compare_digest(secret.encode("utf-8"), self._auth_secret.encode("utf-8")):
            self._authenticated.add(chat_id)
            log.info("Chat %s authenticated successfully", chat_id)
            await self._send(chat_id, "Authenticated successfully.")
        else:
            log.warning("Failed auth attempt from chat %s", chat_id)
            await self._send(chat_id, "Invalid secret.")

    async def _approve(self, chat_id: int) -> None:
        if not self._pending_approval:
            await self._reply(chat_id, "No pending approval to confirm.")
            return
        self._pending_approval = False
        log.info("Approval from chat %s: sending confirm", chat_id)
        error = await self._press("confirm")
        if error:
            await self._reply(chat_id, f"Approved, but the confirm keystroke failed: {error}")
        elif self._keystrokes is None:
            await self._reply(chat_id, "Approved.")
        else:
            await self._reply(chat_id, "Approved. Pressed Run.")

    async def _deny(self, chat_id: int) -> None:
        if not self._pending_approval:
            await self._reply(chat_id, "No pending approval to deny.")
            return
        self._pending_approval = False
        log.info("Denial from chat %s: sending deny", chat_id)
        error = await self._press("deny")
        if error:
            await self._reply(chat_id, f"Denied, but the deny keystroke failed: {error}")
        elif self._keystrokes is None:
            await self._reply(chat_id, "Denied.")
        else:
            await self._reply(chat_id, "Denied. Pressed Skip.")

    async def _press(self, action: str) -> str | None:
        """Send a confirm/deny keystroke; returns an error string on failure."""
        if self._keystrokes is None:
            return None
        await asyncio.sleep(self._agent.settle_delay)
        try:
            if action == "confirm":
                await self._keystrokes.confirm()
            else:
                await self._keystrokes.deny()
        except KeystrokeError as e:
            log.warning("%s keystroke failed: %s", action, e)
            return str(e)
        return None

    # -------------------------------------------------------------------------
    # Session commands
    # -------------------------------------------------------------------------

    async def _cmd_help(self, chat_id: int, arg: str) -> None:
        lines = ["Commands:"]
        if self._auth_secret:
            lines.append("/auth <secret> - authenticate this chat")
        cd_help = "/cd <path> - change directory"
        if self._bridge.confine_to_workspace:
            cd_help += " (workspace only)"
        lines += [
            "",
            "Terminal:",
            "/run <command> - run command",
            "/out [lines] - latest output",
            "/status - session status",
            "/pwd - working directory",
            cd_help,
            "/kill - stop running command",
            "/new <name> - new terminal session",
            "/use <name> - switch session",
            "/sessions - list sessions",
            "",
            "Agent:",
            "/agent <message> - send to the coding agent",
            "yes/no - approve/skip pending confirmation",
        ]
        await self._send(chat_id, "\n".join(lines))

    async def _cmd_run(self, chat_id: int, command: str) -> None:
        if not command:
            await self._reply(chat_id, "Usage: /run <command>")
            return

        decision = classify(command)
        if not decision.allowed:
            log.warning(
                "Blocked command from chat %s (%s): %s",
                chat_id,
                decision.rule.name if decision.rule else "?",
                command,
            )
            await self._reply(chat_id, decision.message)
            return

        session = self._registry.active
        busy_reply = "A command is already running. Use /status, /out, or /kill first."
        if session.is_running():
            await self._reply(chat_id, busy_reply)
            return

        timeout = self._terminal.command_timeout
        log.info("Running terminal command [%s]: %s", session.name, command)
        try:
            await session.start(command, timeout=timeout)
        except SessionBusyError:
            await self._reply(chat_id, busy_reply)
            return

        if not session.is_running():
            await self._reply(chat_id, f"Failed to start:\n{session.output_snapshot().render()}")
            return

        timeout_text = f"{timeout:g}s" if timeout > 0 else "none"
        await self._reply(
            chat_id,
            f"Started in {session.cwd}:\n$ {command}\n\n"
            f"Timeout: {timeout_text}. Use /out to fetch output.",
        )
        if self._bridge.follow_up_delay > 0:
            self._spawn(self._follow_up(chat_id, session.name, self._bridge.follow_up_delay))

    async def _follow_up(self, chat_id: int, session_name: str, delay: float) -> None:
        await asyncio.sleep(delay)
        session = self._registry.get(session_name)
        if session is None:
            return
        snapshot = session.output_snapshot()
        await self._safe_send(chat_id, f"[session: {session_name}]\n{snapshot.render()}")

    async def _cmd_out(self, chat_id: int, arg: str) -> None:
        max_lines: int | None = None
        if arg:
            try:
                max_lines = int(arg)
            except ValueError:
                max_lines = 0
            if max_lines <= 0:
                await self._reply(chat_id, "Usage: /out [lines]")
                return
        snapshot = self._registry.active.output_snapshot(max_lines=max_lines)
        await self._reply(chat_id, snapshot.render())

    async def _cmd_status(self, chat_id: int, arg: str) -> None:
        await self._reply(chat_id, self._registry.active.status_text())

    async def _cmd_pwd(self, chat_id: int, arg: str) -> None:
        await self._reply(chat_id, f"cwd: {self._registry.active.cwd}")

    async def _cmd_cd(self, chat_id: int, raw: str) -> None:
        if not raw:
            await self._reply(chat_id, "Usage: /cd <path>")
            return

        session = self._registry.active
        target = Path(raw).expanduser()
        if not target.is_absolute():
            target = Path(session.cwd) / target
        try:
            resolved = target.resolve()
        except (OSError, RuntimeError):
            await self._reply(chat_id, f"Cannot access directory: {target}")
            return

        if self._bridge.confine_to_workspace and not is_within(resolved, self._workspace_root):
            log.warning("Chat %s: /cd outside workspace denied: %s", chat_id, resolved)
            await self._reply(
                chat_id, f"Denied: path is outside workspace root ({self._workspace_root})"
            )
            return

        if session.set_cwd(resolved):
            await self._reply(chat_id, f"cwd changed to {session.cwd}")
        else:
            await self._reply(chat_id, f"Cannot access directory: {resolved}")

    async def _cmd_kill(self, chat_id: int, arg: str) -> None:
        if self._registry.active.kill():
            await self._reply(chat_id, "Sent SIGINT to running command.")
        else:
            await self._reply(chat_id, "No running command.")

    async def _cmd_new(self, chat_id: int, name: str) -> None:
        if not name:
            await self._reply(chat_id, "Usage: /new <name>")
            return
        try:
            session = self._registry.create(name)
        except RegistryError as e:
            await self._reply(chat_id, str(e))
            return
        self._registry.switch_to(session.name)
        await self._reply(chat_id, f"Created and switched to session: {name}\ncwd: {session.cwd}")

    async def _cmd_use(self, chat_id: int, name: str) -> None:
        if not name:
            await self._reply(chat_id, "Usage: /use <name>")
            return
        try:
            session = self._registry.switch_to(name)
        except RegistryError as e:
            await self._reply(chat_id, str(e))
            return
        await self._reply(chat_id, f"Switched to session: {name}\n{session.status_text()}")

    async def _cmd_sessions(self, chat_id: int, arg: str) -> None:
        rows = [info.render() for info in self._registry.list()]
        header = f"Sessions ({len(self._registry)}/{self._registry.max_sessions}):"
        await self._reply(chat_id, "\n".join([header, *rows]))

    # -------------------------------------------------------------------------
    # Agent bridge
    # -------------------------------------------------------------------------

    async def _cmd_agent(self, chat_id: int, prompt: str) -> None:
        if not prompt:
            await self._reply(chat_id, "Usage: /agent <message>")
            return
        if self._injector is None:
            await self._reply(chat_id, "Agent bridge is not available in this session.")
            return

        await self._reply(chat_id, "Received. Sending to agent chat now...")
        # A new prompt supersedes any approval still outstanding
        self._pending_approval = True

        watcher = self._watcher if self._agent.mode is AgentMode.CORRELATED else None
        request_id = relative_path = ""
        injected = prompt
        if watcher is not None:
            request_id = watcher.new_request_id()
            relative_path = watcher.relative_response_path(request_id)
            injected = build_correlated_prompt(prompt, relative_path)

        try:
            await self._injector.inject(injected)
        except InjectionError as e:
            self._pending_approval = False
            log.warning("Agent injection failed: %s", e)
            await self._reply(chat_id, f"Failed to inject: {e}")
            return
        except Exception as e:
            self._pending_approval = False
            log.exception("Agent injector %s crashed", self._injector.name)
            await self._reply(chat_id, f"Failed to inject: {e}")
            return

        if watcher is None:
            await self._reply(
                chat_id,
                f"Prompt sent to {self._injector.name}. "
                "Reply yes/no if the agent asks for approval.",
            )
            return

        timeout = self._agent.response_timeout
        await self._reply(chat_id, f"Prompt sent. Waiting up to {timeout:g}s for {relative_path}")
        self._spawn(
            self._await_agent_response(watcher, chat_id, request_id, relative_path, timeout)
        )

    async def _await_agent_response(
        self,
        watcher: ResponseWatcher,
        chat_id: int,
        request_id: str,
        relative_path: str,
        timeout: float,
    ) -> None:
        try:
            answer = await watcher.wait_for_response(request_id, timeout)
        except ResponseTimeoutError:
            await self._safe_send(
                chat_id,
                self._tagged(
                    f"Timed out after {timeout:g}s waiting for the agent's response.\n"
                    f"Expected file: {relative_path}"
                ),
            )
            return
        except WatcherDisposedError:
            log.info("Response wait %s cancelled by shutdown", request_id)
            return
        await self._safe_send(chat_id, self._tagged(f"Agent response:\n\n{answer}"))

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _tagged(self, text: str) -> str:
        return f"[session: {self._registry.active_name}]\n{text}"

    async def _reply(self, chat_id: int, text: str) -> None:
        """Session-scoped reply, prefixed with the active session name."""
        await self._transport.send_message(chat_id, self._tagged(text))

    async def _send(self, chat_id: int, text: str) -> None:
        """Global reply (help, auth, unknown command), no session prefix."""
        await self._transport.send_message(chat_id, text)

    async def _safe_send(self, chat_id: int, text: str) -> None:
        try:
            await self._transport.send_message(chat_id, text)
        except Exception:
            log.exception("Failed sending message to chat %s", chat_id)

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._on_background_done)

    def _on_background_done(self, task: asyncio.Task[None]) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            log.error("Background task failed: %s", task.exception())
