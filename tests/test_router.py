"""Tests for CommandRouter with fake collaborators."""

from __future__ import annotations

import re
import sys
from pathlib import Path
from typing import Any

import pytest

from devbridge.bridge.protocols import IncomingMessage, InjectionError, KeystrokeError
from devbridge.bridge.router import FAILURE_REPLY, CommandRouter, build_correlated_prompt, is_within
from devbridge.config.schema import AgentConfig, AgentMode, BridgeConfig, Config, TerminalConfig
from devbridge.session.registry import SessionRegistry
from devbridge.watching.responses import ResponseWatcher

CHAT = 1001

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="uses POSIX sh commands")


class FakeTransport:
    def __init__(self) -> None:
        self.sent: list[tuple[int, str]] = []

    async def send_message(self, chat_id: int, text: str) -> None:
        self.sent.append((chat_id, text))

    @property
    def last(self) -> str:
        return self.sent[-1][1]

    @property
    def texts(self) -> list[str]:
        return [text for _, text in self.sent]


class FakeInjector:
    name = "fake-agent"

    def __init__(self, error: Exception | None = None) -> None:
        self.prompts: list[str] = []
        self.error = error

    async def inject(self, prompt: str) -> None:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error


class FakeKeystrokes:
    def __init__(self, error: Exception | None = None) -> None:
        self.pressed: list[str] = []
        self.error = error

    async def confirm(self) -> None:
        self.pressed.append("confirm")
        if self.error is not None:
            raise self.error

    async def deny(self) -> None:
        self.pressed.append("deny")
        if self.error is not None:
            raise self.error


class Harness:
    """A router wired to fakes over a temporary workspace."""

    def __init__(
        self,
        root: Path,
        *,
        auth_secret: str | None = None,
        injector: FakeInjector | None = None,
        keystrokes: FakeKeystrokes | None = None,
        watcher: ResponseWatcher | None = None,
        mode: AgentMode = AgentMode.FIRE_AND_FORGET,
        follow_up_delay: float = 0.0,
        max_sessions: int = 5,
        confine: bool = True,
        response_timeout: float = 5.0,
    ) -> None:
        self.root = root.resolve()
        self.config = Config(
            bridge=BridgeConfig(
                allowed_chat_ids=[CHAT],
                max_sessions=max_sessions,
                follow_up_delay=follow_up_delay,
                confine_to_workspace=confine,
            ),
            terminal=TerminalConfig(command_timeout=600),
            agent=AgentConfig(mode=mode, settle_delay=0, response_timeout=response_timeout),
        )
        self.transport = FakeTransport()
        self.registry = SessionRegistry(self.root, max_sessions=max_sessions)
        self.router = CommandRouter(
            self.transport,
            self.registry,
            workspace_root=self.root,
            config=self.config,
            auth_secret=auth_secret,
            injector=injector,
            keystrokes=keystrokes,
            watcher=watcher,
        )

    async def say(self, text: str, chat_id: int = CHAT) -> str:
        await self.router.handle_message(IncomingMessage(chat_id=chat_id, text=text))
        return self.transport.last

    async def close(self) -> None:
        await self.router.close()
        await self.registry.close()


def tagged(text: str, session: str = "default") -> str:
    return f"[session: {session}]\n{text}"


class TestRouting:
    """Global replies and command dispatch."""

    @pytest.mark.asyncio
    async def test_empty_message(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        assert await h.say("   ") == "Empty message ignored."

    @pytest.mark.asyncio
    async def test_unknown_command(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        assert await h.say("hello there") == "Unknown command. Use /help."
        assert await h.say("/bogus") == "Unknown command. Use /help."

    @pytest.mark.asyncio
    async def test_help_is_untagged(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        reply = await h.say("/help")
        assert reply.startswith("Commands:")
        assert "/run <command>" in reply
        assert "/auth" not in reply

    @pytest.mark.asyncio
    async def test_command_case_and_bot_suffix(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        assert (await h.say("/HELP@devbridge_bot")).startswith("Commands:")

    @pytest.mark.asyncio
    async def test_internal_error_reports_failure(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        h = Harness(tmp_path)

        def broken() -> list[Any]:
            raise RuntimeError("registry exploded")

        monkeypatch.setattr(h.registry, "list", broken)
        assert await h.say("/sessions") == FAILURE_REPLY
        # Router keeps working afterwards
        assert (await h.say("/pwd")).endswith(str(h.root))


class TestAuth:
    @pytest.mark.asyncio
    async def test_not_configured(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        assert await h.say("/auth anything") == (
            "Auth is not configured. All allowed chats have access."
        )

    @pytest.mark.asyncio
    async def test_gate_and_login(self, tmp_path: Path) -> None:
        h = Harness(tmp_path, auth_secret="s3cret")
        gate = "Not authenticated. Send /auth <secret> first."

        assert await h.say("/status") == gate
        assert await h.say("yes") == gate
        assert await h.say("/auth") == "Usage: /auth <secret>"
        assert await h.say("/auth wrong") == "Invalid secret."
        assert await h.say("/status") == gate

        assert await h.say("/auth s3cret") == "Authenticated successfully."
        assert h.router.is_authenticated(CHAT)
        assert (await h.say("/status")).startswith(tagged("Status: idle"))

    @pytest.mark.asyncio
    async def test_auth_is_per_chat(self, tmp_path: Path) -> None:
        h = Harness(tmp_path, auth_secret="s3cret")
        await h.say("/auth s3cret")
        assert await h.say("/pwd", chat_id=2002) == "Not authenticated. Send /auth <secret> first."

    @pytest.mark.asyncio
    async def test_help_mentions_auth_when_configured(self, tmp_path: Path) -> None:
        h = Harness(tmp_path, auth_secret="s3cret")
        await h.say("/auth s3cret")
        assert "/auth <secret>" in await h.say("/help")


class TestApprovals:
    @pytest.mark.asyncio
    async def test_nothing_pending(self, tmp_path: Path) -> None:
        keys = FakeKeystrokes()
        h = Harness(tmp_path, keystrokes=keys)
        assert await h.say("yes") == tagged("No pending approval to confirm.")
        assert await h.say("skip") == tagged("No pending approval to deny.")
        assert keys.pressed == []

    @pytest.mark.asyncio
    async def test_confirm_after_agent_prompt(self, tmp_path: Path) -> None:
        keys = FakeKeystrokes()
        h = Harness(tmp_path, injector=FakeInjector(), keystrokes=keys)
        await h.say("/agent run the tests")
        assert h.router.pending_approval

        assert await h.say("Y") == tagged("Approved. Pressed Run.")
        assert keys.pressed == ["confirm"]
        assert not h.router.pending_approval
        assert await h.say("yes") == tagged("No pending approval to confirm.")

    @pytest.mark.asyncio
    async def test_deny_after_agent_prompt(self, tmp_path: Path) -> None:
        keys = FakeKeystrokes()
        h = Harness(tmp_path, injector=FakeInjector(), keystrokes=keys)
        await h.say("/agent delete the cache")
        assert await h.say("no") == tagged("Denied. Pressed Skip.")
        assert keys.pressed == ["deny"]
        assert not h.router.pending_approval

    @pytest.mark.asyncio
    async def test_without_keystroke_controller(self, tmp_path: Path) -> None:
        h = Harness(tmp_path, injector=FakeInjector())
        await h.say("/agent go")
        assert await h.say("run") == tagged("Approved.")

    @pytest.mark.asyncio
    async def test_keystroke_failure_reported(self, tmp_path: Path) -> None:
        keys = FakeKeystrokes(error=KeystrokeError("xdotool is not available"))
        h = Harness(tmp_path, injector=FakeInjector(), keystrokes=keys)
        await h.say("/agent go")
        assert await h.say("yes") == tagged(
            "Approved, but the confirm keystroke failed: xdotool is not available"
        )
        assert not h.router.pending_approval

    @pytest.mark.asyncio
    async def test_agent_event_arms_approval(self, tmp_path: Path) -> None:
        keys = FakeKeystrokes()
        h = Harness(tmp_path, keystrokes=keys)
        await h.router.on_agent_event(
            {"hook_event_name": "beforeShellExecution", "command": "npm install"}, [CHAT, 2002]
        )
        assert h.router.pending_approval
        assert [chat for chat, _ in h.transport.sent] == [CHAT, 2002]
        assert "$ npm install" in h.transport.last

        assert await h.say("deny") == tagged("Denied. Pressed Skip.")
        assert keys.pressed == ["deny"]

    @pytest.mark.asyncio
    async def test_stop_event_does_not_arm(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        await h.router.on_agent_event({"hook_event_name": "stop", "status": "completed"}, [CHAT])
        assert not h.router.pending_approval
        assert h.transport.last == "Agent finished execution successfully."


class TestDirectoryCommands:
    @pytest.mark.asyncio
    async def test_pwd(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        assert await h.say("/pwd") == tagged(f"cwd: {h.root}")

    @pytest.mark.asyncio
    async def test_cd_relative(self, tmp_path: Path) -> None:
        (tmp_path / "src").mkdir()
        h = Harness(tmp_path)
        assert await h.say("/cd src") == tagged(f"cwd changed to {h.root / 'src'}")
        assert await h.say("/cd ..") == tagged(f"cwd changed to {h.root}")

    @pytest.mark.asyncio
    async def test_cd_missing(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        reply = await h.say("/cd nowhere")
        assert reply == tagged(f"Cannot access directory: {h.root / 'nowhere'}")
        assert h.registry.active.cwd == str(h.root)

    @pytest.mark.asyncio
    async def test_cd_usage(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        assert await h.say("/cd") == tagged("Usage: /cd <path>")

    @pytest.mark.asyncio
    async def test_cd_outside_workspace_denied(self, tmp_path: Path) -> None:
        root = tmp_path / "ws"
        root.mkdir()
        (tmp_path / "ws-other").mkdir()
        h = Harness(root)

        denied = tagged(f"Denied: path is outside workspace root ({h.root})")
        assert await h.say("/cd ..") == denied
        assert await h.say(f"/cd {tmp_path / 'ws-other'}") == denied
        assert h.registry.active.cwd == str(h.root)

    @pytest.mark.asyncio
    async def test_cd_unconfined(self, tmp_path: Path) -> None:
        root = tmp_path / "ws"
        root.mkdir()
        h = Harness(root, confine=False)
        assert await h.say("/cd ..") == tagged(f"cwd changed to {tmp_path.resolve()}")

    def test_is_within(self, tmp_path: Path) -> None:
        root = tmp_path.resolve()
        assert is_within(root, root)
        assert is_within(root / "a" / "b", root)
        assert not is_within(root.parent, root)
        assert not is_within(Path(str(root) + "-sibling"), root)


class TestSessionCommands:
    @pytest.mark.asyncio
    async def test_new_switches_and_tags(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        reply = await h.say("/new build")
        assert reply == tagged(f"Created and switched to session: build\ncwd: {h.root}", "build")
        assert h.registry.active_name == "build"

    @pytest.mark.asyncio
    async def test_new_errors(self, tmp_path: Path) -> None:
        h = Harness(tmp_path, max_sessions=2)
        assert await h.say("/new") == tagged("Usage: /new <name>")
        assert await h.say("/new bad.name") == tagged(
            "Invalid name. Use letters, numbers, '-', '_' (max 32 chars)."
        )
        assert await h.say("/new default") == tagged("Session already exists: default")
        await h.say("/new second")
        assert await h.say("/new third") == tagged(
            "Session limit reached (2). Kill or reuse an existing session.", "second"
        )

    @pytest.mark.asyncio
    async def test_use(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        await h.say("/new build")
        assert await h.say("/use nope") == tagged("Session not found: nope", "build")

        reply = await h.say("/use default")
        assert reply.startswith(tagged("Switched to session: default\nStatus: idle"))
        assert h.registry.active_name == "default"
        assert await h.say("/use") == tagged("Usage: /use <name>")

    @pytest.mark.asyncio
    async def test_sessions_listing(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        await h.say("/new build")
        assert await h.say("/sessions") == tagged(
            "Sessions (2/5):\n  default (idle)\n* build (idle)", "build"
        )

    @pytest.mark.asyncio
    async def test_status_and_out_when_idle(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        assert await h.say("/status") == tagged(
            f"Status: idle\ncwd: {h.root}\nlast command: (none)\nlast exit: none"
        )
        assert await h.say("/out") == tagged(
            "No output captured yet. Run a command with /run first."
        )

    @pytest.mark.asyncio
    async def test_out_usage(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        assert await h.say("/out 0") == tagged("Usage: /out [lines]")
        assert await h.say("/out lots") == tagged("Usage: /out [lines]")

    @pytest.mark.asyncio
    async def test_kill_idle(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        assert await h.say("/kill") == tagged("No running command.")


class TestRunCommand:
    @pytest.mark.asyncio
    async def test_usage(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        assert await h.say("/run") == tagged("Usage: /run <command>")

    @pytest.mark.asyncio
    async def test_blocked_command_never_starts(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        reply = await h.say("/run rm -rf /")
        assert reply.startswith(tagged("Blocked: "))
        assert "(rule: rm-root)" in reply
        assert h.registry.active.last_command == ""
        assert not h.registry.active.is_running()

    @posix_only
    @pytest.mark.asyncio
    async def test_run_and_fetch_output(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        reply = await h.say("/run echo hello")
        assert reply == tagged(
            f"Started in {h.root}:\n$ echo hello\n\nTimeout: 600s. Use /out to fetch output."
        )
        await h.registry.active.wait(timeout=10)

        out = await h.say("/out")
        assert out.startswith(tagged("Output snapshot (finished): echo hello"))
        assert "hello\n[process exited with code 0]" in out

    @posix_only
    @pytest.mark.asyncio
    async def test_busy_and_kill(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        try:
            await h.say("/run sleep 5")
            assert await h.say("/run echo again") == tagged(
                "A command is already running. Use /status, /out, or /kill first."
            )
            assert (await h.say("/status")).startswith(tagged("Status: running"))
            assert await h.say("/kill") == tagged("Sent SIGINT to running command.")
        finally:
            await h.close()

    @posix_only
    @pytest.mark.asyncio
    async def test_sessions_run_independently(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        try:
            await h.say("/run sleep 5")
            await h.say("/new other")
            reply = await h.say("/run echo free")
            assert reply.startswith(tagged("Started in", "other"))
            listing = await h.say("/sessions")
            assert "  default (running)" in listing
            assert h.registry.active_name == "other"
        finally:
            await h.close()

    @posix_only
    @pytest.mark.asyncio
    async def test_follow_up_snapshot_tagged_with_origin(self, tmp_path: Path) -> None:
        h = Harness(tmp_path, follow_up_delay=0.2)
        await h.say("/run echo hi")
        await h.say("/new other")
        await h.router.wait_background()

        follow_up = h.transport.last
        assert follow_up.startswith("[session: default]\n")
        assert len(h.transport.sent) == 3
        await h.close()


class TestAgentFireAndForget:
    @pytest.mark.asyncio
    async def test_unavailable(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        assert await h.say("/agent hi") == tagged(
            "Agent bridge is not available in this session."
        )
        assert not h.router.pending_approval

    @pytest.mark.asyncio
    async def test_usage(self, tmp_path: Path) -> None:
        h = Harness(tmp_path, injector=FakeInjector())
        assert await h.say("/agent") == tagged("Usage: /agent <message>")

    @pytest.mark.asyncio
    async def test_injects_prompt(self, tmp_path: Path) -> None:
        injector = FakeInjector()
        h = Harness(tmp_path, injector=injector)
        await h.say("/agent fix the failing test")

        assert injector.prompts == ["fix the failing test"]
        assert h.transport.texts[0] == tagged("Received. Sending to agent chat now...")
        assert h.transport.last.startswith(tagged("Prompt sent to fake-agent."))
        assert h.router.pending_approval

    @pytest.mark.asyncio
    async def test_injection_error_clears_pending(self, tmp_path: Path) -> None:
        h = Harness(tmp_path, injector=FakeInjector(error=InjectionError("editor closed")))
        assert await h.say("/agent hi") == tagged("Failed to inject: editor closed")
        assert not h.router.pending_approval

    @pytest.mark.asyncio
    async def test_unexpected_injector_error(self, tmp_path: Path) -> None:
        h = Harness(tmp_path, injector=FakeInjector(error=RuntimeError("crash")))
        assert await h.say("/agent hi") == tagged("Failed to inject: crash")
        assert not h.router.pending_approval


class TestAgentCorrelated:
    @pytest.fixture
    async def watcher(self, tmp_path: Path):
        watcher = ResponseWatcher(tmp_path, ".code-bridge", poll_interval=0.02)
        await watcher.start()
        yield watcher
        await watcher.dispose()

    def test_requires_watcher(self, tmp_path: Path) -> None:
        with pytest.raises(ValueError):
            Harness(tmp_path, injector=FakeInjector(), mode=AgentMode.CORRELATED)

    def test_prompt_instruction(self) -> None:
        prompt = build_correlated_prompt("hello", ".code-bridge/response-1.md")
        assert prompt.startswith("hello\n\n")
        assert "`.code-bridge/response-1.md`" in prompt

    @pytest.mark.asyncio
    async def test_response_delivered(self, tmp_path: Path, watcher: ResponseWatcher) -> None:
        injector = FakeInjector()
        h = Harness(tmp_path, injector=injector, watcher=watcher, mode=AgentMode.CORRELATED)
        reply = await h.say("/agent summarize the diff")
        assert "Waiting up to 5s for .code-bridge/response-" in reply

        match = re.search(r"response-([0-9a-f]+)\.md", injector.prompts[0])
        assert match is not None
        assert injector.prompts[0].startswith("summarize the diff")

        # The router stays responsive while the agent works
        assert await h.say("yes") == tagged("Approved.")

        watcher.response_path(match.group(1)).write_text("Two files changed.\n")
        await h.router.wait_background()
        assert h.transport.last == tagged("Agent response:\n\nTwo files changed.")

    @pytest.mark.asyncio
    async def test_watcher_unused_in_fire_and_forget(
        self, tmp_path: Path, watcher: ResponseWatcher
    ) -> None:
        injector = FakeInjector()
        h = Harness(tmp_path, injector=injector, watcher=watcher)
        await h.say("/agent plain prompt")

        assert injector.prompts == ["plain prompt"]
        assert h.transport.last.startswith(tagged("Prompt sent to fake-agent."))
        assert watcher.pending_count == 0
        await h.router.wait_background()

    @pytest.mark.asyncio
    async def test_response_timeout(self, tmp_path: Path, watcher: ResponseWatcher) -> None:
        injector = FakeInjector()
        h = Harness(
            tmp_path,
            injector=injector,
            watcher=watcher,
            mode=AgentMode.CORRELATED,
            response_timeout=0.1,
        )
        await h.say("/agent slow task")
        await h.router.wait_background()

        assert "Timed out after 0.1s" in h.transport.last
        assert "Expected file: .code-bridge/response-" in h.transport.last

    @pytest.mark.asyncio
    async def test_close_cancels_wait(self, tmp_path: Path, watcher: ResponseWatcher) -> None:
        h = Harness(
            tmp_path,
            injector=FakeInjector(),
            watcher=watcher,
            mode=AgentMode.CORRELATED,
            response_timeout=60,
        )
        await h.say("/agent long task")
        assert watcher.pending_count == 1

        await h.router.close()
        assert watcher.pending_count == 0
