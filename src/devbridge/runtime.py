"""Wiring of the bridge components for one workspace."""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import TYPE_CHECKING, Any

from devbridge.bridge.injection import CommandInjector
from devbridge.bridge.keyboard import OSKeystrokeController
from devbridge.bridge.router import CommandRouter
from devbridge.config.schema import AgentMode
from devbridge.config.secrets import SECRETS_FILE, fetch_auth_secret
from devbridge.logging import get_logger
from devbridge.session.registry import SessionRegistry
from devbridge.watching.inbox import HookEventInbox, events_directory
from devbridge.watching.responses import ResponseWatcher

if TYPE_CHECKING:
    from devbridge.bridge.protocols import (
        AgentInjector,
        ChatTransport,
        IncomingMessage,
        KeystrokeController,
    )
    from devbridge.config.schema import Config

log = get_logger("runtime")


def resolve_workspace_root(config: Config, root: str | Path) -> Path:
    """``bridge.workspace_root`` if configured, else ``root``."""
    return Path(config.bridge.workspace_root or root).expanduser().resolve()


class BridgeRuntime:
    """Owns the registry, watchers, collaborators and router.

    Collaborators can be passed in explicitly; otherwise they are built from
    config (``agent.inject_command``, ``agent.keystrokes``) and the auth
    secret is read from the environment or ``<root>/.env.secrets``. Hook
    events written by ``devbridge hook`` are picked up by the inbox and sent
    to every allowed chat.
    """

    def __init__(
        self,
        config: Config,
        root: str | Path,
        transport: ChatTransport,
        *,
        injector: AgentInjector | None = None,
        keystrokes: KeystrokeController | None = None,
        auth_secret: str | None = None,
    ) -> None:
        self.config = config
        self.root = resolve_workspace_root(config, root)
        self.transport = transport

        self.registry = SessionRegistry(
            self.root,
            max_sessions=config.bridge.max_sessions,
            default_name=config.bridge.default_session,
            terminal=config.terminal,
        )

        self.watcher: ResponseWatcher | None = None
        if config.agent.mode is AgentMode.CORRELATED:
            self.watcher = ResponseWatcher(
                self.root,
                config.agent.response_dir,
                poll_interval=config.agent.poll_interval,
            )

        if injector is None and config.agent.inject_command:
            injector = CommandInjector(config.agent.inject_command, cwd=self.root)
        if keystrokes is None and config.agent.keystrokes:
            keystrokes = OSKeystrokeController()
        if auth_secret is None:
            auth_secret = fetch_auth_secret(self.root / SECRETS_FILE)

        self.router = CommandRouter(
            transport,
            self.registry,
            workspace_root=self.root,
            config=config,
            auth_secret=auth_secret,
            injector=injector,
            keystrokes=keystrokes,
            watcher=self.watcher,
        )

        self.inbox: HookEventInbox | None = None
        if config.agent.hook_events:
            self.inbox = HookEventInbox(
                events_directory(self.root, config.agent.response_dir),
                self.notify_agent_event,
                poll_interval=config.agent.poll_interval,
            )

    async def start(self) -> None:
        if self.watcher is not None:
            await self.watcher.start()
        if self.inbox is not None:
            await self.inbox.start()
        log.info(
            "Bridge ready in %s (agent mode: %s, allowed chats: %d)",
            self.root,
            self.config.agent.mode.value,
            len(self.config.bridge.allowed_chat_ids),
        )

    async def handle_message(self, message: IncomingMessage) -> None:
        await self.router.handle_message(message)

    async def notify_agent_event(self, event: Mapping[str, Any]) -> None:
        """Forward an agent hook event to every allowed chat."""
        await self.router.on_agent_event(event, self.config.bridge.allowed_chat_ids)

    async def stop(self) -> None:
        if self.inbox is not None:
            await self.inbox.stop()
        await self.router.close()
        if self.watcher is not None:
            await self.watcher.dispose()
        await self.registry.close()
        log.info("Bridge stopped")

    async def __aenter__(self) -> BridgeRuntime:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()
