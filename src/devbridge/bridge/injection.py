"""Prompt injection through an external command.

The configured argv is run once per prompt. ``{prompt}`` placeholders in the
arguments are replaced by the prompt text, and the prompt is also written to
the command's stdin, so both ``agent --print {prompt}`` style CLIs and
stdin-reading wrappers work.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from pathlib import Path

from devbridge.bridge.protocols import InjectionError
from devbridge.logging import get_logger

log = get_logger("injection")

PROMPT_PLACEHOLDER = "{prompt}"


class CommandInjector:
    """AgentInjector that hands the prompt to an external program.

    The injector only waits for the program to accept the prompt (exit 0).
    It does not collect the agent's answer; that arrives via a response file
    or an agent event hook.
    """

    def __init__(
        self,
        argv: Sequence[str],
        cwd: str | Path | None = None,
        timeout: float = 30.0,
    ) -> None:
        if not argv:
            raise ValueError("inject command must not be empty")
        self._argv = list(argv)
        self._cwd = str(cwd) if cwd is not None else None
        self._timeout = timeout

    @property
    def name(self) -> str:
        return Path(self._argv[0]).name

    def build_argv(self, prompt: str) -> list[str]:
        return [arg.replace(PROMPT_PLACEHOLDER, prompt) for arg in self._argv]

    async def inject(self, prompt: str) -> None:
        argv = self.build_argv(prompt)
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
                cwd=self._cwd,
            )
        except OSError as e:
            raise InjectionError(f"Could not start {argv[0]}: {e}") from e

        try:
            _, stderr = await asyncio.wait_for(
                process.communicate(prompt.encode("utf-8")), self._timeout
            )
        except asyncio.TimeoutError as e:
            process.kill()
            await process.wait()
            raise InjectionError(f"{self.name} did not accept the prompt within {self._timeout:g}s") from e

        if process.returncode != 0:
            detail = stderr.decode("utf-8", errors="replace").strip().splitlines()
            tail = detail[-1] if detail else "no output"
            raise InjectionError(f"{self.name} exited with code {process.returncode}: {tail}")

        log.info("Injected prompt via %s (%d chars)", self.name, len(prompt))
