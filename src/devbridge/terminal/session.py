"""Named execution session owning at most one running shell command.

Each session streams stdout/stderr of its current command into a bounded
buffer, arms an optional timeout that force-kills the process, and records
the exit code. Natural exit, spawn errors and timeout kills all end in the
same supervisor task, which is the only place a run is torn down.
"""

from __future__ import annotations

import asyncio
import codecs
import os
import signal
import time
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from devbridge.logging import get_logger
from devbridge.terminal.buffer import OutputBuffer
from devbridge.terminal.env import build_child_env
from devbridge.terminal.result import OutputSnapshot

log = get_logger("terminal")

READ_CHUNK = 4096
# Exit is detected by polling returncode: Process.wait() also waits for
# the pipes to close, which a backgrounded child can delay indefinitely.
EXIT_POLL = 0.05
DRAIN_GRACE = 0.5

# SIGKILL does not exist on Windows
_FORCE_SIGNAL = getattr(signal, "SIGKILL", signal.SIGTERM)


class SessionBusyError(RuntimeError):
    """Raised when starting a command while another one is still running."""

    def __init__(self, name: str, command: str) -> None:
        super().__init__(f"A command is already running in session {name}: {command}")
        self.session_name = name
        self.command = command


@dataclass
class _Run:
    """The live process slot of a session. Only that session touches it."""

    process: asyncio.subprocess.Process
    command: str
    timeout: float
    started_monotonic: float
    timer: asyncio.TimerHandle | None = None
    supervisor: asyncio.Task[None] | None = None
    timed_out: bool = False


def describe_exit(returncode: int | None) -> str:
    """Trailer line appended to the buffer when a process ends."""
    if returncode is None:
        return "[process exited with unknown status]"
    if returncode < 0:
        try:
            name = signal.Signals(-returncode).name
        except ValueError:
            name = f"signal {-returncode}"
        return f"[process killed by {name}]"
    return f"[process exited with code {returncode}]"


def _send_signal(process: asyncio.subprocess.Process, sig: int) -> None:
    """Signal the whole process group so shell children go down too."""
    if process.returncode is not None:
        return
    try:
        if os.name == "posix":
            # start_new_session makes the shell a group leader (pgid == pid)
            os.killpg(process.pid, sig)
        elif sig == _FORCE_SIGNAL:
            process.kill()
        else:
            process.terminate()
    except ProcessLookupError:
        pass


async def _wait_exit(process: asyncio.subprocess.Process) -> int:
    while process.returncode is None:
        await asyncio.sleep(EXIT_POLL)
    return process.returncode


class ExecutionSession:
    """A named shell context with its own cwd, process slot and output history.

    Example:
        session = ExecutionSession("default", "/project")
        await session.start("pytest -q", timeout=600)
        ...
        print(session.output_snapshot().render())
    """

    def __init__(
        self,
        name: str,
        cwd: str | Path,
        *,
        buffer_limit: int = 120_000,
        snapshot_lines: int = 60,
        snapshot_chars: int = 3500,
        env_prefixes: Iterable[str] = (),
    ) -> None:
        self._name = name
        self._cwd = str(Path(cwd).resolve())
        self._buffer = OutputBuffer(buffer_limit)
        self._snapshot_lines = snapshot_lines
        self._snapshot_chars = snapshot_chars
        self._env_prefixes = tuple(env_prefixes)

        self._run: _Run | None = None
        self._starting = False
        self._last_command = ""
        self._last_exit_code: int | None = None
        self._started_at: float | None = None

    @property
    def name(self) -> str:
        return self._name

    @property
    def cwd(self) -> str:
        return self._cwd

    @property
    def last_command(self) -> str:
        return self._last_command

    @property
    def last_exit_code(self) -> int | None:
        return self._last_exit_code

    @property
    def started_at(self) -> float | None:
        """Wall-clock start time of the current or last run."""
        return self._started_at

    @property
    def buffer(self) -> OutputBuffer:
        return self._buffer

    def is_running(self) -> bool:
        return self._run is not None or self._starting

    def set_cwd(self, path: str | Path) -> bool:
        """Change directory if ``path`` is an existing directory.

        Returns:
            True on success; False leaves the cwd untouched.
        """
        try:
            target = Path(path)
            if not target.is_dir():
                return False
            self._cwd = str(target.resolve())
        except OSError:
            return False
        return True

    async def start(self, command: str, timeout: float = 0.0) -> None:
        """Spawn ``command`` through the shell in this session's cwd.

        Args:
            command: Shell command line.
            timeout: Seconds before the process is force-killed; 0 disables.

        Raises:
            SessionBusyError: If a command is already running.
        """
        if self.is_running():
            raise SessionBusyError(self._name, self._last_command)

        self._buffer.clear()
        self._last_exit_code = None
        self._last_command = command
        self._started_at = time.time()
        self._starting = True

        try:
            process = await asyncio.create_subprocess_shell(
                command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self._cwd,
                env=build_child_env(extra_prefixes=self._env_prefixes),
                start_new_session=os.name == "posix",
            )
        except OSError as e:
            log.warning("Session %s failed to spawn %r: %s", self._name, command, e)
            self._buffer.append(f"[failed to run command: {e}]\n")
            self._last_exit_code = 1
            return
        finally:
            self._starting = False

        run = _Run(
            process=process,
            command=command,
            timeout=timeout,
            started_monotonic=time.monotonic(),
        )
        self._run = run
        if timeout > 0:
            run.timer = asyncio.get_running_loop().call_later(timeout, self._on_timeout, run)
        run.supervisor = asyncio.create_task(
            self._supervise(run), name=f"devbridge-session-{self._name}"
        )
        log.debug("Session %s started pid %s: %s", self._name, process.pid, command)

    async def _supervise(self, run: _Run) -> None:
        process = run.process
        pumps = [
            asyncio.create_task(self._pump(process.stdout)),
            asyncio.create_task(self._pump(process.stderr)),
        ]
        try:
            returncode = await _wait_exit(process)
            # Background jobs inherit the pipes and can hold them open
            # long after the shell itself has exited.
            _, pending = await asyncio.wait(pumps, timeout=DRAIN_GRACE)
            for task in pending:
                task.cancel()
            results = await asyncio.gather(*pumps, return_exceptions=True)
        except asyncio.CancelledError:
            for task in pumps:
                task.cancel()
            _send_signal(process, _FORCE_SIGNAL)
            self._finish(run, process.returncode, error="cancelled")
            raise

        if pending:
            log.debug(
                "Session %s: shell exited with its output still open, stopped reading",
                self._name,
            )
        errors = [r for r in results if isinstance(r, Exception)]
        if errors:
            log.error("Session %s lost its output stream: %s", self._name, errors[0])
            self._finish(run, returncode, error=str(errors[0]))
            return
        self._finish(run, returncode)

    async def _pump(self, stream: asyncio.StreamReader | None) -> None:
        if stream is None:
            return
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            chunk = await stream.read(READ_CHUNK)
            if not chunk:
                break
            self._buffer.append(decoder.decode(chunk))
        self._buffer.append(decoder.decode(b"", final=True))

    def _on_timeout(self, run: _Run) -> None:
        if self._run is not run or run.process.returncode is not None:
            return
        run.timer = None
        run.timed_out = True
        log.warning(
            "Session %s: command timed out after %gs: %s", self._name, run.timeout, run.command
        )
        self._buffer.ensure_newline()
        self._buffer.append(f"[timed out after {run.timeout:g}s, killing process]\n")
        _send_signal(run.process, _FORCE_SIGNAL)

    def _finish(self, run: _Run, returncode: int | None, error: str | None = None) -> None:
        if self._run is not run:
            return
        if run.timer is not None:
            run.timer.cancel()
            run.timer = None
        self._run = None

        self._buffer.ensure_newline()
        if error is not None:
            self._last_exit_code = returncode if returncode is not None else 1
            self._buffer.append(f"[failed to run command: {error}]\n")
        else:
            self._last_exit_code = returncode
            self._buffer.append(describe_exit(returncode) + "\n")
        log.info(
            "Session %s finished (exit %s): %s", self._name, self._last_exit_code, run.command
        )

    def kill(self) -> bool:
        """Send SIGINT to the running command and disarm its timeout.

        Returns:
            True if a command was running.
        """
        run = self._run
        if run is None:
            return False
        if run.timer is not None:
            run.timer.cancel()
            run.timer = None
        _send_signal(run.process, signal.SIGINT)
        log.info("Session %s: sent SIGINT to %s", self._name, run.command)
        return True

    def terminate(self) -> bool:
        """Force-kill the running command. Used on shutdown."""
        run = self._run
        if run is None:
            return False
        if run.timer is not None:
            run.timer.cancel()
            run.timer = None
        _send_signal(run.process, _FORCE_SIGNAL)
        return True

    async def wait(self, timeout: float | None = None) -> int | None:
        """Wait for the current run (if any) to end and return its exit code.

        Raises:
            asyncio.TimeoutError: If the run outlives ``timeout``.
        """
        run = self._run
        if run is not None and run.supervisor is not None:
            await asyncio.wait_for(asyncio.shield(run.supervisor), timeout)
        return self._last_exit_code

    def status_text(self) -> str:
        run = self._run
        if run is not None:
            secs = max(1, int(time.monotonic() - run.started_monotonic))
            return f"Status: running ({secs}s)\ncwd: {self._cwd}\ncommand: {run.command}"
        exit_info = "none" if self._last_exit_code is None else str(self._last_exit_code)
        return (
            f"Status: idle\ncwd: {self._cwd}\n"
            f"last command: {self._last_command or '(none)'}\n"
            f"last exit: {exit_info}"
        )

    def output_snapshot(
        self,
        max_lines: int | None = None,
        max_chars: int | None = None,
    ) -> OutputSnapshot:
        """Most recent output, capped first by lines then by characters."""
        max_lines = self._snapshot_lines if max_lines is None else max_lines
        max_chars = self._snapshot_chars if max_chars is None else max_chars
        running = self.is_running()

        if not self._buffer:
            return OutputSnapshot(
                command=self._last_command,
                lines=[],
                running=running,
                status_text=self.status_text() if running else None,
            )

        all_lines = self._buffer.text.splitlines()
        lines = all_lines[-max_lines:] if max_lines > 0 else []
        truncated = len(lines) < len(all_lines) or self._buffer.truncated

        body = "\n".join(lines)
        if max_chars > 0 and len(body) > max_chars:
            lines = body[-max_chars:].split("\n")
            truncated = True

        return OutputSnapshot(
            command=self._last_command,
            lines=lines,
            running=running,
            truncated=truncated,
        )

    def __repr__(self) -> str:
        state = "running" if self.is_running() else "idle"
        return f"<ExecutionSession {self._name} {state} cwd={self._cwd}>"
