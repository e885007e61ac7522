"""Subprocess execution for the palette engine and hooks.

ManagedProcess:
    Owns one child process, started in its own session, with a proper
    shutdown sequence (SIGTERM -> wait -> SIGKILL -> reap) sent to the whole
    process group so that commands spawned by a shell go away too.

CommandRunner:
    The capability the pipeline uses to run commands. SubprocessRunner is the
    real implementation; tests substitute a scripted fake.
"""

__all__ = ["CommandResult", "CommandRunner", "CommandTimeoutError", "ManagedProcess", "SubprocessRunner"]

import asyncio
import contextlib
import os
import signal
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Protocol

from .constants import GRACEFUL_STOP_TIMEOUT


@dataclass
class CommandResult:
    """Exit status and decoded output of a finished command."""

    returncode: int
    stdout: str = ""
    stderr: str = ""


class CommandTimeoutError(TimeoutError):
    """The command did not finish in time and was stopped."""

    def __init__(self, command: str | Sequence[str], timeout: float) -> None:
        shown = command if isinstance(command, str) else " ".join(command)
        super().__init__(f"{shown!r} timed out after {timeout:g}s")
        self.command = command
        self.timeout = timeout


class CommandRunner(Protocol):
    """Runs a command to completion.

    A string is run through the shell, a sequence is executed directly.
    Implementations raise OSError when the command cannot be spawned and
    CommandTimeoutError when it exceeds `timeout`.
    """

    async def run(
        self,
        command: str | Sequence[str],
        *,
        cwd: str | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        """Run `command` and return its result."""


class ManagedProcess:
    """One child process and its shutdown.

    The child leads a new process group. `stop` sends SIGTERM to the group,
    gives the child `graceful_timeout` seconds, sends SIGKILL to what is left
    of the group and always reaps the child.
    """

    def __init__(self, graceful_timeout: float = GRACEFUL_STOP_TIMEOUT) -> None:
        self._proc: asyncio.subprocess.Process | None = None
        self._graceful_timeout = graceful_timeout
        self._group = False

    @property
    def pid(self) -> int | None:
        """Return the child's PID, None before start."""
        return self._proc.pid if self._proc else None

    @property
    def returncode(self) -> int | None:
        """Return the exit status, None while running or before start."""
        return self._proc.returncode if self._proc else None

    @property
    def is_alive(self) -> bool:
        """Return True while the child runs."""
        return self.pid is not None and self.returncode is None

    async def start(self, command: str | Sequence[str], **subprocess_kwargs: Any) -> None:
        """Spawn `command`, stopping the previous child first.

        Args:
            command: Shell command line, or argv executed without a shell
            **subprocess_kwargs: Forwarded to asyncio (stdout=PIPE, cwd=...)
        """
        if self.is_alive:
            await self.stop()
        subprocess_kwargs.setdefault("start_new_session", True)
        self._group = subprocess_kwargs["start_new_session"]
        if isinstance(command, str):
            self._proc = await asyncio.create_subprocess_shell(command, **subprocess_kwargs)
        else:
            self._proc = await asyncio.create_subprocess_exec(*command, **subprocess_kwargs)

    async def communicate(self, timeout: float | None = None) -> tuple[bytes, bytes]:
        """Wait for the child to exit and return its (stdout, stderr).

        Raises:
            RuntimeError: before start
            TimeoutError: the child still runs after `timeout` seconds
        """
        if self._proc is None:
            msg = "ManagedProcess.communicate() called before start()"
            raise RuntimeError(msg)
        stdout, stderr = await asyncio.wait_for(self._proc.communicate(), timeout=timeout)
        return stdout or b"", stderr or b""

    def _signal(self, proc: asyncio.subprocess.Process, sig: signal.Signals) -> None:
        with contextlib.suppress(ProcessLookupError):
            if self._group:
                os.killpg(proc.pid, sig)
            else:
                proc.send_signal(sig)

    async def stop(self) -> int | None:
        """Terminate the child (SIGTERM, then SIGKILL) and return its exit status."""
        proc = self._proc
        if proc is None or proc.returncode is not None:
            return self.returncode
        self._signal(proc, signal.SIGTERM)
        try:
            await asyncio.wait_for(proc.wait(), timeout=self._graceful_timeout)
        except TimeoutError:
            self._signal(proc, signal.SIGKILL)
            await proc.wait()
        if self._group:
            # members that outlived the leader
            with contextlib.suppress(ProcessLookupError, PermissionError):
                os.killpg(proc.pid, signal.SIGKILL)
        return proc.returncode


class SubprocessRunner:
    """CommandRunner spawning real processes with asyncio."""

    def __init__(self, graceful_timeout: float = GRACEFUL_STOP_TIMEOUT) -> None:
        self.graceful_timeout = graceful_timeout

    async def run(
        self,
        command: str | Sequence[str],
        *,
        cwd: str | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        """Run `command`, capturing its output.

        Raises:
            OSError: If the command cannot be spawned
            CommandTimeoutError: If the command exceeds `timeout` (it is stopped first)
        """
        proc = ManagedProcess(self.graceful_timeout)
        await proc.start(
            command,
            cwd=cwd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await proc.communicate(timeout)
        except TimeoutError:
            await proc.stop()
            raise CommandTimeoutError(command, timeout or 0.0) from None
        except asyncio.CancelledError:
            await proc.stop()
            raise

        return CommandResult(
            returncode=proc.returncode if proc.returncode is not None else -1,
            stdout=stdout.decode(errors="replace"),
            stderr=stderr.decode(errors="replace"),
        )
