"""Process creation, signalling and liveness checks."""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import subprocess
from pathlib import Path
from typing import Mapping, Sequence

import psutil

logger = logging.getLogger(__name__)


class SpawnError(RuntimeError):
    """Raised when the OS refuses to create a process."""

    def __init__(self, argv: Sequence[str], cause: OSError) -> None:
        self.argv = tuple(argv)
        self.cause = cause
        head = self.argv[0] if self.argv else "<empty>"
        super().__init__(f"Failed to start {head}: {cause.strerror or cause}")


def normalize_exit_code(returncode: int | None) -> int | None:
    """Map asyncio/subprocess return codes to an exit code, ``None`` for signal deaths."""

    if returncode is None or returncode < 0:
        return None
    return returncode


class SpawnedProcess:
    """Handle to a process accepted by the OS."""

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        *,
        argv: Sequence[str],
        new_session: bool,
    ) -> None:
        self._process = process
        self._new_session = new_session
        self.argv = tuple(argv)

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def stdout(self) -> asyncio.StreamReader | None:
        return self._process.stdout

    @property
    def stderr(self) -> asyncio.StreamReader | None:
        return self._process.stderr

    @property
    def running(self) -> bool:
        return self._process.returncode is None

    @property
    def returncode(self) -> int | None:
        return normalize_exit_code(self._process.returncode)

    def send_signal(self, sig: int) -> bool:
        """Signal the process (its whole group when it leads a session).

        Returns ``False`` when there was nothing left to signal.
        """

        try:
            if self._new_session:
                os.killpg(self.pid, sig)
            elif self._process.returncode is None:
                self._process.send_signal(sig)
            else:
                return False
        except ProcessLookupError:
            return False
        return True

    async def wait(self) -> int | None:
        await self._process.wait()
        return self.returncode


async def spawn_process(
    argv: Sequence[str],
    *,
    cwd: Path | str | None = None,
    env: Mapping[str, str] | None = None,
    stdin: int | None = asyncio.subprocess.DEVNULL,
    stdout: int | None = asyncio.subprocess.PIPE,
    stderr: int | None = asyncio.subprocess.PIPE,
    new_session: bool = False,
) -> SpawnedProcess:
    """Start ``argv`` and return once the OS has accepted it.

    Creation failures (missing executable, bad cwd, permissions) raise
    :class:`SpawnError`; they never surface as an exit code.
    """

    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            cwd=str(cwd) if cwd is not None else None,
            env=dict(env) if env is not None else None,
            stdin=stdin,
            stdout=stdout,
            stderr=stderr,
            start_new_session=new_session,
        )
    except OSError as exc:
        raise SpawnError(argv, exc) from exc

    logger.debug("Process accepted", extra={"pid": process.pid, "program": argv[0]})
    return SpawnedProcess(process, argv=argv, new_session=new_session)


def spawn_detached(
    argv: Sequence[str],
    *,
    cwd: Path | str | None,
    env: Mapping[str, str] | None,
    log_path: Path,
) -> int:
    """Start ``argv`` in its own session with output appended to ``log_path``.

    Returns the pid without waiting on the child.
    """

    log_path = Path(log_path)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    with log_path.open("ab") as log_handle:
        try:
            process = subprocess.Popen(  # noqa: S603
                list(argv),
                cwd=str(cwd) if cwd is not None else None,
                env=dict(env) if env is not None else None,
                stdin=subprocess.DEVNULL,
                stdout=log_handle,
                stderr=subprocess.STDOUT,
                start_new_session=True,
                close_fds=True,
            )
        except OSError as exc:
            raise SpawnError(argv, exc) from exc

    logger.debug("Detached process accepted", extra={"pid": process.pid, "program": argv[0]})
    return process.pid


def pid_alive(pid: int | None) -> bool:
    """Zero-signal liveness check.

    A process that has exited but was not reaped by its parent (a zombie)
    reads as dead, whichever process launched it.
    """

    if not pid or pid <= 0:
        return False

    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        pass

    try:
        return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return False
    except psutil.AccessDenied:
        return True


def terminate_pid(pid: int, sig: int = signal.SIGTERM, *, group: bool = True) -> bool:
    """Send ``sig`` to a detached process group, falling back to the pid alone.

    Returns ``False`` when no such process exists.
    """

    if group:
        try:
            os.killpg(pid, sig)
            return True
        except ProcessLookupError:
            pass
    try:
        os.kill(pid, sig)
    except ProcessLookupError:
        return False
    return True


__all__ = [
    "SpawnError",
    "SpawnedProcess",
    "normalize_exit_code",
    "pid_alive",
    "spawn_detached",
    "spawn_process",
    "terminate_pid",
]
