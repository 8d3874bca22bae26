"""Async foreground runner for shell commands."""

from __future__ import annotations

import asyncio
import codecs
import logging
import signal
import time
from dataclasses import asdict, dataclass
from pathlib import Path

from ..approval import ApprovalDenied, ApprovalGate, ApprovalRequest, request_approval
from .escalation import SignalEscalation, terminate_then_kill
from .spawn import SpawnError, SpawnedProcess, spawn_process
from .utils import sanitize_environment

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 120.0
MIN_TIMEOUT_SECONDS = 1.0
MAX_TIMEOUT_SECONDS = 24 * 60 * 60.0
DEFAULT_MAX_OUTPUT_CHARS = 200_000
MIN_OUTPUT_CHARS = 2_000
MAX_OUTPUT_CHARS = 1_000_000
DEFAULT_GRACE_SECONDS = 1.5
TIMEOUT_EXIT_CODE = 124
_READ_CHUNK = 4096


@dataclass(slots=True)
class CommandResult:
    """Holds the outcome of a foreground command."""

    stdout: str
    stderr: str
    exit_code: int
    timed_out: bool
    truncated: bool
    duration_ms: int

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out

    def to_dict(self) -> dict[str, object]:
        return asdict(self)


class _BoundedCapture:
    """Accumulate decoded text up to ``limit`` characters, dropping the rest."""

    def __init__(self, limit: int) -> None:
        self._limit = limit
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._parts: list[str] = []
        self._size = 0
        self.truncated = False

    def feed(self, data: bytes, *, final: bool = False) -> None:
        text = self._decoder.decode(data, final=final)
        if not text:
            return
        room = self._limit - self._size
        if room <= 0:
            self.truncated = True
            return
        if len(text) > room:
            text = text[:room]
            self.truncated = True
        self._parts.append(text)
        self._size += len(text)

    @property
    def text(self) -> str:
        return "".join(self._parts)


async def _drain(stream: asyncio.StreamReader | None, capture: _BoundedCapture) -> None:
    if stream is None:
        return
    while True:
        chunk = await stream.read(_READ_CHUNK)
        if not chunk:
            capture.feed(b"", final=True)
            return
        capture.feed(chunk)


def clamp_timeout(value: float | None) -> float:
    if value is None:
        return DEFAULT_TIMEOUT_SECONDS
    return min(MAX_TIMEOUT_SECONDS, max(MIN_TIMEOUT_SECONDS, float(value)))


def clamp_output_chars(value: int | None) -> int:
    if value is None:
        return DEFAULT_MAX_OUTPUT_CHARS
    return min(MAX_OUTPUT_CHARS, max(MIN_OUTPUT_CHARS, int(value)))


class CommandRunner:
    """Run shell commands to completion with bounded output and a deadline."""

    def __init__(
        self,
        approval_gate: ApprovalGate,
        *,
        shell: str = "/bin/sh",
        grace_seconds: float = DEFAULT_GRACE_SECONDS,
        default_cwd: Path | None = None,
    ) -> None:
        self._approval_gate = approval_gate
        self._shell = shell
        self._grace_seconds = grace_seconds
        self._default_cwd = default_cwd

    @property
    def shell(self) -> str:
        return self._shell

    async def run(
        self,
        command: str,
        *,
        cwd: Path | str | None = None,
        timeout_seconds: float | None = None,
        max_output_chars: int | None = None,
        tool: str = "run_command",
    ) -> CommandResult | ApprovalDenied:
        summary = f"Run: {command}"
        approved = await request_approval(
            self._approval_gate, ApprovalRequest(tool=tool, summary=summary, command=command)
        )
        if not approved:
            logger.info("Command denied", extra={"command": command})
            return ApprovalDenied(tool=tool, summary=summary)
        return await self.execute(
            command,
            cwd=cwd,
            timeout_seconds=timeout_seconds,
            max_output_chars=max_output_chars,
        )

    async def execute(
        self,
        command: str,
        *,
        cwd: Path | str | None = None,
        timeout_seconds: float | None = None,
        max_output_chars: int | None = None,
    ) -> CommandResult:
        """Run ``command`` without consulting the approval gate."""

        timeout = clamp_timeout(timeout_seconds)
        limit = clamp_output_chars(max_output_chars)
        work_dir = cwd if cwd is not None else self._default_cwd
        started = time.monotonic()

        try:
            process = await spawn_process(
                [self._shell, "-c", command],
                cwd=work_dir,
                env=sanitize_environment(),
                new_session=True,
            )
        except SpawnError as exc:
            logger.warning("Command failed to start", extra={"command": command, "error": str(exc)})
            return CommandResult(
                stdout="",
                stderr=str(exc),
                exit_code=1,
                timed_out=False,
                truncated=False,
                duration_ms=_elapsed_ms(started),
            )

        stdout = _BoundedCapture(limit)
        stderr = _BoundedCapture(limit)
        readers = asyncio.gather(_drain(process.stdout, stdout), _drain(process.stderr, stderr))
        completion = asyncio.ensure_future(_complete(process, readers))

        timed_out = False
        try:
            exit_code = await asyncio.wait_for(asyncio.shield(completion), timeout)
        except asyncio.TimeoutError:
            timed_out = True
            await self._shutdown(process, readers)
            completion.cancel()
            exit_code = TIMEOUT_EXIT_CODE

        result = CommandResult(
            stdout=stdout.text,
            stderr=stderr.text,
            exit_code=TIMEOUT_EXIT_CODE if timed_out else (1 if exit_code is None else exit_code),
            timed_out=timed_out,
            truncated=stdout.truncated or stderr.truncated,
            duration_ms=_elapsed_ms(started),
        )
        logger.info(
            "Command finished",
            extra={
                "pid": process.pid,
                "exit_code": result.exit_code,
                "duration_ms": result.duration_ms,
                "timed_out": timed_out,
                "truncated": result.truncated,
            },
        )
        return result

    async def _shutdown(self, process: SpawnedProcess, readers: asyncio.Future) -> None:
        escalation = SignalEscalation(process, terminate_then_kill(self._grace_seconds))
        await escalation.run()
        # Sweep descendants still holding the output pipes.
        process.send_signal(signal.SIGKILL)
        try:
            await asyncio.wait_for(asyncio.shield(readers), self._grace_seconds)
        except asyncio.TimeoutError:
            readers.cancel()


async def _complete(process: SpawnedProcess, readers: asyncio.Future) -> int | None:
    await readers
    return await process.wait()


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


__all__ = [
    "CommandResult",
    "CommandRunner",
    "DEFAULT_MAX_OUTPUT_CHARS",
    "DEFAULT_TIMEOUT_SECONDS",
    "TIMEOUT_EXIT_CODE",
    "clamp_output_chars",
    "clamp_timeout",
]
