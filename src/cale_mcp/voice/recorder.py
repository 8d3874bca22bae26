"""Microphone capture through whichever recorder program is installed."""

from __future__ import annotations

import asyncio
import logging
import shutil
import signal
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Sequence

from ..process.escalation import EscalationStep, SignalEscalation, interrupt_then_kill
from ..process.spawn import SpawnError, SpawnedProcess, spawn_process
from ..process.utils import preview

logger = logging.getLogger(__name__)

DEFAULT_BASENAME = "stt-input"
STALE_EXTENSIONS = (".wav", ".webm", ".m4a", ".mp3", ".ogg", ".mp4")
STDERR_LIMIT = 900
# ffmpeg exits 255 when interrupted on purpose.
ACCEPTED_EXIT_CODES = frozenset({0, 255, None})


class RecorderError(RuntimeError):
    """Raised when a recorder exits abnormally or produces no audio."""


class RecorderUnavailableError(RecorderError):
    """Raised when no recorder candidate could be started."""


@dataclass(slots=True, frozen=True)
class RecorderSpec:
    cmd: str
    args: tuple[str, ...]
    label: str

    def argv(self) -> list[str]:
        return [self.cmd, *self.args]


def _ffmpeg(fmt: str, device: str, file_path: Path) -> tuple[str, ...]:
    return (
        "-hide_banner",
        "-loglevel",
        "error",
        "-f",
        fmt,
        "-i",
        device,
        "-ac",
        "1",
        "-ar",
        "16000",
        "-y",
        str(file_path),
    )


def recorder_specs(file_path: Path, platform: str | None = None) -> list[RecorderSpec]:
    """Ordered recorder candidates for ``platform`` (defaults to ``sys.platform``)."""

    platform = platform or sys.platform
    target = str(file_path)

    if platform == "darwin":
        return [
            RecorderSpec("ffmpeg", _ffmpeg("avfoundation", ":0", file_path), "ffmpeg(avfoundation)"),
            RecorderSpec("rec", ("-q", "-c", "1", "-r", "16000", target), "sox(rec)"),
            RecorderSpec("sox", ("-q", "-d", "-c", "1", "-r", "16000", target), "sox"),
        ]
    if platform.startswith("linux"):
        return [
            RecorderSpec("ffmpeg", _ffmpeg("alsa", "default", file_path), "ffmpeg(alsa)"),
            RecorderSpec(
                "arecord", ("-q", "-f", "S16_LE", "-c", "1", "-r", "16000", target), "arecord"
            ),
            RecorderSpec("rec", ("-q", "-c", "1", "-r", "16000", target), "sox(rec)"),
        ]
    if platform == "win32":
        return [RecorderSpec("ffmpeg", _ffmpeg("dshow", "audio=default", file_path), "ffmpeg(dshow)")]
    return []


def remove_stale_recordings(runtime_dir: Path, basename: str = DEFAULT_BASENAME) -> None:
    for extension in STALE_EXTENSIONS:
        (runtime_dir / f"{basename}{extension}").unlink(missing_ok=True)


class VoiceRecordingSession:
    """An active recorder process writing to ``file_path``."""

    def __init__(
        self,
        process: SpawnedProcess,
        *,
        file_path: Path,
        recorder: str,
        escalation_steps: Sequence[EscalationStep] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.file_path = file_path
        self.recorder = recorder
        self._process = process
        self._steps = tuple(escalation_steps or interrupt_then_kill())
        self._sleep = sleep
        self._stderr_parts: list[str] = []
        self._stderr_size = 0
        self._reader = asyncio.ensure_future(self._collect_stderr())
        self._finished = False
        self._error: RecorderError | None = None

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def stderr(self) -> str:
        return "".join(self._stderr_parts)

    async def _collect_stderr(self) -> None:
        stream = self._process.stderr
        if stream is None:
            return
        while True:
            chunk = await stream.read(1024)
            if not chunk:
                return
            if self._stderr_size < STDERR_LIMIT:
                text = chunk.decode("utf-8", errors="replace")
                self._stderr_parts.append(text)
                self._stderr_size += len(text)

    def _detail(self) -> str:
        return preview(self.stderr, STDERR_LIMIT)

    async def stop(self) -> None:
        """Stop recording and verify the output file. Safe to call repeatedly."""

        if self._finished:
            if self._error is not None:
                raise self._error
            return
        try:
            await self._stop()
        except RecorderError as exc:
            self._error = exc
            self._finished = True
            raise
        self._finished = True

    async def _stop(self) -> None:
        escalation = SignalEscalation(self._process, self._steps, sleep=self._sleep)
        code = await escalation.run()
        try:
            await asyncio.wait_for(asyncio.shield(self._reader), 1.0)
        except asyncio.TimeoutError:
            self._reader.cancel()

        detail = self._detail()
        if code not in ACCEPTED_EXIT_CODES:
            message = f"Recorder {self.recorder} exited with code {code}"
            raise RecorderError(f"{message}: {detail}" if detail else message)

        if not self.file_path.exists() or self.file_path.stat().st_size == 0:
            message = "Recording did not produce audio."
            raise RecorderError(f"{message} {detail}" if detail else message)

        logger.info(
            "Recording stopped",
            extra={"recorder": self.recorder, "path": str(self.file_path), "exit_code": code},
        )

    def cleanup(self) -> None:
        """Release the recorder process and reader; the audio file is kept."""

        if self._process.running:
            self._process.send_signal(signal.SIGKILL)
        if not self._reader.done():
            self._reader.cancel()


async def start_voice_recording(
    runtime_dir: Path,
    *,
    on_ready: Callable[[], None] | None = None,
    specs: Callable[[Path], Sequence[RecorderSpec]] | None = None,
    which: Callable[[str], str | None] = shutil.which,
    platform: str | None = None,
    escalation_steps: Sequence[EscalationStep] | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> VoiceRecordingSession:
    """Start the first recorder candidate that the OS accepts."""

    runtime_dir = Path(runtime_dir)
    runtime_dir.mkdir(parents=True, exist_ok=True)
    file_path = runtime_dir / f"{DEFAULT_BASENAME}.wav"
    remove_stale_recordings(runtime_dir)

    candidates = list(specs(file_path) if specs is not None else recorder_specs(file_path, platform))
    available = [spec for spec in candidates if which(spec.cmd)]
    if not available:
        missing = ", ".join(spec.label for spec in candidates) or "none for this platform"
        raise RecorderUnavailableError(
            f"No recorder found (candidates: {missing}). Install ffmpeg or sox (or arecord on Linux)."
        )

    failures: list[str] = []
    for spec in available:
        try:
            process = await spawn_process(
                spec.argv(),
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except SpawnError as exc:
            failures.append(f"{spec.label}: {exc}")
            logger.debug("Recorder failed to start", extra={"recorder": spec.label, "error": str(exc)})
            continue

        session = VoiceRecordingSession(
            process,
            file_path=file_path,
            recorder=spec.label,
            escalation_steps=escalation_steps,
            sleep=sleep,
        )
        logger.info("Recording started", extra={"recorder": spec.label, "pid": process.pid})
        if on_ready is not None:
            on_ready()
        return session

    raise RecorderUnavailableError("Failed to start voice recorder. " + "; ".join(failures))


__all__ = [
    "ACCEPTED_EXIT_CODES",
    "RecorderError",
    "RecorderSpec",
    "RecorderUnavailableError",
    "VoiceRecordingSession",
    "recorder_specs",
    "remove_stale_recordings",
    "start_voice_recording",
]
