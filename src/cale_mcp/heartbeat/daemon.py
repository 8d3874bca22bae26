"""Heartbeat daemon lifecycle: start, status, stop and the poll loop.

The runtime record on disk describes which process is serving the heartbeat.
It is a liveness descriptor, not a lock: a record whose pid is dead is simply
stale.
"""

from __future__ import annotations

import asyncio
import atexit
import enum
import logging
import os
import signal
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable

from pydantic import ValidationError

from ..config import CaleSettings
from ..process.spawn import SpawnError, pid_alive, spawn_detached, terminate_pid
from ..process.utils import utc_now_iso
from ..storage import read_json, remove_file, write_json_atomic
from .models import HeartbeatRuntime

logger = logging.getLogger(__name__)

RUNTIME_FILENAME = "heartbeat.pid.json"
LOG_FILENAME = "heartbeat.log"


class DaemonState(str, enum.Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"


@dataclass(slots=True)
class DaemonStartResult:
    started: bool
    already_running: bool
    pid: int | None
    log_path: Path
    message: str


@dataclass(slots=True)
class DaemonStatus:
    running: bool
    state: DaemonState
    runtime: HeartbeatRuntime | None
    log_path: Path
    state_path: Path


@dataclass(slots=True)
class DaemonStopResult:
    stopped: bool
    message: str


def _signal_pid(pid: int, sig: int) -> bool:
    return terminate_pid(pid, sig, group=False)


class HeartbeatDaemon:
    """Control a heartbeat poll loop running as its own OS process."""

    def __init__(
        self,
        settings: CaleSettings,
        *,
        spawner: Callable[..., int] = spawn_detached,
        is_alive: Callable[[int], bool] = pid_alive,
        signaller: Callable[[int, int], bool] = _signal_pid,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        python: str | None = None,
    ) -> None:
        self._settings = settings
        self._spawner = spawner
        self._is_alive = is_alive
        self._signaller = signaller
        self._sleep = sleep
        self._python = python or sys.executable
        self._service_task: asyncio.Task[Any] | None = None
        self._stop_requested = False
        self.state = DaemonState.STOPPED

    @property
    def runtime_path(self) -> Path:
        return self._settings.heartbeat_dir / RUNTIME_FILENAME

    @property
    def log_path(self) -> Path:
        return self._settings.heartbeat_dir / LOG_FILENAME

    @property
    def state_path(self) -> Path:
        return self._settings.heartbeat_state_path

    @property
    def poll_seconds(self) -> int:
        return self._settings.heartbeat_poll_seconds

    def load_runtime(self) -> HeartbeatRuntime | None:
        document = read_json(self.runtime_path)
        if not isinstance(document, dict):
            return None
        try:
            return HeartbeatRuntime.model_validate(document)
        except ValidationError:
            return None

    def save_runtime(self, runtime: HeartbeatRuntime) -> None:
        write_json_atomic(self.runtime_path, runtime.to_payload())

    def clear_runtime(self, *, pid: int | None = None) -> bool:
        """Remove the runtime record; with ``pid``, only if the record names that pid."""

        if pid is not None:
            runtime = self.load_runtime()
            if runtime is not None and runtime.pid != pid:
                return False
        return remove_file(self.runtime_path)

    def daemon_command(self) -> list[str]:
        return [self._python, "-m", "cale_mcp", "heartbeat", "run"]

    def start(self) -> DaemonStartResult:
        """Spawn a detached poll loop unless a live one is already recorded."""

        existing = self.load_runtime()
        if existing is not None and self._is_alive(existing.pid):
            return DaemonStartResult(
                started=False,
                already_running=True,
                pid=existing.pid,
                log_path=self.log_path,
                message="Heartbeat service is already running.",
            )

        self.state = DaemonState.STARTING
        workspace = self._settings.workspace
        env = dict(os.environ)
        env["CALE_WORKSPACE"] = str(workspace)
        env["CALE_CONFIG_DIR"] = str(self._settings.config_dir)
        try:
            pid = self._spawner(self.daemon_command(), cwd=workspace, env=env, log_path=self.log_path)
        except SpawnError as exc:
            self.state = DaemonState.STOPPED
            logger.error("Heartbeat daemon failed to start", extra={"error": str(exc)})
            return DaemonStartResult(
                started=False,
                already_running=False,
                pid=None,
                log_path=self.log_path,
                message=f"Failed to start heartbeat daemon: {exc}",
            )

        self.save_runtime(HeartbeatRuntime(pid=pid, started_at=utc_now_iso(), workspace=str(workspace)))
        self.state = DaemonState.RUNNING
        logger.info("Heartbeat daemon started", extra={"pid": pid, "log_path": str(self.log_path)})
        return DaemonStartResult(
            started=True,
            already_running=False,
            pid=pid,
            log_path=self.log_path,
            message="Heartbeat daemon started.",
        )

    def status(self) -> DaemonStatus:
        runtime = self.load_runtime()
        running = runtime is not None and self._is_alive(runtime.pid)
        return DaemonStatus(
            running=running,
            state=DaemonState.RUNNING if running else DaemonState.STOPPED,
            runtime=runtime if running else None,
            log_path=self.log_path,
            state_path=self.state_path,
        )

    def stop(self) -> DaemonStopResult:
        """Signal the recorded daemon and delete its runtime record."""

        runtime = self.load_runtime()
        if runtime is None:
            return DaemonStopResult(stopped=False, message="Heartbeat service is not running.")

        try:
            delivered = self._signaller(runtime.pid, signal.SIGTERM)
        except OSError as exc:
            logger.warning("Failed to signal heartbeat daemon", extra={"pid": runtime.pid, "error": str(exc)})
            delivered = False
        self.clear_runtime()
        self.state = DaemonState.STOPPED

        if not delivered:
            return DaemonStopResult(
                stopped=False,
                message=f"Heartbeat process {runtime.pid} was not running; removed stale runtime record.",
            )
        logger.info("Heartbeat daemon stopped", extra={"pid": runtime.pid})
        return DaemonStopResult(stopped=True, message="Heartbeat service stopped.")

    def request_stop(self) -> None:
        """Remove this process's runtime record and end the poll loop."""

        self._stop_requested = True
        self.clear_runtime(pid=os.getpid())
        if self._service_task is not None and not self._service_task.done():
            self._service_task.cancel()

    async def run_service(self, tick: Callable[[], Awaitable[Any]]) -> None:
        """Run ``tick`` every poll interval until SIGINT/SIGTERM."""

        pid = os.getpid()
        self._stop_requested = False
        self._service_task = asyncio.current_task()
        self.save_runtime(
            HeartbeatRuntime(pid=pid, started_at=utc_now_iso(), workspace=str(self._settings.workspace))
        )
        self.state = DaemonState.RUNNING

        loop = asyncio.get_running_loop()
        installed: list[int] = []
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_stop)
            except (NotImplementedError, RuntimeError):
                continue
            installed.append(sig)
        atexit.register(self.clear_runtime, pid=pid)

        logger.info(
            "Heartbeat service running",
            extra={"pid": pid, "poll_seconds": self.poll_seconds, "workspace": str(self._settings.workspace)},
        )
        try:
            while True:
                try:
                    await tick()
                except Exception:  # noqa: BLE001 - a bad tick must not end the service
                    logger.exception("Heartbeat tick failed")
                await self._sleep(self.poll_seconds)
        except asyncio.CancelledError:
            if not self._stop_requested:
                raise
            logger.info("Heartbeat service stopping", extra={"pid": pid})
        finally:
            for sig in installed:
                loop.remove_signal_handler(sig)
            atexit.unregister(self.clear_runtime)
            self.clear_runtime(pid=pid)
            self._service_task = None
            self.state = DaemonState.STOPPED


__all__ = [
    "DaemonStartResult",
    "DaemonState",
    "DaemonStatus",
    "DaemonStopResult",
    "HeartbeatDaemon",
]
