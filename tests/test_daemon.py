from __future__ import annotations

import asyncio
import json
import os
import signal
import sys
from pathlib import Path

import pytest

from cale_mcp.config import CaleSettings
from cale_mcp.heartbeat import DaemonState, HeartbeatDaemon, HeartbeatRuntime
from cale_mcp.process.spawn import SpawnError


@pytest.fixture()
def settings(tmp_path: Path) -> CaleSettings:
    return CaleSettings(
        config_dir=tmp_path / "config",
        workspace=tmp_path / "workspace",
        heartbeat_poll_seconds=30,
    ).resolved()


class FakeSpawner:
    def __init__(self, pid: int = 4242, error: Exception | None = None) -> None:
        self.pid = pid
        self.error = error
        self.calls: list[dict] = []

    def __call__(self, argv, *, cwd, env, log_path) -> int:
        self.calls.append({"argv": list(argv), "cwd": cwd, "env": env, "log_path": log_path})
        if self.error is not None:
            raise self.error
        return self.pid


def read_runtime(daemon: HeartbeatDaemon) -> dict:
    return json.loads(daemon.runtime_path.read_text(encoding="utf-8"))


def test_start_spawns_detached_service(settings: CaleSettings) -> None:
    spawner = FakeSpawner()
    daemon = HeartbeatDaemon(settings, spawner=spawner, is_alive=lambda pid: False)

    result = daemon.start()

    assert result.started
    assert not result.already_running
    assert result.pid == 4242
    assert result.log_path == settings.config_dir / "heartbeat" / "heartbeat.log"
    assert daemon.state is DaemonState.RUNNING
    call = spawner.calls[0]
    assert call["argv"] == [sys.executable, "-m", "cale_mcp", "heartbeat", "run"]
    assert call["cwd"] == settings.workspace
    assert call["env"]["CALE_WORKSPACE"] == str(settings.workspace)
    runtime = read_runtime(daemon)
    assert runtime["pid"] == 4242
    assert runtime["workspace"] == str(settings.workspace)
    assert "startedAt" in runtime


def test_start_is_refused_while_recorded_pid_lives(settings: CaleSettings) -> None:
    spawner = FakeSpawner()
    daemon = HeartbeatDaemon(settings, spawner=spawner, is_alive=lambda pid: pid == 4242)
    daemon.start()

    second = daemon.start()

    assert not second.started
    assert second.already_running
    assert second.pid == 4242
    assert len(spawner.calls) == 1


def test_start_replaces_stale_record(settings: CaleSettings) -> None:
    spawner = FakeSpawner(pid=5151)
    daemon = HeartbeatDaemon(settings, spawner=spawner, is_alive=lambda pid: pid == 5151)
    daemon.save_runtime(HeartbeatRuntime(pid=1234, started_at="2024-01-01T00:00:00Z", workspace="/old"))

    result = daemon.start()

    assert result.started
    assert read_runtime(daemon)["pid"] == 5151


def test_start_reports_spawn_failure(settings: CaleSettings) -> None:
    error = SpawnError(["python"], FileNotFoundError(2, "No such file or directory"))
    daemon = HeartbeatDaemon(settings, spawner=FakeSpawner(error=error), is_alive=lambda pid: False)

    result = daemon.start()

    assert not result.started
    assert "Failed to start heartbeat daemon" in result.message
    assert not daemon.runtime_path.exists()
    assert daemon.state is DaemonState.STOPPED


def test_status_leaves_stale_record(settings: CaleSettings) -> None:
    daemon = HeartbeatDaemon(settings, spawner=FakeSpawner(), is_alive=lambda pid: False)
    daemon.save_runtime(HeartbeatRuntime(pid=1234, started_at="2024-01-01T00:00:00Z", workspace="/w"))

    status = daemon.status()

    assert not status.running
    assert status.state is DaemonState.STOPPED
    assert status.runtime is None
    assert status.state_path == settings.workspace / "memory" / "heartbeat-state.json"
    assert daemon.runtime_path.exists()


def test_status_reports_live_service(settings: CaleSettings) -> None:
    daemon = HeartbeatDaemon(settings, spawner=FakeSpawner(), is_alive=lambda pid: True)
    daemon.start()

    status = daemon.status()

    assert status.running
    assert status.runtime is not None and status.runtime.pid == 4242


def test_stop_signals_and_removes_record(settings: CaleSettings) -> None:
    sent: list[tuple[int, int]] = []

    def signaller(pid: int, sig: int) -> bool:
        sent.append((pid, sig))
        return True

    daemon = HeartbeatDaemon(settings, spawner=FakeSpawner(), is_alive=lambda pid: True, signaller=signaller)
    daemon.start()

    result = daemon.stop()

    assert result.stopped
    assert sent == [(4242, signal.SIGTERM)]
    assert not daemon.runtime_path.exists()


def test_stop_removes_record_when_process_is_gone(settings: CaleSettings) -> None:
    def signaller(pid: int, sig: int) -> bool:
        raise PermissionError(1, "Operation not permitted")

    daemon = HeartbeatDaemon(settings, spawner=FakeSpawner(), is_alive=lambda pid: False, signaller=signaller)
    daemon.save_runtime(HeartbeatRuntime(pid=1234, started_at="2024-01-01T00:00:00Z", workspace="/w"))

    result = daemon.stop()

    assert not result.stopped
    assert "stale" in result.message
    assert not daemon.runtime_path.exists()


def test_stop_without_record(settings: CaleSettings) -> None:
    daemon = HeartbeatDaemon(settings, spawner=FakeSpawner())

    result = daemon.stop()

    assert not result.stopped
    assert result.message == "Heartbeat service is not running."


def test_clear_runtime_only_removes_matching_pid(settings: CaleSettings) -> None:
    daemon = HeartbeatDaemon(settings, spawner=FakeSpawner())
    daemon.save_runtime(HeartbeatRuntime(pid=1234, started_at="2024-01-01T00:00:00Z", workspace="/w"))

    assert daemon.clear_runtime(pid=9999) is False
    assert daemon.runtime_path.exists()
    assert daemon.clear_runtime(pid=1234) is True
    assert not daemon.runtime_path.exists()


def test_run_service_ticks_and_cleans_up(settings: CaleSettings) -> None:
    ticks: list[int] = []
    seen_runtime: list[dict] = []
    sleeps: list[float] = []

    async def tick() -> None:
        ticks.append(len(ticks))
        if len(ticks) == 2:
            raise RuntimeError("bad plan")

    async def fake_sleep(delay: float) -> None:
        sleeps.append(delay)
        seen_runtime.append(read_runtime(daemon))
        if len(sleeps) == 3:
            daemon.request_stop()
        await asyncio.sleep(0)

    daemon = HeartbeatDaemon(settings, sleep=fake_sleep)

    asyncio.run(daemon.run_service(tick))

    assert len(ticks) == 3
    assert sleeps == [30, 30, 30]
    assert seen_runtime[0]["pid"] == os.getpid()
    assert not daemon.runtime_path.exists()
    assert daemon.state is DaemonState.STOPPED


def test_run_service_stops_on_sigterm(settings: CaleSettings) -> None:
    async def tick() -> None:
        return None

    async def fake_sleep(delay: float) -> None:
        os.kill(os.getpid(), signal.SIGTERM)
        await asyncio.sleep(5)

    daemon = HeartbeatDaemon(settings, sleep=fake_sleep)

    asyncio.run(asyncio.wait_for(daemon.run_service(tick), 10))

    assert not daemon.runtime_path.exists()
    assert daemon.state is DaemonState.STOPPED


def test_poll_interval_below_minimum_uses_default(tmp_path: Path) -> None:
    settings = CaleSettings(config_dir=tmp_path, workspace=tmp_path, heartbeat_poll_seconds=1)

    assert HeartbeatDaemon(settings).poll_seconds == 60
