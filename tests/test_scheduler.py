from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from cale_mcp.heartbeat import (
    HeartbeatScheduler,
    HeartbeatState,
    HeartbeatStateStore,
    HeartbeatTask,
    TaskOutcome,
    is_due,
)
from cale_mcp.heartbeat.scheduler import NO_EXECUTOR_SUMMARY

NOW = 1_700_000_000


def task(key: str, interval: int, title: str | None = None) -> HeartbeatTask:
    return HeartbeatTask(key=key, title=title or key.title(), interval_seconds=interval)


class RecordingExecutor:
    def __init__(self, outcome: TaskOutcome | Exception) -> None:
        self.outcome = outcome
        self.calls: list[str] = []

    async def __call__(self, item: HeartbeatTask) -> TaskOutcome:
        self.calls.append(item.key)
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


def write_state(path: Path, last_checks: dict[str, int]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps({"lastChecks": last_checks, "lastResults": {}}), encoding="utf-8")


def test_due_predicate_boundary() -> None:
    hourly = task("a", 3600)

    assert is_due(hourly, {}, NOW)
    assert is_due(hourly, {"a": NOW - 3600}, NOW)
    assert not is_due(hourly, {"a": NOW - 3599}, NOW)


def test_nothing_due_writes_nothing(tmp_path: Path) -> None:
    path = tmp_path / "memory" / "heartbeat-state.json"
    write_state(path, {"a": NOW - 10})
    before = path.read_bytes()
    executor = RecordingExecutor(TaskOutcome(ok=True, summary="ran"))
    scheduler = HeartbeatScheduler(HeartbeatStateStore(path), {"a": executor}, clock=lambda: NOW)

    result = asyncio.run(scheduler.run_once([task("a", 3600)]))

    assert result.ok
    assert result.due_count == 0
    assert result.runs == []
    assert executor.calls == []
    assert path.read_bytes() == before


def test_nothing_due_does_not_create_state(tmp_path: Path) -> None:
    path = tmp_path / "heartbeat-state.json"
    scheduler = HeartbeatScheduler(HeartbeatStateStore(path), clock=lambda: NOW)

    asyncio.run(scheduler.run_once([]))

    assert not path.exists()


def test_runs_only_due_tasks_in_order(tmp_path: Path) -> None:
    path = tmp_path / "heartbeat-state.json"
    write_state(path, {"a": NOW - 7200, "b": NOW - 10})
    order: list[str] = []

    def executor(label: str):
        async def run(item: HeartbeatTask) -> TaskOutcome:
            order.append(label)
            return TaskOutcome(ok=True, summary=f"{label} fine")

        return run

    scheduler = HeartbeatScheduler(
        HeartbeatStateStore(path),
        {"a": executor("a"), "b": executor("b"), "c": executor("c")},
        clock=lambda: NOW,
    )

    result = asyncio.run(scheduler.run_once([task("a", 3600), task("b", 3600), task("c", 60)]))

    assert order == ["a", "c"]
    assert result.ok
    assert result.due_count == 2
    state = json.loads(path.read_text(encoding="utf-8"))
    assert state["lastChecks"] == {"a": NOW, "b": NOW - 10, "c": NOW}
    assert state["lastResults"]["a"].endswith(" OK: a fine")
    assert "b" not in state["lastResults"]


def test_failure_is_isolated_and_recorded(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    path = tmp_path / "heartbeat-state.json"
    broken = RecordingExecutor(RuntimeError("disk exploded"))
    healthy = RecordingExecutor(TaskOutcome(ok=True, summary="fine"))
    scheduler = HeartbeatScheduler(
        HeartbeatStateStore(path),
        {"broken": broken, "healthy": healthy},
        clock=lambda: NOW,
    )

    with caplog.at_level("ERROR"):
        result = asyncio.run(scheduler.run_once([task("broken", 60), task("healthy", 60)]))

    assert not result.ok
    assert [run.ok for run in result.runs] == [False, True]
    assert result.runs[0].summary == "disk exploded"
    assert healthy.calls == ["healthy"]
    state = HeartbeatStateStore(path).load()
    assert state.last_checks == {"broken": NOW, "healthy": NOW}
    assert " ERR: disk exploded" in state.last_results["broken"]
    assert any("Heartbeat task failed" in record.message for record in caplog.records)


def test_unknown_key_succeeds_with_placeholder(tmp_path: Path) -> None:
    path = tmp_path / "heartbeat-state.json"
    scheduler = HeartbeatScheduler(HeartbeatStateStore(path), {}, clock=lambda: NOW)

    result = asyncio.run(scheduler.run_once([task("mystery", 60)]))

    assert result.ok
    assert result.runs[0].summary == NO_EXECUTOR_SUMMARY
    assert HeartbeatStateStore(path).load().last_checks == {"mystery": NOW}


def test_urgent_runs_log_warning(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    path = tmp_path / "heartbeat-state.json"
    alarm = RecordingExecutor(TaskOutcome(ok=False, summary="drift", urgent=True))
    scheduler = HeartbeatScheduler(HeartbeatStateStore(path), {"alarm": alarm}, clock=lambda: NOW)

    with caplog.at_level("WARNING"):
        result = asyncio.run(scheduler.run_once([task("alarm", 60)]))

    assert result.runs[0].urgent
    assert any(record.levelname == "WARNING" and "Urgent" in record.message for record in caplog.records)


def test_state_store_tolerates_garbage(tmp_path: Path) -> None:
    path = tmp_path / "heartbeat-state.json"
    path.write_text("{not json", encoding="utf-8")

    assert HeartbeatStateStore(path).load() == HeartbeatState()

    path.write_text(json.dumps({"lastChecks": {"a": "soon"}}), encoding="utf-8")
    assert HeartbeatStateStore(path).load() == HeartbeatState()

    path.write_bytes(b"\xff\xfe")
    assert HeartbeatStateStore(path).load() == HeartbeatState()


def test_fresh_state_runs_every_task_in_plan_order(tmp_path: Path) -> None:
    path = tmp_path / "memory" / "heartbeat-state.json"
    order: list[str] = []

    def executor(label: str):
        async def run(item: HeartbeatTask) -> TaskOutcome:
            order.append(label)
            return TaskOutcome(ok=True, summary=f"{label} fine")

        return run

    tasks = [task("hourly", 3600), task("twice-daily", 7200), task("daily", 86400)]
    scheduler = HeartbeatScheduler(
        HeartbeatStateStore(path),
        {item.key: executor(item.key) for item in tasks},
        clock=lambda: NOW,
    )

    result = asyncio.run(scheduler.run_once(tasks))

    assert order == ["hourly", "twice-daily", "daily"]
    assert result.due_count == 3
    assert [run.key for run in result.runs] == order
    state = json.loads(path.read_text(encoding="utf-8"))
    assert state["lastChecks"] == {"hourly": NOW, "twice-daily": NOW, "daily": NOW}
