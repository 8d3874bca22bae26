"""Due-task selection and sequential batch execution for the heartbeat."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Awaitable, Callable, Mapping, Sequence

from pydantic import ValidationError

from ..storage import read_json, write_json_atomic
from .models import (
    HeartbeatBatchResult,
    HeartbeatState,
    HeartbeatTask,
    HeartbeatTaskRun,
    TaskOutcome,
)

logger = logging.getLogger(__name__)

TaskExecutor = Callable[[HeartbeatTask], Awaitable[TaskOutcome]]
NO_EXECUTOR_SUMMARY = "No built-in executor for this task yet."


def is_due(task: HeartbeatTask, last_checks: Mapping[str, int], now_seconds: int) -> bool:
    """A task is due once its interval has fully elapsed; never-run tasks are due.

    Uses raw wall-clock seconds so schedules carry across restarts; clock jumps
    shift runs accordingly.
    """

    last = last_checks.get(task.key, 0)
    return now_seconds - last >= task.interval_seconds


def due_tasks(
    tasks: Sequence[HeartbeatTask],
    last_checks: Mapping[str, int],
    now_seconds: int,
) -> list[HeartbeatTask]:
    return [task for task in tasks if is_due(task, last_checks, now_seconds)]


class HeartbeatStateStore:
    """Read and write the heartbeat state document."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> HeartbeatState:
        document = read_json(self._path)
        if not isinstance(document, dict):
            return HeartbeatState()
        try:
            return HeartbeatState.model_validate(document)
        except ValidationError as exc:
            logger.warning(
                "Ignoring invalid heartbeat state",
                extra={"path": str(self._path), "error": str(exc)},
            )
            return HeartbeatState()

    def save(self, state: HeartbeatState) -> None:
        write_json_atomic(self._path, state.to_payload())


class HeartbeatScheduler:
    """Run whichever plan tasks are due, one after another."""

    def __init__(
        self,
        state_store: HeartbeatStateStore,
        executors: Mapping[str, TaskExecutor] | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._state_store = state_store
        self._executors = dict(executors or {})
        self._clock = clock

    @property
    def executors(self) -> dict[str, TaskExecutor]:
        return dict(self._executors)

    async def execute(self, task: HeartbeatTask) -> HeartbeatTaskRun:
        """Run one task; executor failures become a failed run."""

        executor = self._executors.get(task.key)
        if executor is None:
            return HeartbeatTaskRun(key=task.key, title=task.title, ok=True, summary=NO_EXECUTOR_SUMMARY)
        try:
            outcome = await executor(task)
        except Exception as exc:  # noqa: BLE001 - one task must not sink the batch
            logger.exception("Heartbeat task failed", extra={"task": task.key})
            return HeartbeatTaskRun(key=task.key, title=task.title, ok=False, summary=str(exc) or type(exc).__name__)
        return HeartbeatTaskRun(
            key=task.key,
            title=task.title,
            ok=outcome.ok,
            summary=outcome.summary,
            urgent=outcome.urgent,
        )

    async def run_once(self, tasks: Sequence[HeartbeatTask]) -> HeartbeatBatchResult:
        """Execute the due subset of ``tasks`` and persist state once.

        Nothing is written when no task is due.
        """

        state = self._state_store.load()
        now_seconds = int(self._clock())
        due = due_tasks(tasks, state.last_checks, now_seconds)
        if not due:
            logger.debug("No heartbeat tasks due")
            return HeartbeatBatchResult(ok=True, due_count=0, runs=[])

        runs: list[HeartbeatTaskRun] = []
        for task in due:
            run = await self.execute(task)
            runs.append(run)
            state.last_checks[task.key] = now_seconds
            stamp = datetime.now(timezone.utc).isoformat()
            state.last_results[task.key] = f"{stamp} {'OK' if run.ok else 'ERR'}: {run.summary}"
            if run.urgent:
                logger.warning("Urgent heartbeat event", extra={"task": task.key, "summary": run.summary})
            else:
                logger.info("Heartbeat task ran", extra={"task": task.key, "ok": run.ok})

        self._state_store.save(state)
        return HeartbeatBatchResult(ok=all(run.ok for run in runs), due_count=len(due), runs=runs)


__all__ = [
    "HeartbeatScheduler",
    "HeartbeatStateStore",
    "NO_EXECUTOR_SUMMARY",
    "TaskExecutor",
    "due_tasks",
    "is_due",
]
