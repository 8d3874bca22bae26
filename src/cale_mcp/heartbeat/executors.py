"""Built-in heartbeat task executors."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Sequence

from ..jobs import BackgroundJobLauncher
from ..process import CommandRunner
from ..process.utils import preview
from .models import HeartbeatTask, TaskOutcome
from .scheduler import TaskExecutor

HEALTH_COMMAND_TIMEOUT_SECONDS = 15


def system_health_executor(runner: CommandRunner, commands: Sequence[str]) -> TaskExecutor:
    """Run each configured health command; any non-zero exit is a drift.

    Configured health commands are not put to the approval gate.
    """

    async def run(task: HeartbeatTask) -> TaskOutcome:
        if not commands:
            return TaskOutcome(ok=True, summary="No health checks configured.")

        failures: list[str] = []
        for command in commands:
            result = await runner.execute(command, timeout_seconds=HEALTH_COMMAND_TIMEOUT_SECONDS)
            if not result.ok:
                detail = preview(result.stderr or result.stdout, 120)
                failures.append(f"{command} (exit {result.exit_code}{': ' + detail if detail else ''})")

        if not failures:
            return TaskOutcome(ok=True, summary="System health checks are nominal.")
        return TaskOutcome(
            ok=False,
            summary="System health drift detected: " + "; ".join(failures),
            urgent=True,
        )

    return run


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def background_jobs_executor(launcher: BackgroundJobLauncher) -> TaskExecutor:
    """Reconcile the job store and flag jobs that failed since the last interval."""

    async def run(task: HeartbeatTask) -> TaskOutcome:
        jobs = launcher.list_jobs()
        window_start = datetime.now(timezone.utc) - timedelta(seconds=task.interval_seconds)
        running = sum(1 for job in jobs if job.status == "running")
        failed = [
            job
            for job in jobs
            if job.status in {"failed", "unknown"}
            and (_parse_timestamp(job.ended_at) or window_start) >= window_start
        ]
        if failed:
            listed = ", ".join(f"{job.id} [{job.status}]" for job in failed)
            return TaskOutcome(
                ok=False,
                summary=f"{len(failed)} background job(s) failed: {listed}",
                urgent=True,
            )
        return TaskOutcome(ok=True, summary=f"{len(jobs)} job(s) tracked, {running} running.")

    return run


def builtin_executors(
    *,
    runner: CommandRunner,
    launcher: BackgroundJobLauncher,
    health_commands: Sequence[str] = (),
) -> dict[str, TaskExecutor]:
    return {
        "system_health": system_health_executor(runner, tuple(health_commands)),
        "background_jobs": background_jobs_executor(launcher),
    }


__all__ = [
    "background_jobs_executor",
    "builtin_executors",
    "system_health_executor",
]
