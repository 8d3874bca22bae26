"""Detached background jobs that survive controller restarts.

Each job runs inside a shell wrapper that records the command's exit code in
a per-job status file once it finishes. The job store only ever holds what the
launcher last observed; :func:`reconcile_job` recomputes the real state from
pid liveness and that status file.
"""

from __future__ import annotations

import logging
import shlex
import shutil
import signal
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable
from uuid import uuid4

from ..approval import ApprovalDenied, ApprovalGate, ApprovalRequest, request_approval
from ..process.spawn import pid_alive, spawn_detached, terminate_pid
from ..process.utils import sanitize_environment, utc_now_iso
from ..storage import read_json
from .models import BackgroundJob, JobsState
from .store import JobNotFoundError, JobStore

logger = logging.getLogger(__name__)

LOG_FILENAME = "output.log"
STATUS_FILENAME = "status.json"
DEFAULT_LOG_TAIL_CHARS = 4000


@dataclass(slots=True, frozen=True)
class JobStatusReport:
    """Contents of a status file written by the job wrapper."""

    exit_code: int
    ended_at: str | None


@dataclass(slots=True)
class JobStopResult:
    job: BackgroundJob
    stopped: bool
    message: str


def new_job_id() -> str:
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
    return f"job-{stamp}-{uuid4().hex[:6]}"


def build_wrapper_script(command: str, status_path: Path) -> str:
    """Wrap ``command`` so it reports its exit code to ``status_path``.

    The command runs in a subshell so an ``exit`` inside it still reaches the
    reporting step. The report is renamed into place to avoid torn reads.
    """

    status = shlex.quote(str(status_path))
    partial = shlex.quote(f"{status_path}.tmp")
    return (
        "(\n"
        f"{command}\n"
        ")\n"
        "__cale_exit=$?\n"
        f"printf '{{\"exitCode\": %d, \"endedAt\": \"%s\"}}\\n' \"$__cale_exit\" "
        f"\"$(date -u +%Y-%m-%dT%H:%M:%SZ)\" > {partial} && mv -f {partial} {status}\n"
        "exit \"$__cale_exit\"\n"
    )


def read_status_report(path: Path) -> JobStatusReport | None:
    document = read_json(path)
    if not isinstance(document, dict):
        return None
    exit_code = document.get("exitCode")
    if isinstance(exit_code, bool) or not isinstance(exit_code, int):
        return None
    ended_at = document.get("endedAt")
    return JobStatusReport(exit_code=exit_code, ended_at=ended_at if isinstance(ended_at, str) else None)


def reconcile_job(
    job: BackgroundJob,
    *,
    is_alive: Callable[[int], bool] = pid_alive,
    now: Callable[[], str] = utc_now_iso,
) -> BackgroundJob:
    """Recompute a running job's status from liveness and its status file.

    Terminal jobs are returned untouched, so applying this twice is the same
    as applying it once.
    """

    if job.is_terminal:
        return job
    if is_alive(job.pid):
        return job

    report = read_status_report(Path(job.status_path))
    if report is not None:
        return job.model_copy(
            update={
                "status": "completed" if report.exit_code == 0 else "failed",
                "exit_code": report.exit_code,
                "ended_at": report.ended_at or job.ended_at or now(),
            }
        )

    return job.model_copy(update={"status": "unknown", "ended_at": job.ended_at or now()})


class BackgroundJobLauncher:
    """Start, observe and stop detached shell commands."""

    def __init__(
        self,
        store: JobStore,
        jobs_dir: Path,
        approval_gate: ApprovalGate,
        *,
        shell: str = "/bin/sh",
        default_cwd: Path | None = None,
        spawner: Callable[..., int] = spawn_detached,
        is_alive: Callable[[int], bool] = pid_alive,
        signaller: Callable[[int, int], bool] = terminate_pid,
        clock: Callable[[], str] = utc_now_iso,
    ) -> None:
        self._store = store
        self._jobs_dir = Path(jobs_dir)
        self._approval_gate = approval_gate
        self._shell = shell
        self._default_cwd = Path(default_cwd) if default_cwd is not None else Path.cwd()
        self._spawner = spawner
        self._is_alive = is_alive
        self._signaller = signaller
        self._clock = clock

    @property
    def store(self) -> JobStore:
        return self._store

    def _resolve_cwd(self, cwd: str | Path | None) -> Path:
        if cwd is None or str(cwd).strip() == "":
            return self._default_cwd.resolve()
        candidate = Path(cwd).expanduser()
        if not candidate.is_absolute():
            candidate = self._default_cwd / candidate
        return candidate.resolve()

    def _allocate_id(self, state: JobsState) -> str:
        job_id = new_job_id()
        while job_id in state.jobs or (self._jobs_dir / job_id).exists():
            job_id = new_job_id()
        return job_id

    async def start(self, command: str, cwd: str | Path | None = None) -> BackgroundJob | ApprovalDenied:
        """Launch ``command`` detached and return its ``running`` record immediately."""

        summary = f"Start background: {command}"
        approved = await request_approval(
            self._approval_gate,
            ApprovalRequest(tool="start_background", summary=summary, command=command),
        )
        if not approved:
            logger.info("Background command denied", extra={"command": command})
            return ApprovalDenied(tool="start_background", summary=summary)

        work_dir = self._resolve_cwd(cwd)
        state = self._store.load()
        job_id = self._allocate_id(state)
        job_dir = self._jobs_dir / job_id
        job_dir.mkdir(parents=True, exist_ok=True)
        log_path = job_dir / LOG_FILENAME
        status_path = job_dir / STATUS_FILENAME

        try:
            pid = self._spawner(
                [self._shell, "-c", build_wrapper_script(command, status_path)],
                cwd=work_dir,
                env=sanitize_environment(),
                log_path=log_path,
            )
        except Exception:
            shutil.rmtree(job_dir, ignore_errors=True)
            raise

        job = BackgroundJob(
            id=job_id,
            command=command,
            cwd=str(work_dir),
            pid=pid,
            started_at=self._clock(),
            status="running",
            log_path=str(log_path),
            status_path=str(status_path),
        )
        state = self._store.load()
        state.jobs[job_id] = job
        self._store.save(state)

        logger.info("Started background job", extra={"job_id": job_id, "pid": pid})
        return job

    def reconcile(self, job: BackgroundJob) -> BackgroundJob:
        return reconcile_job(job, is_alive=self._is_alive, now=self._clock)

    def _reconcile_state(self, state: JobsState) -> bool:
        changed = False
        for job_id, job in list(state.jobs.items()):
            updated = self.reconcile(job)
            if updated != job:
                state.jobs[job_id] = updated
                changed = True
                logger.info(
                    "Background job reconciled",
                    extra={"job_id": job_id, "status": updated.status, "exit_code": updated.exit_code},
                )
        return changed

    def list_jobs(self) -> list[BackgroundJob]:
        """Reconcile every job and return them newest first."""

        state = self._store.load()
        if self._reconcile_state(state):
            self._store.save(state)
        return sorted(state.jobs.values(), key=lambda job: job.started_at, reverse=True)

    def status(self, job_id: str) -> BackgroundJob:
        state = self._store.load()
        job = state.jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        updated = self.reconcile(job)
        if updated != job:
            state.jobs[job_id] = updated
            self._store.save(state)
        return updated

    def stop(self, job_id: str) -> JobStopResult:
        """Signal a running job and mark it ``stopped`` without waiting for it to exit."""

        job = self.status(job_id)
        if job.status != "running":
            return JobStopResult(job=job, stopped=False, message=f"Job is not running (status: {job.status})")

        delivered = self._signaller(job.pid, signal.SIGTERM)
        stopped = job.model_copy(update={"status": "stopped", "ended_at": self._clock()})
        state = self._store.load()
        state.jobs[job_id] = stopped
        self._store.save(state)

        logger.info("Stopped background job", extra={"job_id": job_id, "pid": job.pid, "delivered": delivered})
        return JobStopResult(job=stopped, stopped=True, message="Stop signal sent")

    def read_log(self, job_id: str, max_chars: int = DEFAULT_LOG_TAIL_CHARS) -> str:
        """Return the last ``max_chars`` characters of a job's log."""

        job = self._store.get(job_id)
        path = Path(job.log_path)
        try:
            with path.open("rb") as handle:
                handle.seek(0, 2)
                size = handle.tell()
                handle.seek(max(0, size - max_chars * 4))
                data = handle.read()
        except FileNotFoundError:
            return ""
        return data.decode("utf-8", errors="replace")[-max_chars:]


__all__ = [
    "BackgroundJobLauncher",
    "JobStatusReport",
    "JobStopResult",
    "build_wrapper_script",
    "new_job_id",
    "read_status_report",
    "reconcile_job",
]
