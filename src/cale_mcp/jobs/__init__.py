"""Background job launching, persistence and reconciliation."""

from .launcher import BackgroundJobLauncher, JobStopResult, build_wrapper_script, reconcile_job
from .models import BackgroundJob, JobsState, TERMINAL_STATUSES
from .store import JobNotFoundError, JobStore

__all__ = [
    "BackgroundJob",
    "BackgroundJobLauncher",
    "JobNotFoundError",
    "JobStopResult",
    "JobStore",
    "JobsState",
    "TERMINAL_STATUSES",
    "build_wrapper_script",
    "reconcile_job",
]
