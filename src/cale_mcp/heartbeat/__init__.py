"""Heartbeat plan, scheduler and daemon lifecycle."""

from .daemon import DaemonStartResult, DaemonState, DaemonStatus, DaemonStopResult, HeartbeatDaemon
from .executors import builtin_executors
from .models import (
    HeartbeatBatchResult,
    HeartbeatRuntime,
    HeartbeatState,
    HeartbeatTask,
    HeartbeatTaskRun,
    TaskOutcome,
)
from .plan import PlanLoadError, PlanLoader, fallback_tasks, load_plan
from .scheduler import HeartbeatScheduler, HeartbeatStateStore, is_due

__all__ = [
    "DaemonStartResult",
    "DaemonState",
    "DaemonStatus",
    "DaemonStopResult",
    "HeartbeatBatchResult",
    "HeartbeatDaemon",
    "HeartbeatRuntime",
    "HeartbeatScheduler",
    "HeartbeatState",
    "HeartbeatStateStore",
    "HeartbeatTask",
    "HeartbeatTaskRun",
    "PlanLoadError",
    "PlanLoader",
    "TaskOutcome",
    "builtin_executors",
    "fallback_tasks",
    "is_due",
    "load_plan",
]
