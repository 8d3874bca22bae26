"""Process spawning, supervision and foreground execution."""

from .escalation import EscalationState, EscalationStep, SignalEscalation
from .runner import CommandResult, CommandRunner, TIMEOUT_EXIT_CODE
from .spawn import (
    SpawnError,
    SpawnedProcess,
    pid_alive,
    spawn_detached,
    spawn_process,
    terminate_pid,
)

__all__ = [
    "CommandResult",
    "CommandRunner",
    "EscalationState",
    "EscalationStep",
    "SignalEscalation",
    "SpawnError",
    "SpawnedProcess",
    "TIMEOUT_EXIT_CODE",
    "pid_alive",
    "spawn_detached",
    "spawn_process",
    "terminate_pid",
]
