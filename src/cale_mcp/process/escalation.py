"""Escalating-signal shutdown for managed processes.

A shutdown walks ``Running -> SignaledGraceful -> SignaledForceful -> Exited``.
Each step sends one signal after waiting its delay, unless the process exits
first. Delays run on an injectable ``sleep`` so tests can drive the sequence
with a fake clock.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import signal
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Protocol, Sequence

logger = logging.getLogger(__name__)


class EscalationState(str, enum.Enum):
    RUNNING = "running"
    SIGNALED_GRACEFUL = "signaled_graceful"
    SIGNALED_FORCEFUL = "signaled_forceful"
    EXITED = "exited"


class SignalTarget(Protocol):
    """Minimal process surface needed by :class:`SignalEscalation`."""

    def send_signal(self, sig: int) -> bool:
        ...

    async def wait(self) -> int | None:
        ...


@dataclass(slots=True, frozen=True)
class EscalationStep:
    """Send ``sig`` once ``delay`` seconds have passed since the previous step."""

    sig: int
    delay: float = 0.0
    forceful: bool = False


@dataclass(slots=True)
class EscalationRecord:
    state: EscalationState
    sig: int | None = None


def terminate_then_kill(grace_seconds: float) -> tuple[EscalationStep, ...]:
    """SIGTERM now, SIGKILL after ``grace_seconds``."""

    return (
        EscalationStep(signal.SIGTERM),
        EscalationStep(signal.SIGKILL, delay=grace_seconds, forceful=True),
    )


def interrupt_then_kill(
    terminate_after: float = 0.7,
    kill_after: float = 2.2,
) -> tuple[EscalationStep, ...]:
    """SIGINT now, SIGTERM after ``terminate_after``, SIGKILL a further ``kill_after`` later."""

    return (
        EscalationStep(signal.SIGINT),
        EscalationStep(signal.SIGTERM, delay=terminate_after),
        EscalationStep(signal.SIGKILL, delay=kill_after, forceful=True),
    )


@dataclass
class SignalEscalation:
    """Drive one process through a sequence of escalating signals."""

    target: SignalTarget
    steps: Sequence[EscalationStep]
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    state: EscalationState = EscalationState.RUNNING
    history: list[EscalationRecord] = field(default_factory=list)

    def _transition(self, state: EscalationState, sig: int | None = None) -> None:
        self.state = state
        self.history.append(EscalationRecord(state=state, sig=sig))

    async def run(self) -> int | None:
        """Escalate until the process exits; return its exit code (``None`` if killed)."""

        exit_task = asyncio.ensure_future(self.target.wait())
        try:
            for step in self.steps:
                if exit_task.done():
                    break
                if step.delay > 0:
                    timer = asyncio.ensure_future(self.sleep(step.delay))
                    done, _ = await asyncio.wait(
                        {exit_task, timer}, return_when=asyncio.FIRST_COMPLETED
                    )
                    if exit_task in done:
                        timer.cancel()
                        break
                self.target.send_signal(step.sig)
                self._transition(
                    EscalationState.SIGNALED_FORCEFUL if step.forceful else EscalationState.SIGNALED_GRACEFUL,
                    step.sig,
                )
                logger.debug("Sent escalation signal", extra={"signal": int(step.sig)})
            code = await exit_task
        finally:
            if not exit_task.done():
                exit_task.cancel()
        self._transition(EscalationState.EXITED)
        return code


__all__ = [
    "EscalationRecord",
    "EscalationState",
    "EscalationStep",
    "SignalEscalation",
    "SignalTarget",
    "interrupt_then_kill",
    "terminate_then_kill",
]
