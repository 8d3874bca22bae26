"""Approval gates consulted before any command is spawned."""

from __future__ import annotations

import inspect
import sys
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, TextIO, Union


@dataclass(slots=True, frozen=True)
class ApprovalRequest:
    """Describes the operation awaiting approval."""

    tool: str
    summary: str
    command: str | None = None


@dataclass(slots=True)
class ApprovalDenied:
    """Returned instead of a result when the gate refuses an operation."""

    tool: str
    summary: str
    message: str = "User declined to run the command"
    status: str = "denied"

    def to_dict(self) -> dict[str, str]:
        return {
            "status": self.status,
            "tool": self.tool,
            "summary": self.summary,
            "message": self.message,
        }


ApprovalGate = Callable[[ApprovalRequest], Union[bool, Awaitable[bool]]]


async def request_approval(gate: ApprovalGate, request: ApprovalRequest) -> bool:
    """Consult ``gate``, awaiting it when it is asynchronous."""

    decision = gate(request)
    if inspect.isawaitable(decision):
        decision = await decision
    return bool(decision)


def allow_all(request: ApprovalRequest) -> bool:
    return True


def deny_all(request: ApprovalRequest) -> bool:
    return False


def policy_gate(*, auto_approve: bool, prefixes: Iterable[str] = ()) -> ApprovalGate:
    """Approve everything when ``auto_approve`` is set, else commands matching a prefix."""

    allowed = tuple(prefix.strip() for prefix in prefixes if prefix.strip())

    def gate(request: ApprovalRequest) -> bool:
        if auto_approve:
            return True
        command = (request.command or "").strip()
        return bool(command) and any(
            command == prefix or command.startswith(prefix + " ") for prefix in allowed
        )

    return gate


def prompt_gate(
    *,
    input_fn: Callable[[str], str] = input,
    output: TextIO | None = None,
) -> ApprovalGate:
    """Ask on the terminal; anything but an explicit yes is a denial."""

    def gate(request: ApprovalRequest) -> bool:
        stream = output or sys.stderr
        print(f"[{request.tool}] {request.summary}", file=stream)
        try:
            answer = input_fn("Approve? [y/N] ")
        except EOFError:
            return False
        return answer.strip().lower() in {"y", "yes"}

    return gate


__all__ = [
    "ApprovalDenied",
    "ApprovalGate",
    "ApprovalRequest",
    "allow_all",
    "deny_all",
    "policy_gate",
    "prompt_gate",
    "request_approval",
]
