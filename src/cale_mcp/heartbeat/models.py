"""Heartbeat plan, state and runtime records."""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

_INTERVAL_PATTERN = re.compile(
    r"(\d+(?:\.\d+)?)\s*(hours|hour|hrs|hr|h|days|day|d|minutes|minute|mins|min|m|seconds|second|secs|sec|s)\b",
    re.IGNORECASE,
)
_KEYWORD_KEYS = (
    ("system", "system_health"),
    ("background job", "background_jobs"),
)


def parse_interval_seconds(value: str) -> int | None:
    """Parse ``"4 hours"``, ``"30m"``, ``"1 day"`` and similar into seconds."""

    match = _INTERVAL_PATTERN.search(value)
    if not match:
        return None
    amount = float(match.group(1))
    if amount <= 0:
        return None
    unit = match.group(2).lower()
    if unit.startswith("d"):
        return round(amount * 24 * 60 * 60)
    if unit.startswith("h"):
        return round(amount * 60 * 60)
    if unit.startswith("s"):
        return round(amount)
    return round(amount * 60)


def to_task_key(title: str) -> str:
    lower = title.lower()
    for keyword, key in _KEYWORD_KEYS:
        if keyword in lower:
            return key
    return re.sub(r"[^a-z0-9]+", "_", lower).strip("_")


class HeartbeatTask(BaseModel):
    """A periodic task from the heartbeat plan."""

    model_config = ConfigDict(populate_by_name=True)

    key: str = Field(..., description="Stable identifier used for scheduling state.")
    title: str = Field(..., description="Human-friendly task title.")
    interval_seconds: int = Field(..., alias="intervalSeconds", gt=0)
    description: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _fill_defaults(cls, data: Any):
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if "interval" in data and "interval_seconds" not in data and "intervalSeconds" not in data:
            data["interval_seconds"] = data.pop("interval")
        if not data.get("key") and data.get("title"):
            data["key"] = to_task_key(str(data["title"]))
        return data

    @field_validator("interval_seconds", mode="before")
    @classmethod
    def _parse_interval(cls, value: Any):
        if isinstance(value, str):
            stripped = value.strip()
            if stripped.isdigit():
                return int(stripped)
            parsed = parse_interval_seconds(stripped)
            if parsed is None:
                raise ValueError(f"Unrecognised interval '{value}'")
            return parsed
        return value

    @field_validator("key")
    @classmethod
    def _normalize_key(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Heartbeat task key must not be empty")
        return normalized


class HeartbeatState(BaseModel):
    """When each task last ran and what it reported."""

    model_config = ConfigDict(populate_by_name=True)

    last_checks: dict[str, int] = Field(default_factory=dict, alias="lastChecks")
    last_results: dict[str, str] = Field(default_factory=dict, alias="lastResults")

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class HeartbeatRuntime(BaseModel):
    """Identity of a running heartbeat daemon."""

    model_config = ConfigDict(populate_by_name=True)

    pid: int
    started_at: str = Field(..., alias="startedAt")
    workspace: str

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


@dataclass(slots=True)
class TaskOutcome:
    """What an executor reports for one task run."""

    ok: bool
    summary: str
    urgent: bool = False


@dataclass(slots=True)
class HeartbeatTaskRun:
    key: str
    title: str
    ok: bool
    summary: str
    urgent: bool = False


@dataclass(slots=True)
class HeartbeatBatchResult:
    ok: bool
    due_count: int
    runs: list[HeartbeatTaskRun] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


__all__ = [
    "HeartbeatBatchResult",
    "HeartbeatRuntime",
    "HeartbeatState",
    "HeartbeatTask",
    "HeartbeatTaskRun",
    "TaskOutcome",
    "parse_interval_seconds",
    "to_task_key",
]
