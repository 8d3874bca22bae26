"""Persistent records for detached background jobs."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

JobStatus = Literal["running", "completed", "failed", "stopped", "unknown"]
TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "failed", "stopped", "unknown"})


class BackgroundJob(BaseModel):
    """One launched detached command."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str = Field(..., description="Unique job id, never reused.")
    command: str = Field(..., description="Shell command as given by the caller.")
    cwd: str = Field(..., description="Working directory the command was started in.")
    pid: int = Field(..., description="Wrapper process id at launch time.")
    started_at: str = Field(..., alias="startedAt")
    ended_at: str | None = Field(default=None, alias="endedAt")
    exit_code: int | None = Field(default=None, alias="exitCode")
    status: JobStatus = "running"
    log_path: str = Field(..., alias="logPath")
    status_path: str = Field(..., alias="statusPath")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class JobsState(BaseModel):
    """All known jobs keyed by id."""

    model_config = ConfigDict(populate_by_name=True)

    jobs: dict[str, BackgroundJob] = Field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


__all__ = ["BackgroundJob", "JobStatus", "JobsState", "TERMINAL_STATUSES"]
