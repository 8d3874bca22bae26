"""JSON-backed job store.

The store is read fully and rewritten fully on every mutation. Concurrent
writers race (last writer wins); there is no locking.
"""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import ValidationError

from ..storage import read_json, write_json_atomic
from .models import BackgroundJob, JobsState

logger = logging.getLogger(__name__)


class JobNotFoundError(KeyError):
    """Raised when a job id is not present in the store."""

    def __str__(self) -> str:
        return f"Background job '{self.args[0]}' not found"


class JobStore:
    """Load and persist :class:`JobsState` documents."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> JobsState:
        document = read_json(self._path)
        if not isinstance(document, dict):
            return JobsState()

        records = document.get("jobs", {})
        if not isinstance(records, dict):
            logger.warning("Ignoring malformed job store", extra={"path": str(self._path)})
            return JobsState()

        jobs: dict[str, BackgroundJob] = {}
        for job_id, raw in records.items():
            try:
                jobs[job_id] = BackgroundJob.model_validate(raw)
            except ValidationError as exc:
                logger.warning(
                    "Skipping invalid job record",
                    extra={"job_id": job_id, "path": str(self._path), "error": str(exc)},
                )
        return JobsState(jobs=jobs)

    def save(self, state: JobsState) -> None:
        write_json_atomic(self._path, state.to_payload())

    def get(self, job_id: str) -> BackgroundJob:
        state = self.load()
        try:
            return state.jobs[job_id]
        except KeyError as exc:
            raise JobNotFoundError(job_id) from exc

    def put(self, job: BackgroundJob) -> None:
        state = self.load()
        state.jobs[job.id] = job
        self.save(state)


__all__ = ["JobNotFoundError", "JobStore"]
