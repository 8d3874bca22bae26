"""Heartbeat plan loading utilities."""

from __future__ import annotations

from pathlib import Path

import yaml
from pydantic import ValidationError

from .models import HeartbeatTask


class PlanLoadError(RuntimeError):
    """Raised when the heartbeat plan file cannot be parsed."""


def fallback_tasks() -> list[HeartbeatTask]:
    """Tasks used when no plan file exists or it lists nothing."""

    return [
        HeartbeatTask(
            key="background_jobs",
            title="Background Jobs",
            interval_seconds=15 * 60,
            description="Reconcile background jobs and flag failures.",
        ),
        HeartbeatTask(
            key="system_health",
            title="System Health",
            interval_seconds=60 * 60,
            description="Run the configured health check commands.",
        ),
    ]


class PlanLoader:
    """Loads heartbeat tasks from a YAML plan file.

    The file holds either a list of tasks or a mapping with a ``tasks`` list.
    Each task needs a ``title`` and an ``interval`` (seconds or a string such
    as ``"4 hours"``); ``key`` is derived from the title when omitted.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> list[HeartbeatTask]:
        if not self._path.exists():
            return fallback_tasks()

        try:
            document = yaml.safe_load(self._path.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:
            raise PlanLoadError(f"Failed to parse YAML in {self._path}: {exc}") from exc

        if isinstance(document, dict):
            document = document.get("tasks")
        if document is None:
            return fallback_tasks()
        if not isinstance(document, list):
            raise PlanLoadError(f"Heartbeat plan {self._path} must be a list of tasks")

        tasks: list[HeartbeatTask] = []
        errors: list[str] = []
        seen: set[str] = set()
        for index, entry in enumerate(document):
            try:
                task = HeartbeatTask.model_validate(entry)
            except ValidationError as exc:
                errors.append(f"Task #{index + 1} in {self._path}: {exc}")
                continue
            if task.key in seen:
                errors.append(f"Duplicate task key '{task.key}' in {self._path}")
                continue
            seen.add(task.key)
            tasks.append(task)

        if errors:
            raise PlanLoadError("; ".join(errors))

        return tasks or fallback_tasks()


def load_plan(path: Path) -> list[HeartbeatTask]:
    """Convenience wrapper for loading the plan at ``path``."""

    return PlanLoader(path).load()


__all__ = ["PlanLoadError", "PlanLoader", "fallback_tasks", "load_plan"]
