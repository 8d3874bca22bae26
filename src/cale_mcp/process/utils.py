"""Utility helpers for process management."""

from __future__ import annotations

import os
from datetime import datetime, timezone
from typing import Mapping

_SANITIZED_VARS = {
    "PYTHONHOME",
    "PYTHONPATH",
    "VIRTUAL_ENV",
    "PIP_RESPECT_VIRTUALENV",
}


def sanitize_environment(additional: Mapping[str, str] | None = None) -> dict[str, str]:
    """Return a sanitized environment suitable for subprocess execution."""

    env = dict(os.environ)
    for key in _SANITIZED_VARS:
        env.pop(key, None)
    if additional:
        env.update(additional)
    return env


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def preview(text: str, limit: int) -> str:
    """Trim ``text`` to ``limit`` characters, marking the cut."""

    text = text.strip()
    if len(text) <= limit:
        return text
    return text[:limit] + "..."
