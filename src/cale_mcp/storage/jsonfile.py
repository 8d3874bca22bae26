"""JSON documents on disk, replaced whole on every write."""

from __future__ import annotations

import json
import logging
import os
import uuid
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class JsonFileError(RuntimeError):
    """Raised when a JSON document exists but cannot be decoded."""


def read_json(path: Path, *, strict: bool = False) -> Any | None:
    """Return the decoded document at ``path`` or ``None`` when it is missing.

    Undecodable documents are logged and treated as missing unless ``strict``
    is set, in which case :class:`JsonFileError` is raised.
    """

    try:
        text = Path(path).read_text(encoding="utf-8")
        return json.loads(text)
    except FileNotFoundError:
        return None
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        if strict:
            raise JsonFileError(f"Invalid JSON in {path}: {exc}") from exc
        logger.warning("Ignoring unreadable JSON document", extra={"path": str(path), "error": str(exc)})
        return None


def write_json_atomic(path: Path, payload: Any) -> None:
    """Write ``payload`` next to ``path`` and rename it into place."""

    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    tmp = target.with_name(f".{target.name}.{uuid.uuid4().hex[:8]}.tmp")
    try:
        tmp.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")
        os.replace(tmp, target)
    finally:
        if tmp.exists():
            tmp.unlink()


def remove_file(path: Path) -> bool:
    """Delete ``path`` if present. Returns whether a file was removed."""

    try:
        Path(path).unlink()
    except FileNotFoundError:
        return False
    return True
