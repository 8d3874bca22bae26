"""Configuration management for Cale."""

from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

MIN_POLL_SECONDS = 15
DEFAULT_POLL_SECONDS = 60


class CaleSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    config_dir: Path = Field(default=Path("~/.cale"), validation_alias="CALE_CONFIG_DIR")
    workspace: Path = Field(default=Path("."), validation_alias="CALE_WORKSPACE")
    shell: str = Field(default="/bin/sh", validation_alias="CALE_SHELL")
    log_level: str = Field(default="INFO", validation_alias="CALE_LOG_LEVEL")
    heartbeat_poll_seconds: int = Field(
        default=DEFAULT_POLL_SECONDS, validation_alias="CALE_HEARTBEAT_POLL_SECONDS"
    )
    heartbeat_plan_path: Path = Field(
        default=Path("HEARTBEAT.yaml"), validation_alias="CALE_HEARTBEAT_PLAN"
    )
    health_commands: Annotated[tuple[str, ...], NoDecode] = Field(
        default=(), validation_alias="CALE_HEALTH_COMMANDS"
    )
    auto_approve: bool = Field(default=False, validation_alias="CALE_AUTO_APPROVE")
    approved_command_prefixes: Annotated[tuple[str, ...], NoDecode] = Field(
        default=(), validation_alias="CALE_APPROVED_COMMANDS"
    )
    exec_timeout_seconds: float = Field(default=120.0, validation_alias="CALE_EXEC_TIMEOUT_SECONDS")
    exec_max_output_chars: int = Field(
        default=200_000, validation_alias="CALE_EXEC_MAX_OUTPUT_CHARS"
    )

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "CALE_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("heartbeat_poll_seconds", mode="before")
    @classmethod
    def _fallback_poll_seconds(cls, value) -> int:
        try:
            seconds = int(value)
        except (TypeError, ValueError):
            return DEFAULT_POLL_SECONDS
        return seconds if seconds >= MIN_POLL_SECONDS else DEFAULT_POLL_SECONDS

    @field_validator("health_commands", "approved_command_prefixes", mode="before")
    @classmethod
    def _parse_command_list(cls, value):
        if value is None or value == "":
            return ()
        if isinstance(value, (list, tuple)):
            return tuple(str(item) for item in value if str(item).strip())
        if isinstance(value, str):
            stripped = value.strip()
            if stripped.startswith("["):
                parsed = json.loads(stripped)
                if not isinstance(parsed, list):
                    raise TypeError("Command lists must be JSON arrays of strings")
                return tuple(str(item) for item in parsed if str(item).strip())
            return tuple(line.strip() for line in stripped.splitlines() if line.strip())
        raise TypeError("Command lists must be a JSON array or newline-separated string")

    @field_validator("exec_timeout_seconds")
    @classmethod
    def _validate_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("CALE_EXEC_TIMEOUT_SECONDS must be > 0")
        return value

    @property
    def jobs_dir(self) -> Path:
        return self.config_dir / "jobs"

    @property
    def jobs_store_path(self) -> Path:
        return self.jobs_dir / "jobs.json"

    @property
    def heartbeat_dir(self) -> Path:
        return self.config_dir / "heartbeat"

    @property
    def runtime_dir(self) -> Path:
        return self.config_dir / "runtime"

    @property
    def heartbeat_state_path(self) -> Path:
        return self.workspace / "memory" / "heartbeat-state.json"

    @property
    def resolved_plan_path(self) -> Path:
        if self.heartbeat_plan_path.is_absolute():
            return self.heartbeat_plan_path
        return self.workspace / self.heartbeat_plan_path

    def resolved(self) -> "CaleSettings":
        """Return a copy with user and relative paths made absolute."""

        return self.model_copy(
            update={
                "config_dir": self.config_dir.expanduser().resolve(),
                "workspace": self.workspace.expanduser().resolve(),
                "heartbeat_plan_path": self.heartbeat_plan_path.expanduser(),
            }
        )


@lru_cache(maxsize=1)
def get_settings() -> CaleSettings:
    """Return cached settings instance."""

    return CaleSettings().resolved()


__all__ = ["CaleSettings", "DEFAULT_POLL_SECONDS", "MIN_POLL_SECONDS", "get_settings"]
