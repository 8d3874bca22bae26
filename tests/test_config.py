from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from cale_mcp.approval import ApprovalRequest, policy_gate
from cale_mcp.config import CaleSettings, get_settings


def test_settings_read_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("CALE_CONFIG_DIR", str(tmp_path / "cfg"))
    monkeypatch.setenv("CALE_WORKSPACE", str(tmp_path / "ws"))
    monkeypatch.setenv("CALE_LOG_LEVEL", "debug")
    monkeypatch.setenv("CALE_HEARTBEAT_POLL_SECONDS", "5")
    monkeypatch.setenv("CALE_HEALTH_COMMANDS", '["df -h", "uptime"]')
    monkeypatch.setenv("CALE_APPROVED_COMMANDS", "git status\nls")

    settings = CaleSettings()

    assert settings.log_level == "DEBUG"
    assert settings.heartbeat_poll_seconds == 60
    assert settings.health_commands == ("df -h", "uptime")
    assert settings.approved_command_prefixes == ("git status", "ls")
    assert settings.jobs_store_path == tmp_path / "cfg" / "jobs" / "jobs.json"
    assert settings.heartbeat_dir == tmp_path / "cfg" / "heartbeat"
    assert settings.heartbeat_state_path == tmp_path / "ws" / "memory" / "heartbeat-state.json"
    assert settings.resolved_plan_path == tmp_path / "ws" / "HEARTBEAT.yaml"


def test_invalid_log_level_rejected() -> None:
    with pytest.raises(ValidationError):
        CaleSettings(log_level="chatty")


def test_non_positive_timeout_rejected() -> None:
    with pytest.raises(ValidationError):
        CaleSettings(exec_timeout_seconds=0)


def test_resolved_expands_paths(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.chdir(tmp_path)

    settings = CaleSettings(config_dir=Path("~/.cale"), workspace=Path("."), heartbeat_plan_path=Path("/etc/plan.yaml"))
    resolved = settings.resolved()

    assert resolved.config_dir == (tmp_path / ".cale").resolve()
    assert resolved.workspace == tmp_path.resolve()
    assert resolved.resolved_plan_path == Path("/etc/plan.yaml")


def test_get_settings_is_cached(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("CALE_CONFIG_DIR", str(tmp_path))
    get_settings.cache_clear()
    try:
        assert get_settings() is get_settings()
        assert get_settings().config_dir == tmp_path.resolve()
    finally:
        get_settings.cache_clear()


def test_policy_gate_matches_prefixes() -> None:
    gate = policy_gate(auto_approve=False, prefixes=["git status", "ls"])

    def ask(command: str) -> bool:
        return gate(ApprovalRequest(tool="run_command", summary=command, command=command))

    assert ask("git status")
    assert ask("ls -la")
    assert not ask("lsof")
    assert not ask("git push")
    assert policy_gate(auto_approve=True)(ApprovalRequest(tool="x", summary="y", command="rm -rf /tmp/x"))


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("15", 15), ("90", 90), ("14", 60), ("0", 60), ("soon", 60)],
)
def test_poll_interval_falls_back_to_default(monkeypatch: pytest.MonkeyPatch, raw: str, expected: int) -> None:
    monkeypatch.setenv("CALE_HEARTBEAT_POLL_SECONDS", raw)

    assert CaleSettings().heartbeat_poll_seconds == expected
