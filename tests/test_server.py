from __future__ import annotations

import json
from pathlib import Path

from cale_mcp import __version__
from cale_mcp.approval import deny_all
from cale_mcp.config import CaleSettings
from cale_mcp.heartbeat import HeartbeatRuntime
from cale_mcp.jobs import BackgroundJob
from cale_mcp.server import create_server


def test_create_server_wires_services(tmp_path: Path) -> None:
    settings = CaleSettings(config_dir=tmp_path / "cfg", workspace=tmp_path).resolved()

    server = create_server(settings, approval_gate=deny_all)

    assert server.services.settings is settings
    assert server.tool_handles.run_command is not None
    assert server.tool_handles.stop_background is not None


def test_status_payload_summarizes_heartbeat_and_jobs(tmp_path: Path) -> None:
    settings = CaleSettings(config_dir=tmp_path / "cfg", workspace=tmp_path).resolved()
    server = create_server(settings, approval_gate=deny_all)
    services = server.services
    services.daemon.save_runtime(HeartbeatRuntime(pid=999999, started_at="2024-01-01T00:00:00Z", workspace="/w"))
    services.launcher.store.put(
        BackgroundJob(
            id="job-1",
            command="true",
            cwd=str(tmp_path),
            pid=999999,
            started_at="2024-01-01T00:00:00+00:00",
            status="completed",
            exit_code=0,
            log_path=str(tmp_path / "output.log"),
            status_path=str(tmp_path / "status.json"),
        )
    )

    payload = server.status_payload("req-1")

    assert payload["server_version"] == __version__
    assert payload["heartbeat"]["running"] is False
    assert payload["heartbeat"]["state"] == "stopped"
    assert payload["jobs"]["count"] == 1
    assert payload["jobs"]["status_counts"] == {"completed": 1}
    assert payload["request_id"] == "req-1"
    json.dumps(payload)
