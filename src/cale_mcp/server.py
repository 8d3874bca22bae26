"""FastMCP server bootstrap for Cale."""

import json
import logging
from datetime import datetime, timezone
from typing import Optional

from fastmcp import Context, FastMCP

from . import __version__
from .approval import ApprovalGate
from .config import CaleSettings, get_settings
from .services import build_services
from .tools import register_tools


def configure_logging(level: str) -> None:
    """Configure root logging for the Cale server."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def create_server(
    settings: Optional[CaleSettings] = None,
    approval_gate: ApprovalGate | None = None,
) -> FastMCP:
    """Instantiate the FastMCP server with the command and job tools."""

    settings = settings or get_settings()
    services = build_services(settings, approval_gate)

    server = FastMCP(
        name="Cale MCP",
        instructions=(
            "Cale runs shell commands on the user's machine. Use run_command for short "
            "commands and start_background for long-running ones, then poll them with "
            "status_background. Every command passes through an approval gate."
        ),
    )

    handles = register_tools(
        server,
        settings=settings,
        runner=services.runner,
        launcher=services.launcher,
    )

    def status_payload(request_id: str | None = None) -> dict:
        heartbeat = services.daemon.status()
        jobs = services.launcher.list_jobs()
        status_counts: dict[str, int] = {}
        for job in jobs:
            status_counts[job.status] = status_counts.get(job.status, 0) + 1

        return {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "server_version": __version__,
            "log_level": settings.log_level,
            "workspace": str(settings.workspace),
            "heartbeat": {
                "running": heartbeat.running,
                "state": heartbeat.state.value,
                "pid": heartbeat.runtime.pid if heartbeat.runtime else None,
                "started_at": heartbeat.runtime.started_at if heartbeat.runtime else None,
                "log_path": str(heartbeat.log_path),
                "state_path": str(heartbeat.state_path),
            },
            "jobs": {
                "count": len(jobs),
                "status_counts": status_counts,
                "recent": [job.to_payload() for job in jobs[:5]],
            },
            "request_id": request_id,
        }

    @server.resource(
        "resource://cale/status",
        name="cale_status",
        description="Provides heartbeat daemon and background job status for the Cale MCP server.",
        mime_type="application/json",
    )
    def status_resource(context: Context) -> str:
        """Return a JSON string summarizing runtime state."""

        return json.dumps(status_payload(getattr(context, "request_id", None)))

    setattr(server, "services", services)
    setattr(server, "tool_handles", handles)
    setattr(server, "status_payload", status_payload)
    return server


def main() -> None:
    """Entry point for running the Cale MCP server via CLI."""

    settings = get_settings()
    configure_logging(settings.log_level)

    server = create_server(settings)
    logging.getLogger(__name__).info(
        "Launching Cale MCP server",
        extra={
            "version": __version__,
            "log_level": settings.log_level,
            "workspace": str(settings.workspace),
        },
    )
    server.run()


if __name__ == "__main__":
    main()
