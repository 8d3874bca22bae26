"""Tool registration for Cale MCP."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from fastmcp import Context, FastMCP

from ..approval import ApprovalDenied
from ..config import CaleSettings
from ..jobs import BackgroundJobLauncher, JobNotFoundError
from ..process import CommandRunner

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ToolHandles:
    run_command: Any
    start_background: Any
    list_background: Any
    status_background: Any
    stop_background: Any


def register_tools(
    server: FastMCP,
    *,
    settings: CaleSettings,
    runner: CommandRunner,
    launcher: BackgroundJobLauncher,
) -> ToolHandles:
    """Register Cale's MCP tools on the server."""

    async def _run_command(
        command: str,
        cwd: str | None = None,
        timeout_seconds: float | None = None,
        max_output_chars: int | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Run a shell command to completion and return its output."""

        if not command.strip():
            raise ValueError("command must not be empty")

        result = await runner.run(
            command,
            cwd=cwd,
            timeout_seconds=timeout_seconds if timeout_seconds is not None else settings.exec_timeout_seconds,
            max_output_chars=max_output_chars if max_output_chars is not None else settings.exec_max_output_chars,
        )
        if isinstance(result, ApprovalDenied):
            _emit_log(context, "info", "Command denied", extra={"command": command})
            return result.to_dict()

        _emit_log(
            context,
            "info" if result.ok else "warning",
            "Ran command",
            extra={
                "command": command,
                "exit_code": result.exit_code,
                "timed_out": result.timed_out,
                "duration_ms": result.duration_ms,
            },
        )
        return {"command": command, **result.to_dict()}

    async def _start_background(
        command: str,
        cwd: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Start a detached background command and return its job record."""

        if not command.strip():
            raise ValueError("command must not be empty")

        job = await launcher.start(command, cwd=cwd)
        if isinstance(job, ApprovalDenied):
            _emit_log(context, "info", "Background command denied", extra={"command": command})
            return job.to_dict()

        _emit_log(context, "info", "Started background job", extra={"job_id": job.id, "pid": job.pid})
        return job.to_payload()

    def _list_background(context: Context | None = None) -> dict[str, Any]:
        """List background jobs, newest first."""

        jobs = launcher.list_jobs()
        _emit_log(context, "debug", "Listing background jobs", extra={"count": len(jobs)})
        return {"jobs": [job.to_payload() for job in jobs]}

    def _status_background(
        job_id: str,
        log_chars: int = 4000,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Fetch a job's reconciled status and the tail of its log."""

        try:
            job = launcher.status(job_id)
        except JobNotFoundError as exc:
            raise ValueError(str(exc)) from exc

        _emit_log(context, "debug", "Background job status", extra={"job_id": job_id, "status": job.status})
        return {"job": job.to_payload(), "log_tail": launcher.read_log(job_id, max(0, log_chars))}

    def _stop_background(job_id: str, context: Context | None = None) -> dict[str, Any]:
        """Send a termination signal to a running background job."""

        try:
            outcome = launcher.stop(job_id)
        except JobNotFoundError as exc:
            raise ValueError(str(exc)) from exc

        _emit_log(
            context,
            "warning" if outcome.stopped else "info",
            "Stop requested for background job",
            extra={"job_id": job_id, "stopped": outcome.stopped},
        )
        return {"stopped": outcome.stopped, "message": outcome.message, "job": outcome.job.to_payload()}

    tool_run = server.tool(
        name="run_command",
        description=(
            "Run a shell command in the workspace and wait for it to finish. Output is "
            "truncated to max_output_chars; a command that exceeds timeout_seconds is "
            "killed and reported with exit code 124."
        ),
        annotations={
            "safety": {
                "level": "caution",
                "notes": "Commands pass through the approval gate before they are spawned",
            }
        },
    )(_run_command)

    tool_start = server.tool(
        name="start_background",
        description=(
            "Start a long-running shell command detached from the server. Returns a job id "
            "immediately; the job keeps running across server restarts."
        ),
    )(_start_background)

    tool_list = server.tool(
        name="list_background",
        description="List background jobs with their reconciled status, newest first.",
    )(_list_background)

    tool_status = server.tool(
        name="status_background",
        description="Fetch the status of a background job along with the tail of its log.",
    )(_status_background)

    tool_stop = server.tool(
        name="stop_background",
        description="Send a termination signal to a running background job and mark it stopped.",
    )(_stop_background)

    return ToolHandles(
        run_command=tool_run,
        start_background=tool_start,
        list_background=tool_list,
        status_background=tool_status,
        stop_background=tool_stop,
    )


def _emit_log(
    context: Context | None,
    level: str,
    message: str,
    *,
    extra: dict[str, Any] | None = None,
) -> None:
    """Best-effort logging that prefers the MCP context logger when available."""

    payload = extra or {}

    if context is not None:
        ctx_logger = getattr(context, "logger", None)
        if ctx_logger is not None:
            log_method = getattr(ctx_logger, level, None)
            if callable(log_method):
                log_method(message, extra=payload)
                return

    fallback = getattr(logger, level, logger.info)
    fallback(message, extra=payload)


__all__ = ["register_tools", "ToolHandles"]
