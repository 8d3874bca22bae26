from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from cale_mcp.approval import allow_all, deny_all
from cale_mcp.config import CaleSettings
from cale_mcp.jobs import BackgroundJobLauncher, JobStore
from cale_mcp.process import CommandRunner
from cale_mcp.tools import register_tools


class StubTool:
    def __init__(self, fn, name):
        self.fn = fn
        self.name = name


class StubServer:
    def __init__(self) -> None:
        self._tools: dict[str, StubTool] = {}

    def tool(self, *args, **kwargs):
        provided_name = None
        if args and isinstance(args[0], str):
            provided_name = args[0]
        provided_name = kwargs.get("name", provided_name)

        def decorator(fn):
            tool_name = provided_name or fn.__name__
            tool = StubTool(fn, tool_name)
            self._tools[tool_name] = tool
            return tool

        return decorator


class StubContext:
    def __init__(self) -> None:
        self.messages: list[tuple[str, str, dict]] = []
        self.logger = self

    def info(self, message, extra=None):
        self.messages.append(("info", message, extra or {}))

    def debug(self, message, extra=None):
        self.messages.append(("debug", message, extra or {}))

    def warning(self, message, extra=None):
        self.messages.append(("warning", message, extra or {}))


class Signals:
    def __init__(self) -> None:
        self.sent: list[tuple[int, int]] = []

    def __call__(self, pid: int, sig: int) -> bool:
        self.sent.append((pid, sig))
        return True


def build(tmp_path: Path, gate=allow_all):
    settings = CaleSettings(config_dir=tmp_path / "cfg", workspace=tmp_path)
    signals = Signals()
    launcher = BackgroundJobLauncher(
        JobStore(settings.jobs_store_path),
        settings.jobs_dir,
        gate,
        default_cwd=tmp_path,
        spawner=lambda argv, **kwargs: 4242,
        is_alive=lambda pid: True,
        signaller=signals,
    )
    server = StubServer()
    handles = register_tools(
        server,
        settings=settings,
        runner=CommandRunner(gate, default_cwd=tmp_path),
        launcher=launcher,
    )
    return server, handles, signals


def test_register_tools_names(tmp_path: Path) -> None:
    server, handles, _ = build(tmp_path)

    assert set(server._tools) == {
        "run_command",
        "start_background",
        "list_background",
        "status_background",
        "stop_background",
    }
    assert handles.run_command.name == "run_command"


def test_run_command_tool_returns_result(tmp_path: Path) -> None:
    _, handles, _ = build(tmp_path)
    context = StubContext()

    payload = asyncio.run(handles.run_command.fn("echo hi; exit 4", context=context))

    assert payload["command"] == "echo hi; exit 4"
    assert payload["stdout"] == "hi\n"
    assert payload["exit_code"] == 4
    assert payload["timed_out"] is False
    assert context.messages[-1][0] == "warning"


def test_run_command_tool_reports_denial(tmp_path: Path) -> None:
    _, handles, _ = build(tmp_path, gate=deny_all)

    payload = asyncio.run(handles.run_command.fn("echo hi"))

    assert payload["status"] == "denied"
    assert payload["tool"] == "run_command"


def test_run_command_rejects_blank(tmp_path: Path) -> None:
    _, handles, _ = build(tmp_path)

    with pytest.raises(ValueError):
        asyncio.run(handles.run_command.fn("   "))


def test_background_tools_lifecycle(tmp_path: Path) -> None:
    _, handles, signals = build(tmp_path)

    started = asyncio.run(handles.start_background.fn("sleep 100"))
    job_id = started["id"]
    assert started["status"] == "running"
    assert started["pid"] == 4242

    listed = handles.list_background.fn()
    assert [job["id"] for job in listed["jobs"]] == [job_id]

    status = handles.status_background.fn(job_id)
    assert status["job"]["status"] == "running"
    assert status["log_tail"] == ""

    stopped = handles.stop_background.fn(job_id)
    assert stopped["stopped"] is True
    assert stopped["job"]["status"] == "stopped"
    assert signals.sent == [(4242, 15)]


def test_background_tools_reject_unknown_ids(tmp_path: Path) -> None:
    _, handles, _ = build(tmp_path)

    with pytest.raises(ValueError, match="job-nope"):
        handles.status_background.fn("job-nope")
    with pytest.raises(ValueError, match="job-nope"):
        handles.stop_background.fn("job-nope")


def test_start_background_denied(tmp_path: Path) -> None:
    _, handles, _ = build(tmp_path, gate=deny_all)

    payload = asyncio.run(handles.start_background.fn("make deploy"))

    assert payload["status"] == "denied"
    assert handles.list_background.fn() == {"jobs": []}
