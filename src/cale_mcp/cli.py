"""Cale command line interface."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any

from .approval import ApprovalDenied, ApprovalGate, allow_all, prompt_gate
from .config import CaleSettings, get_settings
from .heartbeat import PlanLoadError
from .jobs import JobNotFoundError
from .process import SpawnError
from .server import configure_logging
from .services import Services, build_services, settings_gate
from .voice import RecorderError, start_voice_recording

HEARTBEAT_OK = "HEARTBEAT_OK"


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2))


def _error(message: str) -> None:
    print(message, file=sys.stderr)


def approval_gate_for(
    args: argparse.Namespace, settings: CaleSettings, *, interactive: bool = True
) -> ApprovalGate:
    if getattr(args, "yes", False):
        return allow_all
    if interactive and sys.stdin.isatty():
        return prompt_gate()
    return settings_gate(settings)


def load_services(args: argparse.Namespace, *, interactive: bool = True) -> Services:
    settings = get_settings()
    configure_logging(settings.log_level)
    return build_services(settings, approval_gate_for(args, settings, interactive=interactive))


def cmd_heartbeat_start(args: argparse.Namespace) -> int:
    services = load_services(args, interactive=False)
    result = services.daemon.start()
    print(result.message)
    if result.pid is not None:
        print(f"pid: {result.pid}")
    print(f"log: {result.log_path}")
    return 0 if result.started or result.already_running else 1


def cmd_heartbeat_stop(args: argparse.Namespace) -> int:
    services = load_services(args, interactive=False)
    result = services.daemon.stop()
    print(result.message)
    return 0 if result.stopped else 1


def cmd_heartbeat_status(args: argparse.Namespace) -> int:
    services = load_services(args, interactive=False)
    status = services.daemon.status()
    print(f"running: {'yes' if status.running else 'no'}")
    if status.runtime is not None:
        print(f"pid: {status.runtime.pid}")
        print(f"startedAt: {status.runtime.started_at}")
        print(f"workspace: {status.runtime.workspace}")
    print(f"state: {status.state_path}")
    print(f"log: {status.log_path}")
    return 0


def cmd_heartbeat_once(args: argparse.Namespace) -> int:
    services = load_services(args, interactive=False)
    try:
        batch = asyncio.run(services.heartbeat_tick())
    except PlanLoadError as exc:
        _error(str(exc))
        return 1

    if batch.due_count == 0:
        print(HEARTBEAT_OK)
        return 0
    for run in batch.runs:
        print(f"[{'OK' if run.ok else 'ERR'}] {run.title}: {run.summary}")
    return 0 if batch.ok else 1


def cmd_heartbeat_run(args: argparse.Namespace) -> int:
    services = load_services(args, interactive=False)
    asyncio.run(services.daemon.run_service(services.heartbeat_tick))
    return 0


def _command_text(args: argparse.Namespace) -> str:
    return " ".join(args.command).strip()


def cmd_exec_run(args: argparse.Namespace) -> int:
    services = load_services(args)
    settings = services.settings
    result = asyncio.run(
        services.runner.run(
            _command_text(args),
            cwd=args.cwd,
            timeout_seconds=args.timeout if args.timeout is not None else settings.exec_timeout_seconds,
            max_output_chars=(
                args.max_output_chars if args.max_output_chars is not None else settings.exec_max_output_chars
            ),
        )
    )
    _print_json(result.to_dict())
    if isinstance(result, ApprovalDenied):
        return 1
    return result.exit_code


def cmd_exec_start_background(args: argparse.Namespace) -> int:
    services = load_services(args)
    try:
        job = asyncio.run(services.launcher.start(_command_text(args), cwd=args.cwd))
    except SpawnError as exc:
        _error(str(exc))
        return 1
    if isinstance(job, ApprovalDenied):
        _print_json(job.to_dict())
        return 1
    _print_json(job.to_payload())
    return 0


def cmd_exec_list_background(args: argparse.Namespace) -> int:
    services = load_services(args)
    _print_json({"jobs": [job.to_payload() for job in services.launcher.list_jobs()]})
    return 0


def cmd_exec_status_background(args: argparse.Namespace) -> int:
    services = load_services(args)
    try:
        job = services.launcher.status(args.job_id)
    except JobNotFoundError as exc:
        _error(str(exc))
        return 1
    _print_json({"job": job.to_payload(), "log_tail": services.launcher.read_log(args.job_id, args.log_chars)})
    return 0


def cmd_exec_stop_background(args: argparse.Namespace) -> int:
    services = load_services(args)
    try:
        outcome = services.launcher.stop(args.job_id)
    except JobNotFoundError as exc:
        _error(str(exc))
        return 1
    _print_json({"stopped": outcome.stopped, "message": outcome.message, "job": outcome.job.to_payload()})
    return 0


async def wait_for_enter() -> None:
    """Resolve once a line (or EOF) arrives on stdin."""

    loop = asyncio.get_running_loop()
    done = loop.create_future()
    fd = sys.stdin.fileno()

    def _on_readable() -> None:
        sys.stdin.readline()
        if not done.done():
            done.set_result(None)

    loop.add_reader(fd, _on_readable)
    try:
        await done
    finally:
        loop.remove_reader(fd)


async def _record(runtime_dir) -> str:
    session = await start_voice_recording(
        runtime_dir,
        on_ready=lambda: _error("Recording... press Enter to stop."),
    )
    try:
        await wait_for_enter()
        await session.stop()
    finally:
        session.cleanup()
    return str(session.file_path)


def cmd_record(args: argparse.Namespace) -> int:
    settings = get_settings()
    configure_logging(settings.log_level)
    try:
        path = asyncio.run(_record(args.runtime_dir or settings.runtime_dir))
    except RecorderError as exc:
        _error(str(exc))
        return 1
    print(path)
    return 0


def _add_yes(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--yes", "-y", action="store_true", help="Approve commands without prompting")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="cale", description="Cale process and job orchestration")
    sub = parser.add_subparsers(dest="cmd")

    p_heartbeat = sub.add_parser("heartbeat", help="Manage the heartbeat daemon")
    heartbeat_sub = p_heartbeat.add_subparsers(dest="heartbeat_cmd")
    for name, func, help_text in (
        ("start", cmd_heartbeat_start, "Start the heartbeat daemon in the background"),
        ("stop", cmd_heartbeat_stop, "Stop the heartbeat daemon"),
        ("status", cmd_heartbeat_status, "Show heartbeat daemon status"),
        ("once", cmd_heartbeat_once, "Run due heartbeat tasks once in the foreground"),
        ("run", cmd_heartbeat_run, "Run the heartbeat poll loop in the foreground"),
    ):
        p_action = heartbeat_sub.add_parser(name, help=help_text)
        _add_yes(p_action)
        p_action.set_defaults(func=func)

    p_exec = sub.add_parser("exec", help="Run commands and manage background jobs")
    exec_sub = p_exec.add_subparsers(dest="exec_cmd")

    p_run = exec_sub.add_parser("run", help="Run a command to completion")
    p_run.add_argument("command", nargs="+")
    p_run.add_argument("--cwd")
    p_run.add_argument("--timeout", type=float, default=None, help="Timeout in seconds")
    p_run.add_argument("--max-output-chars", type=int, default=None)
    _add_yes(p_run)
    p_run.set_defaults(func=cmd_exec_run)

    p_start = exec_sub.add_parser("start_background", help="Start a detached background job")
    p_start.add_argument("command", nargs="+")
    p_start.add_argument("--cwd")
    _add_yes(p_start)
    p_start.set_defaults(func=cmd_exec_start_background)

    p_list = exec_sub.add_parser("list_background", help="List background jobs")
    p_list.set_defaults(func=cmd_exec_list_background)

    p_status = exec_sub.add_parser("status_background", help="Show a background job and its log tail")
    p_status.add_argument("job_id")
    p_status.add_argument("--log-chars", type=int, default=4000)
    p_status.set_defaults(func=cmd_exec_status_background)

    p_stop = exec_sub.add_parser("stop_background", help="Stop a background job")
    p_stop.add_argument("job_id")
    p_stop.set_defaults(func=cmd_exec_stop_background)

    p_record = sub.add_parser("record", help="Record from the microphone until Enter is pressed")
    p_record.add_argument("--runtime-dir", default=None, help="Directory for the recording")
    p_record.set_defaults(func=cmd_record)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return 2
    return args.func(args)


if __name__ == "__main__":
    raise SystemExit(main())
