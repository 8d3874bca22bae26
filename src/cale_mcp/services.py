"""Wiring of runners, job launcher and heartbeat from settings."""

from __future__ import annotations

from dataclasses import dataclass

from .approval import ApprovalGate, policy_gate
from .config import CaleSettings
from .heartbeat import (
    HeartbeatBatchResult,
    HeartbeatDaemon,
    HeartbeatScheduler,
    HeartbeatStateStore,
    PlanLoader,
    builtin_executors,
)
from .jobs import BackgroundJobLauncher, JobStore
from .process import CommandRunner


@dataclass(slots=True)
class Services:
    settings: CaleSettings
    runner: CommandRunner
    launcher: BackgroundJobLauncher
    plan_loader: PlanLoader
    scheduler: HeartbeatScheduler
    daemon: HeartbeatDaemon

    async def heartbeat_tick(self) -> HeartbeatBatchResult:
        """Load the plan fresh and run whatever is due."""

        return await self.scheduler.run_once(self.plan_loader.load())


def settings_gate(settings: CaleSettings) -> ApprovalGate:
    return policy_gate(
        auto_approve=settings.auto_approve,
        prefixes=settings.approved_command_prefixes,
    )


def build_services(settings: CaleSettings, approval_gate: ApprovalGate | None = None) -> Services:
    gate = approval_gate or settings_gate(settings)
    runner = CommandRunner(gate, shell=settings.shell, default_cwd=settings.workspace)
    launcher = BackgroundJobLauncher(
        JobStore(settings.jobs_store_path),
        settings.jobs_dir,
        gate,
        shell=settings.shell,
        default_cwd=settings.workspace,
    )
    scheduler = HeartbeatScheduler(
        HeartbeatStateStore(settings.heartbeat_state_path),
        builtin_executors(
            runner=runner,
            launcher=launcher,
            health_commands=settings.health_commands,
        ),
    )
    return Services(
        settings=settings,
        runner=runner,
        launcher=launcher,
        plan_loader=PlanLoader(settings.resolved_plan_path),
        scheduler=scheduler,
        daemon=HeartbeatDaemon(settings),
    )


__all__ = ["Services", "build_services", "settings_gate"]
