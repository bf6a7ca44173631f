"""Heartbeat: periodic health pass followed by a tick pass over all projects."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Collection
from dataclasses import dataclass, field

from labelflow.config import HeartbeatSettings
from labelflow.orchestrator.context import CoordinatorContext
from labelflow.orchestrator.contracts import HeartbeatSummaryEvent
from labelflow.orchestrator.health import run_health_check
from labelflow.orchestrator.notify import notify_best_effort
from labelflow.orchestrator.scheduler import TickAction, project_tick
from labelflow.state.models import ProjectsData

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class GlobalState:
    """Active counters taken after the health pass, before any pickup."""

    active_projects: int = 0
    active_by_role: dict[str, int] = field(default_factory=dict)

    @classmethod
    def snapshot(cls, data: ProjectsData, project_ids: Collection[str]) -> GlobalState:
        state = cls()
        for project_id in project_ids:
            project = data.projects.get(project_id)
            if project is None:
                continue
            active_roles = [role for role, worker in project.workers.items() if worker.active]
            if active_roles:
                state.active_projects += 1
            for role in active_roles:
                state.active_by_role[role] = state.active_by_role.get(role, 0) + 1
        return state


@dataclass(slots=True)
class SweepResult:
    projects_scanned: int = 0
    health_fixes: int = 0
    pickups: list[TickAction] = field(default_factory=list)
    skipped: int = 0
    errors: list[str] = field(default_factory=list)
    global_state: GlobalState = field(default_factory=GlobalState)


class HeartbeatDriver:
    """Runs sweeps once or on an interval."""

    def __init__(self, ctx: CoordinatorContext, settings: HeartbeatSettings) -> None:
        self.ctx = ctx
        self.settings = settings

    async def sweep(  # noqa: C901
        self,
        project_ids: Collection[str] | None = None,
        *,
        live_sessions: Collection[str] = (),
        dry_run: bool = False,
        max_pickups: int | None = None,
    ) -> SweepResult:
        """One reconcile-then-schedule pass.

        A failure in one project's health or tick pass is logged and the sweep
        moves on. With ``sequential`` project execution an idle project is
        skipped once any project is active.
        """

        ctx = self.ctx
        data = await ctx.store.read()
        selected = list(project_ids) if project_ids is not None else list(data.projects)
        budget = self.settings.max_pickups_per_tick if max_pickups is None else max_pickups
        result = SweepResult(projects_scanned=len(selected))

        for project_id in selected:
            try:
                report = await run_health_check(
                    ctx,
                    [project_id],
                    live_sessions=live_sessions,
                    auto_fix=not dry_run,
                )
            except Exception as error:
                logger.exception("Health pass failed for project %s", project_id)
                result.errors.append(f"{project_id}: health: {error}")
                continue
            result.health_fixes += report.fixed_count

        data = await ctx.store.read()
        result.global_state = GlobalState.snapshot(data, selected)
        active_projects = result.global_state.active_projects

        for project_id in selected:
            remaining = budget - len(result.pickups)
            if remaining <= 0:
                break
            try:
                project = await ctx.store.get_project(project_id)
                project_active = any(worker.active for worker in project.workers.values())
                if (
                    self.settings.project_execution == "sequential"
                    and not project_active
                    and active_projects >= 1
                ):
                    result.skipped += 1
                    continue
                tick = await project_tick(
                    ctx,
                    project_id,
                    max_pickups=remaining,
                    dry_run=dry_run,
                )
            except Exception as error:
                logger.exception("Tick pass failed for project %s", project_id)
                result.errors.append(f"{project_id}: tick: {error}")
                continue
            result.pickups.extend(tick.pickups)
            result.skipped += len(tick.skipped)
            if not project_active and tick.pickups:
                active_projects += 1

        if result.pickups or result.health_fixes:
            logger.info(
                "heartbeat tick: %d pickups, %d health fixes, %d skipped",
                len(result.pickups),
                result.health_fixes,
                result.skipped,
            )

        await ctx.audit_event(
            "heartbeat_tick",
            {
                "projectsScanned": result.projects_scanned,
                "healthFixes": result.health_fixes,
                "pickups": len(result.pickups),
                "skipped": result.skipped,
                "errors": len(result.errors),
                "dryRun": dry_run,
            },
        )
        await notify_best_effort(
            ctx.notifier,
            HeartbeatSummaryEvent(
                projects_scanned=result.projects_scanned,
                health_fixes=result.health_fixes,
                pickups=len(result.pickups),
                skipped=result.skipped,
                errors=len(result.errors),
            ),
            timeout_seconds=ctx.timeouts.notify_seconds,
        )
        return result

    async def run_forever(
        self,
        stop_event: asyncio.Event,
        *,
        live_sessions: Collection[str] = (),
        dry_run: bool = False,
        max_pickups: int | None = None,
    ) -> int:
        """Sweep every ``interval_seconds`` until ``stop_event`` is set. Returns sweep count.

        Every sweep gets the same ``live_sessions``, ``dry_run`` and ``max_pickups``.
        """

        if not self.settings.enabled:
            logger.info("Heartbeat disabled")
            return 0
        logger.info(
            "Heartbeat started: every %ss, max %s pickups/tick",
            self.settings.interval_seconds,
            self.settings.max_pickups_per_tick if max_pickups is None else max_pickups,
        )
        sweeps = 0
        while not stop_event.is_set():
            try:
                await self.sweep(
                    live_sessions=live_sessions,
                    dry_run=dry_run,
                    max_pickups=max_pickups,
                )
            except Exception:
                logger.exception("Heartbeat sweep failed")
            sweeps += 1
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.settings.interval_seconds)
            except TimeoutError:
                continue
        logger.info("Heartbeat stopped after %d sweeps", sweeps)
        return sweeps
