"""Detect and optionally repair worker state that drifted from reality."""

from __future__ import annotations

import logging
from collections.abc import Collection
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Any

from labelflow.orchestrator.context import CoordinatorContext
from labelflow.orchestrator.contracts import with_timeout
from labelflow.state.store import get_worker
from labelflow.workflow.engine import active_label, revert_label, roles

logger = logging.getLogger(__name__)


class FindingType(str, Enum):
    ACTIVE_NO_SESSION = "active_no_session"
    ZOMBIE_SESSION = "zombie_session"
    STALE_WORKER = "stale_worker"
    INACTIVE_WITH_ISSUE = "inactive_with_issue"


class Severity(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"


@dataclass(slots=True)
class HealthFinding:
    type: FindingType
    severity: Severity
    message: str
    project_id: str
    role: str
    fixed: bool = False
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "severity": self.severity.value,
            "message": self.message,
            "projectId": self.project_id,
            "role": self.role,
            "fixed": self.fixed,
            **self.details,
        }


@dataclass(slots=True)
class HealthReport:
    projects_scanned: int = 0
    findings: list[HealthFinding] = field(default_factory=list)

    @property
    def fixed_count(self) -> int:
        return sum(1 for finding in self.findings if finding.fixed)


async def check_worker_health(  # noqa: C901, PLR0913
    ctx: CoordinatorContext,
    project_id: str,
    role: str,
    *,
    live_sessions: Collection[str] = (),
    auto_fix: bool = False,
) -> list[HealthFinding]:
    """Inspect one worker slot.

    An empty ``live_sessions`` means liveness is unknown, so zombie detection
    is skipped rather than treating every session as dead.
    """

    project = await ctx.store.get_project(project_id)
    worker = get_worker(project, role)
    findings: list[HealthFinding] = []

    if worker.active:
        session_ref = worker.session_for(worker.level) if worker.level else None
        if not session_ref:
            finding = HealthFinding(
                type=FindingType.ACTIVE_NO_SESSION,
                severity=Severity.CRITICAL,
                message=(
                    f"{role} marked active on #{worker.issue_id} "
                    f"but has no session for level {worker.level!r}"
                ),
                project_id=project_id,
                role=role,
                details={"issueId": worker.issue_id, "level": worker.level},
            )
            if auto_fix:
                await ctx.store.deactivate_worker(project_id, role)
                finding.fixed = True
            findings.append(finding)
            return findings

        if live_sessions and session_ref not in live_sessions:
            finding = HealthFinding(
                type=FindingType.ZOMBIE_SESSION,
                severity=Severity.CRITICAL,
                message=f"{role} session {session_ref} is not alive but worker is active",
                project_id=project_id,
                role=role,
                details={"issueId": worker.issue_id, "sessionRef": session_ref},
            )
            if auto_fix:
                await _revert_task_label(ctx, project_id, role, worker.primary_issue_id, finding)
                await ctx.store.deactivate_worker(project_id, role)
                finding.fixed = True
            findings.append(finding)
            return findings

        if worker.start_time is not None:
            age = ctx.clock() - worker.start_time
            if age > timedelta(hours=ctx.stale_after_hours):
                findings.append(
                    HealthFinding(
                        type=FindingType.STALE_WORKER,
                        severity=Severity.WARNING,
                        message=(
                            f"{role} active on #{worker.issue_id} for "
                            f"{age.total_seconds() / 3600:.1f}h"
                        ),
                        project_id=project_id,
                        role=role,
                        details={
                            "issueId": worker.issue_id,
                            "hoursActive": round(age.total_seconds() / 3600, 2),
                        },
                    ),
                )
        return findings

    if worker.issue_id:
        finding = HealthFinding(
            type=FindingType.INACTIVE_WITH_ISSUE,
            severity=Severity.WARNING,
            message=f"{role} inactive but still references #{worker.issue_id}",
            project_id=project_id,
            role=role,
            details={"issueId": worker.issue_id},
        )
        if auto_fix:
            await ctx.store.update_worker(project_id, role, issue_id=None)
            finding.fixed = True
        findings.append(finding)
    return findings


async def run_health_check(
    ctx: CoordinatorContext,
    project_ids: Collection[str] | None = None,
    *,
    live_sessions: Collection[str] = (),
    auto_fix: bool = False,
) -> HealthReport:
    """Check every role of every selected project and audit the totals."""

    data = await ctx.store.read()
    selected = list(project_ids) if project_ids is not None else list(data.projects)
    report = HealthReport()

    for project_id in selected:
        project = data.projects.get(project_id)
        if project is None:
            logger.warning("Health check skipped unknown project %s", project_id)
            continue
        report.projects_scanned += 1
        for role in _roles_to_check(ctx, list(project.workers)):
            report.findings.extend(
                await check_worker_health(
                    ctx,
                    project_id,
                    role,
                    live_sessions=live_sessions,
                    auto_fix=auto_fix,
                ),
            )

    await ctx.audit_event(
        "health",
        {
            "projectCount": report.projects_scanned,
            "fix": auto_fix,
            "issuesFound": len(report.findings),
            "issuesFixed": report.fixed_count,
        },
    )
    return report


def _roles_to_check(ctx: CoordinatorContext, stored_roles: list[str]) -> list[str]:
    ordered = list(roles(ctx.workflow))
    ordered.extend(role for role in stored_roles if role not in ordered)
    return ordered


async def _revert_task_label(
    ctx: CoordinatorContext,
    project_id: str,
    role: str,
    task_id: str | None,
    finding: HealthFinding,
) -> None:
    if task_id is None:
        return
    try:
        from_label = active_label(ctx.workflow, role)
        to_label = revert_label(ctx.workflow, role)
        project = await ctx.store.get_project(project_id)
        tracker = ctx.tracker_for(project_id, project)
        await with_timeout(
            tracker.transition_label(task_id, from_label, to_label),
            ctx.timeouts.tracker_seconds,
        )
    except Exception as error:  # noqa: BLE001
        finding.details["label_revert_failed"] = True
        finding.details["labelRevertError"] = str(error)
        logger.warning(
            "Reverting label of #%s for %s/%s failed: %s",
            task_id,
            project_id,
            role,
            error,
        )
        return
    finding.details["label_reverted"] = f"{from_label} → {to_label}"
