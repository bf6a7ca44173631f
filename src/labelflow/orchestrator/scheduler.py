"""Project tick: fill idle role slots from the highest-priority queues."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from labelflow.errors import DispatchError
from labelflow.orchestrator.context import CoordinatorContext
from labelflow.orchestrator.contracts import (
    DispatchRequest,
    PickupEvent,
    SessionAction,
    Task,
    TaskComment,
    TaskTracker,
    with_timeout,
)
from labelflow.orchestrator.levels import resolve_level_for_task
from labelflow.orchestrator.notify import notify_best_effort
from labelflow.roles import resolve_role
from labelflow.state.store import get_worker
from labelflow.workflow.engine import active_label, queue_labels, roles
from labelflow.workflow.models import WorkflowConfig

logger = logging.getLogger(__name__)

SKIP_MAX_PICKUPS = "max pickups reached"
SKIP_SEQUENTIAL = "sequential: other role active"


@dataclass(slots=True)
class TickAction:
    """One pickup made (or, in a dry run, one that would be made)."""

    project: str
    project_id: str
    task_id: str
    task_title: str
    task_url: str
    role: str
    level: str
    session_action: SessionAction
    announcement: str
    from_label: str
    to_label: str


@dataclass(slots=True)
class TickSkip:
    role: str | None
    reason: str


@dataclass(slots=True)
class TickResult:
    pickups: list[TickAction] = field(default_factory=list)
    skipped: list[TickSkip] = field(default_factory=list)


async def find_next_task(
    tracker: TaskTracker,
    workflow: WorkflowConfig,
    role: str,
    *,
    timeout_seconds: float | None = None,
) -> tuple[Task, str] | None:
    """Newest-listed task on the role's first non-empty queue label.

    A tracker error on one label is logged and the next label is tried.
    """

    for label in queue_labels(workflow, role):
        try:
            tasks = await with_timeout(tracker.list_by_label(label), timeout_seconds)
        except Exception as error:  # noqa: BLE001
            logger.warning("Listing tasks for label %r failed: %s", label, error)
            continue
        if tasks:
            return tasks[-1], label
    return None


async def project_tick(  # noqa: C901, PLR0913
    ctx: CoordinatorContext,
    project_id: str,
    *,
    target_role: str | None = None,
    max_pickups: int | None = None,
    dry_run: bool = False,
) -> TickResult:
    """Scan one project's queues and dispatch into free worker slots.

    Roles are attempted one after another, never concurrently. Dispatch must
    succeed before the label moves or the worker is activated; a failed
    dispatch leaves tracker and state untouched.
    """

    project = await ctx.store.get_project(project_id)
    tracker = ctx.tracker_for(project_id, project)
    workflow = ctx.workflow
    workflow_roles = roles(workflow)
    role_order = (resolve_role(target_role, workflow_roles),) if target_role else workflow_roles
    timeouts = ctx.timeouts

    result = TickResult()
    for role in role_order:
        if max_pickups is not None and len(result.pickups) >= max_pickups:
            result.skipped.append(TickSkip(role, SKIP_MAX_PICKUPS))
            continue

        fresh = await ctx.store.get_project(project_id)
        worker = get_worker(fresh, role)
        if worker.active:
            result.skipped.append(TickSkip(role, f"already active (#{worker.issue_id})"))
            continue
        if fresh.role_execution == "sequential" and any(
            other.active for other_role, other in fresh.workers.items() if other_role != role
        ):
            result.skipped.append(TickSkip(role, SKIP_SEQUENTIAL))
            continue

        found = await find_next_task(
            tracker,
            workflow,
            role,
            timeout_seconds=timeouts.tracker_seconds,
        )
        if found is None:
            continue
        task, from_label = found
        to_label = active_label(workflow, role)
        level = resolve_level_for_task(task, role, ctx.roles)
        session_ref = worker.session_for(level)
        action = SessionAction.SEND if session_ref else SessionAction.SPAWN

        if dry_run:
            result.pickups.append(
                TickAction(
                    project=fresh.name,
                    project_id=project_id,
                    task_id=task.id,
                    task_title=task.title,
                    task_url=task.url,
                    role=role,
                    level=level,
                    session_action=action,
                    announcement=f"[DRY RUN] Would pick up #{task.id}",
                    from_label=from_label,
                    to_label=to_label,
                ),
            )
            continue

        request = DispatchRequest(
            project_id=project_id,
            project_name=fresh.name,
            repo=fresh.repo,
            role=role,
            level=level,
            task=task,
            from_label=from_label,
            to_label=to_label,
            session_action=action,
            session_ref=session_ref,
            comments=await _comments_best_effort(tracker, task.id, timeouts.tracker_seconds),
        )
        try:
            dispatched = await with_timeout(
                ctx.dispatcher.dispatch(request),
                timeouts.dispatch_seconds,
            )
        except TimeoutError:
            reason = f"dispatch failed: timed out after {timeouts.dispatch_seconds:g}s"
            logger.warning("%s/%s %s", project_id, role, reason)
            result.skipped.append(TickSkip(role, reason))
            continue
        except DispatchError as error:
            logger.warning("%s/%s dispatch failed: %s", project_id, role, error)
            result.skipped.append(TickSkip(role, f"dispatch failed: {error}"))
            continue
        except Exception as error:  # noqa: BLE001
            logger.warning("%s/%s dispatch raised: %s", project_id, role, error)
            result.skipped.append(TickSkip(role, f"dispatch failed: {error}"))
            continue

        await with_timeout(
            tracker.transition_label(task.id, from_label, to_label),
            timeouts.tracker_seconds,
        )
        await ctx.store.activate_worker(
            project_id,
            role,
            issue_id=task.id,
            level=level,
            session_ref=dispatched.session_ref,
            start_time=ctx.clock(),
        )
        await ctx.audit_event(
            "pickup",
            {
                "project": fresh.name,
                "projectId": project_id,
                "issueId": task.id,
                "role": role,
                "level": level,
                "sessionAction": dispatched.action.value,
                "from": from_label,
                "to": to_label,
            },
        )
        result.pickups.append(
            TickAction(
                project=fresh.name,
                project_id=project_id,
                task_id=task.id,
                task_title=task.title,
                task_url=task.url,
                role=role,
                level=level,
                session_action=dispatched.action,
                announcement=dispatched.announcement,
                from_label=from_label,
                to_label=to_label,
            ),
        )
        await notify_best_effort(
            ctx.notifier,
            PickupEvent(
                project=fresh.name,
                project_id=project_id,
                task_id=task.id,
                task_title=task.title,
                task_url=task.url,
                role=role,
                level=level,
                session_action=dispatched.action,
            ),
            channel=fresh.channel,
            timeout_seconds=timeouts.notify_seconds,
        )
        logger.info("Picked up #%s for %s/%s at level %s", task.id, project_id, role, level)

    return result


async def _comments_best_effort(
    tracker: TaskTracker,
    task_id: str,
    timeout_seconds: float,
) -> list[TaskComment]:
    try:
        return await with_timeout(tracker.list_comments(task_id), timeout_seconds)
    except Exception as error:  # noqa: BLE001
        logger.warning("Fetching comments for #%s failed: %s", task_id, error)
        return []
