"""Completion pipeline: apply the side effects of a finished task in a fixed order."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from labelflow.errors import (
    BestEffortFailure,
    InvalidCompletionError,
    PartialFailureError,
    PreconditionError,
)
from labelflow.orchestrator.context import CoordinatorContext
from labelflow.orchestrator.contracts import WorkerCompleteEvent, with_timeout
from labelflow.orchestrator.notify import fire_and_forget
from labelflow.roles import resolve_role
from labelflow.state.store import get_worker
from labelflow.workflow.engine import (
    completion_marker,
    completion_results,
    completion_rule,
    current_state_label,
    next_state_description,
    roles,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CompletionOutput:
    label_transition: str
    announcement: str
    next_state: str
    task_id: str
    artifact_url: str | None = None
    task_url: str | None = None
    task_closed: bool = False
    task_reopened: bool = False
    warnings: list[BestEffortFailure] = field(default_factory=list)


async def execute_completion(  # noqa: PLR0913
    ctx: CoordinatorContext,
    project_id: str,
    role: str,
    result: str,
    *,
    summary: str | None = None,
    artifact_url: str | None = None,
) -> CompletionOutput:
    """Finish the worker's current task with ``result``.

    Nothing is changed until the rule is known, the worker is active and the
    task still carries the rule's source label. Source sync, artifact lookup
    and notification are best effort. Deactivation happens before the label
    moves, so a tracker rejection leaves the slot free and is raised as
    PartialFailureError.
    """

    workflow = ctx.workflow
    role = resolve_role(role, roles(workflow))
    rule = completion_rule(workflow, role, result)
    if rule is None:
        raise InvalidCompletionError(role, result, completion_results(workflow, role))

    project = await ctx.store.get_project(project_id)
    worker = get_worker(project, role)
    task_id = worker.primary_issue_id
    if not worker.active or task_id is None:
        raise PreconditionError(
            f"{role} worker of project {project_id!r} is not active on any task",
        )

    tracker = ctx.tracker_for(project_id, project)
    timeouts = ctx.timeouts
    warnings: list[BestEffortFailure] = []

    if rule.sync_source and ctx.source_sync is not None:
        try:
            await with_timeout(ctx.source_sync.sync(project.repo), timeouts.sync_seconds)
        except Exception as error:  # noqa: BLE001
            warnings.append(BestEffortFailure("source_sync", str(error) or type(error).__name__))
            logger.warning("Source sync for %s failed: %s", project_id, error)

    if rule.detect_artifact and not artifact_url:
        try:
            artifact_url = await with_timeout(
                tracker.find_artifact_url(task_id),
                timeouts.tracker_seconds,
            )
        except Exception as error:  # noqa: BLE001
            warnings.append(
                BestEffortFailure("artifact_detection", str(error) or type(error).__name__),
            )
            logger.warning("Artifact lookup for #%s failed: %s", task_id, error)

    task = await with_timeout(tracker.get(task_id), timeouts.tracker_seconds)
    if not task.has_label(rule.from_label):
        current = current_state_label(workflow, task.labels)
        raise PreconditionError(
            f"Task #{task_id} has label {current or '(none)'!r} but expected {rule.from_label!r}",
        )

    next_state = next_state_description(workflow, role, result)
    fire_and_forget(
        ctx.notifier,
        WorkerCompleteEvent(
            project=project.name,
            project_id=project_id,
            task_id=task_id,
            task_url=task.url,
            role=role,
            result=result,
            next_state=next_state,
            summary=summary,
        ),
        channel=project.channel,
        timeout_seconds=timeouts.notify_seconds,
    )

    await ctx.store.deactivate_worker(project_id, role)
    committed = ["deactivate_worker"]
    label_transition = f"{rule.from_label} → {rule.to_label}"
    audit_data = {
        "project": project.name,
        "projectId": project_id,
        "issueId": task_id,
        "role": role,
        "result": result,
        "summary": summary,
        "labelTransition": label_transition,
        "artifactUrl": artifact_url,
    }
    steps = [
        (
            "transition_label",
            lambda: tracker.transition_label(task_id, rule.from_label, rule.to_label),
        ),
    ]
    if rule.close_task:
        steps.append(("close_task", lambda: tracker.close(task_id)))
    if rule.reopen_task:
        steps.append(("reopen_task", lambda: tracker.reopen(task_id)))

    for step, call in steps:
        try:
            await with_timeout(call(), timeouts.tracker_seconds)
        except Exception as error:
            await ctx.audit_event(
                "work_finish",
                {**audit_data, "partial": True, "failedStep": step, "error": str(error)},
            )
            raise PartialFailureError(
                f"Worker {project_id}/{role} was deactivated but {step} for #{task_id} "
                f"({label_transition}) failed: {error}",
                committed=tuple(committed),
            ) from error
        committed.append(step)

    announcement = build_announcement(
        role=role,
        result=result,
        task_id=task_id,
        summary=summary,
        task_url=task.url,
        artifact_url=artifact_url,
        next_state=next_state,
    )
    await ctx.audit_event("work_finish", audit_data)
    logger.info("Completed #%s as %s:%s (%s)", task_id, role, result, label_transition)

    return CompletionOutput(
        label_transition=label_transition,
        announcement=announcement,
        next_state=next_state,
        task_id=task_id,
        artifact_url=artifact_url,
        task_url=task.url or None,
        task_closed=rule.close_task,
        task_reopened=rule.reopen_task,
        warnings=warnings,
    )


def build_announcement(  # noqa: PLR0913
    *,
    role: str,
    result: str,
    task_id: str,
    summary: str | None,
    task_url: str,
    artifact_url: str | None,
    next_state: str,
) -> str:
    headline = f"{completion_marker(result)} {role.upper()} {result.upper()} #{task_id}"
    if summary:
        headline += f": {summary}"
    lines = [headline]
    if task_url:
        lines.append(f"📋 Issue: {task_url}")
    if artifact_url:
        lines.append(f"🔗 PR: {artifact_url}")
    if next_state:
        lines.append(f"{next_state}.")
    return "\n".join(lines)
