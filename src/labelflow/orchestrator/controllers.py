"""Controllers for coordinator CLI commands."""

from __future__ import annotations

import asyncio
import json
import logging
import signal
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from labelflow.config import Settings
from labelflow.orchestrator.audit import JsonlAuditLog
from labelflow.orchestrator.context import CoordinatorContext
from labelflow.orchestrator.dispatch import CommandDispatcher
from labelflow.orchestrator.health import run_health_check
from labelflow.orchestrator.heartbeat import HeartbeatDriver
from labelflow.orchestrator.notify import LoggingNotifier, drain_pending
from labelflow.orchestrator.pipeline import CompletionOutput, execute_completion
from labelflow.orchestrator.projects import clear_worker_sessions, register_project
from labelflow.orchestrator.scheduler import project_tick
from labelflow.orchestrator.sync import GitSourceSync
from labelflow.state.backends import JsonFileStateBackend, StateBackend
from labelflow.state.models import Project
from labelflow.state.store import ProjectStateStore
from labelflow.tracker.local import LocalTaskTracker
from labelflow.workflow.engine import ensure_workflow_labels, queue_labels, roles
from labelflow.workflow.loader import load_workflow
from labelflow.workflow.models import StateType, WorkflowConfig

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PickupCommand:
    """CLI input for a single project tick."""

    workspace_dir: Path | None
    project_id: str
    role: str | None
    max_pickups: int | None
    dry_run: bool


@dataclass(slots=True)
class CompleteCommand:
    """CLI input for finishing a worker's current task."""

    workspace_dir: Path | None
    project_id: str
    role: str
    result: str
    summary: str | None
    artifact_url: str | None


@dataclass(slots=True)
class HealthCommand:
    workspace_dir: Path | None
    project_ids: tuple[str, ...]
    live_sessions: tuple[str, ...]
    fix: bool
    output_format: str = "table"


@dataclass(slots=True)
class HeartbeatCommand:
    workspace_dir: Path | None
    loop: bool
    dry_run: bool
    max_pickups: int | None
    live_sessions: tuple[str, ...] = ()


@dataclass(slots=True)
class StatusCommand:
    workspace_dir: Path | None
    project_id: str | None
    output_format: str = "table"


@dataclass(slots=True)
class SessionsClearCommand:
    workspace_dir: Path | None
    project_id: str
    role: str
    level: str | None


@dataclass(slots=True)
class ProjectAddCommand:
    """CLI input for registering a project."""

    workspace_dir: Path | None
    project_id: str
    name: str
    repo: str
    group_name: str
    channel: str
    role_execution: str


@dataclass(slots=True)
class TaskAddCommand:
    """CLI input for adding a task to the local tracker."""

    workspace_dir: Path | None
    title: str
    label: str | None
    description: str


@dataclass(slots=True)
class WorkflowCommand:
    workspace_dir: Path | None
    output_format: str = "table"


class LabelflowCliController:
    """Maps each CLI command onto one coordinator operation."""

    def pickup(self, command: PickupCommand) -> list[str]:
        settings = _settings(command.workspace_dir)
        with _coordinator(settings) as ctx:
            result = asyncio.run(
                project_tick(
                    ctx,
                    command.project_id,
                    target_role=command.role,
                    max_pickups=command.max_pickups,
                    dry_run=command.dry_run,
                ),
            )

        lines = [f"Pickups: {len(result.pickups)} skipped={len(result.skipped)}"]
        for action in result.pickups:
            lines.append(
                f"- #{action.task_id} {action.role}/{action.level} "
                f"{action.session_action.value}: {action.from_label} → {action.to_label}",
            )
            lines.append(f"  {action.announcement}")
        for skip in result.skipped:
            lines.append(f"- skipped {skip.role or '-'}: {skip.reason}")
        return lines

    def complete(self, command: CompleteCommand) -> list[str]:
        settings = _settings(command.workspace_dir)

        async def run(ctx: CoordinatorContext) -> CompletionOutput:
            try:
                return await execute_completion(
                    ctx,
                    command.project_id,
                    command.role,
                    command.result,
                    summary=command.summary,
                    artifact_url=command.artifact_url,
                )
            finally:
                await drain_pending()

        with _coordinator(settings) as ctx:
            output = asyncio.run(run(ctx))

        lines = [f"Transition: {output.label_transition}", output.announcement]
        lines.extend(f"Warning: {warning}" for warning in output.warnings)
        return lines

    def health(self, command: HealthCommand) -> list[str]:
        settings = _settings(command.workspace_dir)
        with _coordinator(settings) as ctx:
            report = asyncio.run(
                run_health_check(
                    ctx,
                    command.project_ids or None,
                    live_sessions=command.live_sessions,
                    auto_fix=command.fix,
                ),
            )

        if command.output_format == "json":
            return [
                json.dumps(
                    {
                        "projectsScanned": report.projects_scanned,
                        "fix": command.fix,
                        "issues": [finding.to_dict() for finding in report.findings],
                    },
                    ensure_ascii=False,
                    indent=2,
                ),
            ]

        lines = [
            f"Health: projects={report.projects_scanned} "
            f"issues={len(report.findings)} fixed={report.fixed_count}",
        ]
        if not command.live_sessions:
            lines.append("No live sessions provided: zombie detection skipped.")
        for finding in report.findings:
            marker = "fixed" if finding.fixed else finding.severity.value
            lines.append(
                f"- [{marker}] {finding.project_id}/{finding.role} "
                f"{finding.type.value}: {finding.message}",
            )
        return lines

    def heartbeat(self, command: HeartbeatCommand) -> list[str]:
        settings = _settings(command.workspace_dir)
        with _coordinator(settings) as ctx:
            driver = HeartbeatDriver(ctx, settings.heartbeat)
            if command.loop:
                sweeps = asyncio.run(_run_until_signalled(driver, command))
                return [f"Heartbeat stopped after {sweeps} sweeps"]
            result = asyncio.run(
                driver.sweep(
                    live_sessions=command.live_sessions,
                    dry_run=command.dry_run,
                    max_pickups=command.max_pickups,
                ),
            )

        lines = [
            "Heartbeat: "
            f"projects={result.projects_scanned} health_fixes={result.health_fixes} "
            f"pickups={len(result.pickups)} skipped={result.skipped} errors={len(result.errors)}",
        ]
        lines.extend(
            f"- #{action.task_id} {action.project_id}/{action.role} ({action.level})"
            for action in result.pickups
        )
        lines.extend(f"! {error}" for error in result.errors)
        return lines

    def status(self, command: StatusCommand) -> list[str]:
        settings = _settings(command.workspace_dir)
        with _coordinator(settings) as ctx:
            data = asyncio.run(ctx.store.read())

        projects = {
            key: project
            for key, project in data.projects.items()
            if command.project_id is None or key == command.project_id
        }
        if command.output_format == "json":
            return [
                json.dumps(
                    {key: project.to_dict() for key, project in projects.items()},
                    ensure_ascii=False,
                    indent=2,
                ),
            ]
        if not projects:
            return ["No projects registered."]

        lines: list[str] = []
        for key, project in projects.items():
            lines.append(
                f"{key}: {project.name} repo={project.repo} "
                f"execution={project.role_execution} channel={project.channel}",
            )
            for role, worker in project.workers.items():
                if worker.active:
                    since = worker.start_time.isoformat() if worker.start_time else "?"
                    lines.append(
                        f"  {role}: active #{worker.issue_id} level={worker.level} since={since}",
                    )
                else:
                    sessions = sum(1 for ref in worker.sessions.values() if ref)
                    lines.append(f"  {role}: idle level={worker.level or '-'} sessions={sessions}")
        return lines

    def sessions_clear(self, command: SessionsClearCommand) -> list[str]:
        settings = _settings(command.workspace_dir)
        with _coordinator(settings) as ctx:
            role = asyncio.run(
                clear_worker_sessions(ctx, command.project_id, command.role, command.level),
            )
        scope = f"level {command.level}" if command.level else "all levels"
        return [f"Cleared {role} sessions ({scope}) for {command.project_id}"]

    def project_add(self, command: ProjectAddCommand) -> list[str]:
        settings = _settings(command.workspace_dir)
        project = Project(
            name=command.name,
            repo=command.repo,
            group_name=command.group_name,
            channel=command.channel,
            role_execution=command.role_execution,
        )
        with _coordinator(settings) as ctx:
            asyncio.run(register_project(ctx, command.project_id, project))
        return [f"Registered {command.project_id}: {command.name} ({command.repo})"]

    def task_add(self, command: TaskAddCommand) -> list[str]:
        settings = _settings(command.workspace_dir)
        workflow = load_workflow(settings.workflow_path)
        label = command.label or _initial_queue_label(workflow)
        tracker = LocalTaskTracker(settings.tasks_path)
        task = asyncio.run(
            tracker.add_task(command.title, label=label, description=command.description),
        )
        return [f"Task #{task.id} added with label {label!r}"]

    def workflow_show(self, command: WorkflowCommand) -> list[str]:
        settings = _settings(command.workspace_dir)
        workflow = load_workflow(settings.workflow_path)
        if command.output_format == "json":
            return [json.dumps({"workflow": workflow.to_dict()}, ensure_ascii=False, indent=2)]

        lines = [f"initial: {workflow.initial}"]
        for key, state in workflow.states.items():
            owner = f" role={state.role}" if state.role else ""
            priority = f" priority={state.priority}" if state.priority is not None else ""
            lines.append(f"{key}: [{state.type.value}] {state.label!r}{owner}{priority}")
            for event, transition in state.on.items():
                suffix = ""
                if transition.actions:
                    suffix = f" ({', '.join(action.value for action in transition.actions)})"
                lines.append(f"  {event} -> {transition.target}{suffix}")
        for role in roles(workflow):
            lines.append(f"{role} queues: {', '.join(queue_labels(workflow, role))}")
        return lines

    def ensure_labels(self, command: WorkflowCommand) -> list[str]:
        settings = _settings(command.workspace_dir)
        workflow = load_workflow(settings.workflow_path)
        tracker = LocalTaskTracker(settings.tasks_path)
        labels = asyncio.run(ensure_workflow_labels(workflow, tracker.ensure_label))
        return [f"Ensured {len(labels)} labels: {', '.join(labels)}"]


def _settings(workspace_dir: Path | None) -> Settings:
    settings = Settings.from_env(workspace_dir=workspace_dir)
    settings.validate()
    return settings


def _initial_queue_label(workflow: WorkflowConfig) -> str:
    """Label new tasks land on: the initial state, or its first queue successor."""

    initial = workflow.states[workflow.initial]
    if initial.type == StateType.QUEUE:
        return initial.label
    for transition in initial.on.values():
        target = workflow.states[transition.target]
        if target.type == StateType.QUEUE:
            return target.label
    return initial.label


def build_state_backend(settings: Settings) -> StateBackend:
    if settings.state.backend == "sqlite":
        from labelflow.state.sqlite_backend import SqliteStateBackend

        return SqliteStateBackend(
            settings.state_sqlite_path,
            busy_timeout_ms=settings.state.sqlite_busy_timeout_ms,
        )
    return JsonFileStateBackend(settings.state_json_path)


@contextmanager
def _coordinator(settings: Settings) -> Iterator[CoordinatorContext]:
    workflow = load_workflow(settings.workflow_path)
    backend = build_state_backend(settings)
    tracker = LocalTaskTracker(settings.tasks_path)
    ctx = CoordinatorContext(
        store=ProjectStateStore(backend),
        workflow=workflow,
        tracker_for=lambda _project_id, _project: tracker,
        dispatcher=CommandDispatcher(
            settings.local.dispatch_command_template,
            timeout_seconds=settings.timeouts.dispatch_seconds,
        ),
        notifier=LoggingNotifier(),
        audit=JsonlAuditLog(settings.audit_log_path),
        source_sync=GitSourceSync(timeout_seconds=settings.timeouts.sync_seconds),
        timeouts=settings.timeouts,
        stale_after_hours=settings.health.stale_after_hours,
    )
    try:
        yield ctx
    finally:
        close = getattr(backend, "close", None)
        if close is not None:
            close()


async def _run_until_signalled(driver: HeartbeatDriver, command: HeartbeatCommand) -> int:
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, stop_event.set)
        except (NotImplementedError, RuntimeError):
            logger.debug("Signal handler for %s not supported on this platform", signum)
    return await driver.run_forever(
        stop_event,
        live_sessions=command.live_sessions,
        dry_run=command.dry_run,
        max_pickups=command.max_pickups,
    )
