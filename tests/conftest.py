"""Shared test fixtures: in-memory collaborators and a coordinator harness."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime

import pytest

from labelflow.config import TimeoutSettings
from labelflow.errors import DispatchError, NotFoundError, PreconditionError
from labelflow.orchestrator.audit import MemoryAuditLog
from labelflow.orchestrator.context import CoordinatorContext
from labelflow.orchestrator.contracts import (
    DispatchRequest,
    DispatchResult,
    NotificationEvent,
    Task,
    TaskComment,
    TaskState,
)
from labelflow.state.backends import InMemoryStateBackend
from labelflow.state.models import Project, WorkerState
from labelflow.state.store import ProjectStateStore
from labelflow.workflow.defaults import DEFAULT_WORKFLOW

FIXED_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


class FakeTracker:
    """In-memory tracker that records every call."""

    def __init__(self) -> None:
        self.tasks: dict[str, Task] = {}
        self.calls: list[tuple] = []
        self.labels: dict[str, str] = {}
        self.artifact_urls: dict[str, str] = {}
        self.failing_labels: set[str] = set()
        self.fail_transitions = False
        self.fail_close = False
        self.fail_artifact_lookup = False

    def add(self, task_id: str, label: str, *, title: str = "", description: str = "") -> Task:
        task = Task(
            id=task_id,
            title=title or f"Task {task_id}",
            description=description,
            labels=[label],
            url=f"https://tracker.example/issues/{task_id}",
        )
        self.tasks[task_id] = task
        return task

    async def list_by_label(self, label: str) -> list[Task]:
        self.calls.append(("list_by_label", label))
        if label in self.failing_labels:
            raise RuntimeError(f"tracker unavailable for {label}")
        return [
            task
            for task in self.tasks.values()
            if label in task.labels and task.state == TaskState.OPEN
        ]

    async def get(self, task_id: str) -> Task:
        self.calls.append(("get", task_id))
        if task_id not in self.tasks:
            raise NotFoundError(f"Task not found: #{task_id}")
        return self.tasks[task_id]

    async def list_comments(self, task_id: str) -> list[TaskComment]:
        return []

    async def transition_label(self, task_id: str, from_label: str, to_label: str) -> None:
        self.calls.append(("transition_label", task_id, from_label, to_label))
        if self.fail_transitions:
            raise RuntimeError("tracker rejected transition")
        task = self.tasks[task_id]
        if from_label not in task.labels:
            raise PreconditionError(f"Task #{task_id} does not carry {from_label!r}")
        task.labels = [to_label if label == from_label else label for label in task.labels]

    async def close(self, task_id: str) -> None:
        self.calls.append(("close", task_id))
        if self.fail_close:
            raise RuntimeError("tracker refused to close")
        self.tasks[task_id].state = TaskState.CLOSED

    async def reopen(self, task_id: str) -> None:
        self.calls.append(("reopen", task_id))
        self.tasks[task_id].state = TaskState.OPEN

    async def ensure_label(self, name: str, color: str) -> None:
        self.labels.setdefault(name, color)

    async def find_artifact_url(self, task_id: str) -> str | None:
        self.calls.append(("find_artifact_url", task_id))
        if self.fail_artifact_lookup:
            raise RuntimeError("no PR API")
        return self.artifact_urls.get(task_id)

    def transitions(self) -> list[tuple]:
        return [call for call in self.calls if call[0] == "transition_label"]


class FakeDispatcher:
    def __init__(self) -> None:
        self.requests: list[DispatchRequest] = []
        self.error: Exception | None = None

    async def dispatch(self, request: DispatchRequest) -> DispatchResult:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return DispatchResult(
            action=request.session_action,
            announcement=f"dispatched #{request.task.id}",
            session_ref=request.session_ref or f"session-{request.role}-{request.level}",
        )


class RecordingNotifier:
    def __init__(self, *, fail: bool = False) -> None:
        self.events: list[NotificationEvent] = []
        self.fail = fail

    async def notify(self, event: NotificationEvent, *, channel: str | None = None) -> None:
        if self.fail:
            raise RuntimeError("chat down")
        self.events.append(event)


class RecordingSourceSync:
    def __init__(self, *, fail: bool = False) -> None:
        self.synced: list[str] = []
        self.fail = fail

    async def sync(self, repo_path: str) -> None:
        self.synced.append(repo_path)
        if self.fail:
            raise RuntimeError("git pull failed")


@dataclass
class Harness:
    """Coordinator context wired to in-memory collaborators."""

    backend: InMemoryStateBackend = field(default_factory=InMemoryStateBackend)
    tracker: FakeTracker = field(default_factory=FakeTracker)
    dispatcher: FakeDispatcher = field(default_factory=FakeDispatcher)
    notifier: RecordingNotifier = field(default_factory=RecordingNotifier)
    audit: MemoryAuditLog = field(default_factory=MemoryAuditLog)
    source_sync: RecordingSourceSync = field(default_factory=RecordingSourceSync)
    now: datetime = FIXED_NOW

    @property
    def ctx(self) -> CoordinatorContext:
        return CoordinatorContext(
            store=ProjectStateStore(self.backend),
            workflow=DEFAULT_WORKFLOW,
            tracker_for=lambda _project_id, _project: self.tracker,
            dispatcher=self.dispatcher,
            notifier=self.notifier,
            audit=self.audit,
            source_sync=self.source_sync,
            timeouts=TimeoutSettings(
                dispatch_seconds=5,
                tracker_seconds=5,
                sync_seconds=5,
                notify_seconds=5,
            ),
            clock=lambda: self.now,
        )

    def add_project(
        self,
        project_id: str = "g1",
        *,
        role_execution: str = "parallel",
        workers: dict[str, WorkerState] | None = None,
    ) -> Project:
        project = Project(
            name=f"project-{project_id}",
            repo=f"/tmp/{project_id}",
            role_execution=role_execution,
            workers=workers or {},
        )
        self.backend.data.projects[project_id] = project
        return project

    def worker(self, project_id: str, role: str) -> WorkerState:
        project = self.backend.data.projects[project_id]
        return project.workers.get(role) or WorkerState()


def active_worker(
    issue_id: str,
    *,
    level: str = "medior",
    session: str | None = "session-1",
    start_time: datetime | None = FIXED_NOW,
) -> WorkerState:
    return WorkerState(
        active=True,
        issue_id=issue_id,
        start_time=start_time,
        level=level,
        sessions={level: session},
    )


@pytest.fixture()
def harness() -> Harness:
    return Harness()


@pytest.fixture()
def make_active_worker():
    return active_worker


@pytest.fixture()
def dispatch_error() -> DispatchError:
    return DispatchError("worker gateway unreachable")
