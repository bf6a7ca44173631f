"""Contracts for the external collaborators the coordinator drives."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol, TypeVar

T = TypeVar("T")


class TaskState(str, Enum):
    """Open/closed state of a tracker task."""

    OPEN = "open"
    CLOSED = "closed"


class SessionAction(str, Enum):
    """Whether a dispatch created a new worker session or reused one."""

    SPAWN = "spawn"
    SEND = "send"


@dataclass(slots=True)
class Task:
    """Tracker-side unit of work. Labels encode its workflow state."""

    id: str
    title: str
    description: str = ""
    labels: list[str] = field(default_factory=list)
    state: TaskState = TaskState.OPEN
    url: str = ""

    def has_label(self, label: str) -> bool:
        return label in self.labels


@dataclass(slots=True)
class TaskComment:
    author: str
    body: str
    created_at: str


class TaskTracker(Protocol):
    """Issue tracker operations. ``transition_label`` must verify ``from_label``."""

    async def list_by_label(self, label: str) -> list[Task]: ...

    async def get(self, task_id: str) -> Task: ...

    async def list_comments(self, task_id: str) -> list[TaskComment]: ...

    async def transition_label(self, task_id: str, from_label: str, to_label: str) -> None: ...

    async def close(self, task_id: str) -> None: ...

    async def reopen(self, task_id: str) -> None: ...

    async def ensure_label(self, name: str, color: str) -> None: ...

    async def find_artifact_url(self, task_id: str) -> str | None: ...


@dataclass(slots=True)
class DispatchRequest:
    """Everything a dispatcher needs to hand one task to a worker session."""

    project_id: str
    project_name: str
    repo: str
    role: str
    level: str
    task: Task
    from_label: str
    to_label: str
    session_action: SessionAction
    session_ref: str | None = None
    comments: list[TaskComment] = field(default_factory=list)


@dataclass(slots=True)
class DispatchResult:
    action: SessionAction
    announcement: str
    session_ref: str | None = None


class Dispatcher(Protocol):
    """Atomic hand-off to a worker session. Raises DispatchError with no partial effect."""

    async def dispatch(self, request: DispatchRequest) -> DispatchResult: ...


class NotificationKind(str, Enum):
    HEARTBEAT_SUMMARY = "heartbeat-summary"
    WORKER_COMPLETE = "worker-complete"
    PICKUP = "pickup"


@dataclass(slots=True)
class PickupEvent:
    project: str
    project_id: str
    task_id: str
    task_title: str
    task_url: str
    role: str
    level: str
    session_action: SessionAction
    kind: NotificationKind = NotificationKind.PICKUP


@dataclass(slots=True)
class WorkerCompleteEvent:
    project: str
    project_id: str
    task_id: str
    task_url: str
    role: str
    result: str
    next_state: str
    summary: str | None = None
    kind: NotificationKind = NotificationKind.WORKER_COMPLETE


@dataclass(slots=True)
class HeartbeatSummaryEvent:
    projects_scanned: int
    health_fixes: int
    pickups: int
    skipped: int
    errors: int = 0
    kind: NotificationKind = NotificationKind.HEARTBEAT_SUMMARY


NotificationEvent = PickupEvent | WorkerCompleteEvent | HeartbeatSummaryEvent


class Notifier(Protocol):
    """Delivers typed events. Callers never let its failures propagate."""

    async def notify(self, event: NotificationEvent, *, channel: str | None = None) -> None: ...


class AuditSink(Protocol):
    """Append-only event log. Implementations must swallow their own failures."""

    async def log(self, event: str, data: dict[str, Any]) -> None: ...


class SourceSync(Protocol):
    """Refreshes a project's working copy."""

    async def sync(self, repo_path: str) -> None: ...


async def with_timeout(awaitable: Awaitable[T], seconds: float | None) -> T:
    """Bound an external call; expiry raises TimeoutError."""

    if seconds is None:
        return await awaitable
    return await asyncio.wait_for(awaitable, timeout=seconds)
