"""Wiring shared by the scheduler, completion pipeline, health and heartbeat services."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from labelflow.config import TimeoutSettings
from labelflow.orchestrator.contracts import (
    AuditSink,
    Dispatcher,
    Notifier,
    SourceSync,
    TaskTracker,
)
from labelflow.roles import RoleConfig
from labelflow.state.models import Project, utc_now
from labelflow.state.store import ProjectStateStore
from labelflow.workflow.models import WorkflowConfig

logger = logging.getLogger(__name__)

TrackerFactory = Callable[[str, Project], TaskTracker]


@dataclass(slots=True)
class CoordinatorContext:
    """Collaborators and policy for one coordinator process."""

    store: ProjectStateStore
    workflow: WorkflowConfig
    tracker_for: TrackerFactory
    dispatcher: Dispatcher
    notifier: Notifier | None = None
    audit: AuditSink | None = None
    source_sync: SourceSync | None = None
    roles: Mapping[str, RoleConfig] | None = None
    timeouts: TimeoutSettings = field(default_factory=TimeoutSettings)
    stale_after_hours: float = 2.0
    clock: Callable[[], datetime] = utc_now

    async def audit_event(self, event: str, data: dict[str, Any]) -> None:
        if self.audit is None:
            return
        try:
            await self.audit.log(event, data)
        except Exception as error:  # noqa: BLE001
            logger.warning("Audit sink rejected %s: %s", event, error)
