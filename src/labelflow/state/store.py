"""Project state store: every worker mutation goes through here."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime
from typing import Any

from labelflow.errors import NotFoundError
from labelflow.roles import RoleConfig, role_config
from labelflow.state.backends import StateBackend
from labelflow.state.models import Project, ProjectsData, WorkerState, empty_worker_state, utc_now

logger = logging.getLogger(__name__)

_UNSET: Any = object()


class ProjectStateStore:
    """Read-modify-write operations over the persisted projects document."""

    def __init__(
        self,
        backend: StateBackend,
        *,
        roles: Mapping[str, RoleConfig] | None = None,
    ) -> None:
        self.backend = backend
        self.roles = roles

    async def read(self) -> ProjectsData:
        return await self.backend.load()

    async def get_project(self, project_id: str) -> Project:
        data = await self.backend.load()
        project = data.projects.get(project_id)
        if project is None:
            raise NotFoundError(f"Project not found: {project_id}")
        return project

    async def get_worker(self, project_id: str, role: str) -> WorkerState:
        project = await self.get_project(project_id)
        return get_worker(project, role)

    async def update_worker(  # noqa: PLR0913
        self,
        project_id: str,
        role: str,
        *,
        active: bool = _UNSET,
        issue_id: str | None = _UNSET,
        start_time: datetime | None = _UNSET,
        level: str | None = _UNSET,
        sessions: Mapping[str, str | None] | None = _UNSET,
    ) -> Project:
        """Replace the provided fields; ``sessions`` is merged key-wise, new values win."""

        def apply(worker: WorkerState) -> WorkerState:
            if active is not _UNSET:
                worker.active = active
            if issue_id is not _UNSET:
                worker.issue_id = issue_id
            if start_time is not _UNSET:
                worker.start_time = start_time
            if level is not _UNSET:
                worker.level = level
            if sessions is not _UNSET and sessions is not None:
                worker.sessions = {**worker.sessions, **sessions}
            return worker

        return await self.backend.mutate_worker(project_id, role, apply)

    async def activate_worker(  # noqa: PLR0913
        self,
        project_id: str,
        role: str,
        *,
        issue_id: str,
        level: str,
        session_ref: str | None = None,
        start_time: datetime | None = None,
    ) -> Project:
        """Mark a worker busy; a new session ref is remembered under its level."""

        logger.debug("Activating %s/%s on #%s at level %s", project_id, role, issue_id, level)
        return await self.update_worker(
            project_id,
            role,
            active=True,
            issue_id=issue_id,
            level=level,
            start_time=start_time or utc_now(),
            sessions={level: session_ref} if session_ref is not None else _UNSET,
        )

    async def deactivate_worker(self, project_id: str, role: str) -> Project:
        """Free the slot. Sessions and level stay for reuse by the next pickup."""

        logger.debug("Deactivating %s/%s", project_id, role)
        return await self.update_worker(
            project_id,
            role,
            active=False,
            issue_id=None,
            start_time=None,
        )

    async def clear_sessions(
        self,
        project_id: str,
        role: str,
        level: str | None = None,
    ) -> Project:
        """Forget one level's session, or every session of the role when ``level`` is None."""

        def apply(worker: WorkerState) -> WorkerState:
            if level is None:
                worker.sessions = dict.fromkeys(worker.sessions)
            else:
                worker.sessions = {**worker.sessions, level: None}
            return worker

        return await self.backend.mutate_worker(project_id, role, apply)

    async def register_project(
        self,
        project_id: str,
        project: Project,
        *,
        roles: tuple[str, ...] = (),
    ) -> Project:
        """Insert or replace a project, giving each listed role a zero-valued worker."""

        for role in roles:
            if role not in project.workers:
                config = role_config(role, self.roles)
                project.workers[role] = empty_worker_state(config.levels)
        await self.backend.put_project(project_id, project)
        logger.info("Registered project %s (%s)", project_id, project.name)
        return project


def get_worker(project: Project, role: str) -> WorkerState:
    """Worker for a role, or a zero-valued one when the project has none."""

    return project.workers.get(role) or empty_worker_state()
