"""Storage backends for the projects document."""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import os
from collections.abc import Callable
from pathlib import Path
from typing import Protocol

from labelflow.errors import NotFoundError
from labelflow.state.migration import migrate_document
from labelflow.state.models import Project, ProjectsData, WorkerState, empty_worker_state

logger = logging.getLogger(__name__)

WorkerMutator = Callable[[WorkerState], WorkerState]


class StateBackend(Protocol):
    """Persistence contract the state store relies on.

    ``mutate_worker`` must apply the mutator to the freshest stored worker and
    persist the result atomically with respect to other mutations in the
    same process.
    """

    async def load(self) -> ProjectsData: ...

    async def mutate_worker(
        self,
        project_id: str,
        role: str,
        mutator: WorkerMutator,
    ) -> Project: ...

    async def put_project(self, project_id: str, project: Project) -> None: ...


class JsonFileStateBackend:
    """Whole-document JSON file written via ``<file>.tmp`` plus atomic rename.

    Mutations are serialised by an in-process lock only. Two processes writing
    the same file can still lose updates.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = asyncio.Lock()

    async def load(self) -> ProjectsData:
        return await asyncio.to_thread(self._read)

    async def mutate_worker(
        self,
        project_id: str,
        role: str,
        mutator: WorkerMutator,
    ) -> Project:
        async with self._lock:
            data = await asyncio.to_thread(self._read)
            project = data.projects.get(project_id)
            if project is None:
                raise NotFoundError(f"Project not found: {project_id}")
            current = project.workers.get(role) or empty_worker_state()
            project.workers[role] = mutator(copy.deepcopy(current))
            await asyncio.to_thread(self._write, data)
            return project

    async def put_project(self, project_id: str, project: Project) -> None:
        async with self._lock:
            data = await asyncio.to_thread(self._read)
            data.projects[project_id] = project
            await asyncio.to_thread(self._write, data)

    def _read(self) -> ProjectsData:
        try:
            raw = json.loads(self.path.read_text("utf-8"))
        except FileNotFoundError:
            return ProjectsData()
        return ProjectsData.from_dict(migrate_document(raw))

    def _write(self, data: ProjectsData) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        tmp_path.write_text(json.dumps(data.to_dict(), indent=2) + "\n", "utf-8")
        os.replace(tmp_path, self.path)
        logger.debug("Wrote projects document: %s", self.path)


class InMemoryStateBackend:
    """Backend holding the document in memory, for tests and dry runs."""

    def __init__(self, data: ProjectsData | None = None) -> None:
        self.data = data or ProjectsData()
        self._lock = asyncio.Lock()
        self.writes = 0

    @classmethod
    def from_document(cls, raw: dict) -> InMemoryStateBackend:
        return cls(ProjectsData.from_dict(migrate_document(raw)))

    async def load(self) -> ProjectsData:
        return copy.deepcopy(self.data)

    async def mutate_worker(
        self,
        project_id: str,
        role: str,
        mutator: WorkerMutator,
    ) -> Project:
        async with self._lock:
            project = self.data.projects.get(project_id)
            if project is None:
                raise NotFoundError(f"Project not found: {project_id}")
            current = project.workers.get(role) or empty_worker_state()
            project.workers[role] = mutator(copy.deepcopy(current))
            self.writes += 1
            return copy.deepcopy(project)

    async def put_project(self, project_id: str, project: Project) -> None:
        async with self._lock:
            self.data.projects[project_id] = copy.deepcopy(project)
            self.writes += 1
