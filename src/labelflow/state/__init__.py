"""Persisted per-project, per-role worker state."""

from labelflow.state.backends import InMemoryStateBackend, JsonFileStateBackend, StateBackend
from labelflow.state.migration import migrate_document
from labelflow.state.models import (
    Project,
    ProjectsData,
    WorkerState,
    empty_worker_state,
    resolve_repo_path,
)
from labelflow.state.store import ProjectStateStore, get_worker

__all__ = [
    "InMemoryStateBackend",
    "JsonFileStateBackend",
    "Project",
    "ProjectStateStore",
    "ProjectsData",
    "StateBackend",
    "WorkerState",
    "empty_worker_state",
    "get_worker",
    "migrate_document",
    "resolve_repo_path",
]
