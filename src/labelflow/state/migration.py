"""Normalise legacy projects documents into the current layout.

Older documents stored one flat field per hard-coded role (``dev``, ``qa``,
``architect``), used ``tier`` instead of ``level``, kept a single ``sessionId``
per worker, and named levels after model families. All of that is rewritten
here, once per read, so nothing downstream ever sees a legacy shape.
"""

from __future__ import annotations

import copy
from collections.abc import Mapping
from typing import Any

from labelflow.roles import RoleConfig, canonical_role, role_config
from labelflow.state.models import DEFAULT_CHANNEL

LEGACY_ROLE_FIELDS = ("dev", "qa", "architect")


def migrate_document(
    raw: Mapping[str, Any],
    roles: Mapping[str, RoleConfig] | None = None,
) -> dict[str, Any]:
    """Return a migrated deep copy of ``raw``. Idempotent."""

    document = copy.deepcopy(dict(raw))
    projects = document.get("projects")
    if not isinstance(projects, dict):
        document["projects"] = {}
        return document

    for project in projects.values():
        if isinstance(project, dict):
            _migrate_project(project, roles)
    return document


def _migrate_project(project: dict[str, Any], roles: Mapping[str, RoleConfig] | None) -> None:
    workers = project.get("workers")
    if not isinstance(workers, dict) and any(project.get(name) for name in LEGACY_ROLE_FIELDS):
        workers = {}
        for name in LEGACY_ROLE_FIELDS:
            legacy = project.get(name)
            workers[name] = legacy if isinstance(legacy, dict) else {}
    for name in LEGACY_ROLE_FIELDS:
        project.pop(name, None)

    migrated: dict[str, Any] = {}
    for role, worker in (workers or {}).items():
        canonical = canonical_role(str(role))
        config = role_config(canonical, roles)
        migrated[canonical] = _migrate_worker(worker if isinstance(worker, dict) else {}, config)
    project["workers"] = migrated

    if not project.get("channel"):
        project["channel"] = DEFAULT_CHANNEL


def _migrate_worker(worker: dict[str, Any], config: RoleConfig) -> dict[str, Any]:
    level = worker.get("level") or worker.get("tier")
    if level:
        level = config.canonical_level(str(level))

    sessions: dict[str, Any] = {}
    for key, value in (worker.get("sessions") or {}).items():
        sessions[config.canonical_level(str(key))] = value
    legacy_session = worker.get("sessionId")
    if legacy_session and level and not sessions.get(level):
        sessions[level] = legacy_session

    issue_id = worker.get("issueId")
    return {
        "active": bool(worker.get("active", False)),
        "issueId": str(issue_id) if issue_id is not None else None,
        "startTime": worker.get("startTime"),
        "level": level or None,
        "sessions": sessions,
    }
