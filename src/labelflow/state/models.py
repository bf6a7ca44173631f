"""Persisted project and worker records. On-disk keys keep the camelCase layout."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

DEFAULT_CHANNEL = "telegram"
DEFAULT_PROVIDER = "github"
ROLE_EXECUTION_MODES = ("parallel", "sequential")


def utc_now() -> datetime:
    """Current UTC timestamp."""

    return datetime.now(tz=UTC)


def from_iso(value: str) -> datetime:
    """Parse ISO datetime and ensure timezone-aware UTC fallback."""

    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed


def to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.astimezone(UTC).isoformat().replace("+00:00", "Z")


@dataclass(slots=True)
class WorkerState:
    """One role's slot inside a project."""

    active: bool = False
    issue_id: str | None = None
    start_time: datetime | None = None
    level: str | None = None
    sessions: dict[str, str | None] = field(default_factory=dict)

    @property
    def primary_issue_id(self) -> str | None:
        """First id of a possibly comma-joined issue reference."""

        if not self.issue_id:
            return None
        return self.issue_id.split(",")[0].strip() or None

    def session_for(self, level: str) -> str | None:
        return self.sessions.get(level)

    def to_dict(self) -> dict[str, Any]:
        return {
            "active": self.active,
            "issueId": self.issue_id,
            "startTime": to_iso(self.start_time),
            "level": self.level,
            "sessions": dict(self.sessions),
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> WorkerState:
        start_time = raw.get("startTime")
        issue_id = raw.get("issueId")
        return cls(
            active=bool(raw.get("active", False)),
            issue_id=str(issue_id) if issue_id is not None else None,
            start_time=from_iso(start_time) if start_time else None,
            level=raw.get("level"),
            sessions=dict(raw.get("sessions") or {}),
        )


def empty_worker_state(levels: tuple[str, ...] = ()) -> WorkerState:
    """Zero-valued worker with an empty session slot per level."""

    return WorkerState(sessions=dict.fromkeys(levels))


@dataclass(slots=True)
class Project:
    """Registered project plus its per-role worker map."""

    name: str
    repo: str
    group_name: str = ""
    channel: str = DEFAULT_CHANNEL
    provider: str = DEFAULT_PROVIDER
    base_branch: str = "main"
    role_execution: str = "parallel"
    workers: dict[str, WorkerState] = field(default_factory=dict)

    @property
    def repo_path(self) -> Path:
        return resolve_repo_path(self.repo)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "repo": self.repo,
            "groupName": self.group_name,
            "channel": self.channel,
            "provider": self.provider,
            "baseBranch": self.base_branch,
            "roleExecution": self.role_execution,
            "workers": {role: worker.to_dict() for role, worker in self.workers.items()},
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Project:
        return cls(
            name=str(raw.get("name", "")),
            repo=str(raw.get("repo", "")),
            group_name=str(raw.get("groupName", "")),
            channel=str(raw.get("channel") or DEFAULT_CHANNEL),
            provider=str(raw.get("provider") or DEFAULT_PROVIDER),
            base_branch=str(raw.get("baseBranch") or "main"),
            role_execution=str(raw.get("roleExecution") or "parallel"),
            workers={
                str(role): WorkerState.from_dict(worker)
                for role, worker in (raw.get("workers") or {}).items()
                if isinstance(worker, dict)
            },
        )


@dataclass(slots=True)
class ProjectsData:
    """The whole persisted document."""

    projects: dict[str, Project] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"projects": {key: project.to_dict() for key, project in self.projects.items()}}

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> ProjectsData:
        return cls(
            projects={
                str(key): Project.from_dict(project)
                for key, project in (raw.get("projects") or {}).items()
                if isinstance(project, dict)
            },
        )


def resolve_repo_path(repo: str) -> Path:
    """Expand ``~`` in a project's repo field."""

    return Path(repo).expanduser()
