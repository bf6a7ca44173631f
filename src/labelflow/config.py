"""Runtime configuration for the coordinator, heartbeat, and local collaborators."""

from __future__ import annotations

import os
import string
from dataclasses import dataclass, field
from pathlib import Path

SUPPORTED_STATE_BACKENDS = ("json", "sqlite")
SUPPORTED_EXECUTION_MODES = ("parallel", "sequential")
DISPATCH_TEMPLATE_PLACEHOLDERS = (
    "project",
    "role",
    "level",
    "task_id",
    "session",
    "action",
    "repo",
    "message",
)


@dataclass(slots=True)
class StateSettings:
    """Where and how project worker state is persisted."""

    backend: str = "json"
    json_path: Path | None = None
    sqlite_path: Path | None = None
    sqlite_busy_timeout_ms: int = 5_000


@dataclass(slots=True)
class HeartbeatSettings:
    """Periodic sweep settings."""

    enabled: bool = True
    interval_seconds: int = 60
    max_pickups_per_tick: int = 4
    project_execution: str = "parallel"


@dataclass(slots=True)
class HealthSettings:
    """Worker health thresholds."""

    stale_after_hours: float = 2.0


@dataclass(slots=True)
class TimeoutSettings:
    """Upper bounds for every external call. Expiry counts as failure."""

    dispatch_seconds: float = 120.0
    tracker_seconds: float = 30.0
    sync_seconds: float = 30.0
    notify_seconds: float = 10.0


@dataclass(slots=True)
class LocalCollaboratorSettings:
    """Settings for the bundled file tracker and command dispatcher."""

    tasks_path: Path | None = None
    dispatch_command_template: str = ""


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    workspace_dir: Path = Path(".labelflow")
    workflow_path: Path | None = None
    state: StateSettings = field(default_factory=StateSettings)
    heartbeat: HeartbeatSettings = field(default_factory=HeartbeatSettings)
    health: HealthSettings = field(default_factory=HealthSettings)
    timeouts: TimeoutSettings = field(default_factory=TimeoutSettings)
    local: LocalCollaboratorSettings = field(default_factory=LocalCollaboratorSettings)

    @classmethod
    def from_env(cls, workspace_dir: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        workspace = workspace_dir or Path(os.getenv("LABELFLOW_WORKSPACE_DIR", ".labelflow"))
        return cls(
            workspace_dir=workspace,
            workflow_path=_env_path("LABELFLOW_WORKFLOW_PATH"),
            state=StateSettings(
                backend=os.getenv("LABELFLOW_STATE_BACKEND", "json").strip().lower(),
                json_path=_env_path("LABELFLOW_STATE_JSON_PATH"),
                sqlite_path=_env_path("LABELFLOW_STATE_SQLITE_PATH"),
                sqlite_busy_timeout_ms=int(
                    os.getenv("LABELFLOW_SQLITE_BUSY_TIMEOUT_MS", "5000"),
                ),
            ),
            heartbeat=HeartbeatSettings(
                enabled=_env_bool("LABELFLOW_HEARTBEAT_ENABLED", default=True),
                interval_seconds=int(os.getenv("LABELFLOW_HEARTBEAT_INTERVAL_SECONDS", "60")),
                max_pickups_per_tick=int(
                    os.getenv("LABELFLOW_HEARTBEAT_MAX_PICKUPS_PER_TICK", "4"),
                ),
                project_execution=os.getenv("LABELFLOW_PROJECT_EXECUTION", "parallel")
                .strip()
                .lower(),
            ),
            health=HealthSettings(
                stale_after_hours=float(os.getenv("LABELFLOW_HEALTH_STALE_AFTER_HOURS", "2")),
            ),
            timeouts=TimeoutSettings(
                dispatch_seconds=float(os.getenv("LABELFLOW_DISPATCH_TIMEOUT_SECONDS", "120")),
                tracker_seconds=float(os.getenv("LABELFLOW_TRACKER_TIMEOUT_SECONDS", "30")),
                sync_seconds=float(os.getenv("LABELFLOW_SYNC_TIMEOUT_SECONDS", "30")),
                notify_seconds=float(os.getenv("LABELFLOW_NOTIFY_TIMEOUT_SECONDS", "10")),
            ),
            local=LocalCollaboratorSettings(
                tasks_path=_env_path("LABELFLOW_TASKS_PATH"),
                dispatch_command_template=os.getenv("LABELFLOW_DISPATCH_COMMAND", ""),
            ),
        )

    @property
    def state_json_path(self) -> Path:
        return self.state.json_path or self.workspace_dir / "projects" / "projects.json"

    @property
    def state_sqlite_path(self) -> Path:
        return self.state.sqlite_path or self.workspace_dir / "projects" / "projects.db"

    @property
    def tasks_path(self) -> Path:
        return self.local.tasks_path or self.workspace_dir / "tasks.json"

    @property
    def audit_log_path(self) -> Path:
        return self.workspace_dir / "log" / "audit.log"

    def validate(self) -> None:
        """Raise configuration error for values the coordinator cannot run with."""

        if self.state.backend not in SUPPORTED_STATE_BACKENDS:
            raise ValueError(
                f"Unsupported LABELFLOW_STATE_BACKEND: {self.state.backend!r}. "
                f"Expected one of: {', '.join(SUPPORTED_STATE_BACKENDS)}.",
            )
        if self.heartbeat.interval_seconds <= 0:
            raise ValueError("LABELFLOW_HEARTBEAT_INTERVAL_SECONDS must be > 0.")
        if self.heartbeat.max_pickups_per_tick < 0:
            raise ValueError("LABELFLOW_HEARTBEAT_MAX_PICKUPS_PER_TICK must be >= 0.")
        if self.heartbeat.project_execution not in SUPPORTED_EXECUTION_MODES:
            raise ValueError(
                "Invalid LABELFLOW_PROJECT_EXECUTION: "
                f"{self.heartbeat.project_execution!r}. "
                f"Expected one of: {', '.join(SUPPORTED_EXECUTION_MODES)}.",
            )
        if self.health.stale_after_hours <= 0:
            raise ValueError("LABELFLOW_HEALTH_STALE_AFTER_HOURS must be > 0.")
        for name, value in (
            ("LABELFLOW_DISPATCH_TIMEOUT_SECONDS", self.timeouts.dispatch_seconds),
            ("LABELFLOW_TRACKER_TIMEOUT_SECONDS", self.timeouts.tracker_seconds),
            ("LABELFLOW_SYNC_TIMEOUT_SECONDS", self.timeouts.sync_seconds),
            ("LABELFLOW_NOTIFY_TIMEOUT_SECONDS", self.timeouts.notify_seconds),
        ):
            if value <= 0:
                raise ValueError(f"{name} must be > 0.")
        if self.local.dispatch_command_template.strip():
            _validate_command_template(self.local.dispatch_command_template)


def _validate_command_template(template: str) -> None:
    try:
        fields = {
            field_name
            for _, field_name, _, _ in string.Formatter().parse(template)
            if field_name is not None
        }
    except ValueError as error:
        raise ValueError(f"Invalid LABELFLOW_DISPATCH_COMMAND: {error}") from error
    unsupported = sorted(fields - set(DISPATCH_TEMPLATE_PLACEHOLDERS))
    if unsupported:
        raise ValueError(
            "LABELFLOW_DISPATCH_COMMAND has unsupported placeholder(s): "
            f"{', '.join('{' + name + '}' for name in unsupported)}. "
            f"Supported: {', '.join(DISPATCH_TEMPLATE_PLACEHOLDERS)}.",
        )


def _env_path(name: str) -> Path | None:
    value = os.getenv(name, "").strip()
    if not value:
        return None
    return Path(value).expanduser()


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
