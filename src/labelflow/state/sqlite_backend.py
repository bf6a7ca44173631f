"""SQLite backend: one row per project, one row per worker, optimistic revisions."""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import sqlite3
from datetime import UTC, datetime
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import Column, DateTime, ForeignKey, Text, event
from sqlalchemy import update as sa_update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.pool import NullPool
from sqlmodel import Field, Session, SQLModel, col, create_engine, select

from labelflow.errors import NotFoundError
from labelflow.state.backends import WorkerMutator
from labelflow.state.models import Project, ProjectsData, WorkerState, empty_worker_state, utc_now

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parent / "migrations"
MAX_CONFLICT_RETRIES = 20


class ProjectRow(SQLModel, table=True):
    __tablename__ = "projects"  # type: ignore[bad-override]

    project_id: str = Field(primary_key=True)
    name: str
    repo: str
    group_name: str = ""
    channel: str = "telegram"
    provider: str = "github"
    base_branch: str = "main"
    role_execution: str = "parallel"
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class WorkerRow(SQLModel, table=True):
    __tablename__ = "workers"  # type: ignore[bad-override]

    project_id: str = Field(
        sa_column=Column(
            ForeignKey("projects.project_id", ondelete="CASCADE"),
            primary_key=True,
        ),
    )
    role: str = Field(primary_key=True)
    active: bool = False
    issue_id: str | None = None
    start_time: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    level: str | None = None
    sessions_json: str = Field(default="{}", sa_column=Column(Text, nullable=False))
    revision: int = 0


def build_sqlite_engine(*, db_path: Path, busy_timeout_ms: int) -> Engine:
    """Build SQLAlchemy engine with consistent SQLite policy."""

    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={
            "check_same_thread": False,
            "timeout": max(1.0, busy_timeout_ms / 1000.0),
        },
        poolclass=NullPool,
    )
    event.listen(
        engine,
        "connect",
        lambda dbapi_connection, _: _apply_sqlite_pragmas(
            dbapi_connection,
            busy_timeout_ms=busy_timeout_ms,
        ),
    )
    return engine


def upgrade_head(db_path: Path) -> None:
    """Apply packaged Alembic migrations up to head for the given SQLite database."""

    config = Config()
    config.set_main_option("script_location", str(MIGRATIONS_DIR))
    config.set_main_option("sqlalchemy.url", f"sqlite:///{db_path}")
    command.upgrade(config, "head")


class SqliteStateBackend:
    """Per-record atomic state storage.

    Every worker mutation is an ``UPDATE ... WHERE revision = <read revision>``;
    a lost race re-reads and re-applies the mutator.
    """

    def __init__(self, db_path: Path, *, busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.busy_timeout_ms = busy_timeout_ms
        self._engine: Engine | None = None

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            upgrade_head(self.db_path)
            self._engine = build_sqlite_engine(
                db_path=self.db_path,
                busy_timeout_ms=self.busy_timeout_ms,
            )
        return self._engine

    def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None

    async def load(self) -> ProjectsData:
        return await asyncio.to_thread(self._load)

    async def mutate_worker(
        self,
        project_id: str,
        role: str,
        mutator: WorkerMutator,
    ) -> Project:
        return await asyncio.to_thread(self._mutate_worker, project_id, role, mutator)

    async def put_project(self, project_id: str, project: Project) -> None:
        await asyncio.to_thread(self._put_project, project_id, project)

    def _load(self) -> ProjectsData:
        with Session(self.engine) as session:
            projects = session.exec(
                select(ProjectRow).order_by(col(ProjectRow.project_id).asc()),
            ).all()
            workers = session.exec(
                select(WorkerRow).order_by(col(WorkerRow.role).asc()),
            ).all()
        data = ProjectsData()
        for row in projects:
            data.projects[row.project_id] = _to_project(row)
        for worker in workers:
            project = data.projects.get(worker.project_id)
            if project is not None:
                project.workers[worker.role] = _to_worker_state(worker)
        return data

    def _mutate_worker(self, project_id: str, role: str, mutator: WorkerMutator) -> Project:
        for _ in range(MAX_CONFLICT_RETRIES):
            with Session(self.engine) as session:
                project_row = session.get(ProjectRow, project_id)
                if project_row is None:
                    raise NotFoundError(f"Project not found: {project_id}")
                row = session.get(WorkerRow, (project_id, role))
                current = _to_worker_state(row) if row is not None else empty_worker_state()
                updated = mutator(copy.deepcopy(current))

                if row is None:
                    session.add(_to_worker_row(project_id, role, updated, revision=1))
                    try:
                        session.commit()
                    except IntegrityError:
                        session.rollback()
                        logger.debug("Concurrent insert for %s/%s, retrying", project_id, role)
                        continue
                else:
                    result = session.exec(
                        sa_update(WorkerRow)
                        .where(
                            col(WorkerRow.project_id) == project_id,
                            col(WorkerRow.role) == role,
                            col(WorkerRow.revision) == row.revision,
                        )
                        .values(
                            active=updated.active,
                            issue_id=updated.issue_id,
                            start_time=updated.start_time,
                            level=updated.level,
                            sessions_json=json.dumps(updated.sessions, sort_keys=True),
                            revision=row.revision + 1,
                        ),
                    )
                    if result.rowcount != 1:
                        session.rollback()
                        logger.debug("Revision conflict for %s/%s, retrying", project_id, role)
                        continue
                    session.commit()

            return self._load().projects[project_id]
        raise RuntimeError(f"Gave up updating worker {project_id}/{role} after repeated conflicts")

    def _put_project(self, project_id: str, project: Project) -> None:
        with Session(self.engine) as session:
            row = session.get(ProjectRow, project_id)
            if row is None:
                row = ProjectRow(
                    project_id=project_id,
                    name=project.name,
                    repo=project.repo,
                    updated_at=utc_now(),
                )
            row.name = project.name
            row.repo = project.repo
            row.group_name = project.group_name
            row.channel = project.channel
            row.provider = project.provider
            row.base_branch = project.base_branch
            row.role_execution = project.role_execution
            row.updated_at = utc_now()
            session.add(row)

            existing = {
                worker.role: worker
                for worker in session.exec(
                    select(WorkerRow).where(WorkerRow.project_id == project_id),
                ).all()
            }
            for role, stale in existing.items():
                if role not in project.workers:
                    session.delete(stale)
            for role, worker in project.workers.items():
                previous = existing.get(role)
                if previous is None:
                    session.add(_to_worker_row(project_id, role, worker, revision=1))
                    continue
                previous.active = worker.active
                previous.issue_id = worker.issue_id
                previous.start_time = worker.start_time
                previous.level = worker.level
                previous.sessions_json = json.dumps(worker.sessions, sort_keys=True)
                previous.revision += 1
                session.add(previous)
            session.commit()


def _to_project(row: ProjectRow) -> Project:
    return Project(
        name=row.name,
        repo=row.repo,
        group_name=row.group_name,
        channel=row.channel,
        provider=row.provider,
        base_branch=row.base_branch,
        role_execution=row.role_execution,
    )


def _to_worker_state(row: WorkerRow) -> WorkerState:
    return WorkerState(
        active=row.active,
        issue_id=row.issue_id,
        start_time=_as_utc(row.start_time),
        level=row.level,
        sessions=json.loads(row.sessions_json or "{}"),
    )


def _to_worker_row(project_id: str, role: str, worker: WorkerState, *, revision: int) -> WorkerRow:
    return WorkerRow(
        project_id=project_id,
        role=role,
        active=worker.active,
        issue_id=worker.issue_id,
        start_time=worker.start_time,
        level=worker.level,
        sessions_json=json.dumps(worker.sessions, sort_keys=True),
        revision=revision,
    )


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


def _apply_sqlite_pragmas(dbapi_connection: sqlite3.Connection, *, busy_timeout_ms: int) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode = WAL")
    cursor.execute(f"PRAGMA busy_timeout = {max(1, busy_timeout_ms)}")
    cursor.execute("PRAGMA foreign_keys = ON")
    cursor.close()
