"""Project administration: registration and session cleanup, both audited."""

from __future__ import annotations

import logging

from labelflow.orchestrator.context import CoordinatorContext
from labelflow.roles import resolve_role
from labelflow.state.models import Project
from labelflow.workflow.engine import roles

logger = logging.getLogger(__name__)


async def register_project(
    ctx: CoordinatorContext,
    project_id: str,
    project: Project,
) -> Project:
    """Store ``project`` with a zero-valued worker for every workflow role."""

    project = await ctx.store.register_project(
        project_id,
        project,
        roles=roles(ctx.workflow),
    )
    await ctx.audit_event(
        "project_register",
        {
            "project": project.name,
            "projectId": project_id,
            "repo": project.repo,
            "channel": project.channel,
            "roleExecution": project.role_execution,
            "roles": sorted(project.workers),
        },
    )
    return project


async def clear_worker_sessions(
    ctx: CoordinatorContext,
    project_id: str,
    role: str,
    level: str | None = None,
) -> str:
    """Forget the role's stored sessions and return the canonical role name."""

    role = resolve_role(role, roles(ctx.workflow))
    project = await ctx.store.clear_sessions(project_id, role, level)
    logger.info("Cleared %s sessions (%s) for %s", role, level or "all levels", project_id)
    await ctx.audit_event(
        "session_cleanup",
        {
            "project": project.name,
            "projectId": project_id,
            "role": role,
            "level": level,
            "clearAll": level is None,
        },
    )
    return role
