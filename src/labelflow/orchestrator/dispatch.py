"""Dispatch tasks to worker sessions through a shell command template."""

from __future__ import annotations

import asyncio
import json
import logging
import shlex
import subprocess

from labelflow.errors import DispatchError
from labelflow.orchestrator.contracts import DispatchRequest, DispatchResult, SessionAction

logger = logging.getLogger(__name__)


class CommandDispatcher:
    """Run one command per dispatch.

    The template is rendered with shell-quoted placeholders (see
    ``labelflow.config.DISPATCH_TEMPLATE_PLACEHOLDERS``). Exit code 0 means the
    worker accepted the task. When stdout is a JSON object with a
    ``session_ref`` key, that ref is used; otherwise the session is keyed by
    project, role and level.
    """

    def __init__(self, command_template: str, *, timeout_seconds: float = 120.0) -> None:
        self.command_template = command_template
        self.timeout_seconds = timeout_seconds

    async def dispatch(self, request: DispatchRequest) -> DispatchResult:
        session_ref = request.session_ref or default_session_ref(request)
        argv = build_run_args(
            command_template=self.command_template,
            values={
                "project": request.project_id,
                "role": request.role,
                "level": request.level,
                "task_id": request.task.id,
                "session": session_ref,
                "action": request.session_action.value,
                "repo": request.repo,
                "message": build_task_message(request),
            },
        )
        try:
            completed = await asyncio.to_thread(
                subprocess.run,  # noqa: S603
                argv,
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
                check=False,
            )
        except FileNotFoundError as error:
            raise DispatchError(f"Dispatch command not found: {argv[0]}") from error
        except subprocess.TimeoutExpired as error:
            raise DispatchError(f"Dispatch timed out after {self.timeout_seconds:g}s") from error
        except OSError as error:
            raise DispatchError(f"Dispatch failed to start: {error}") from error

        if completed.returncode != 0:
            detail = (completed.stderr or completed.stdout or "").strip().splitlines()
            raise DispatchError(
                f"Dispatch command exited with {completed.returncode}"
                + (f": {detail[-1]}" if detail else ""),
            )

        returned_ref = _session_ref_from_stdout(completed.stdout)
        logger.info(
            "Dispatched #%s to %s/%s (%s)",
            request.task.id,
            request.role,
            request.level,
            request.session_action.value,
        )
        return DispatchResult(
            action=request.session_action,
            announcement=build_pickup_announcement(request),
            session_ref=returned_ref or session_ref,
        )


def default_session_ref(request: DispatchRequest) -> str:
    return f"labelflow:{request.project_id}:{request.role}:{request.level}"


def build_run_args(*, command_template: str, values: dict[str, str]) -> list[str]:
    stripped = command_template.strip()
    if not stripped:
        raise DispatchError("Dispatch command template is empty.")
    try:
        rendered = stripped.format(**{key: shlex.quote(value) for key, value in values.items()})
    except KeyError as error:
        raise DispatchError(f"Unsupported command template placeholder: {error}") from error
    argv = shlex.split(rendered)
    if not argv:
        raise DispatchError("Dispatch command template rendered empty command.")
    return argv


def build_task_message(request: DispatchRequest) -> str:
    """Instruction text handed to the worker session."""

    task = request.task
    lines = [
        f"{request.role.upper()} task for project {request.project_name}",
        "",
        f"Issue #{task.id}: {task.title}",
        task.url,
        "",
        task.description.strip() or "(no description)",
    ]
    if request.comments:
        lines.extend(["", "Comments:"])
        lines.extend(f"- {comment.author}: {comment.body}" for comment in request.comments)
    lines.extend(
        [
            "",
            f"Repo: {request.repo}",
            f"When finished, report the result for role {request.role} on #{task.id}.",
        ],
    )
    return "\n".join(lines)


def build_pickup_announcement(request: DispatchRequest) -> str:
    verb = "Spawning" if request.session_action == SessionAction.SPAWN else "Sending"
    return (
        f"{verb} {request.role.upper()} ({request.level}) for #{request.task.id}: "
        f"{request.task.title}"
    )


def _session_ref_from_stdout(stdout: str) -> str | None:
    text = (stdout or "").strip()
    if not text.startswith("{"):
        return None
    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        return None
    value = payload.get("session_ref") if isinstance(payload, dict) else None
    return str(value) if value else None
