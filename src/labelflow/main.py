"""CLI entrypoint for labelflow."""

import logging
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

import rich_click as click

from labelflow import __version__
from labelflow.errors import LabelflowError
from labelflow.orchestrator.controllers import (
    CompleteCommand,
    HealthCommand,
    HeartbeatCommand,
    LabelflowCliController,
    PickupCommand,
    ProjectAddCommand,
    SessionsClearCommand,
    StatusCommand,
    TaskAddCommand,
    WorkflowCommand,
)

click.rich_click.USE_MARKDOWN = True
CONTROLLER = LabelflowCliController()

CommandT = TypeVar("CommandT")

workspace_option = click.option(
    "--workspace-dir",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="Workspace directory. Defaults to LABELFLOW_WORKSPACE_DIR or .labelflow.",
)


@click.group()
@click.version_option(version=__version__, prog_name="labelflow")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Logging verbosity.",
)
def labelflow(log_level: str) -> None:
    """Label-driven task coordinator for multi-project worker pipelines."""

    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@labelflow.command("pickup")
@workspace_option
@click.argument("project_id")
@click.option("--role", default=None, help="Only try this role.")
@click.option(
    "--max-pickups",
    type=click.IntRange(min=0),
    default=None,
    help="Upper bound on pickups in this tick.",
)
@click.option("--dry-run", is_flag=True, help="Report what would be picked up without dispatching.")
def pickup(
    workspace_dir: Path | None,
    project_id: str,
    role: str | None,
    max_pickups: int | None,
    dry_run: bool,
) -> None:
    """Fill idle role slots of one project from its queues."""

    _invoke(
        CONTROLLER.pickup,
        PickupCommand(
            workspace_dir=workspace_dir,
            project_id=project_id,
            role=role,
            max_pickups=max_pickups,
            dry_run=dry_run,
        ),
    )


@labelflow.command("complete")
@workspace_option
@click.argument("project_id")
@click.argument("role")
@click.argument("result")
@click.option("--summary", default=None, help="Short summary for the announcement.")
@click.option("--artifact-url", default=None, help="PR/MR URL; auto-detected when omitted.")
def complete(  # noqa: PLR0913
    workspace_dir: Path | None,
    project_id: str,
    role: str,
    result: str,
    summary: str | None,
    artifact_url: str | None,
) -> None:
    """Finish the role's current task with RESULT (done, pass, fail, refine, blocked)."""

    _invoke(
        CONTROLLER.complete,
        CompleteCommand(
            workspace_dir=workspace_dir,
            project_id=project_id,
            role=role,
            result=result,
            summary=summary,
            artifact_url=artifact_url,
        ),
    )


@labelflow.command("health")
@workspace_option
@click.option("--project", "project_ids", multiple=True, help="Project id. Can be repeated.")
@click.option(
    "--live-session",
    "live_sessions",
    multiple=True,
    help="Session ref known to be alive. Zombie detection is skipped when none is given.",
)
@click.option("--fix", is_flag=True, help="Apply fixes for detected issues.")
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["table", "json"]),
    default="table",
    show_default=True,
)
def health(
    workspace_dir: Path | None,
    project_ids: tuple[str, ...],
    live_sessions: tuple[str, ...],
    fix: bool,
    output_format: str,
) -> None:
    """Scan worker state for drift. Read-only unless --fix is given."""

    _invoke(
        CONTROLLER.health,
        HealthCommand(
            workspace_dir=workspace_dir,
            project_ids=project_ids,
            live_sessions=live_sessions,
            fix=fix,
            output_format=output_format,
        ),
    )


@labelflow.command("heartbeat")
@workspace_option
@click.option(
    "--once/--loop",
    default=True,
    show_default=True,
    help="Run a single sweep, or sweep every interval until interrupted.",
)
@click.option("--dry-run", is_flag=True, help="Report without fixing or dispatching.")
@click.option(
    "--max-pickups",
    type=click.IntRange(min=0),
    default=None,
    help="Override the per-sweep pickup budget.",
)
@click.option(
    "--live-session",
    "live_sessions",
    multiple=True,
    help="Session ref known to be alive.",
)
def heartbeat(
    workspace_dir: Path | None,
    once: bool,
    dry_run: bool,
    max_pickups: int | None,
    live_sessions: tuple[str, ...],
) -> None:
    """Reconcile then schedule across all projects."""

    _invoke(
        CONTROLLER.heartbeat,
        HeartbeatCommand(
            workspace_dir=workspace_dir,
            loop=not once,
            dry_run=dry_run,
            max_pickups=max_pickups,
            live_sessions=live_sessions,
        ),
    )


@labelflow.command("status")
@workspace_option
@click.option("--project", "project_id", default=None, help="Only show this project.")
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["table", "json"]),
    default="table",
    show_default=True,
)
def status(workspace_dir: Path | None, project_id: str | None, output_format: str) -> None:
    """Show projects and their worker slots."""

    _invoke(
        CONTROLLER.status,
        StatusCommand(
            workspace_dir=workspace_dir,
            project_id=project_id,
            output_format=output_format,
        ),
    )


@labelflow.command("sessions-clear")
@workspace_option
@click.argument("project_id")
@click.argument("role")
@click.option("--level", default=None, help="Only clear this level's session.")
def sessions_clear(
    workspace_dir: Path | None,
    project_id: str,
    role: str,
    level: str | None,
) -> None:
    """Forget stored worker sessions so the next pickup spawns a fresh one."""

    _invoke(
        CONTROLLER.sessions_clear,
        SessionsClearCommand(
            workspace_dir=workspace_dir,
            project_id=project_id,
            role=role,
            level=level,
        ),
    )


@labelflow.group()
def project() -> None:
    """Project registration."""


@project.command("add")
@workspace_option
@click.argument("project_id")
@click.option("--name", required=True, help="Display name.")
@click.option("--repo", required=True, help="Path to the project's working copy.")
@click.option("--group-name", default="", help="Chat group name.")
@click.option("--channel", default="telegram", show_default=True, help="Notification channel.")
@click.option(
    "--role-execution",
    type=click.Choice(["parallel", "sequential"]),
    default="parallel",
    show_default=True,
)
def project_add(  # noqa: PLR0913
    workspace_dir: Path | None,
    project_id: str,
    name: str,
    repo: str,
    group_name: str,
    channel: str,
    role_execution: str,
) -> None:
    """Register a project with zero-valued workers for every workflow role."""

    _invoke(
        CONTROLLER.project_add,
        ProjectAddCommand(
            workspace_dir=workspace_dir,
            project_id=project_id,
            name=name,
            repo=repo,
            group_name=group_name,
            channel=channel,
            role_execution=role_execution,
        ),
    )


@labelflow.group()
def task() -> None:
    """Local task tracker."""


@task.command("add")
@workspace_option
@click.argument("title")
@click.option("--label", default=None, help="Initial label. Defaults to the first queue label.")
@click.option("--description", default="", help="Task body.")
def task_add(workspace_dir: Path | None, title: str, label: str | None, description: str) -> None:
    """Add a task to the local tracker file."""

    _invoke(
        CONTROLLER.task_add,
        TaskAddCommand(
            workspace_dir=workspace_dir,
            title=title,
            label=label,
            description=description,
        ),
    )


@labelflow.group()
def workflow() -> None:
    """Workflow graph commands."""


@workflow.command("show")
@workspace_option
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["table", "json"]),
    default="table",
    show_default=True,
)
def workflow_show(workspace_dir: Path | None, output_format: str) -> None:
    """Print the validated workflow graph."""

    _invoke(
        CONTROLLER.workflow_show,
        WorkflowCommand(workspace_dir=workspace_dir, output_format=output_format),
    )


@workflow.command("ensure-labels")
@workspace_option
def workflow_ensure_labels(workspace_dir: Path | None) -> None:
    """Create every workflow state label in the tracker."""

    _invoke(CONTROLLER.ensure_labels, WorkflowCommand(workspace_dir=workspace_dir))


def _invoke(handler: Callable[[CommandT], list[str]], command: CommandT) -> None:
    try:
        lines = handler(command)
    except (LabelflowError, ValueError) as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    labelflow()
