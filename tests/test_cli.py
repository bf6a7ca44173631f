from __future__ import annotations

import json
import shlex
import sys
from pathlib import Path

import allure
import pytest
from click.testing import CliRunner

from labelflow.main import labelflow
from labelflow.orchestrator.heartbeat import HeartbeatDriver

pytestmark = [
    allure.epic("CLI"),
    allure.feature("Coordinator Commands"),
]


@pytest.fixture()
def workspace(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    for name in (
        "LABELFLOW_WORKFLOW_PATH",
        "LABELFLOW_STATE_BACKEND",
        "LABELFLOW_STATE_JSON_PATH",
        "LABELFLOW_STATE_SQLITE_PATH",
        "LABELFLOW_TASKS_PATH",
        "LABELFLOW_PROJECT_EXECUTION",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv(
        "LABELFLOW_DISPATCH_COMMAND",
        f"{shlex.quote(sys.executable)} -c {shlex.quote('print(1)')} {{task_id}}",
    )
    return tmp_path / "ws"


def _run(workspace: Path, command: str, *args: str):
    argv = [*command.split(), *args, "--workspace-dir", str(workspace)]
    return CliRunner().invoke(labelflow, argv)


def _register(workspace: Path) -> None:
    result = _run(
        workspace,
        "project add",
        "g1",
        "--name",
        "shop",
        "--repo",
        str(workspace.parent / "repo"),
    )
    assert result.exit_code == 0, result.output
    assert "Registered g1: shop" in result.output


def test_full_pickup_and_completion_cycle(workspace: Path) -> None:
    _register(workspace)

    added = _run(workspace, "task add", "Add login page")
    assert added.exit_code == 0, added.output
    assert "Task #1 added with label 'To Do'" in added.output

    picked = _run(workspace, "pickup", "g1")
    assert picked.exit_code == 0, picked.output
    assert "Pickups: 1" in picked.output
    assert "- #1 developer/medior spawn: To Do → Doing" in picked.output

    status = _run(workspace, "status")
    assert "g1: shop" in status.output
    assert "  developer: active #1 level=medior" in status.output

    completed = _run(
        workspace,
        "complete",
        "g1",
        "dev",
        "done",
        "--summary",
        "Login works",
        "--artifact-url",
        "https://git.example/pulls/1",
    )
    assert completed.exit_code == 0, completed.output
    assert "Transition: Doing → To Test" in completed.output
    assert "✅ DEVELOPER DONE #1: Login works" in completed.output

    tasks = json.loads((workspace / "tasks.json").read_text("utf-8"))
    assert tasks["tasks"][0]["labels"] == ["To Test"]
    audit_events = [
        json.loads(line)["event"]
        for line in (workspace / "log" / "audit.log").read_text("utf-8").splitlines()
    ]
    assert audit_events == ["project_register", "pickup", "work_finish"]


def test_complete_with_unknown_result_fails_cleanly(workspace: Path) -> None:
    _register(workspace)

    result = _run(workspace, "complete", "g1", "developer", "pass")

    assert result.exit_code == 1
    assert "No completion rule for developer:pass" in result.output


def test_pickup_dry_run_leaves_task_in_queue(workspace: Path) -> None:
    _register(workspace)
    _run(workspace, "task add", "Fix typo in footer")

    result = _run(workspace, "pickup", "g1", "--dry-run")

    assert "developer/junior" in result.output
    assert "[DRY RUN] Would pick up #1" in result.output
    tasks = json.loads((workspace / "tasks.json").read_text("utf-8"))
    assert tasks["tasks"][0]["labels"] == ["To Do"]


def test_status_without_projects(workspace: Path) -> None:
    result = _run(workspace, "status")

    assert result.exit_code == 0
    assert result.output.strip() == "No projects registered."


def test_status_json_uses_persisted_layout(workspace: Path) -> None:
    _register(workspace)

    result = _run(workspace, "status", "--format", "json")
    payload = json.loads(result.output)

    assert payload["g1"]["roleExecution"] == "parallel"
    assert set(payload["g1"]["workers"]) == {"developer", "tester", "architect"}


def test_health_reports_zombie_detection_skipped(workspace: Path) -> None:
    _register(workspace)

    result = _run(workspace, "health")

    assert result.exit_code == 0, result.output
    assert "Health: projects=1 issues=0 fixed=0" in result.output
    assert "zombie detection skipped" in result.output


def test_heartbeat_once_picks_up_across_projects(workspace: Path) -> None:
    _register(workspace)
    _run(workspace, "task add", "Add search")

    result = _run(workspace, "heartbeat")

    assert result.exit_code == 0, result.output
    assert "Heartbeat: projects=1 health_fixes=0 pickups=1" in result.output
    assert "- #1 g1/developer (medior)" in result.output


def test_heartbeat_loop_forwards_safety_flags(
    workspace: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    _register(workspace)
    _run(workspace, "task add", "Add search")
    calls: list[dict] = []

    async def fake_run_forever(self, stop_event, **kwargs) -> int:
        calls.append(kwargs)
        return 1

    monkeypatch.setattr(HeartbeatDriver, "run_forever", fake_run_forever)

    result = _run(
        workspace,
        "heartbeat",
        "--loop",
        "--dry-run",
        "--live-session",
        "s-1",
        "--max-pickups",
        "0",
    )

    assert result.exit_code == 0, result.output
    assert "Heartbeat stopped after 1 sweeps" in result.output
    assert calls == [{"live_sessions": ("s-1",), "dry_run": True, "max_pickups": 0}]
    tasks = json.loads((workspace / "tasks.json").read_text("utf-8"))
    assert tasks["tasks"][0]["labels"] == ["To Do"]


def test_sessions_clear_resets_stored_sessions(workspace: Path) -> None:
    _register(workspace)
    _run(workspace, "task add", "Add search")
    _run(workspace, "pickup", "g1")

    result = _run(workspace, "sessions-clear", "g1", "qa")

    assert result.exit_code == 0, result.output
    assert "Cleared tester sessions (all levels) for g1" in result.output
    entries = [
        json.loads(line)
        for line in (workspace / "log" / "audit.log").read_text("utf-8").splitlines()
    ]
    assert entries[-1]["event"] == "session_cleanup"
    assert (entries[-1]["role"], entries[-1]["clearAll"]) == ("tester", True)


def test_workflow_show_and_ensure_labels(workspace: Path) -> None:
    shown = _run(workspace, "workflow show")
    ensured = _run(workspace, "workflow ensure-labels")

    assert "initial: planning" in shown.output
    assert "developer queues: To Improve, To Do" in shown.output
    assert "Ensured 10 labels" in ensured.output
    labels = json.loads((workspace / "tasks.json").read_text("utf-8"))["labels"]
    assert labels["Doing"] == "#f0ad4e"


def test_invalid_settings_surface_as_cli_error(
    workspace: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("LABELFLOW_STATE_BACKEND", "redis")

    result = _run(workspace, "status")

    assert result.exit_code == 1
    assert "Unsupported LABELFLOW_STATE_BACKEND" in result.output
