from __future__ import annotations

import asyncio

import allure
import pytest

from labelflow.errors import NotFoundError
from labelflow.orchestrator.contracts import PickupEvent, SessionAction
from labelflow.orchestrator.scheduler import (
    SKIP_MAX_PICKUPS,
    SKIP_SEQUENTIAL,
    find_next_task,
    project_tick,
)
from labelflow.state.models import WorkerState
from labelflow.workflow import DEFAULT_WORKFLOW

pytestmark = [
    allure.epic("Scheduling"),
    allure.feature("Project Tick"),
]


def test_higher_priority_queue_is_drained_first(harness) -> None:
    harness.add_project()
    harness.tracker.add("1", "To Do")
    harness.tracker.add("2", "To Improve")

    result = asyncio.run(project_tick(harness.ctx, "g1", target_role="developer"))

    assert [action.task_id for action in result.pickups] == ["2"]
    pickup = result.pickups[0]
    assert (pickup.from_label, pickup.to_label) == ("To Improve", "Doing")
    assert harness.tracker.tasks["2"].labels == ["Doing"]
    assert harness.tracker.tasks["1"].labels == ["To Do"]


def test_newest_listed_task_on_a_label_is_picked(harness) -> None:
    harness.add_project()
    harness.tracker.add("1", "To Do")
    harness.tracker.add("2", "To Do")

    found = asyncio.run(find_next_task(harness.tracker, DEFAULT_WORKFLOW, "developer"))

    assert found is not None
    assert found[0].id == "2" and found[1] == "To Do"


def test_pickup_activates_worker_and_records_session(harness) -> None:
    harness.add_project()
    harness.tracker.add("7", "To Do", title="Add login page")

    result = asyncio.run(project_tick(harness.ctx, "g1"))
    worker = harness.worker("g1", "developer")

    assert [action.task_id for action in result.pickups] == ["7"]
    assert worker.active is True
    assert worker.issue_id == "7"
    assert worker.level == "medior"
    assert worker.start_time == harness.now
    assert worker.sessions["medior"] == "session-developer-medior"
    assert result.pickups[0].session_action == SessionAction.SPAWN
    assert harness.audit.events() == ["pickup"]
    assert isinstance(harness.notifier.events[0], PickupEvent)


def test_active_worker_is_skipped_without_dispatch(harness, make_active_worker) -> None:
    harness.add_project(workers={"developer": make_active_worker("42")})
    harness.tracker.add("1", "To Do")

    result = asyncio.run(project_tick(harness.ctx, "g1", target_role="developer"))

    assert result.pickups == []
    assert [(skip.role, skip.reason) for skip in result.skipped] == [
        ("developer", "already active (#42)"),
    ]
    assert harness.dispatcher.requests == []
    assert harness.tracker.transitions() == []


def test_failed_dispatch_leaves_tracker_and_state_untouched(harness, dispatch_error) -> None:
    harness.add_project()
    harness.tracker.add("1", "To Do")
    harness.dispatcher.error = dispatch_error

    result = asyncio.run(project_tick(harness.ctx, "g1", target_role="developer"))

    assert result.pickups == []
    assert result.skipped[0].reason == "dispatch failed: worker gateway unreachable"
    assert harness.tracker.transitions() == []
    assert harness.tracker.tasks["1"].labels == ["To Do"]
    assert harness.worker("g1", "developer").active is False
    assert harness.audit.entries == []


def test_unexpected_dispatcher_exception_is_treated_as_dispatch_failure(harness) -> None:
    harness.add_project()
    harness.tracker.add("1", "To Do")
    harness.dispatcher.error = ValueError("bad template")

    result = asyncio.run(project_tick(harness.ctx, "g1", target_role="developer"))

    assert result.skipped[0].reason == "dispatch failed: bad template"
    assert harness.tracker.transitions() == []


def test_existing_session_for_level_is_reused(harness) -> None:
    harness.add_project(
        workers={"developer": WorkerState(level="medior", sessions={"medior": "sess-old"})},
    )
    harness.tracker.add("3", "To Do")

    result = asyncio.run(project_tick(harness.ctx, "g1", target_role="developer"))

    assert result.pickups[0].session_action == SessionAction.SEND
    assert harness.dispatcher.requests[0].session_ref == "sess-old"
    assert harness.worker("g1", "developer").sessions["medior"] == "sess-old"


def test_level_label_selects_level_and_session(harness) -> None:
    harness.add_project(
        workers={"developer": WorkerState(sessions={"medior": "sess-m"})},
    )
    task = harness.tracker.add("3", "To Do")
    task.labels.append("developer.senior")

    result = asyncio.run(project_tick(harness.ctx, "g1", target_role="developer"))

    assert result.pickups[0].level == "senior"
    assert result.pickups[0].session_action == SessionAction.SPAWN


def test_sequential_project_allows_one_active_role(harness, make_active_worker) -> None:
    harness.add_project(
        role_execution="sequential",
        workers={"tester": make_active_worker("5", level="reviewer")},
    )
    harness.tracker.add("1", "To Do")

    result = asyncio.run(project_tick(harness.ctx, "g1"))

    assert result.pickups == []
    assert ("developer", SKIP_SEQUENTIAL) in [(skip.role, skip.reason) for skip in result.skipped]
    assert harness.dispatcher.requests == []


def test_sequential_project_stops_after_first_pickup_in_tick(harness) -> None:
    harness.add_project(role_execution="sequential")
    harness.tracker.add("1", "To Do")
    harness.tracker.add("2", "To Test")

    result = asyncio.run(project_tick(harness.ctx, "g1"))

    assert [action.role for action in result.pickups] == ["developer"]
    assert ("tester", SKIP_SEQUENTIAL) in [(skip.role, skip.reason) for skip in result.skipped]


def test_max_pickups_budget_skips_remaining_roles(harness) -> None:
    harness.add_project()
    harness.tracker.add("1", "To Do")
    harness.tracker.add("2", "To Test")

    result = asyncio.run(project_tick(harness.ctx, "g1", max_pickups=1))

    assert len(result.pickups) == 1
    assert ("tester", SKIP_MAX_PICKUPS) in [(skip.role, skip.reason) for skip in result.skipped]
    assert harness.worker("g1", "tester").active is False


def test_dry_run_reports_without_side_effects(harness) -> None:
    harness.add_project()
    harness.tracker.add("1", "To Do")

    result = asyncio.run(project_tick(harness.ctx, "g1", dry_run=True))

    assert result.pickups[0].announcement == "[DRY RUN] Would pick up #1"
    assert harness.dispatcher.requests == []
    assert harness.tracker.transitions() == []
    assert harness.worker("g1", "developer").active is False
    assert harness.notifier.events == []


def test_tracker_error_on_one_label_falls_through_to_next(harness) -> None:
    harness.add_project()
    harness.tracker.add("1", "To Do")
    harness.tracker.failing_labels.add("To Improve")

    result = asyncio.run(project_tick(harness.ctx, "g1", target_role="developer"))

    assert [action.task_id for action in result.pickups] == ["1"]


def test_target_role_accepts_legacy_alias(harness) -> None:
    harness.add_project()
    harness.tracker.add("1", "To Do")
    harness.tracker.add("2", "To Test")

    result = asyncio.run(project_tick(harness.ctx, "g1", target_role="qa"))

    assert [(action.role, action.level) for action in result.pickups] == [("tester", "reviewer")]


def test_notification_failure_does_not_undo_pickup(harness) -> None:
    harness.add_project()
    harness.tracker.add("1", "To Do")
    harness.notifier.fail = True

    result = asyncio.run(project_tick(harness.ctx, "g1", target_role="developer"))

    assert len(result.pickups) == 1
    assert harness.worker("g1", "developer").active is True


def test_unknown_project_raises_not_found(harness) -> None:
    with pytest.raises(NotFoundError):
        asyncio.run(project_tick(harness.ctx, "nope"))
