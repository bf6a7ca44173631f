from __future__ import annotations

import asyncio

import allure
import pytest

from labelflow.errors import ConfigError
from labelflow.workflow import (
    DEFAULT_WORKFLOW,
    WorkflowConfig,
    active_label,
    all_queue_labels,
    completion_marker,
    completion_results,
    completion_rule,
    detect_role_from_label,
    ensure_workflow_labels,
    find_state_key_by_label,
    is_active_label,
    is_queue_label,
    next_state_description,
    queue_labels,
    revert_label,
    roles,
    validate_workflow,
)

pytestmark = [
    allure.epic("Workflow"),
    allure.feature("Graph Derivations"),
]


def _workflow(states: dict, initial: str = "a") -> WorkflowConfig:
    return WorkflowConfig.from_dict({"initial": initial, "states": states})


def test_queue_labels_sorted_by_descending_priority() -> None:
    assert queue_labels(DEFAULT_WORKFLOW, "developer") == ["To Improve", "To Do"]
    assert queue_labels(DEFAULT_WORKFLOW, "tester") == ["To Test"]
    assert queue_labels(DEFAULT_WORKFLOW, "nobody") == []


def test_queue_labels_ties_keep_declaration_order() -> None:
    workflow = _workflow(
        {
            "a": {"type": "queue", "role": "developer", "label": "A", "priority": 1,
                  "on": {"PICKUP": "work"}},
            "b": {"type": "queue", "role": "developer", "label": "B", "priority": 1,
                  "on": {"PICKUP": "work"}},
            "work": {"type": "active", "role": "developer", "label": "Work"},
        },
    )

    assert queue_labels(workflow, "developer") == ["A", "B"]


def test_all_queue_labels_mix_roles_by_priority() -> None:
    assert all_queue_labels(DEFAULT_WORKFLOW) == ["To Improve", "To Test", "To Do", "To Design"]


def test_active_label_requires_exactly_one_active_state() -> None:
    assert active_label(DEFAULT_WORKFLOW, "developer") == "Doing"

    duplicated = _workflow(
        {
            "a": {"type": "active", "role": "developer", "label": "One"},
            "b": {"type": "active", "role": "developer", "label": "Two"},
        },
    )
    with pytest.raises(ConfigError, match="2 active states"):
        active_label(duplicated, "developer")
    with pytest.raises(ConfigError, match="No active state"):
        active_label(DEFAULT_WORKFLOW, "designer")


def test_completion_rule_for_developer_done_carries_sync_and_artifact_actions() -> None:
    rule = completion_rule(DEFAULT_WORKFLOW, "developer", "done")

    assert rule is not None
    assert (rule.from_label, rule.to_label) == ("Doing", "To Test")
    assert rule.sync_source and rule.detect_artifact
    assert not rule.close_task and not rule.reopen_task


def test_completion_rule_for_tester_results() -> None:
    passed = completion_rule(DEFAULT_WORKFLOW, "tester", "pass")
    failed = completion_rule(DEFAULT_WORKFLOW, "tester", "fail")
    refine = completion_rule(DEFAULT_WORKFLOW, "tester", "refine")

    assert passed is not None and passed.to_label == "Done" and passed.close_task
    assert failed is not None and failed.to_label == "To Improve" and failed.reopen_task
    assert refine is not None and refine.to_label == "Refining"


def test_completion_rule_absent_transition_returns_none() -> None:
    assert completion_rule(DEFAULT_WORKFLOW, "developer", "pass") is None
    assert completion_results(DEFAULT_WORKFLOW, "developer") == ("done", "blocked")


def test_completion_rule_dangling_target_is_config_error() -> None:
    workflow = _workflow(
        {
            "a": {"type": "active", "role": "developer", "label": "Doing",
                  "on": {"COMPLETE": "missing"}},
        },
    )

    with pytest.raises(ConfigError, match="unknown state 'missing'"):
        completion_rule(workflow, "developer", "done")


@pytest.mark.parametrize(
    ("role", "result", "expected"),
    [
        ("developer", "done", "TESTER queue"),
        ("tester", "pass", "Done!"),
        ("tester", "refine", "awaiting human decision"),
        ("tester", "fail", "DEVELOPER queue"),
        ("developer", "pass", ""),
    ],
)
def test_next_state_description_derives_from_target_type(
    role: str,
    result: str,
    expected: str,
) -> None:
    assert next_state_description(DEFAULT_WORKFLOW, role, result) == expected


def test_next_state_description_falls_back_to_target_label_for_active_targets() -> None:
    workflow = _workflow(
        {
            "a": {"type": "active", "role": "developer", "label": "Doing",
                  "on": {"COMPLETE": "b"}},
            "b": {"type": "active", "role": "tester", "label": "Reviewing"},
        },
    )

    assert next_state_description(workflow, "developer", "done") == "Reviewing"


def test_revert_label_follows_pickup_edge_into_active_state() -> None:
    assert revert_label(DEFAULT_WORKFLOW, "tester") == "To Test"
    assert revert_label(DEFAULT_WORKFLOW, "architect") == "To Design"
    # two developer queues pick up into Doing; the first declared one wins
    assert revert_label(DEFAULT_WORKFLOW, "developer") == "To Do"


def test_label_lookup_helpers() -> None:
    assert find_state_key_by_label(DEFAULT_WORKFLOW, "To Test") == "toTest"
    assert detect_role_from_label(DEFAULT_WORKFLOW, "To Improve") == "developer"
    assert detect_role_from_label(DEFAULT_WORKFLOW, "Doing") is None
    assert is_queue_label(DEFAULT_WORKFLOW, "To Do")
    assert not is_queue_label(DEFAULT_WORKFLOW, "Done")
    assert is_active_label(DEFAULT_WORKFLOW, "Testing")
    assert roles(DEFAULT_WORKFLOW) == ("developer", "tester", "architect")


def test_completion_marker_has_fallback() -> None:
    assert completion_marker("done") == "✅"
    assert completion_marker("something-else") == "📋"


def test_validate_workflow_rejects_missing_initial_and_unknown_targets() -> None:
    validate_workflow(DEFAULT_WORKFLOW)

    with pytest.raises(ConfigError, match="Initial state"):
        validate_workflow(_workflow({"a": {"type": "hold", "label": "A"}}, initial="zzz"))
    with pytest.raises(ConfigError, match="targets unknown state"):
        validate_workflow(_workflow({"a": {"type": "hold", "label": "A", "on": {"GO": "b"}}}))
    with pytest.raises(ConfigError, match="must declare a role"):
        validate_workflow(_workflow({"a": {"type": "queue", "label": "A"}}))


def test_validate_workflow_allows_shared_hold_target() -> None:
    workflow = _workflow(
        {
            "a": {"type": "active", "role": "developer", "label": "Doing",
                  "on": {"BLOCKED": "hold"}},
            "b": {"type": "active", "role": "tester", "label": "Testing",
                  "on": {"BLOCKED": "hold"}},
            "hold": {"type": "hold", "label": "Refining"},
        },
    )

    validate_workflow(workflow)


def test_ensure_workflow_labels_provisions_every_state() -> None:
    created: dict[str, str] = {}

    async def ensure_label(name: str, color: str) -> None:
        created[name] = color

    labels = asyncio.run(ensure_workflow_labels(DEFAULT_WORKFLOW, ensure_label))

    assert len(labels) == len(DEFAULT_WORKFLOW.states)
    assert created["Doing"] == "#f0ad4e"
