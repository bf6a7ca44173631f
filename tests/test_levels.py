from __future__ import annotations

import allure
import pytest

from labelflow.orchestrator.contracts import Task
from labelflow.orchestrator.levels import (
    detect_level_from_labels,
    resolve_level_for_task,
    select_level,
)

pytestmark = [
    allure.epic("Scheduling"),
    allure.feature("Level Selection"),
]


@pytest.mark.parametrize(
    ("title", "description", "expected"),
    [
        ("Fix typo in header", "", "junior"),
        ("Refactor billing", "touches the database schema", "senior"),
        ("Add login page", "users can sign in", "medior"),
        ("Add export", "word " * 600, "senior"),
        ("Fix typo", "word " * 120, "medior"),
    ],
)
def test_select_level_heuristic_for_developer(
    title: str,
    description: str,
    expected: str,
) -> None:
    assert select_level(title, description, "developer").level == expected


def test_select_level_reports_reason() -> None:
    choice = select_level("Minor css tweak", "", "developer")

    assert choice.reason.startswith("Simple task detected")
    assert "css" in choice.reason


def test_select_level_for_role_without_heuristic_levels_uses_default() -> None:
    assert select_level("Security audit", "", "tester").level == "reviewer"
    assert select_level("Anything", "", "qa").level == "reviewer"


@pytest.mark.parametrize(
    ("labels", "expected"),
    [
        (["To Do", "developer.senior"], ("developer", "senior")),
        (["dev.opus"], ("developer", "senior")),
        (["qa.grok"], ("tester", "reviewer")),
        (["Junior"], (None, "junior")),
        (["bug", "To Do"], None),
    ],
)
def test_detect_level_from_labels(labels: list[str], expected) -> None:
    assert detect_level_from_labels(labels) == expected


def test_resolve_level_prefers_label_owned_by_role() -> None:
    task = Task(id="1", title="Refactor everything", labels=["To Do", "developer.junior"])

    assert resolve_level_for_task(task, "developer") == "junior"


def test_resolve_level_ignores_label_for_another_role() -> None:
    task = Task(id="1", title="Check login", labels=["To Test", "developer.senior"])

    assert resolve_level_for_task(task, "tester") == "reviewer"


def test_resolve_level_ignores_bare_level_the_role_does_not_have() -> None:
    task = Task(id="1", title="Check login", labels=["To Test", "senior"])

    assert resolve_level_for_task(task, "tester") == "reviewer"
