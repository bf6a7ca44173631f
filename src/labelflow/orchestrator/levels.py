"""Pick the level a task runs at: explicit label first, keyword heuristic otherwise."""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass

from labelflow.orchestrator.contracts import Task
from labelflow.roles import DEFAULT_ROLES, RoleConfig, canonical_role, role_config

SIMPLE_KEYWORDS = (
    "typo",
    "fix typo",
    "rename",
    "update text",
    "change color",
    "minor",
    "small",
    "css",
    "style",
    "copy",
    "wording",
)
COMPLEX_KEYWORDS = (
    "architect",
    "refactor",
    "redesign",
    "system-wide",
    "migration",
    "database schema",
    "security",
    "performance",
    "infrastructure",
    "multi-service",
)
SIMPLE_MAX_WORDS = 100
COMPLEX_MIN_WORDS = 500


@dataclass(frozen=True, slots=True)
class LevelChoice:
    level: str
    reason: str


def select_level(
    title: str,
    description: str,
    role: str,
    roles: Mapping[str, RoleConfig] | None = None,
) -> LevelChoice:
    config = role_config(role, roles)
    text = f"{title} {description}".lower()
    word_count = len(re.split(r"\s+", text.strip())) if text.strip() else 0

    simple_hits = [keyword for keyword in SIMPLE_KEYWORDS if keyword in text]
    if config.simple_level and simple_hits and word_count < SIMPLE_MAX_WORDS:
        return LevelChoice(
            level=config.simple_level,
            reason=f"Simple task detected (keywords: {', '.join(simple_hits)})",
        )

    complex_hits = [keyword for keyword in COMPLEX_KEYWORDS if keyword in text]
    if config.complex_level and (complex_hits or word_count > COMPLEX_MIN_WORDS):
        reason = (
            f"Complex task detected (keywords: {', '.join(complex_hits)})"
            if complex_hits
            else f"Long description ({word_count} words)"
        )
        return LevelChoice(level=config.complex_level, reason=reason)

    return LevelChoice(level=config.default_level, reason=f"Default level for {config.role}")


def detect_level_from_labels(
    labels: list[str],
    roles: Mapping[str, RoleConfig] | None = None,
) -> tuple[str | None, str] | None:
    """Find a level encoded in labels.

    ``developer.senior`` (or the legacy ``dev.senior``) yields ``("developer",
    "senior")``. A bare level name yields ``(None, level)``. Legacy level names
    are mapped through the owning role's aliases.
    """

    registry = DEFAULT_ROLES if roles is None else roles
    lowered = [label.strip().lower() for label in labels]

    for label in lowered:
        role_part, dot, level_part = label.partition(".")
        if not dot:
            continue
        config = registry.get(canonical_role(role_part))
        if config is None:
            continue
        level = config.canonical_level(level_part)
        if config.has_level(level):
            return config.role, level

    for config in registry.values():
        for level in config.levels:
            if level in lowered:
                return None, level
    return None


def resolve_level_for_task(
    task: Task,
    role: str,
    roles: Mapping[str, RoleConfig] | None = None,
) -> str:
    """Label level when it belongs to ``role``; heuristic otherwise."""

    config = role_config(role, roles)
    detected = detect_level_from_labels(task.labels, roles)
    if detected is not None:
        label_role, level = detected
        if (label_role is None or label_role == config.role) and config.has_level(level):
            return level
    return select_level(task.title, task.description, role, roles).level
