"""Role registry: canonical role ids, their levels, and legacy aliases."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field

from labelflow.errors import NotFoundError

ROLE_ALIASES: dict[str, str] = {
    "dev": "developer",
    "qa": "tester",
}


@dataclass(frozen=True, slots=True)
class RoleConfig:
    """Levels a role can run at and how legacy level names map onto them."""

    role: str
    levels: tuple[str, ...]
    default_level: str
    simple_level: str | None = None
    complex_level: str | None = None
    level_aliases: Mapping[str, str] = field(default_factory=dict)

    def canonical_level(self, level: str) -> str:
        return self.level_aliases.get(level, level)

    def has_level(self, level: str) -> bool:
        return level in self.levels


DEFAULT_ROLES: dict[str, RoleConfig] = {
    "developer": RoleConfig(
        role="developer",
        levels=("junior", "medior", "senior"),
        default_level="medior",
        simple_level="junior",
        complex_level="senior",
        level_aliases={
            "haiku": "junior",
            "sonnet": "medior",
            "opus": "senior",
            "mid": "medior",
        },
    ),
    "tester": RoleConfig(
        role="tester",
        levels=("reviewer", "tester"),
        default_level="reviewer",
        level_aliases={
            "grok": "reviewer",
            "qa": "reviewer",
            "haiku": "tester",
        },
    ),
    "architect": RoleConfig(
        role="architect",
        levels=("junior", "senior"),
        default_level="senior",
        simple_level="junior",
        complex_level="senior",
        level_aliases={
            "sonnet": "junior",
            "opus": "senior",
        },
    ),
}


def canonical_role(name: str) -> str:
    """Map a legacy role key onto its canonical id."""

    normalized = name.strip().lower()
    return ROLE_ALIASES.get(normalized, normalized)


def role_config(role: str, roles: Mapping[str, RoleConfig] | None = None) -> RoleConfig:
    """Return the registered config for a role; unknown roles get a single-level config."""

    registry = DEFAULT_ROLES if roles is None else roles
    canonical = canonical_role(role)
    config = registry.get(canonical)
    if config is not None:
        return config
    return RoleConfig(role=canonical, levels=("default",), default_level="default")


def resolve_role(name: str, known_roles: tuple[str, ...]) -> str:
    """Resolve a caller-supplied role id against the roles a workflow defines."""

    canonical = canonical_role(name)
    if canonical not in known_roles:
        raise NotFoundError(
            f"Unknown role {name!r}. Known roles: {', '.join(known_roles) or '-'}",
        )
    return canonical
