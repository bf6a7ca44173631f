"""Declarative state-graph types for the task pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from labelflow.errors import ConfigError


class StateType(str, Enum):
    """Kinds of pipeline states."""

    QUEUE = "queue"
    ACTIVE = "active"
    HOLD = "hold"
    TERMINAL = "terminal"


class TransitionAction(str, Enum):
    """Side effects a transition asks the completion pipeline to apply."""

    GIT_PULL = "gitPull"
    DETECT_PR = "detectPr"
    CLOSE_ISSUE = "closeIssue"
    REOPEN_ISSUE = "reopenIssue"


@dataclass(frozen=True, slots=True)
class Transition:
    """Target state id plus the actions fired when the transition is taken."""

    target: str
    actions: tuple[TransitionAction, ...] = ()

    @classmethod
    def from_raw(cls, raw: Any, *, where: str) -> Transition:
        if isinstance(raw, str):
            return cls(target=raw)
        if isinstance(raw, dict) and isinstance(raw.get("target"), str):
            actions: list[TransitionAction] = []
            for action in raw.get("actions") or ():
                try:
                    actions.append(TransitionAction(action))
                except ValueError as error:
                    raise ConfigError(f"Unknown transition action {action!r} in {where}") from error
            return cls(target=raw["target"], actions=tuple(actions))
        raise ConfigError(f"Invalid transition in {where}: {raw!r}")

    def to_raw(self) -> str | dict[str, object]:
        if not self.actions:
            return self.target
        return {"target": self.target, "actions": [action.value for action in self.actions]}


@dataclass(frozen=True, slots=True)
class StateConfig:
    """One node of the workflow graph. Its label is the tracker-side tag."""

    type: StateType
    label: str
    color: str = "#cccccc"
    role: str | None = None
    priority: int | None = None
    on: dict[str, Transition] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class WorkflowConfig:
    """Initial state id plus the ordered state map. Declaration order is meaningful."""

    initial: str
    states: dict[str, StateConfig]

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> WorkflowConfig:
        """Parse a JSON-shaped workflow definition without validating graph invariants."""

        initial = raw.get("initial")
        states_raw = raw.get("states")
        if not isinstance(initial, str) or not initial:
            raise ConfigError("Workflow 'initial' must be a non-empty state id")
        if not isinstance(states_raw, dict) or not states_raw:
            raise ConfigError("Workflow 'states' must be a non-empty mapping")

        states: dict[str, StateConfig] = {}
        for key, state_raw in states_raw.items():
            if not isinstance(state_raw, dict):
                raise ConfigError(f"State {key!r} must be a mapping")
            try:
                state_type = StateType(state_raw.get("type"))
            except ValueError as error:
                raise ConfigError(
                    f"State {key!r} has invalid type {state_raw.get('type')!r}",
                ) from error
            label = state_raw.get("label")
            if not isinstance(label, str) or not label:
                raise ConfigError(f"State {key!r} must have a non-empty label")
            priority = state_raw.get("priority")
            if priority is not None and not isinstance(priority, int):
                raise ConfigError(f"State {key!r} priority must be an integer")
            transitions = {
                str(event): Transition.from_raw(target, where=f"{key}.on.{event}")
                for event, target in (state_raw.get("on") or {}).items()
            }
            states[key] = StateConfig(
                type=state_type,
                label=label,
                color=str(state_raw.get("color", "#cccccc")),
                role=state_raw.get("role"),
                priority=priority,
                on=transitions,
            )
        return cls(initial=initial, states=states)

    def to_dict(self) -> dict[str, Any]:
        states: dict[str, Any] = {}
        for key, state in self.states.items():
            entry: dict[str, Any] = {"type": state.type.value, "label": state.label}
            entry["color"] = state.color
            if state.role is not None:
                entry["role"] = state.role
            if state.priority is not None:
                entry["priority"] = state.priority
            if state.on:
                entry["on"] = {event: target.to_raw() for event, target in state.on.items()}
            states[key] = entry
        return {"initial": self.initial, "states": states}


@dataclass(frozen=True, slots=True)
class CompletionRule:
    """Label move plus side effects for one role:result pair, derived from the graph."""

    from_label: str
    to_label: str
    sync_source: bool = False
    detect_artifact: bool = False
    close_task: bool = False
    reopen_task: bool = False
