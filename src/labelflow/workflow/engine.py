"""Pure derivations over a workflow graph. No I/O, no hardcoded state names."""

from __future__ import annotations

from collections.abc import Awaitable, Callable

from labelflow.errors import ConfigError
from labelflow.workflow.models import (
    CompletionRule,
    StateConfig,
    StateType,
    TransitionAction,
    WorkflowConfig,
)

PICKUP_EVENT = "PICKUP"

_RESULT_MARKERS: dict[str, str] = {
    "done": "✅",
    "pass": "🎉",
    "fail": "❌",
    "refine": "🤔",
    "blocked": "🚫",
}
_DEFAULT_MARKER = "📋"


def validate_workflow(workflow: WorkflowConfig) -> None:
    """Raise ConfigError on the first structural defect of the graph."""

    if workflow.initial not in workflow.states:
        raise ConfigError(f"Initial state {workflow.initial!r} is not defined")

    labels: dict[str, str] = {}
    for key, state in workflow.states.items():
        if state.label in labels:
            raise ConfigError(
                f"States {labels[state.label]!r} and {key!r} share label {state.label!r}",
            )
        labels[state.label] = key
        if state.type in (StateType.QUEUE, StateType.ACTIVE) and not state.role:
            raise ConfigError(f"{state.type.value} state {key!r} must declare a role")
        for event, transition in state.on.items():
            if transition.target not in workflow.states:
                raise ConfigError(
                    f"Transition {key}.{event} targets unknown state {transition.target!r}",
                )

    for role in {state.role for state in workflow.states.values() if state.role}:
        _active_state_key(workflow, role)


def roles(workflow: WorkflowConfig) -> tuple[str, ...]:
    """Roles owning an active state, in declaration order."""

    ordered: list[str] = []
    for state in workflow.states.values():
        if state.type == StateType.ACTIVE and state.role and state.role not in ordered:
            ordered.append(state.role)
    return tuple(ordered)


def state_labels(workflow: WorkflowConfig) -> list[str]:
    return [state.label for state in workflow.states.values()]


def label_colors(workflow: WorkflowConfig) -> dict[str, str]:
    return {state.label: state.color for state in workflow.states.values()}


def queue_labels(workflow: WorkflowConfig, role: str) -> list[str]:
    """Queue labels for a role, highest priority first; ties keep declaration order."""

    queues = [
        state
        for state in workflow.states.values()
        if state.type == StateType.QUEUE and state.role == role
    ]
    return [state.label for state in sorted(queues, key=lambda state: -(state.priority or 0))]


def all_queue_labels(workflow: WorkflowConfig) -> list[str]:
    queues = [state for state in workflow.states.values() if state.type == StateType.QUEUE]
    return [state.label for state in sorted(queues, key=lambda state: -(state.priority or 0))]


def active_label(workflow: WorkflowConfig, role: str) -> str:
    """The role's single in-progress label."""

    return workflow.states[_active_state_key(workflow, role)].label


def revert_label(workflow: WorkflowConfig, role: str) -> str:
    """Queue label a task returns to when its worker dies mid-flight."""

    active_key = _active_state_key(workflow, role)
    for state in workflow.states.values():
        if state.type != StateType.QUEUE or state.role != role:
            continue
        pickup = state.on.get(PICKUP_EVENT)
        if pickup is not None and pickup.target == active_key:
            return state.label
    fallback = queue_labels(workflow, role)
    if not fallback:
        raise ConfigError(f"Role {role!r} has no queue state to revert to")
    return fallback[0]


def find_state_by_label(workflow: WorkflowConfig, label: str) -> StateConfig | None:
    for state in workflow.states.values():
        if state.label == label:
            return state
    return None


def find_state_key_by_label(workflow: WorkflowConfig, label: str) -> str | None:
    for key, state in workflow.states.items():
        if state.label == label:
            return key
    return None


def detect_role_from_label(workflow: WorkflowConfig, label: str) -> str | None:
    state = find_state_by_label(workflow, label)
    if state is not None and state.type == StateType.QUEUE:
        return state.role
    return None


def is_queue_label(workflow: WorkflowConfig, label: str) -> bool:
    state = find_state_by_label(workflow, label)
    return state is not None and state.type == StateType.QUEUE


def is_active_label(workflow: WorkflowConfig, label: str) -> bool:
    state = find_state_by_label(workflow, label)
    return state is not None and state.type == StateType.ACTIVE


def current_state_label(workflow: WorkflowConfig, labels: list[str]) -> str | None:
    """First label of a task that names a workflow state."""

    known = set(state_labels(workflow))
    for label in labels:
        if label in known:
            return label
    return None


def result_to_event(result: str) -> str:
    """``done`` maps to COMPLETE; any other result is upper-cased."""

    if result == "done":
        return "COMPLETE"
    return result.upper()


def event_to_result(event: str) -> str:
    if event == "COMPLETE":
        return "done"
    return event.lower()


def completion_results(workflow: WorkflowConfig, role: str) -> tuple[str, ...]:
    """Results a role may finish with, read off its active state's transitions."""

    active = workflow.states[_active_state_key(workflow, role)]
    return tuple(event_to_result(event) for event in active.on)


def completion_rule(workflow: WorkflowConfig, role: str, result: str) -> CompletionRule | None:
    """Derive the rule for role:result, or None when the graph has no such transition."""

    active_key = _active_state_key(workflow, role)
    active = workflow.states[active_key]
    transition = active.on.get(result_to_event(result))
    if transition is None:
        return None
    target = workflow.states.get(transition.target)
    if target is None:
        raise ConfigError(
            f"Transition {active_key}.{result_to_event(result)} targets unknown state "
            f"{transition.target!r}",
        )
    actions = set(transition.actions)
    return CompletionRule(
        from_label=active.label,
        to_label=target.label,
        sync_source=TransitionAction.GIT_PULL in actions,
        detect_artifact=TransitionAction.DETECT_PR in actions,
        close_task=TransitionAction.CLOSE_ISSUE in actions,
        reopen_task=TransitionAction.REOPEN_ISSUE in actions,
    )


def next_state_description(workflow: WorkflowConfig, role: str, result: str) -> str:
    """Human-readable destination, derived from the target state's type."""

    rule = completion_rule(workflow, role, result)
    if rule is None:
        return ""
    target = find_state_by_label(workflow, rule.to_label)
    if target is None:
        return ""
    if target.type == StateType.TERMINAL:
        return "Done!"
    if target.type == StateType.HOLD:
        return "awaiting human decision"
    if target.type == StateType.QUEUE and target.role:
        return f"{target.role.upper()} queue"
    return rule.to_label


def completion_marker(result: str) -> str:
    return _RESULT_MARKERS.get(result, _DEFAULT_MARKER)


async def ensure_workflow_labels(
    workflow: WorkflowConfig,
    ensure_label: Callable[[str, str], Awaitable[None]],
) -> list[str]:
    """Provision every state label in the tracker. ``ensure_label`` must be idempotent."""

    created: list[str] = []
    for label, color in label_colors(workflow).items():
        await ensure_label(label, color)
        created.append(label)
    return created


def _active_state_key(workflow: WorkflowConfig, role: str) -> str:
    matches = [
        key
        for key, state in workflow.states.items()
        if state.type == StateType.ACTIVE and state.role == role
    ]
    if not matches:
        raise ConfigError(f"No active state for role {role!r}")
    if len(matches) > 1:
        raise ConfigError(
            f"Role {role!r} has {len(matches)} active states ({', '.join(matches)}); "
            "exactly one is required",
        )
    return matches[0]
