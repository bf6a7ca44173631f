"""Declarative workflow graph and the pure functions derived from it."""

from labelflow.workflow.defaults import DEFAULT_WORKFLOW, DEFAULT_WORKFLOW_DEFINITION
from labelflow.workflow.engine import (
    active_label,
    all_queue_labels,
    completion_marker,
    completion_results,
    completion_rule,
    current_state_label,
    detect_role_from_label,
    ensure_workflow_labels,
    find_state_by_label,
    find_state_key_by_label,
    is_active_label,
    is_queue_label,
    label_colors,
    next_state_description,
    queue_labels,
    revert_label,
    roles,
    state_labels,
    validate_workflow,
)
from labelflow.workflow.loader import load_workflow
from labelflow.workflow.models import (
    CompletionRule,
    StateConfig,
    StateType,
    Transition,
    TransitionAction,
    WorkflowConfig,
)

__all__ = [
    "DEFAULT_WORKFLOW",
    "DEFAULT_WORKFLOW_DEFINITION",
    "CompletionRule",
    "StateConfig",
    "StateType",
    "Transition",
    "TransitionAction",
    "WorkflowConfig",
    "active_label",
    "all_queue_labels",
    "completion_marker",
    "completion_results",
    "completion_rule",
    "current_state_label",
    "detect_role_from_label",
    "ensure_workflow_labels",
    "find_state_by_label",
    "find_state_key_by_label",
    "is_active_label",
    "is_queue_label",
    "label_colors",
    "load_workflow",
    "next_state_description",
    "queue_labels",
    "revert_label",
    "roles",
    "state_labels",
    "validate_workflow",
]
