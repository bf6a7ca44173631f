"""Load and validate workflow definitions from JSON files."""

from __future__ import annotations

import json
from dataclasses import replace
from pathlib import Path

from labelflow.errors import ConfigError
from labelflow.roles import canonical_role
from labelflow.workflow.defaults import DEFAULT_WORKFLOW
from labelflow.workflow.engine import validate_workflow
from labelflow.workflow.models import WorkflowConfig


def load_workflow(path: Path | None = None) -> WorkflowConfig:
    """Return the validated workflow at ``path``, or the built-in one.

    The file holds either the graph itself or ``{"workflow": <graph>}``. Role
    aliases are resolved here, once, so downstream code only sees canonical ids.
    """

    if path is None:
        workflow = DEFAULT_WORKFLOW
    else:
        try:
            raw = json.loads(path.read_text("utf-8"))
        except FileNotFoundError as error:
            raise ConfigError(f"Workflow file not found: {path}") from error
        except json.JSONDecodeError as error:
            raise ConfigError(f"Workflow file is not valid JSON: {path}: {error}") from error
        if isinstance(raw, dict) and isinstance(raw.get("workflow"), dict):
            raw = raw["workflow"]
        if not isinstance(raw, dict):
            raise ConfigError(f"Workflow file must contain a JSON object: {path}")
        workflow = WorkflowConfig.from_dict(raw)

    workflow = canonicalize_roles(workflow)
    validate_workflow(workflow)
    return workflow


def canonicalize_roles(workflow: WorkflowConfig) -> WorkflowConfig:
    states = {
        key: replace(state, role=canonical_role(state.role)) if state.role else state
        for key, state in workflow.states.items()
    }
    return WorkflowConfig(initial=workflow.initial, states=states)
