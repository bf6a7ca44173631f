"""Built-in three-role pipeline: developer, tester, architect."""

from __future__ import annotations

from labelflow.workflow.models import WorkflowConfig

DEFAULT_WORKFLOW_DEFINITION: dict[str, object] = {
    "initial": "planning",
    "states": {
        "planning": {
            "type": "hold",
            "label": "Planning",
            "color": "#95a5a6",
            "on": {"APPROVE": "todo"},
        },
        "todo": {
            "type": "queue",
            "role": "developer",
            "label": "To Do",
            "color": "#428bca",
            "priority": 1,
            "on": {"PICKUP": "doing"},
        },
        "doing": {
            "type": "active",
            "role": "developer",
            "label": "Doing",
            "color": "#f0ad4e",
            "on": {
                "COMPLETE": {"target": "toTest", "actions": ["gitPull", "detectPr"]},
                "BLOCKED": "refining",
            },
        },
        "toTest": {
            "type": "queue",
            "role": "tester",
            "label": "To Test",
            "color": "#5bc0de",
            "priority": 2,
            "on": {"PICKUP": "testing"},
        },
        "testing": {
            "type": "active",
            "role": "tester",
            "label": "Testing",
            "color": "#9b59b6",
            "on": {
                "PASS": {"target": "done", "actions": ["closeIssue"]},
                "FAIL": {"target": "toImprove", "actions": ["reopenIssue"]},
                "REFINE": "refining",
                "BLOCKED": "refining",
            },
        },
        "toImprove": {
            "type": "queue",
            "role": "developer",
            "label": "To Improve",
            "color": "#d9534f",
            "priority": 3,
            "on": {"PICKUP": "doing"},
        },
        "refining": {
            "type": "hold",
            "label": "Refining",
            "color": "#f39c12",
            "on": {"APPROVE": "todo"},
        },
        "done": {
            "type": "terminal",
            "label": "Done",
            "color": "#5cb85c",
        },
        "toDesign": {
            "type": "queue",
            "role": "architect",
            "label": "To Design",
            "color": "#0075ca",
            "priority": 1,
            "on": {"PICKUP": "designing"},
        },
        "designing": {
            "type": "active",
            "role": "architect",
            "label": "Designing",
            "color": "#d4c5f9",
            "on": {
                "COMPLETE": "planning",
                "BLOCKED": "refining",
            },
        },
    },
}

DEFAULT_WORKFLOW = WorkflowConfig.from_dict(DEFAULT_WORKFLOW_DEFINITION)
