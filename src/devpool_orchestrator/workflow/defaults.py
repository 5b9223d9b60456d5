"""Built-in developer / reviewer / tester / architect pipeline."""

from __future__ import annotations

import copy
from typing import Any, Final

from devpool_orchestrator.workflow.model import Workflow

# Plain mapping form; YAML definitions are overlaid on a deep copy of this.
DEFAULT_WORKFLOW_DEFINITION: Final[dict[str, Any]] = {
    "initial": "planning",
    "review_policy": "human",
    "test_policy": "skip",
    "role_execution": "parallel",
    "max_workers_per_level": 2,
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
            "color": "#0366d6",
            "priority": 1,
            "on": {"PICKUP": "doing"},
        },
        "doing": {
            "type": "active",
            "role": "developer",
            "label": "Doing",
            "color": "#f0ad4e",
            "on": {
                "COMPLETE": {"target": "toReview", "actions": ["detectPr"]},
                "BLOCKED": "refining",
            },
        },
        "toReview": {
            "type": "queue",
            "role": "reviewer",
            "label": "To Review",
            "color": "#7057ff",
            "priority": 2,
            "check": "prApproved",
            "on": {
                "PICKUP": "reviewing",
                "APPROVED": {"target": "toTest", "actions": ["mergePr", "gitPull"]},
                "SKIP": {"target": "toTest", "actions": ["mergePr", "gitPull"]},
                "MERGE_FAILED": "toImprove",
                "CHANGES_REQUESTED": "toImprove",
                "MERGE_CONFLICT": "toImprove",
                "PR_CLOSED": {"target": "rejected", "actions": ["closeIssue"]},
            },
        },
        "reviewing": {
            "type": "active",
            "role": "reviewer",
            "label": "Reviewing",
            "color": "#c5def5",
            "on": {
                "APPROVE": {"target": "toTest", "actions": ["mergePr", "gitPull"]},
                "REJECT": "toImprove",
                "BLOCKED": "refining",
            },
        },
        "toTest": {
            "type": "queue",
            "role": "tester",
            "label": "To Test",
            "color": "#5bc0de",
            "priority": 2,
            "on": {
                "PICKUP": "testing",
                "SKIP": {"target": "done", "actions": ["closeIssue"]},
            },
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
        "done": {"type": "terminal", "label": "Done", "color": "#5cb85c"},
        "rejected": {"type": "terminal", "label": "Rejected", "color": "#e11d48"},
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
        "toResearch": {
            "type": "queue",
            "role": "architect",
            "label": "To Research",
            "color": "#0075ca",
            "priority": 1,
            "on": {"PICKUP": "researching"},
        },
        "researching": {
            "type": "active",
            "role": "architect",
            "label": "Researching",
            "color": "#4a90e2",
            "on": {
                "COMPLETE": {"target": "done", "actions": ["closeIssue"]},
                "BLOCKED": "refining",
            },
        },
    },
}


def default_workflow_definition() -> dict[str, Any]:
    """Return a mutable deep copy of the built-in definition."""

    return copy.deepcopy(DEFAULT_WORKFLOW_DEFINITION)


DEFAULT_WORKFLOW: Final[Workflow] = Workflow.from_dict(DEFAULT_WORKFLOW_DEFINITION)

__all__ = ["DEFAULT_WORKFLOW", "DEFAULT_WORKFLOW_DEFINITION", "default_workflow_definition"]
