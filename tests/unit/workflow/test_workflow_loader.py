"""
devpool-orchestrator — unit tests for the YAML workflow loader

File: tests/unit/workflow/test_workflow_loader.py
Last updated: 2026-10-19

Purpose
- Validate overlay semantics of YAML workflow files on the built-in pipeline.

What this test file should cover
- Scalar overrides, per-state replacement and ``null`` removal.
- Actionable errors for missing files, bad YAML and unknown keys.
- Policy overrides layered on top of a file.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from devpool_orchestrator.workflow.defaults import DEFAULT_WORKFLOW, default_workflow_definition
from devpool_orchestrator.workflow.loader import (
    load_workflow,
    overlay_workflow_definition,
    parse_workflow,
)
from devpool_orchestrator.workflow.model import ReviewPolicy, TestPolicy, WorkflowValidationError

if TYPE_CHECKING:
    from pathlib import Path


def _write(path: Path, text: str) -> Path:
    path.write_text(text, encoding="utf-8")
    return path


def test_no_path_and_no_overrides_returns_builtin() -> None:
    assert load_workflow() is DEFAULT_WORKFLOW
    assert load_workflow(None, overrides={}) is DEFAULT_WORKFLOW


def test_yaml_overlay_replaces_and_removes_states(tmp_path: Path) -> None:
    path = _write(
        tmp_path / "workflow.yaml",
        """
review_policy: agent
test_policy: agent
states:
  toResearch: null
  researching: null
  todo:
    type: queue
    role: developer
    label: Backlog
    priority: 5
    on:
      PICKUP: doing
""",
    )

    workflow = load_workflow(path)

    assert workflow.review_policy is ReviewPolicy.AGENT
    assert workflow.test_policy is TestPolicy.AGENT
    assert "architect" not in workflow.roles
    assert workflow.get_state("toResearch") is None
    assert workflow.state("todo").label == "Backlog"
    assert workflow.state_for_label("To Do") is None


def test_definition_may_be_nested_under_workflow_key(tmp_path: Path) -> None:
    path = _write(tmp_path / "workflow.yaml", "workflow:\n  max_workers_per_level: 5\n")

    assert load_workflow(path).max_workers_per_level == 5


def test_empty_file_yields_default_graph(tmp_path: Path) -> None:
    path = _write(tmp_path / "workflow.yaml", "")

    assert load_workflow(path) == DEFAULT_WORKFLOW


def test_overrides_apply_after_file(tmp_path: Path) -> None:
    path = _write(tmp_path / "workflow.yaml", "review_policy: agent\n")

    workflow = load_workflow(path, overrides={"review_policy": "skip", "test_policy": None})

    assert workflow.review_policy is ReviewPolicy.SKIP
    assert workflow.test_policy is TestPolicy.SKIP


def test_removing_a_referenced_state_fails_validation(tmp_path: Path) -> None:
    path = _write(tmp_path / "workflow.yaml", "states:\n  doing: null\n")

    with pytest.raises(WorkflowValidationError) as excinfo:
        load_workflow(path)

    assert any("targets unknown state 'doing'" in item for item in excinfo.value.issues)


@pytest.mark.parametrize(
    ("text", "message"),
    [
        ("plugins: []\n", "unknown workflow keys"),
        ("- a\n- b\n", "expected top-level YAML mapping"),
        ("states: [a, b]\n", "states must be a mapping"),
        ("workflow: 3\n", "'workflow' must be a mapping"),
        ("states: {todo: [\n", "invalid YAML"),
    ],
)
def test_malformed_files_raise_validation_errors(tmp_path: Path, text: str, message: str) -> None:
    path = _write(tmp_path / "workflow.yaml", text)

    with pytest.raises(WorkflowValidationError, match=message):
        load_workflow(path)


def test_missing_file_raises(tmp_path: Path) -> None:
    with pytest.raises(WorkflowValidationError, match="does not exist"):
        load_workflow(tmp_path / "absent.yaml")


def test_overlay_does_not_mutate_base() -> None:
    base = default_workflow_definition()

    merged = overlay_workflow_definition(base, {"states": {"planning": None}, "initial": "todo"})

    assert "planning" not in merged["states"]
    assert merged["initial"] == "todo"
    assert "planning" in base["states"]
    assert base["initial"] == "planning"
    assert parse_workflow({"states": {"planning": None}, "initial": "todo"}).initial == "todo"
