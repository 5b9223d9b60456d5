"""
devpool-orchestrator — workflow definition loader

File: src/devpool_orchestrator/workflow/loader.py
Last updated: 2026-10-19

Purpose
- Load a YAML workflow definition and overlay it on the built-in pipeline.

Overlay semantics
- Scalar top-level keys (``initial``, policies, ``max_workers_per_level``) override.
- ``states`` merge per state id: a state mapping replaces the default state of the
  same id wholesale; ``null`` removes that state.
- The merged result is validated; defects raise ``WorkflowValidationError``.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Final, TypeAlias, cast

import structlog
import yaml

from devpool_orchestrator.workflow.defaults import DEFAULT_WORKFLOW, default_workflow_definition
from devpool_orchestrator.workflow.model import Workflow, WorkflowValidationError

PathLike: TypeAlias = str | os.PathLike[str]

_TOP_LEVEL_KEYS: Final[frozenset[str]] = frozenset(
    {"initial", "review_policy", "test_policy", "role_execution", "max_workers_per_level", "states"}
)

logger = structlog.get_logger(__name__)


def overlay_workflow_definition(
    base: Mapping[str, Any],
    overlay: Mapping[str, Any],
) -> dict[str, Any]:
    unknown = sorted(str(key) for key in overlay if key not in _TOP_LEVEL_KEYS)
    if unknown:
        raise WorkflowValidationError([f"unknown workflow keys: {unknown}"])

    merged: dict[str, Any] = {key: value for key, value in base.items() if key != "states"}
    states: dict[str, Any] = dict(cast("Mapping[str, Any]", base.get("states") or {}))
    for key, value in overlay.items():
        if key != "states":
            merged[key] = value

    overlay_states = overlay.get("states")
    if overlay_states is not None:
        if not isinstance(overlay_states, Mapping):
            raise WorkflowValidationError(["states must be a mapping"])
        for state_id, state_value in overlay_states.items():
            if state_value is None:
                states.pop(str(state_id), None)
            else:
                states[str(state_id)] = state_value
    merged["states"] = states
    return merged


def parse_workflow(
    overlay: Mapping[str, Any] | None,
    *,
    overrides: Mapping[str, Any] | None = None,
) -> Workflow:
    """Build a validated workflow from an overlay mapping plus scalar policy overrides."""

    definition = default_workflow_definition()
    if overlay:
        definition = overlay_workflow_definition(definition, overlay)
    if overrides:
        definition = overlay_workflow_definition(
            definition,
            {key: value for key, value in overrides.items() if value is not None},
        )
    return Workflow.from_dict(definition)


def load_workflow(
    path: PathLike | None = None,
    *,
    overrides: Mapping[str, Any] | None = None,
) -> Workflow:
    """Load ``path`` (YAML) over the default workflow; ``None`` yields the default."""

    if path is None:
        if not overrides:
            return DEFAULT_WORKFLOW
        return parse_workflow(None, overrides=overrides)

    source = Path(path).expanduser()
    try:
        with source.open("r", encoding="utf-8") as handle:
            loaded = cast("object", yaml.safe_load(handle))
    except FileNotFoundError as exc:
        raise WorkflowValidationError([f"{source}: workflow file does not exist"]) from exc
    except yaml.YAMLError as exc:
        raise WorkflowValidationError([f"{source}: invalid YAML ({exc})"]) from exc

    if loaded is None:
        loaded = {}
    if not isinstance(loaded, Mapping):
        raise WorkflowValidationError(
            [f"{source}: expected top-level YAML mapping, got {type(loaded).__name__}"]
        )
    # A file may nest the definition under a top-level ``workflow`` key.
    body = loaded.get("workflow", loaded)
    if not isinstance(body, Mapping):
        raise WorkflowValidationError([f"{source}: 'workflow' must be a mapping"])

    workflow = parse_workflow(cast("Mapping[str, Any]", body), overrides=overrides)
    logger.info("workflow_loaded", path=source.as_posix(), states=len(workflow.states))
    return workflow


__all__ = ["load_workflow", "overlay_workflow_definition", "parse_workflow"]
