"""
devpool-orchestrator — workflow plane

File: src/devpool_orchestrator/workflow/__init__.py
Last updated: 2026-10-19

Purpose
- Declarative, label-driven workflow state machine: typed graph, pure queries,
  routing/owner label helpers, the built-in pipeline and a YAML loader.

Non-functional requirements
- No IO at import time beyond building the default workflow.
"""

from devpool_orchestrator.workflow.defaults import DEFAULT_WORKFLOW
from devpool_orchestrator.workflow.loader import load_workflow, parse_workflow
from devpool_orchestrator.workflow.model import (
    AmbiguousStateError,
    ExecutionMode,
    MissingActiveStateError,
    ReviewCheck,
    ReviewPolicy,
    StateType,
    TestPolicy,
    Transition,
    Workflow,
    WorkflowAction,
    WorkflowError,
    WorkflowEvent,
    WorkflowState,
    WorkflowValidationError,
)

__all__ = [
    "DEFAULT_WORKFLOW",
    "AmbiguousStateError",
    "ExecutionMode",
    "MissingActiveStateError",
    "ReviewCheck",
    "ReviewPolicy",
    "StateType",
    "TestPolicy",
    "Transition",
    "Workflow",
    "WorkflowAction",
    "WorkflowError",
    "WorkflowEvent",
    "WorkflowState",
    "WorkflowValidationError",
    "load_workflow",
    "parse_workflow",
]
