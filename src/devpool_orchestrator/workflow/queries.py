"""Pure query functions over a validated :class:`Workflow`."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from devpool_orchestrator.workflow.model import (
    FEEDBACK_EVENTS,
    AmbiguousStateError,
    MissingActiveStateError,
    StateType,
    WorkflowEvent,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

    from devpool_orchestrator.workflow.model import Transition, Workflow, WorkflowState

logger = structlog.get_logger(__name__)


def state_type(workflow: Workflow, state_id: str) -> StateType:
    return workflow.state(state_id).type


def state_role(workflow: Workflow, state_id: str) -> str | None:
    return workflow.state(state_id).role


def state_label(workflow: Workflow, state_id: str) -> str:
    return workflow.state(state_id).label


def state_priority(workflow: Workflow, state_id: str) -> int:
    return workflow.state(state_id).priority


def transition_for(workflow: Workflow, state_id: str, event: str) -> Transition | None:
    state = workflow.get_state(state_id)
    if state is None:
        return None
    return state.transition(event)


def state_for_label(workflow: Workflow, label: str) -> WorkflowState | None:
    return workflow.state_for_label(label)


def current_state_label(
    workflow: Workflow,
    labels: Iterable[str],
    *,
    strict: bool = False,
) -> str | None:
    """Return the first label on the ticket that is a workflow label.

    Tickets are expected to carry at most one workflow label. When more than
    one is present the first wins and a warning is logged; ``strict`` raises
    :class:`AmbiguousStateError` instead.
    """

    matches = [label for label in labels if workflow.state_for_label(label) is not None]
    if not matches:
        return None
    if len(matches) > 1:
        if strict:
            raise AmbiguousStateError(matches)
        logger.warning("workflow_label_ambiguous", labels=matches, chosen=matches[0])
    return matches[0]


def current_state(
    workflow: Workflow,
    labels: Iterable[str],
    *,
    strict: bool = False,
) -> WorkflowState | None:
    label = current_state_label(workflow, labels, strict=strict)
    return None if label is None else workflow.state_for_label(label)


def detect_role_from_label(workflow: Workflow, label: str) -> str | None:
    state = workflow.state_for_label(label)
    return None if state is None else state.role


def _sorted_queue_states(workflow: Workflow, role: str | None) -> list[WorkflowState]:
    indexed = [
        (index, state)
        for index, state in enumerate(workflow.states)
        if state.type is StateType.QUEUE and (role is None or state.role == role)
    ]
    # Priority descending, registration order for ties.
    indexed.sort(key=lambda item: (-item[1].priority, item[0]))
    return [state for _, state in indexed]


def queue_states(workflow: Workflow, role: str) -> tuple[WorkflowState, ...]:
    return tuple(_sorted_queue_states(workflow, role))


def queue_labels(workflow: Workflow, role: str) -> tuple[str, ...]:
    """Queue labels owned by ``role``, highest priority first."""

    return tuple(state.label for state in _sorted_queue_states(workflow, role))


def all_queue_labels(workflow: Workflow) -> tuple[str, ...]:
    return tuple(state.label for state in _sorted_queue_states(workflow, None))


def active_state(workflow: Workflow, role: str) -> WorkflowState:
    candidates = [
        state
        for state in workflow.states
        if state.type is StateType.ACTIVE and state.role == role
    ]
    if len(candidates) != 1:
        raise MissingActiveStateError(
            f"role {role!r} must have exactly one active state, found {len(candidates)}"
        )
    return candidates[0]


def active_label(workflow: Workflow, role: str) -> str:
    return active_state(workflow, role).label


def revert_label(workflow: Workflow, role: str) -> str:
    """Queue label a ticket goes back to when ``role``'s dispatch is undone.

    Prefers the queue state whose PICKUP transition targets the role's active
    state; falls back to the role's highest-priority queue label.
    """

    active = active_state(workflow, role)
    for state in workflow.states:
        if state.type is not StateType.QUEUE:
            continue
        pickup = state.transition(WorkflowEvent.PICKUP)
        if pickup is not None and pickup.target == active.id:
            return state.label
    labels = queue_labels(workflow, role)
    if not labels:
        raise MissingActiveStateError(f"role {role!r} has no queue state to revert to")
    return labels[0]


def feedback_state_ids(workflow: Workflow) -> frozenset[str]:
    targets: set[str] = set()
    for state in workflow.states:
        for transition in state.transitions:
            if transition.event in FEEDBACK_EVENTS:
                targets.add(transition.target)
    return frozenset(targets)


def is_feedback_state(workflow: Workflow, state_id: str) -> bool:
    return state_id in feedback_state_ids(workflow)


def has_review_check(workflow: Workflow, role: str) -> bool:
    return any(state.role == role and state.check is not None for state in workflow.states)


def has_test_phase(workflow: Workflow) -> bool:
    """True when any tester-owned queue state exists."""

    return any(
        state.type is StateType.QUEUE and state.role == "tester" for state in workflow.states
    )


def produces_reviewable_work(workflow: Workflow, role: str) -> bool:
    """True when a transition out of ``role``'s active state lands on a review-check state."""

    try:
        active = active_state(workflow, role)
    except MissingActiveStateError:
        return False
    for transition in active.transitions:
        target = workflow.get_state(transition.target)
        if target is not None and target.check is not None:
            return True
    return False


def has_workflow_states(workflow: Workflow, role: str) -> bool:
    return any(state.role == role for state in workflow.states)


def skip_states(workflow: Workflow, role: str) -> tuple[WorkflowState, ...]:
    """Queue states of ``role`` that define a SKIP transition."""

    return tuple(
        state
        for state in workflow.states
        if state.type is StateType.QUEUE
        and state.role == role
        and state.transition(WorkflowEvent.SKIP) is not None
    )


def review_check_states(workflow: Workflow) -> tuple[WorkflowState, ...]:
    return tuple(
        state
        for state in workflow.states
        if state.type is StateType.QUEUE and state.check is not None
    )


__all__ = [
    "active_label",
    "active_state",
    "all_queue_labels",
    "current_state",
    "current_state_label",
    "detect_role_from_label",
    "feedback_state_ids",
    "has_review_check",
    "has_test_phase",
    "has_workflow_states",
    "is_feedback_state",
    "produces_reviewable_work",
    "queue_labels",
    "queue_states",
    "review_check_states",
    "revert_label",
    "skip_states",
    "state_for_label",
    "state_label",
    "state_priority",
    "state_role",
    "state_type",
    "transition_for",
]
