"""
devpool-orchestrator — workflow state graph

File: src/devpool_orchestrator/workflow/model.py
Last updated: 2026-10-19

Purpose
- Typed, immutable representation of the label-driven workflow state machine.

What is included in this file
- State/transition/action/event vocabularies as ``StrEnum`` values.
- Frozen dataclasses for transitions, states and the whole workflow.
- Construction-time validation that fails fast on configuration defects.

Functional requirements
- Exactly one initial state; every queue/active state names a role.
- Transition targets reference existing states; labels are unique.
- Every role that owns a queue state owns exactly one active state.

Non-functional requirements
- Pure data: safe to share read-only between projects and ticks.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Final

from devpool_orchestrator.constants import DEFAULT_MAX_WORKERS_PER_LEVEL


class StateType(StrEnum):
    QUEUE = "queue"
    ACTIVE = "active"
    HOLD = "hold"
    TERMINAL = "terminal"


class ExecutionMode(StrEnum):
    PARALLEL = "parallel"
    SEQUENTIAL = "sequential"


class ReviewPolicy(StrEnum):
    HUMAN = "human"
    AGENT = "agent"
    SKIP = "skip"


class TestPolicy(StrEnum):
    __test__ = False

    SKIP = "skip"
    AGENT = "agent"


class ReviewCheck(StrEnum):
    PR_APPROVED = "prApproved"
    PR_MERGED = "prMerged"


class WorkflowAction(StrEnum):
    GIT_PULL = "gitPull"
    DETECT_PR = "detectPr"
    MERGE_PR = "mergePr"
    CLOSE_ISSUE = "closeIssue"
    REOPEN_ISSUE = "reopenIssue"


class WorkflowEvent(StrEnum):
    PICKUP = "PICKUP"
    COMPLETE = "COMPLETE"
    REVIEW = "REVIEW"
    APPROVED = "APPROVED"
    MERGE_FAILED = "MERGE_FAILED"
    CHANGES_REQUESTED = "CHANGES_REQUESTED"
    MERGE_CONFLICT = "MERGE_CONFLICT"
    PASS = "PASS"
    FAIL = "FAIL"
    SKIP = "SKIP"
    REFINE = "REFINE"
    BLOCKED = "BLOCKED"
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    PR_CLOSED = "PR_CLOSED"


# Events whose targets count as "feedback" states (work returning for rework).
FEEDBACK_EVENTS: Final[frozenset[str]] = frozenset(
    {
        WorkflowEvent.CHANGES_REQUESTED,
        WorkflowEvent.MERGE_CONFLICT,
        WorkflowEvent.MERGE_FAILED,
        WorkflowEvent.REJECT,
        WorkflowEvent.FAIL,
        WorkflowEvent.PR_CLOSED,
    }
)


class WorkflowError(ValueError):
    """Base class for workflow definition and query failures."""


class WorkflowValidationError(WorkflowError):
    """Raised when a workflow definition violates structural invariants."""

    def __init__(self, issues: Sequence[str]) -> None:
        self.issues = tuple(issues)
        rendered = "\n".join(f"- {item}" for item in self.issues) or "- unknown workflow defect"
        super().__init__(f"invalid workflow:\n{rendered}")


class MissingActiveStateError(WorkflowError):
    """Raised when a role has no (or more than one) active-type state."""


class AmbiguousStateError(WorkflowError):
    """Raised in strict mode when a ticket carries more than one workflow label."""

    def __init__(self, labels: Sequence[str]) -> None:
        self.labels = tuple(labels)
        super().__init__(f"ticket carries multiple workflow labels: {', '.join(self.labels)}")


@dataclass(frozen=True, slots=True)
class Transition:
    """One outgoing edge: event -> target state, with ordered side-effect actions."""

    event: str
    target: str
    actions: tuple[WorkflowAction, ...] = ()
    description: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.event, str) or not self.event.strip():
            raise ValueError("event must be a non-empty string")
        if not isinstance(self.target, str) or not self.target.strip():
            raise ValueError("target must be a non-empty string")
        object.__setattr__(self, "actions", tuple(WorkflowAction(item) for item in self.actions))

    @classmethod
    def parse(cls, event: str, raw: object) -> Transition:
        """Accept either a bare target string or ``{target, actions, description}``."""

        if isinstance(raw, str):
            return cls(event=event, target=raw)
        if isinstance(raw, Mapping):
            target = raw.get("target")
            if not isinstance(target, str):
                raise ValueError(f"transition {event!r} must define a string target")
            actions_raw = raw.get("actions") or ()
            if isinstance(actions_raw, str) or not isinstance(actions_raw, Sequence):
                raise ValueError(f"transition {event!r} actions must be a list")
            try:
                actions = tuple(WorkflowAction(str(item)) for item in actions_raw)
            except ValueError as exc:
                raise ValueError(f"transition {event!r} has unknown action: {exc}") from exc
            description = raw.get("description")
            return cls(
                event=event,
                target=target,
                actions=actions,
                description=description if isinstance(description, str) else None,
            )
        raise ValueError(f"transition {event!r} must be a string or mapping")

    def to_dict(self) -> dict[str, object] | str:
        if not self.actions and self.description is None:
            return self.target
        payload: dict[str, object] = {"target": self.target}
        if self.actions:
            payload["actions"] = [action.value for action in self.actions]
        if self.description is not None:
            payload["description"] = self.description
        return payload


@dataclass(frozen=True, slots=True)
class WorkflowState:
    """One workflow state and its outgoing transitions (in declaration order)."""

    id: str
    type: StateType
    label: str
    role: str | None = None
    priority: int = 0
    color: str | None = None
    description: str | None = None
    check: ReviewCheck | None = None
    transitions: tuple[Transition, ...] = ()

    def __post_init__(self) -> None:
        if not isinstance(self.id, str) or not self.id.strip():
            raise ValueError("state id must be a non-empty string")
        if not isinstance(self.label, str) or not self.label.strip():
            raise ValueError(f"state {self.id!r} label must be a non-empty string")
        if isinstance(self.priority, bool) or not isinstance(self.priority, int):
            raise ValueError(f"state {self.id!r} priority must be an integer")
        object.__setattr__(self, "type", StateType(self.type))
        if self.check is not None:
            object.__setattr__(self, "check", ReviewCheck(self.check))
        seen: set[str] = set()
        for transition in self.transitions:
            if transition.event in seen:
                raise ValueError(f"state {self.id!r} declares event {transition.event!r} twice")
            seen.add(transition.event)

    def transition(self, event: str) -> Transition | None:
        for candidate in self.transitions:
            if candidate.event == event:
                return candidate
        return None

    @property
    def events(self) -> tuple[str, ...]:
        return tuple(item.event for item in self.transitions)

    @classmethod
    def parse(cls, state_id: str, raw: Mapping[str, Any]) -> WorkflowState:
        on_raw = raw.get("on") or {}
        if not isinstance(on_raw, Mapping):
            raise ValueError(f"state {state_id!r} 'on' must be a mapping")
        transitions = tuple(Transition.parse(str(event), value) for event, value in on_raw.items())
        try:
            state_type = StateType(str(raw.get("type")))
        except ValueError as exc:
            raise ValueError(f"state {state_id!r} has invalid type {raw.get('type')!r}") from exc
        check_raw = raw.get("check")
        return cls(
            id=state_id,
            type=state_type,
            label=raw.get("label", ""),
            role=raw.get("role"),
            priority=raw.get("priority", 0),
            color=raw.get("color"),
            description=raw.get("description"),
            check=ReviewCheck(check_raw) if check_raw is not None else None,
            transitions=transitions,
        )

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {"type": self.type.value, "label": self.label}
        if self.role is not None:
            payload["role"] = self.role
        if self.priority:
            payload["priority"] = self.priority
        if self.color is not None:
            payload["color"] = self.color
        if self.description is not None:
            payload["description"] = self.description
        if self.check is not None:
            payload["check"] = self.check.value
        if self.transitions:
            payload["on"] = {item.event: item.to_dict() for item in self.transitions}
        return payload


@dataclass(frozen=True, slots=True)
class Workflow:
    """Validated workflow graph plus the policies that shape routing."""

    initial: str
    states: tuple[WorkflowState, ...]
    review_policy: ReviewPolicy = ReviewPolicy.HUMAN
    test_policy: TestPolicy = TestPolicy.SKIP
    role_execution: ExecutionMode = ExecutionMode.PARALLEL
    max_workers_per_level: int = DEFAULT_MAX_WORKERS_PER_LEVEL
    _by_id: dict[str, WorkflowState] = field(init=False, repr=False, compare=False)
    _by_label: dict[str, WorkflowState] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "review_policy", ReviewPolicy(self.review_policy))
        object.__setattr__(self, "test_policy", TestPolicy(self.test_policy))
        object.__setattr__(self, "role_execution", ExecutionMode(self.role_execution))
        object.__setattr__(self, "states", tuple(self.states))
        issues = _collect_structural_issues(self)
        if issues:
            raise WorkflowValidationError(issues)
        object.__setattr__(self, "_by_id", {state.id: state for state in self.states})
        object.__setattr__(self, "_by_label", {state.label: state for state in self.states})

    def state(self, state_id: str) -> WorkflowState:
        try:
            return self._by_id[state_id]
        except KeyError:
            raise KeyError(f"unknown workflow state: {state_id!r}") from None

    def get_state(self, state_id: str) -> WorkflowState | None:
        return self._by_id.get(state_id)

    def state_for_label(self, label: str) -> WorkflowState | None:
        return self._by_label.get(label)

    @property
    def labels(self) -> tuple[str, ...]:
        return tuple(state.label for state in self.states)

    @property
    def roles(self) -> tuple[str, ...]:
        """Roles that own at least one state, in registration order."""

        ordered: list[str] = []
        for state in self.states:
            if state.role is not None and state.role not in ordered:
                ordered.append(state.role)
        return tuple(ordered)

    def to_dict(self) -> dict[str, object]:
        return {
            "initial": self.initial,
            "review_policy": self.review_policy.value,
            "test_policy": self.test_policy.value,
            "role_execution": self.role_execution.value,
            "max_workers_per_level": self.max_workers_per_level,
            "states": {state.id: state.to_dict() for state in self.states},
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Workflow:
        states_raw = data.get("states")
        if not isinstance(states_raw, Mapping) or not states_raw:
            raise WorkflowValidationError(("states must be a non-empty mapping",))
        parsed: list[WorkflowState] = []
        problems: list[str] = []
        for state_id, raw in states_raw.items():
            if not isinstance(raw, Mapping):
                problems.append(f"states.{state_id}: expected mapping")
                continue
            try:
                parsed.append(WorkflowState.parse(str(state_id), raw))
            except ValueError as exc:
                problems.append(f"states.{state_id}: {exc}")
        if problems:
            raise WorkflowValidationError(problems)
        try:
            return cls(
                initial=str(data.get("initial", "")),
                states=tuple(parsed),
                review_policy=ReviewPolicy(data.get("review_policy", ReviewPolicy.HUMAN)),
                test_policy=TestPolicy(data.get("test_policy", TestPolicy.SKIP)),
                role_execution=ExecutionMode(data.get("role_execution", ExecutionMode.PARALLEL)),
                max_workers_per_level=int(
                    data.get("max_workers_per_level", DEFAULT_MAX_WORKERS_PER_LEVEL)
                ),
            )
        except WorkflowValidationError:
            raise
        except ValueError as exc:
            raise WorkflowValidationError((str(exc),)) from exc


def _collect_structural_issues(workflow: Workflow) -> list[str]:
    issues: list[str] = []
    if workflow.max_workers_per_level <= 0:
        issues.append("max_workers_per_level must be > 0")
    if not workflow.states:
        issues.append("workflow must define at least one state")
        return issues

    ids: set[str] = set()
    labels: dict[str, str] = {}
    for state in workflow.states:
        if state.id in ids:
            issues.append(f"duplicate state id {state.id!r}")
        ids.add(state.id)
        previous = labels.get(state.label.lower())
        if previous is not None:
            issues.append(f"states {previous!r} and {state.id!r} share label {state.label!r}")
        labels[state.label.lower()] = state.id

    if workflow.initial not in ids:
        issues.append(f"initial state {workflow.initial!r} is not defined")

    queue_roles: list[str] = []
    active_count: dict[str, int] = {}
    for state in workflow.states:
        if state.type in (StateType.QUEUE, StateType.ACTIVE) and not state.role:
            issues.append(f"{state.type.value} state {state.id!r} must declare a role")
        if state.type is StateType.QUEUE and state.role and state.role not in queue_roles:
            queue_roles.append(state.role)
        if state.type is StateType.ACTIVE and state.role:
            active_count[state.role] = active_count.get(state.role, 0) + 1
        if state.type is StateType.TERMINAL and state.transitions:
            issues.append(f"terminal state {state.id!r} must not declare transitions")
        for transition in state.transitions:
            if transition.target not in ids:
                issues.append(
                    f"state {state.id!r} event {transition.event!r} targets unknown state "
                    f"{transition.target!r}"
                )

    for role in queue_roles:
        count = active_count.get(role, 0)
        if count != 1:
            issues.append(f"role {role!r} must have exactly one active state, found {count}")
    return issues


__all__ = [
    "AmbiguousStateError",
    "ExecutionMode",
    "FEEDBACK_EVENTS",
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
]
