"""
devpool-orchestrator — per-project tick and dispatch pass

File: src/devpool_orchestrator/control_plane/scheduler.py
Last updated: 2026-10-19

Purpose
- Run one project's share of a heartbeat tick: completions, capacity
  reconcile, health, review / skip passes, then fill free slots from the
  ticket queues.

Functional requirements
- The dispatch pass always serves the highest-priority non-empty queue across
  roles; ties go to role registration order.
- Within a queue the last eligible ticket is taken. Eligible means owned by
  this instance or unclaimed, and not routed away from the queue's role.
- The level comes from a ``role:level`` label for the same role, else from the
  keyword heuristic.
- Dispatch stops once the pickup budget is spent.
- ``role_execution=sequential`` skips a role while another role of the same
  project has an active slot.

Non-functional requirements
- The project's slot tables are mutated in memory; the caller persists them
  once the tick for this project is over.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import structlog

from devpool_orchestrator.capacity.projects import reconcile_project_capacity
from devpool_orchestrator.capacity.slots import count_active_slots, find_free_slot
from devpool_orchestrator.control_plane.completion import apply_completions
from devpool_orchestrator.control_plane.context import soft_call
from devpool_orchestrator.control_plane.dispatch import DispatchOutcome, dispatch_task
from devpool_orchestrator.control_plane.health import check_project_health
from devpool_orchestrator.control_plane.passes import (
    REVIEWER_ROLE,
    TESTER_ROLE,
    review_pass,
    review_skip_pass,
    test_skip_pass,
)
from devpool_orchestrator.domain.roles import LevelSelection, select_level
from devpool_orchestrator.workflow.labels import (
    REVIEW_STEP,
    TEST_STEP,
    StepRouting,
    detect_role_level_from_labels,
    detect_step_routing,
    is_owned_by_or_unclaimed,
)
from devpool_orchestrator.workflow.model import ExecutionMode, MissingActiveStateError
from devpool_orchestrator.workflow.queries import active_state, queue_states

if TYPE_CHECKING:
    from devpool_orchestrator.capacity.projects import Project
    from devpool_orchestrator.control_plane.context import ControlContext
    from devpool_orchestrator.control_plane.inflight import WorkCompletion
    from devpool_orchestrator.domain.models import SessionInfo, Ticket
    from devpool_orchestrator.domain.roles import RoleConfig, RoleRegistry
    from devpool_orchestrator.integration.issue_provider import IssueProvider
    from devpool_orchestrator.workflow.model import WorkflowState

logger = structlog.get_logger(__name__)


@dataclass(slots=True)
class TickResult:
    pickups: int = 0
    health_fixes: int = 0
    skipped: int = 0
    review_transitions: int = 0
    review_skip_transitions: int = 0
    test_skip_transitions: int = 0
    completions: int = 0
    active: bool = False
    dispatches: list[DispatchOutcome] = field(default_factory=list)

    def absorb(self, other: TickResult) -> None:
        self.pickups += other.pickups
        self.health_fixes += other.health_fixes
        self.skipped += other.skipped
        self.review_transitions += other.review_transitions
        self.review_skip_transitions += other.review_skip_transitions
        self.test_skip_transitions += other.test_skip_transitions
        self.completions += other.completions
        self.dispatches.extend(other.dispatches)

    @property
    def has_activity(self) -> bool:
        return any(
            (
                self.pickups,
                self.health_fixes,
                self.skipped,
                self.review_transitions,
                self.review_skip_transitions,
                self.test_skip_transitions,
                self.completions,
            )
        )


@dataclass(frozen=True, slots=True)
class QueueCandidate:
    role: str
    state: WorkflowState
    ticket: Ticket
    level: str
    level_reason: str
    slot_index: int


async def tick_project(
    ctx: ControlContext,
    provider: IssueProvider,
    project: Project,
    *,
    completions: Sequence[WorkCompletion] = (),
    sessions: Mapping[str, SessionInfo] | None = None,
    dispatch_budget: int,
    project_execution: ExecutionMode = ExecutionMode.PARALLEL,
    active_projects: int = 0,
    checkpoint: Callable[[], None] | None = None,
) -> TickResult:
    """One project's tick. ``result.active`` reports whether it has work in flight afterwards.

    ``checkpoint`` persists the project; it is called after every successful dispatch.
    """

    result = TickResult()
    log = logger.bind(project=project.slug)

    result.completions = await apply_completions(ctx, provider, project, completions)

    if reconcile_project_capacity(
        project,
        ctx.roles,
        roles=ctx.workflow.roles,
        default_max=ctx.workflow.max_workers_per_level,
    ):
        log.info("capacity_reconciled")

    fixes = await check_project_health(ctx, provider, project, sessions=sessions)
    result.health_fixes = sum(1 for fix in fixes if fix.fixed)

    result.review_transitions = await review_pass(ctx, provider, project)
    result.review_skip_transitions = await review_skip_pass(ctx, provider, project)
    result.test_skip_transitions = await test_skip_pass(ctx, provider, project)

    was_active = project_has_active_slots(project)
    if dispatch_budget <= 0:
        log.debug("dispatch_budget_exhausted")
    elif project_execution is ExecutionMode.SEQUENTIAL and not was_active and active_projects >= 1:
        log.debug("dispatch_deferred", reason="sequential_project_execution")
        result.skipped += 1
    else:
        result.dispatches = await dispatch_pass(
            ctx, provider, project, budget=dispatch_budget, checkpoint=checkpoint
        )
        result.pickups = sum(1 for outcome in result.dispatches if outcome.success)

    result.active = was_active or result.pickups > 0
    return result


async def dispatch_pass(
    ctx: ControlContext,
    provider: IssueProvider,
    project: Project,
    *,
    budget: int,
    checkpoint: Callable[[], None] | None = None,
) -> list[DispatchOutcome]:
    """Fill free slots until ``budget`` pickups happened or no candidate remains."""

    outcomes: list[DispatchOutcome] = []
    attempted: set[str] = set()
    listings: dict[str, Sequence[Ticket] | None] = {}
    pickups = 0
    while pickups < budget:
        candidate = await find_next_candidate(
            ctx, provider, project, exclude=attempted, listings=listings
        )
        if candidate is None:
            break
        attempted.add(candidate.ticket.id)
        logger.info(
            "dispatch_candidate",
            project=project.slug,
            role=candidate.role,
            issue_id=candidate.ticket.id,
            level=candidate.level,
            level_reason=candidate.level_reason,
            slot=candidate.slot_index,
        )
        outcome = await dispatch_task(
            ctx,
            provider,
            project,
            candidate.ticket,
            role=candidate.role,
            level=candidate.level,
            slot_index=candidate.slot_index,
            from_label=candidate.state.label,
        )
        outcomes.append(outcome)
        if outcome.success:
            pickups += 1
            if checkpoint is not None:
                checkpoint()
    return outcomes


async def find_next_candidate(
    ctx: ControlContext,
    provider: IssueProvider,
    project: Project,
    *,
    exclude: set[str] | frozenset[str] = frozenset(),
    listings: dict[str, Sequence[Ticket] | None] | None = None,
) -> QueueCandidate | None:
    cache = {} if listings is None else listings
    skip = set(exclude) | {entry.issue_id for entry in ctx.ledger.for_project(project.slug)}
    for role, state in _ordered_queues(ctx, project):
        role_config = ctx.roles.require(role)
        if state.label not in cache:
            cache[state.label] = await soft_call(
                provider.list_issues_by_label(state.label),
                ctx.provider_timeout,
                default=None,
                event="queue_listing_failed",
                project=project.slug,
                label=state.label,
            )
        tickets = cache[state.label]
        if not tickets:
            continue
        eligible = [ticket for ticket in tickets if _eligible(ctx, role, ticket, skip)]
        for ticket in reversed(eligible):
            selection = resolve_level(ticket, role_config, ctx.roles)
            slot_index = find_free_slot(project.role_worker(role), selection.level)
            if slot_index is None:
                continue
            return QueueCandidate(
                role=role,
                state=state,
                ticket=ticket,
                level=selection.level,
                level_reason=selection.reason,
                slot_index=slot_index,
            )
    return None


def resolve_level(ticket: Ticket, role: RoleConfig, registry: RoleRegistry) -> LevelSelection:
    detected = detect_role_level_from_labels(ticket.labels, registry.levels_by_role())
    if detected is not None:
        label_role, level, _ = detected
        if label_role == role.id:
            return LevelSelection(level, f"label {label_role}:{level}")
    return select_level(ticket.title, ticket.description, role)


def project_has_active_slots(project: Project) -> bool:
    return any(count_active_slots(state) > 0 for state in project.workers.values())


def _ordered_queues(
    ctx: ControlContext, project: Project
) -> list[tuple[str, WorkflowState]]:
    execution = project.role_execution or ctx.workflow.role_execution
    active_roles = {
        role for role, state in project.workers.items() if count_active_slots(state) > 0
    }
    ranked: list[tuple[int, int, int, str, WorkflowState]] = []
    for role_order, role in enumerate(ctx.roles.enabled_roles()):
        if execution is ExecutionMode.SEQUENTIAL and active_roles - {role.id}:
            continue
        try:
            active_state(ctx.workflow, role.id)
        except MissingActiveStateError:
            continue
        worker_state = project.role_worker(role.id)
        if all(find_free_slot(worker_state, level) is None for level in worker_state.levels):
            continue
        for state_order, state in enumerate(queue_states(ctx.workflow, role.id)):
            ranked.append((-state.priority, role_order, state_order, role.id, state))
    ranked.sort(key=lambda item: item[:3])
    return [(role, state) for _, _, _, role, state in ranked]


def _eligible(
    ctx: ControlContext, role: str, ticket: Ticket, exclude: set[str] | frozenset[str]
) -> bool:
    if ticket.id in exclude:
        return False
    if not is_owned_by_or_unclaimed(ticket.labels, ctx.instance_name):
        return False
    if role == REVIEWER_ROLE:
        routing = detect_step_routing(ticket.labels, REVIEW_STEP)
        if routing in (StepRouting.HUMAN, StepRouting.SKIP):
            return False
    if role == TESTER_ROLE and detect_step_routing(ticket.labels, TEST_STEP) == StepRouting.SKIP:
        return False
    return True


__all__ = [
    "QueueCandidate",
    "TickResult",
    "dispatch_pass",
    "find_next_candidate",
    "project_has_active_slots",
    "resolve_level",
    "tick_project",
]
