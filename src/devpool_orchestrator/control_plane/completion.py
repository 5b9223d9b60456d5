"""Apply worker completions: fire the workflow transition and free the slot."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Final

import structlog

from devpool_orchestrator.capacity.slots import deactivate_slot
from devpool_orchestrator.control_plane.context import SOFT_ERRORS, soft_call
from devpool_orchestrator.control_plane.passes import run_transition_actions
from devpool_orchestrator.observability.audit import AuditEvent
from devpool_orchestrator.utils.concurrency import run_with_timeout
from devpool_orchestrator.workflow.model import MissingActiveStateError, WorkflowEvent
from devpool_orchestrator.workflow.queries import active_state

if TYPE_CHECKING:
    from collections.abc import Iterable

    from devpool_orchestrator.capacity.projects import Project
    from devpool_orchestrator.control_plane.context import ControlContext
    from devpool_orchestrator.control_plane.inflight import WorkCompletion
    from devpool_orchestrator.integration.issue_provider import IssueProvider

logger = structlog.get_logger(__name__)

RESULT_EVENTS: Final[dict[str, WorkflowEvent]] = {
    "done": WorkflowEvent.COMPLETE,
    "pass": WorkflowEvent.PASS,
    "fail": WorkflowEvent.FAIL,
    "refine": WorkflowEvent.REFINE,
    "blocked": WorkflowEvent.BLOCKED,
    "approve": WorkflowEvent.APPROVE,
    "reject": WorkflowEvent.REJECT,
}

WORK_FINISH_EVENT: Final[str] = "work_finish"


@dataclass(frozen=True, slots=True)
class CompletionOutcome:
    accepted: bool
    reason: str
    from_label: str | None = None
    to_label: str | None = None


async def apply_completion(
    ctx: ControlContext,
    provider: IssueProvider,
    project: Project,
    completion: WorkCompletion,
) -> CompletionOutcome:
    """Finish ``completion``'s slot. Rejected completions leave all state untouched."""

    log = logger.bind(
        project=project.slug,
        role=completion.role,
        level=completion.level,
        slot=completion.slot_index,
        issue_id=completion.issue_id,
        result=completion.result,
    )

    def reject(reason: str) -> CompletionOutcome:
        log.warning("completion_rejected", reason=reason)
        return CompletionOutcome(accepted=False, reason=reason)

    role = ctx.roles.get(completion.role)
    if role is None:
        return reject("unknown_role")
    event = RESULT_EVENTS.get(completion.result)
    if event is None or completion.result not in role.completion_results:
        return reject("unknown_result")

    state = project.role_worker(completion.role)
    slots = state.slots(completion.level)
    if completion.slot_index >= len(slots):
        return reject("unknown_slot")
    slot = slots[completion.slot_index]
    if not slot.active or slot.issue_id != completion.issue_id:
        return reject("ticket_mismatch")

    try:
        active = active_state(ctx.workflow, completion.role)
    except MissingActiveStateError:
        return reject("role_not_dispatchable")
    transition = active.transition(event)
    if transition is None:
        return reject("no_transition")
    to_label = ctx.workflow.state(transition.target).label

    report = await run_transition_actions(
        ctx,
        provider,
        project,
        completion.issue_id,
        transition.actions,
        stop_on_merge_failure=False,
    )
    try:
        await run_with_timeout(
            provider.transition_label(completion.issue_id, active.label, to_label),
            ctx.provider_timeout,
        )
    except SOFT_ERRORS as exc:
        # The orphaned-label scan returns the ticket to its queue on a later tick.
        log.error("completion_transition_failed", error=str(exc), to_label=to_label)

    deactivate_slot(state, completion.level, completion.slot_index)
    ctx.ledger.release(completion.slot)

    payload: dict[str, object] = {
        "project": project.slug,
        "issueId": completion.issue_id,
        "role": completion.role,
        "level": completion.level,
        "slot": completion.slot_index,
        "result": completion.result,
        "summary": completion.summary,
        "from": active.label,
        "to": to_label,
        "prUrl": report.pr_url,
        "merged": report.merged,
    }
    ctx.audit.record(AuditEvent.WORK_FINISH, payload)
    if ctx.notifier is not None:
        await soft_call(
            ctx.notifier.notify(WORK_FINISH_EVENT, payload),
            ctx.provider_timeout,
            default=None,
            event="completion_notify_failed",
            issue_id=completion.issue_id,
        )
    log.info("work_finished", from_label=active.label, to_label=to_label)
    return CompletionOutcome(
        accepted=True, reason="applied", from_label=active.label, to_label=to_label
    )


async def apply_completions(
    ctx: ControlContext,
    provider: IssueProvider,
    project: Project,
    completions: Iterable[WorkCompletion],
) -> int:
    """Apply each completion in arrival order; return how many were accepted."""

    accepted = 0
    for completion in completions:
        outcome = await apply_completion(ctx, provider, project, completion)
        if outcome.accepted:
            accepted += 1
    return accepted


__all__ = [
    "CompletionOutcome",
    "RESULT_EVENTS",
    "WORK_FINISH_EVENT",
    "apply_completion",
    "apply_completions",
]
