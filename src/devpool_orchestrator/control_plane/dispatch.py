"""
devpool-orchestrator — session dispatch

File: src/devpool_orchestrator/control_plane/dispatch.py
Last updated: 2026-10-19

Purpose
- Hand one ticket to one worker slot: resolve model and session, gather
  context, move the label, ensure the session and send the task message.

Functional requirements
- Moving the ticket from its queue label to the role's active label is the
  commitment point. Anything that fails after it rolls the label back.
- The session is reused across dispatches into the same slot unless its
  context usage exceeds the configured budget. Redispatching the same ticket
  never clears the session.
- Context gathering (comments, PR feedback, PR diff) is best-effort.
- Failures are returned as ``DispatchOutcome(success=False)``; nothing raises
  out of ``dispatch_task``, adapter bugs included.

Non-functional requirements
- Every external call is bounded by the matching configured timeout.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Final

import structlog

from devpool_orchestrator.capacity.slots import activate_slot
from devpool_orchestrator.control_plane.context import SOFT_ERRORS, soft_call
from devpool_orchestrator.control_plane.inflight import SlotBusyError, SlotRef
from devpool_orchestrator.control_plane.messages import (
    FeedbackReason,
    PrContext,
    PrFeedback,
    TaskMessageInput,
    build_task_message,
    format_session_label,
)
from devpool_orchestrator.domain.models import PrState, utc_now
from devpool_orchestrator.domain.roles import UnknownRoleError
from devpool_orchestrator.integration.session_runtime import session_key as build_session_key
from devpool_orchestrator.observability.audit import AuditEvent
from devpool_orchestrator.utils.concurrency import run_with_timeout
from devpool_orchestrator.utils.names import slot_name
from devpool_orchestrator.workflow.labels import (
    OWNER_LABEL_COLOR,
    REVIEW_STEP,
    STEP_ROUTING_COLOR,
    TEST_STEP,
    detect_owner,
    owner_label,
    resolve_review_routing,
    resolve_test_routing,
    role_label_color,
    role_level_label,
)
from devpool_orchestrator.workflow.model import MissingActiveStateError
from devpool_orchestrator.workflow.queries import (
    active_label,
    has_review_check,
    has_test_phase,
    is_feedback_state,
    produces_reviewable_work,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from devpool_orchestrator.capacity.projects import Project
    from devpool_orchestrator.control_plane.context import ControlContext
    from devpool_orchestrator.domain.models import PrReviewComment, PrStatus, Ticket
    from devpool_orchestrator.integration.issue_provider import IssueProvider

logger = structlog.get_logger(__name__)

WORKER_START_EVENT: Final[str] = "worker_start"


@dataclass(frozen=True, slots=True)
class DispatchOutcome:
    success: bool
    reason: str
    project: str
    issue_id: str
    role: str
    level: str
    slot_index: int
    session_key: str | None = None
    model: str | None = None
    session_action: str | None = None


def dispatch_idempotency_key(
    project: str, issue_id: str, role: str, level: str, slot_index: int, session_key: str
) -> str:
    return f"devpool-{project}-{issue_id}-{role}-{level}-{slot_index}-{session_key}"


async def dispatch_task(
    ctx: ControlContext,
    provider: IssueProvider,
    project: Project,
    ticket: Ticket,
    *,
    role: str,
    level: str,
    slot_index: int,
    from_label: str,
) -> DispatchOutcome:
    """Dispatch ``ticket`` into ``project``'s ``role``/``level`` slot ``slot_index``.

    Mutates ``project.workers`` in memory on success; the caller persists it.
    Never raises: an unexpected error before the label commit is reported as
    ``dispatch_error`` with nothing changed.
    """

    try:
        return await _dispatch(
            ctx,
            provider,
            project,
            ticket,
            role=role,
            level=level,
            slot_index=slot_index,
            from_label=from_label,
        )
    except Exception as exc:  # noqa: BLE001 - one ticket must not abort the tick
        logger.exception(
            "dispatch_failed",
            project=project.slug,
            issue_id=ticket.id,
            role=role,
            error=str(exc),
            error_type=type(exc).__name__,
        )
        return DispatchOutcome(
            success=False,
            reason="dispatch_error",
            project=project.slug,
            issue_id=ticket.id,
            role=role,
            level=level,
            slot_index=slot_index,
        )


async def _dispatch(
    ctx: ControlContext,
    provider: IssueProvider,
    project: Project,
    ticket: Ticket,
    *,
    role: str,
    level: str,
    slot_index: int,
    from_label: str,
) -> DispatchOutcome:
    log = logger.bind(
        project=project.slug, role=role, level=level, slot=slot_index, issue_id=ticket.id
    )

    def outcome(success: bool, reason: str, **extra: str | None) -> DispatchOutcome:
        return DispatchOutcome(
            success=success,
            reason=reason,
            project=project.slug,
            issue_id=ticket.id,
            role=role,
            level=level,
            slot_index=slot_index,
            **extra,
        )

    try:
        role_config = ctx.roles.require(role)
        to_label = active_label(ctx.workflow, role)
    except (UnknownRoleError, MissingActiveStateError) as exc:
        log.error("dispatch_rejected", reason="role_not_dispatchable", error=str(exc))
        return outcome(False, "role_not_dispatchable")

    state = project.role_worker(role)
    slots = state.slots(level)
    slot_ref = SlotRef(project.slug, role, level, slot_index)
    if slot_index >= len(slots) or slots[slot_index].active:
        log.warning("dispatch_rejected", reason="slot_unavailable")
        return outcome(False, "slot_unavailable")
    if ctx.ledger.is_busy(slot_ref):
        log.warning("dispatch_rejected", reason="slot_busy")
        return outcome(False, "slot_busy")

    slot = slots[slot_index]
    model = role_config.model_for(level)
    key = build_session_key(ctx.agent_id, project.slug, role, level, slot_index)

    if slot.session_key is not None and await should_clear_session(
        ctx,
        existing_key=slot.session_key,
        slot_issue_id=slot.issue_id,
        issue_id=ticket.id,
        project=project.slug,
    ):
        await soft_call(
            ctx.runtime.reset_session(slot.session_key),
            ctx.gateway_timeout,
            default=None,
            event="session_reset_failed",
            session_key=slot.session_key,
        )
        slot.session_key = None
    if slot.session_key is not None and slot.session_key != key:
        log.info("session_key_replaced", previous=slot.session_key, session_key=key)
        slot.session_key = None
    session_action = "send" if slot.session_key is not None else "spawn"

    comments = await soft_call(
        provider.list_comments(ticket.id),
        ctx.provider_timeout,
        default=(),
        event="dispatch_comments_unavailable",
        issue_id=ticket.id,
    )
    from_state = ctx.workflow.state_for_label(from_label)
    pr_feedback = None
    if from_state is not None and is_feedback_state(ctx.workflow, from_state.id):
        pr_feedback = await fetch_pr_feedback(
            provider, ticket.id, timeout_seconds=ctx.provider_timeout
        )
    pr_context = None
    if has_review_check(ctx.workflow, role):
        pr_context = await fetch_pr_context(
            provider, ticket.id, timeout_seconds=ctx.provider_timeout
        )

    channel = project.primary_channel
    message = build_task_message(
        TaskMessageInput(
            project=project.name,
            role=role,
            issue_id=ticket.id,
            title=ticket.title,
            issue_url=ticket.url or "",
            repo=project.repo,
            base_branch=project.base_branch,
            completion_results=role_config.completion_results,
            description=ticket.description,
            channel=None if channel is None else channel.target,
            comments=tuple(comments),
            pr_context=pr_context,
            pr_feedback=pr_feedback,
        )
    )

    try:
        await run_with_timeout(
            provider.transition_label(ticket.id, from_label, to_label), ctx.provider_timeout
        )
    except SOFT_ERRORS as exc:
        log.warning("dispatch_label_transition_failed", error=str(exc), from_label=from_label)
        return outcome(False, "label_transition_failed")

    name = slot.name or slot_name(project.slug, role, level, slot_index)
    idempotency_key = dispatch_idempotency_key(
        project.slug, ticket.id, role, level, slot_index, key
    )
    try:
        labels = await apply_dispatch_labels(
            ctx, provider, ticket, role=role, level=level, name=name
        )
        await run_with_timeout(
            ctx.runtime.ensure_session(
                key, model, format_session_label(project.name, role, level, name)
            ),
            ctx.session_patch_timeout,
        )
        await run_with_timeout(
            ctx.runtime.send_message(
                key,
                message,
                idempotency_key=idempotency_key,
                thread_id=None if channel is None else channel.thread_id,
            ),
            ctx.dispatch_timeout,
        )
    except SOFT_ERRORS as exc:
        log.error("dispatch_session_failed", error=str(exc), session_key=key)
        await _rollback(ctx, provider, ticket.id, slot_ref, active=to_label, queue=from_label)
        return outcome(False, "session_failed", session_key=key, model=model)
    except Exception as exc:  # noqa: BLE001 - one ticket must not abort the tick
        log.exception("dispatch_failed", error=str(exc), error_type=type(exc).__name__)
        await _rollback(ctx, provider, ticket.id, slot_ref, active=to_label, queue=from_label)
        return outcome(False, "dispatch_error", session_key=key, model=model)

    activate_slot(
        state,
        level,
        slot_index,
        issue_id=ticket.id,
        session_key=key,
        start_time=utc_now(),
        previous_label=from_label,
    )
    try:
        ctx.ledger.submit(slot_ref, ticket.id, session_key=key)
    except SlotBusyError as exc:
        log.error("dispatch_ledger_conflict", error=str(exc))

    ctx.audit.record(
        AuditEvent.DISPATCH,
        {
            "project": project.slug,
            "issue": ticket.id,
            "issueTitle": ticket.title,
            "role": role,
            "level": level,
            "slot": slot_index,
            "sessionAction": session_action,
            "sessionKey": key,
            "labelTransition": f"{from_label} -> {to_label}",
        },
    )
    ctx.audit.record(
        AuditEvent.MODEL_SELECTION,
        {"issue": ticket.id, "role": role, "level": level, "model": model},
    )
    if ctx.notifier is not None:
        try:
            await soft_call(
                ctx.notifier.notify(
                    WORKER_START_EVENT,
                    {
                        "project": project.name,
                        "issueId": ticket.id,
                        "issueTitle": ticket.title,
                        "issueUrl": ticket.url,
                        "role": role,
                        "level": level,
                        "name": name,
                        "sessionAction": session_action,
                        "labels": list(labels),
                    },
                ),
                ctx.provider_timeout,
                default=None,
                event="dispatch_notify_failed",
                issue_id=ticket.id,
            )
        except Exception as exc:  # noqa: BLE001 - the worker is already running
            log.exception("dispatch_notify_failed", error=str(exc))

    log.info("dispatched", session_key=key, model=model, session_action=session_action)
    return outcome(True, "dispatched", session_key=key, model=model, session_action=session_action)


async def should_clear_session(
    ctx: ControlContext,
    *,
    existing_key: str,
    slot_issue_id: str | None,
    issue_id: str,
    project: str,
) -> bool:
    """Whether the slot's session must be reset before this dispatch.

    Same-ticket redispatch keeps the session. An unreachable runtime or an
    unknown session never clears.
    """

    if slot_issue_id is not None and slot_issue_id == issue_id:
        return False
    sessions = await soft_call(
        ctx.runtime.list_sessions(),
        ctx.gateway_timeout,
        default=None,
        event="session_budget_check_unavailable",
        session_key=existing_key,
    )
    if sessions is None:
        return False
    info = sessions.get(existing_key)
    if info is None:
        return False
    budget = ctx.timeouts.session_context_budget
    if info.context_ratio <= budget:
        return False
    ctx.audit.record(
        AuditEvent.SESSION_BUDGET_RESET,
        {
            "project": project,
            "sessionKey": existing_key,
            "reason": "context_budget",
            "percentUsed": info.percent_used,
            "threshold": budget * 100,
            "totalTokens": info.total_tokens,
            "contextTokens": info.context_tokens,
        },
    )
    return True


async def apply_dispatch_labels(
    ctx: ControlContext,
    provider: IssueProvider,
    ticket: Ticket,
    *,
    role: str,
    level: str,
    name: str,
) -> tuple[str, ...]:
    """Best-effort level, routing and owner labels; returns the labels last seen on the ticket."""

    try:
        current = await run_with_timeout(provider.get_issue(ticket.id), ctx.provider_timeout)
        labels = current.labels
    except SOFT_ERRORS as exc:
        logger.warning("dispatch_labels_refetch_failed", issue_id=ticket.id, error=str(exc))
        labels = ticket.labels

    try:
        await _replace_prefixed(
            ctx,
            provider,
            ticket.id,
            labels,
            prefix=f"{role}:",
            label=role_level_label(role, level, name),
            color=role_label_color(role),
        )
        if produces_reviewable_work(ctx.workflow, role):
            await _replace_prefixed(
                ctx,
                provider,
                ticket.id,
                labels,
                prefix=f"{REVIEW_STEP}:",
                label=resolve_review_routing(ctx.workflow.review_policy),
                color=STEP_ROUTING_COLOR,
            )
        if has_test_phase(ctx.workflow):
            await _replace_prefixed(
                ctx,
                provider,
                ticket.id,
                labels,
                prefix=f"{TEST_STEP}:",
                label=resolve_test_routing(ctx.workflow.test_policy),
                color=STEP_ROUTING_COLOR,
            )
        if detect_owner(labels) is None:
            claim = owner_label(ctx.instance_name)
            await run_with_timeout(
                provider.ensure_label(claim, OWNER_LABEL_COLOR), ctx.provider_timeout
            )
            await run_with_timeout(provider.add_label(ticket.id, claim), ctx.provider_timeout)
    except SOFT_ERRORS as exc:
        logger.warning("dispatch_labels_failed", issue_id=ticket.id, error=str(exc))
    return tuple(labels)


async def fetch_pr_feedback(
    provider: IssueProvider, issue_id: str, *, timeout_seconds: float
) -> PrFeedback | None:
    """Review comments of the ticket's open PR, classified by why the work came back."""

    try:
        status = await run_with_timeout(provider.get_pr_status(issue_id), timeout_seconds)
        if status is None or not status.url or status.state in (PrState.MERGED, PrState.CLOSED):
            return None
        comments: Sequence[PrReviewComment] = await run_with_timeout(
            provider.get_pr_review_comments(issue_id), timeout_seconds
        )
    except SOFT_ERRORS as exc:
        logger.warning("pr_feedback_unavailable", issue_id=issue_id, error=str(exc))
        return None
    if not comments:
        return None
    return PrFeedback(
        url=status.url,
        reason=_feedback_reason(status),
        comments=tuple(comments),
        branch_name=status.source_branch,
    )


async def fetch_pr_context(
    provider: IssueProvider, issue_id: str, *, timeout_seconds: float
) -> PrContext | None:
    try:
        status = await run_with_timeout(provider.get_pr_status(issue_id), timeout_seconds)
    except SOFT_ERRORS as exc:
        logger.warning("pr_context_unavailable", issue_id=issue_id, error=str(exc))
        return None
    if status is None or not status.url:
        return None
    diff = await soft_call(
        provider.get_pr_diff(issue_id),
        timeout_seconds,
        default=None,
        event="pr_diff_unavailable",
        issue_id=issue_id,
    )
    return PrContext(url=status.url, diff=diff)


def _feedback_reason(status: PrStatus) -> FeedbackReason:
    if status.mergeable is False:
        return FeedbackReason.MERGE_CONFLICT
    if status.state in (PrState.CHANGES_REQUESTED, PrState.HAS_COMMENTS):
        return FeedbackReason.CHANGES_REQUESTED
    return FeedbackReason.REJECTED


async def _replace_prefixed(
    ctx: ControlContext,
    provider: IssueProvider,
    issue_id: str,
    labels: Sequence[str],
    *,
    prefix: str,
    label: str,
    color: str,
) -> None:
    stale = [item for item in labels if item.lower().startswith(prefix) and item != label]
    if stale:
        await run_with_timeout(provider.remove_labels(issue_id, stale), ctx.provider_timeout)
    if label in labels:
        return
    await run_with_timeout(provider.ensure_label(label, color), ctx.provider_timeout)
    await run_with_timeout(provider.add_label(issue_id, label), ctx.provider_timeout)


async def _rollback(
    ctx: ControlContext,
    provider: IssueProvider,
    issue_id: str,
    slot_ref: SlotRef,
    *,
    active: str,
    queue: str,
) -> None:
    ctx.ledger.release(slot_ref)
    try:
        await soft_call(
            provider.transition_label(issue_id, active, queue),
            ctx.provider_timeout,
            default=None,
            event="dispatch_rollback_failed",
            issue_id=issue_id,
            slot=str(slot_ref),
        )
    except Exception as exc:  # noqa: BLE001 - health repairs the orphaned label
        logger.exception(
            "dispatch_rollback_failed", issue_id=issue_id, slot=str(slot_ref), error=str(exc)
        )


__all__ = [
    "DispatchOutcome",
    "WORKER_START_EVENT",
    "apply_dispatch_labels",
    "dispatch_idempotency_key",
    "dispatch_task",
    "fetch_pr_context",
    "fetch_pr_feedback",
    "should_clear_session",
]
