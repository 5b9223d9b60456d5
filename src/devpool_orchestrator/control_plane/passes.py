"""
devpool-orchestrator — auto-transition passes

File: src/devpool_orchestrator/control_plane/passes.py
Last updated: 2026-10-19

Purpose
- Move tickets that need no worker: PRs approved outside the pool (review
  pass) and tickets routed ``review:skip`` / ``test:skip`` (skip passes).
- Provide the transition action executor shared with completion handling.

Functional requirements
- Actions run in declaration order. A failed ``mergePr`` aborts the ticket and
  routes it through the state's ``MERGE_FAILED`` transition when one exists.
- ``gitPull``, ``closeIssue`` and ``reopenIssue`` are best-effort.
- A ticket whose listing or PR lookup fails is skipped for this tick.
- Each pass returns the number of label transitions it made.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from devpool_orchestrator.control_plane.context import SOFT_ERRORS, soft_call
from devpool_orchestrator.domain.models import PrState
from devpool_orchestrator.integration.commands import git_pull
from devpool_orchestrator.observability.audit import AuditEvent
from devpool_orchestrator.utils.concurrency import run_with_timeout
from devpool_orchestrator.workflow.labels import (
    REVIEW_STEP,
    TEST_STEP,
    StepRouting,
    detect_step_routing,
    is_owned_by_or_unclaimed,
)
from devpool_orchestrator.workflow.model import ReviewCheck, WorkflowAction, WorkflowEvent
from devpool_orchestrator.workflow.queries import review_check_states, skip_states

if TYPE_CHECKING:
    from collections.abc import Sequence

    from devpool_orchestrator.capacity.projects import Project
    from devpool_orchestrator.control_plane.context import ControlContext
    from devpool_orchestrator.domain.models import PrStatus, Ticket
    from devpool_orchestrator.integration.issue_provider import IssueProvider
    from devpool_orchestrator.workflow.model import WorkflowState

logger = structlog.get_logger(__name__)

REVIEWER_ROLE = "reviewer"
TESTER_ROLE = "tester"


@dataclass(slots=True)
class ActionReport:
    """What the action executor did for one ticket."""

    merged: bool = False
    merge_failed: bool = False
    deferred: bool = False
    error: str | None = None
    pr_url: str | None = None
    pr_title: str | None = None
    source_branch: str | None = None

    def note_pr(self, status: PrStatus | None) -> None:
        if status is None:
            return
        self.pr_url = self.pr_url or status.url
        self.pr_title = self.pr_title or status.title
        self.source_branch = self.source_branch or status.source_branch


async def run_transition_actions(
    ctx: ControlContext,
    provider: IssueProvider,
    project: Project,
    issue_id: str,
    actions: Sequence[WorkflowAction],
    *,
    stop_on_merge_failure: bool = True,
) -> ActionReport:
    """Execute ``actions`` in order for one ticket.

    With ``stop_on_merge_failure`` a failed merge ends the run and sets
    ``merge_failed``, and an unknown PR status ends it with ``deferred`` so the
    ticket is retried next tick. Otherwise both are logged and the run continues.
    """

    report = ActionReport()
    log = logger.bind(project=project.slug, issue_id=issue_id)
    for action in actions:
        if action is WorkflowAction.MERGE_PR:
            try:
                status = await run_with_timeout(
                    provider.get_pr_status(issue_id), ctx.provider_timeout
                )
            except SOFT_ERRORS as exc:
                log.warning("merge_status_unknown", error=str(exc))
                report.error = str(exc)
                if stop_on_merge_failure:
                    report.deferred = True
                    return report
                continue
            report.note_pr(status)
            if status is not None and status.state is PrState.MERGED:
                report.merged = True
                continue
            if status is None or not status.url:
                log.info("merge_skipped_no_pr")
                continue
            try:
                await run_with_timeout(provider.merge_pr(issue_id), ctx.provider_timeout)
                report.merged = True
            except SOFT_ERRORS as exc:
                log.warning("merge_failed", error=str(exc))
                report.error = str(exc)
                if stop_on_merge_failure:
                    report.merge_failed = True
                    return report
        elif action is WorkflowAction.GIT_PULL:
            await soft_call(
                git_pull(ctx.runner, Path(project.repo), timeout_seconds=ctx.git_pull_timeout),
                ctx.git_pull_timeout + ctx.provider_timeout,
                default=None,
                event="git_pull_failed",
                project=project.slug,
                repo=project.repo,
            )
        elif action is WorkflowAction.CLOSE_ISSUE:
            await soft_call(
                provider.close_issue(issue_id),
                ctx.provider_timeout,
                default=None,
                event="close_issue_failed",
                issue_id=issue_id,
            )
        elif action is WorkflowAction.REOPEN_ISSUE:
            await soft_call(
                provider.reopen_issue(issue_id),
                ctx.provider_timeout,
                default=None,
                event="reopen_issue_failed",
                issue_id=issue_id,
            )
        elif action is WorkflowAction.DETECT_PR:
            status = await soft_call(
                provider.get_pr_status(issue_id),
                ctx.provider_timeout,
                default=None,
                event="detect_pr_failed",
                issue_id=issue_id,
            )
            report.note_pr(status)
    return report


async def review_pass(ctx: ControlContext, provider: IssueProvider, project: Project) -> int:
    """Advance tickets whose PR satisfies their review state's check."""

    transitions = 0
    for state in review_check_states(ctx.workflow):
        approved = state.transition(WorkflowEvent.APPROVED)
        closed = state.transition(WorkflowEvent.PR_CLOSED)
        if approved is None and closed is None:
            continue
        for ticket in await _owned_tickets(ctx, provider, project, state):
            if detect_step_routing(ticket.labels, REVIEW_STEP) == StepRouting.AGENT:
                continue
            status = await soft_call(
                provider.get_pr_status(ticket.id),
                ctx.provider_timeout,
                default=None,
                event="review_status_unavailable",
                project=project.slug,
                issue_id=ticket.id,
            )
            if status is None:
                continue
            if closed is not None and status.is_closed_unmerged:
                if await _move(ctx, provider, ticket.id, state.label, closed.target):
                    await run_transition_actions(
                        ctx,
                        provider,
                        project,
                        ticket.id,
                        closed.actions,
                        stop_on_merge_failure=False,
                    )
                    _audit_transition(
                        ctx,
                        AuditEvent.REVIEW_TRANSITION,
                        project,
                        ticket,
                        state.label,
                        ctx.workflow.state(closed.target).label,
                        reason="pr_closed",
                        prState=status.state.value,
                        prUrl=status.url,
                    )
                    transitions += 1
                continue
            if approved is None or not _check_met(state.check, status):
                continue
            report = await run_transition_actions(
                ctx, provider, project, ticket.id, approved.actions
            )
            if report.deferred:
                continue
            if report.merge_failed:
                ctx.audit.record(
                    AuditEvent.REVIEW_MERGE_FAILED,
                    {
                        "project": project.slug,
                        "issueId": ticket.id,
                        "from": state.label,
                        "error": report.error,
                    },
                )
                transitions += await _route_merge_failure(ctx, provider, project, ticket, state)
                continue
            target_label = ctx.workflow.state(approved.target).label
            if await _move(ctx, provider, ticket.id, state.label, approved.target):
                _audit_transition(
                    ctx,
                    AuditEvent.REVIEW_TRANSITION,
                    project,
                    ticket,
                    state.label,
                    target_label,
                    check=None if state.check is None else state.check.value,
                    prState=status.state.value,
                    prUrl=status.url,
                )
                transitions += 1
    return transitions


async def review_skip_pass(ctx: ControlContext, provider: IssueProvider, project: Project) -> int:
    """Merge and advance reviewer-queue tickets routed ``review:skip``."""

    return await _skip_pass(
        ctx,
        provider,
        project,
        role=REVIEWER_ROLE,
        step=REVIEW_STEP,
        transition_event=AuditEvent.REVIEW_SKIP_TRANSITION,
    )


async def test_skip_pass(ctx: ControlContext, provider: IssueProvider, project: Project) -> int:
    """Advance tester-queue tickets routed ``test:skip``."""

    return await _skip_pass(
        ctx,
        provider,
        project,
        role=TESTER_ROLE,
        step=TEST_STEP,
        transition_event=AuditEvent.TEST_SKIP_TRANSITION,
    )


async def _skip_pass(
    ctx: ControlContext,
    provider: IssueProvider,
    project: Project,
    *,
    role: str,
    step: str,
    transition_event: AuditEvent,
) -> int:
    transitions = 0
    for state in skip_states(ctx.workflow, role):
        skip = state.transition(WorkflowEvent.SKIP)
        if skip is None:
            continue
        target_label = ctx.workflow.state(skip.target).label
        for ticket in await _owned_tickets(ctx, provider, project, state):
            if detect_step_routing(ticket.labels, step) != StepRouting.SKIP:
                continue
            report = await run_transition_actions(ctx, provider, project, ticket.id, skip.actions)
            if report.deferred:
                continue
            if report.merge_failed:
                ctx.audit.record(
                    AuditEvent.REVIEW_SKIP_MERGE_FAILED,
                    {
                        "project": project.slug,
                        "issueId": ticket.id,
                        "from": state.label,
                        "error": report.error,
                    },
                )
                transitions += await _route_merge_failure(ctx, provider, project, ticket, state)
                continue
            if await _move(ctx, provider, ticket.id, state.label, skip.target):
                _audit_transition(
                    ctx,
                    transition_event,
                    project,
                    ticket,
                    state.label,
                    target_label,
                    reason=f"{step}:{StepRouting.SKIP.value}",
                    merged=report.merged,
                    prUrl=report.pr_url,
                )
                transitions += 1
    return transitions


async def _owned_tickets(
    ctx: ControlContext, provider: IssueProvider, project: Project, state: WorkflowState
) -> list[Ticket]:
    tickets = await soft_call(
        provider.list_issues_by_label(state.label),
        ctx.provider_timeout,
        default=(),
        event="pass_listing_failed",
        project=project.slug,
        label=state.label,
    )
    return [
        ticket for ticket in tickets if is_owned_by_or_unclaimed(ticket.labels, ctx.instance_name)
    ]


def _check_met(check: ReviewCheck | None, status: PrStatus) -> bool:
    if check is ReviewCheck.PR_MERGED:
        return status.state is PrState.MERGED
    if check is ReviewCheck.PR_APPROVED:
        return status.state in (PrState.APPROVED, PrState.MERGED)
    return False


async def _route_merge_failure(
    ctx: ControlContext,
    provider: IssueProvider,
    project: Project,
    ticket: Ticket,
    state: WorkflowState,
) -> int:
    failed = state.transition(WorkflowEvent.MERGE_FAILED)
    if failed is None:
        return 0
    if not await _move(ctx, provider, ticket.id, state.label, failed.target):
        return 0
    _audit_transition(
        ctx,
        AuditEvent.REVIEW_TRANSITION,
        project,
        ticket,
        state.label,
        ctx.workflow.state(failed.target).label,
        reason="merge_failed",
    )
    return 1


async def _move(
    ctx: ControlContext, provider: IssueProvider, issue_id: str, from_label: str, target: str
) -> bool:
    to_label = ctx.workflow.state(target).label
    try:
        await run_with_timeout(
            provider.transition_label(issue_id, from_label, to_label), ctx.provider_timeout
        )
    except SOFT_ERRORS as exc:
        logger.warning(
            "pass_transition_failed",
            issue_id=issue_id,
            from_label=from_label,
            to_label=to_label,
            error=str(exc),
        )
        return False
    return True


def _audit_transition(
    ctx: ControlContext,
    event: AuditEvent,
    project: Project,
    ticket: Ticket,
    from_label: str,
    to_label: str,
    **extra: object,
) -> None:
    ctx.audit.record(
        event,
        {
            "project": project.slug,
            "issueId": ticket.id,
            "from": from_label,
            "to": to_label,
            **extra,
        },
    )
    logger.info(str(event), project=project.slug, issue_id=ticket.id, to_label=to_label)


__all__ = [
    "ActionReport",
    "review_pass",
    "review_skip_pass",
    "run_transition_actions",
    "test_skip_pass",
]
