"""
devpool-orchestrator — worker health checks and repairs

File: src/devpool_orchestrator/control_plane/health.py
Last updated: 2026-10-19

Purpose
- Detect slots whose persisted state disagrees with the tracker or the session
  runtime, and repair them when ``auto_fix`` is enabled.

Functional requirements
- One finding per slot per pass; the first matching condition wins.
- A ticket lookup that fails transiently makes the ticket unknown: checks that
  depend on its labels are skipped for this pass.
- An unreachable liveness oracle skips the zombie check entirely, and slots
  activated within the grace period are never declared dead.
- Stale workers are reported, never killed.
- Every repair releases the slot's in-flight record and is safe to repeat.

Non-functional requirements
- Mutates the project's slot tables in memory only; the caller persists.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Final

import structlog

from devpool_orchestrator.capacity.slots import deactivate_slot
from devpool_orchestrator.control_plane.context import SOFT_ERRORS, soft_call
from devpool_orchestrator.control_plane.inflight import SlotRef
from devpool_orchestrator.domain.models import utc_now
from devpool_orchestrator.integration.issue_provider import TicketNotFoundError
from devpool_orchestrator.observability.audit import AuditEvent
from devpool_orchestrator.utils.concurrency import run_with_timeout
from devpool_orchestrator.workflow.labels import is_owned_by_or_unclaimed
from devpool_orchestrator.workflow.model import AmbiguousStateError, MissingActiveStateError
from devpool_orchestrator.workflow.queries import (
    active_label,
    current_state_label,
    has_workflow_states,
    revert_label,
)

if TYPE_CHECKING:
    from devpool_orchestrator.capacity.projects import Project
    from devpool_orchestrator.capacity.slots import WorkerSlot
    from devpool_orchestrator.control_plane.context import ControlContext
    from devpool_orchestrator.domain.models import SessionInfo, Ticket
    from devpool_orchestrator.integration.issue_provider import IssueProvider

logger = structlog.get_logger(__name__)

_CLOSED_STATES: Final[frozenset[str]] = frozenset({"closed"})


class HealthIssueKind(StrEnum):
    ISSUE_GONE = "issue_gone"
    LABEL_MISMATCH = "label_mismatch"
    NO_SESSION = "no_session"
    SESSION_DEAD = "session_dead"
    CONTEXT_OVERFLOW = "context_overflow"
    STALE_WORKER = "stale_worker"
    STUCK_LABEL = "stuck_label"
    ORPHAN_ISSUE_ID = "orphan_issue_id"
    ORPHANED_LABEL = "orphaned_label"


class Severity(StrEnum):
    CRITICAL = "critical"
    WARNING = "warning"


@dataclass(frozen=True, slots=True)
class HealthIssue:
    kind: HealthIssueKind
    severity: Severity
    project: str
    role: str
    message: str
    level: str | None = None
    slot_index: int | None = None
    issue_id: str | None = None
    session_key: str | None = None
    expected_label: str | None = None
    actual_label: str | None = None
    hours_active: float | None = None


@dataclass(slots=True)
class HealthFix:
    issue: HealthIssue
    fixed: bool = False
    label_reverted: str | None = None
    label_revert_failed: bool = False

    def to_dict(self) -> dict[str, object]:
        return {
            "type": self.issue.kind.value,
            "severity": self.issue.severity.value,
            "project": self.issue.project,
            "role": self.issue.role,
            "level": self.issue.level,
            "slot": self.issue.slot_index,
            "issueId": self.issue.issue_id,
            "sessionKey": self.issue.session_key,
            "message": self.issue.message,
            "fixed": self.fixed,
            "labelReverted": self.label_reverted,
            "labelRevertFailed": self.label_revert_failed,
        }


class _Unknown:
    """Sentinel: the ticket lookup failed transiently."""


_UNKNOWN: Final = _Unknown()


async def fetch_session_lookup(ctx: ControlContext) -> Mapping[str, SessionInfo] | None:
    """Liveness oracle snapshot, or ``None`` when the runtime cannot be reached."""

    return await soft_call(
        ctx.runtime.list_sessions(),
        ctx.gateway_timeout,
        default=None,
        event="session_lookup_unavailable",
    )


async def check_project_health(
    ctx: ControlContext,
    provider: IssueProvider,
    project: Project,
    *,
    sessions: Mapping[str, SessionInfo] | None,
    now: datetime | None = None,
) -> list[HealthFix]:
    """Run every slot check and the orphaned-label scan for each workflow role."""

    checked_at = now or utc_now()
    fixes: list[HealthFix] = []
    for role in ctx.workflow.roles:
        if not has_workflow_states(ctx.workflow, role) or role not in ctx.roles:
            continue
        try:
            expected = active_label(ctx.workflow, role)
            fallback = revert_label(ctx.workflow, role)
        except MissingActiveStateError:
            continue
        checker = _SlotChecker(
            ctx, provider, project, role, expected=expected, fallback=fallback, now=checked_at
        )
        for level, index, slot in list(project.role_worker(role).iter_slots()):
            fix = await checker.check(level, index, slot, sessions)
            if fix is not None:
                fixes.append(fix)
        fixes.extend(await scan_orphaned_labels(ctx, provider, project, role))

    for fix in fixes:
        _report(ctx, fix)
    return fixes


async def scan_orphaned_labels(
    ctx: ControlContext, provider: IssueProvider, project: Project, role: str
) -> list[HealthFix]:
    """Tickets on ``role``'s active label that no active slot of this project tracks."""

    try:
        expected = active_label(ctx.workflow, role)
        fallback = revert_label(ctx.workflow, role)
    except MissingActiveStateError:
        return []
    tickets = await soft_call(
        provider.list_issues_by_label(expected),
        ctx.provider_timeout,
        default=None,
        event="orphan_scan_unavailable",
        project=project.slug,
        role=role,
    )
    if tickets is None:
        return []
    tracked = {
        slot.issue_id
        for _, _, slot in project.role_worker(role).iter_slots()
        if slot.active and slot.issue_id is not None
    }
    fixes: list[HealthFix] = []
    for ticket in tickets:
        if ticket.id in tracked or not is_owned_by_or_unclaimed(ticket.labels, ctx.instance_name):
            continue
        fix = HealthFix(
            HealthIssue(
                kind=HealthIssueKind.ORPHANED_LABEL,
                severity=Severity.CRITICAL,
                project=project.slug,
                role=role,
                issue_id=ticket.id,
                expected_label=fallback,
                actual_label=expected,
                message=(
                    f'Issue #{ticket.id} has "{expected}" but no {role} worker is tracking it'
                ),
            )
        )
        if ctx.health.auto_fix:
            if await _revert(ctx, provider, fix, ticket.id, expected, fallback):
                fix.fixed = True
        fixes.append(fix)
    return fixes


class _SlotChecker:
    def __init__(
        self,
        ctx: ControlContext,
        provider: IssueProvider,
        project: Project,
        role: str,
        *,
        expected: str,
        fallback: str,
        now: datetime,
    ) -> None:
        self._ctx = ctx
        self._provider = provider
        self._project = project
        self._role = role
        self._expected = expected
        self._fallback = fallback
        self._now = now

    async def check(
        self,
        level: str,
        index: int,
        slot: WorkerSlot,
        sessions: Mapping[str, SessionInfo] | None,
    ) -> HealthFix | None:
        ticket = await self._lookup(slot.issue_id)
        try:
            current = self._current_label(ticket)
        except AmbiguousStateError as exc:
            logger.warning(
                "health_ticket_ambiguous", issue_id=slot.issue_id, labels=list(exc.labels)
            )
            ticket, current = _UNKNOWN, None
        if slot.active:
            return await self._check_active(level, index, slot, sessions, ticket, current)
        return await self._check_inactive(level, index, slot, ticket, current)

    async def _check_active(
        self,
        level: str,
        index: int,
        slot: WorkerSlot,
        sessions: Mapping[str, SessionInfo] | None,
        ticket: Ticket | _Unknown | None,
        current: str | None,
    ) -> HealthFix | None:
        known = not isinstance(ticket, _Unknown)
        queue = slot.previous_label or self._fallback
        auto_fix = self._ctx.health.auto_fix

        if slot.issue_id is not None and known and ticket is None:
            fix = self._fix(
                HealthIssueKind.ISSUE_GONE,
                level,
                index,
                slot,
                f"{self._role} active but issue #{slot.issue_id} no longer exists or is closed",
            )
            if auto_fix:
                self._deactivate(level, index, clear_session=True)
                fix.fixed = True
            return fix

        if known and ticket is not None and current != self._expected:
            fix = self._fix(
                HealthIssueKind.LABEL_MISMATCH,
                level,
                index,
                slot,
                f'{self._role} active but issue #{slot.issue_id} has label "{current}" '
                f'(expected "{self._expected}")',
                actual_label=current,
            )
            if auto_fix:
                self._deactivate(level, index, clear_session=True)
                fix.fixed = True
            return fix

        if slot.session_key is None:
            fix = self._fix(
                HealthIssueKind.NO_SESSION,
                level,
                index,
                slot,
                f"{self._role} active but no session reference for level {level!r}",
            )
            if auto_fix:
                if current == self._expected and slot.issue_id is not None:
                    await _revert(
                        self._ctx, self._provider, fix, slot.issue_id, self._expected, queue
                    )
                self._deactivate(level, index, clear_session=False)
                fix.fixed = True
            return fix

        if sessions is None:
            # Liveness unknown: nothing below can be decided.
            return None

        info = sessions.get(slot.session_key)
        if info is None:
            if self._within_grace(slot):
                return None
            fix = self._fix(
                HealthIssueKind.SESSION_DEAD,
                level,
                index,
                slot,
                f'{self._role} active but session "{slot.session_key}" is not known to the runtime',
            )
            if auto_fix:
                if current == self._expected and slot.issue_id is not None:
                    await _revert(
                        self._ctx, self._provider, fix, slot.issue_id, self._expected, queue
                    )
                self._deactivate(level, index, clear_session=True)
                fix.fixed = True
            return fix

        if info.aborted_last_run:
            fix = self._fix(
                HealthIssueKind.CONTEXT_OVERFLOW,
                level,
                index,
                slot,
                f'{self._role} session "{slot.session_key}" hit its context limit',
                actual_label=current,
            )
            self._ctx.audit.record(
                AuditEvent.CONTEXT_OVERFLOW_HEALED,
                {
                    "project": self._project.slug,
                    "role": self._role,
                    "level": level,
                    "slot": index,
                    "issueId": slot.issue_id,
                    "sessionKey": slot.session_key,
                },
            )
            if auto_fix:
                if current == self._expected and slot.issue_id is not None:
                    await _revert(
                        self._ctx, self._provider, fix, slot.issue_id, self._expected, queue
                    )
                self._deactivate(level, index, clear_session=True)
                fix.fixed = True
            return fix

        if slot.start_time is not None:
            hours = (self._now - slot.start_time).total_seconds() / 3600
            if hours > self._ctx.timeouts.stale_worker_hours:
                return self._fix(
                    HealthIssueKind.STALE_WORKER,
                    level,
                    index,
                    slot,
                    f"{self._role} active for {hours:.1f}h, may need attention",
                    severity=Severity.WARNING,
                    hours_active=round(hours, 1),
                )
        return None

    async def _check_inactive(
        self,
        level: str,
        index: int,
        slot: WorkerSlot,
        ticket: Ticket | _Unknown | None,
        current: str | None,
    ) -> HealthFix | None:
        auto_fix = self._ctx.health.auto_fix
        if isinstance(ticket, _Unknown) or slot.issue_id is None:
            return None

        if ticket is not None and current == self._expected:
            fix = self._fix(
                HealthIssueKind.STUCK_LABEL,
                level,
                index,
                slot,
                f'{self._role} inactive but issue #{slot.issue_id} still has "{current}"',
                actual_label=current,
            )
            if auto_fix:
                await _revert(
                    self._ctx, self._provider, fix, slot.issue_id, self._expected, self._fallback
                )
                slot.issue_id = None
                self._release(level, index)
                fix.fixed = True
            return fix

        fix = self._fix(
            HealthIssueKind.ORPHAN_ISSUE_ID,
            level,
            index,
            slot,
            f'{self._role} inactive but still references issue "{slot.issue_id}"',
            severity=Severity.WARNING,
        )
        if auto_fix:
            slot.issue_id = None
            self._release(level, index)
            fix.fixed = True
        return fix

    async def _lookup(self, issue_id: str | None) -> Ticket | _Unknown | None:
        if issue_id is None:
            return None
        try:
            ticket = await run_with_timeout(
                self._provider.get_issue(issue_id), self._ctx.provider_timeout
            )
        except TicketNotFoundError:
            return None
        except SOFT_ERRORS as exc:
            logger.warning(
                "health_ticket_unknown",
                project=self._project.slug,
                issue_id=issue_id,
                error=str(exc),
            )
            return _UNKNOWN
        if ticket.state.lower() in _CLOSED_STATES:
            return None
        return ticket

    def _current_label(self, ticket: Ticket | _Unknown | None) -> str | None:
        if ticket is None or isinstance(ticket, _Unknown):
            return None
        return current_state_label(
            self._ctx.workflow, ticket.labels, strict=self._ctx.strict_labels
        )

    def _within_grace(self, slot: WorkerSlot) -> bool:
        if slot.start_time is None:
            return False
        elapsed = (self._now - slot.start_time).total_seconds()
        return elapsed < self._ctx.health.grace_period_seconds

    def _deactivate(self, level: str, index: int, *, clear_session: bool) -> None:
        deactivate_slot(
            self._project.role_worker(self._role), level, index, clear_session=clear_session
        )
        self._release(level, index)

    def _release(self, level: str, index: int) -> None:
        self._ctx.ledger.release(SlotRef(self._project.slug, self._role, level, index))

    def _fix(
        self,
        kind: HealthIssueKind,
        level: str,
        index: int,
        slot: WorkerSlot,
        message: str,
        *,
        severity: Severity = Severity.CRITICAL,
        actual_label: str | None = None,
        hours_active: float | None = None,
    ) -> HealthFix:
        return HealthFix(
            HealthIssue(
                kind=kind,
                severity=severity,
                project=self._project.slug,
                role=self._role,
                message=message,
                level=level,
                slot_index=index,
                issue_id=slot.issue_id,
                session_key=slot.session_key,
                expected_label=self._expected,
                actual_label=actual_label,
                hours_active=hours_active,
            )
        )


async def _revert(
    ctx: ControlContext,
    provider: IssueProvider,
    fix: HealthFix,
    issue_id: str,
    from_label: str,
    to_label: str,
) -> bool:
    try:
        await run_with_timeout(
            provider.transition_label(issue_id, from_label, to_label), ctx.provider_timeout
        )
    except SOFT_ERRORS as exc:
        logger.warning("health_revert_failed", issue_id=issue_id, error=str(exc))
        fix.label_revert_failed = True
        return False
    fix.label_reverted = f"{from_label} -> {to_label}"
    return True


def _report(ctx: ControlContext, fix: HealthFix) -> None:
    issue = fix.issue
    log = logger.bind(project=issue.project, role=issue.role, issue_id=issue.issue_id)
    if issue.severity is Severity.WARNING:
        log.warning("health_issue", kind=issue.kind.value, fixed=fix.fixed, message=issue.message)
    else:
        log.error("health_issue", kind=issue.kind.value, fixed=fix.fixed, message=issue.message)
    if fix.fixed:
        ctx.audit.record(AuditEvent.HEALTH_FIX, fix.to_dict())


__all__ = [
    "HealthFix",
    "HealthIssue",
    "HealthIssueKind",
    "Severity",
    "check_project_health",
    "fetch_session_lookup",
    "scan_orphaned_labels",
]
