"""Unit tests for worker health checks and their repairs."""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING

from devpool_orchestrator.capacity.slots import activate_slot
from devpool_orchestrator.control_plane.health import (
    HealthIssueKind,
    Severity,
    check_project_health,
    fetch_session_lookup,
)
from devpool_orchestrator.control_plane.inflight import SlotRef
from devpool_orchestrator.domain.models import SessionInfo, utc_now
from devpool_orchestrator.observability.audit import AuditEvent

from . import (
    FakeIssueProvider,
    FakeSessionRuntime,
    IssueProviderError,
    audit_events,
    make_ctx,
    make_project,
)

if TYPE_CHECKING:
    from pathlib import Path

    from devpool_orchestrator.capacity.projects import Project

KEY = "agent:devpool:subagent:demo-developer-medior-0"


def _activate(
    project: Project,
    *,
    issue_id: str = "7",
    session_key: str | None = KEY,
    started_minutes_ago: float = 60,
    previous_label: str | None = "To Do",
) -> None:
    slot = activate_slot(
        project.role_worker("developer"),
        "medior",
        0,
        issue_id=issue_id,
        session_key=session_key or "placeholder",
        start_time=utc_now() - timedelta(minutes=started_minutes_ago),
        previous_label=previous_label,
    )
    slot.session_key = session_key


def _slot(project: Project):
    return project.role_worker("developer").slots("medior")[0]


async def test_liveness_timeout_leaves_active_slots_untouched(tmp_path: Path) -> None:
    runtime = FakeSessionRuntime()
    runtime.list_delay = 0.5
    ctx = make_ctx(tmp_path, runtime=runtime, config={"timeouts": {"gateway_ms": 10}})
    project = make_project(ctx)
    _activate(project)
    provider = FakeIssueProvider()
    provider.add(7, "Build it", "Doing")

    sessions = await fetch_session_lookup(ctx)
    fixes = await check_project_health(ctx, provider, project, sessions=sessions)

    assert sessions is None
    assert fixes == []
    assert _slot(project).active
    assert _slot(project).session_key == KEY
    assert provider.called("transition_label") == []


async def test_dead_session_reverts_to_previous_label(tmp_path: Path) -> None:
    ctx = make_ctx(tmp_path)
    project = make_project(ctx)
    _activate(project, previous_label="To Improve")
    ctx.ledger.submit(SlotRef("demo", "developer", "medior", 0), "7", session_key=KEY)
    provider = FakeIssueProvider()
    provider.add(7, "Build it", "Doing")

    fixes = await check_project_health(ctx, provider, project, sessions={})

    assert [fix.issue.kind for fix in fixes] == [HealthIssueKind.SESSION_DEAD]
    assert fixes[0].fixed
    assert fixes[0].label_reverted == "Doing -> To Improve"
    assert "To Improve" in provider.labels_of("7")
    slot = _slot(project)
    assert not slot.active
    assert slot.session_key is None
    assert slot.issue_id is None
    assert len(ctx.ledger) == 0
    assert audit_events(ctx, AuditEvent.HEALTH_FIX)[0]["type"] == "session_dead"


async def test_fresh_dispatch_within_grace_period_is_not_dead(tmp_path: Path) -> None:
    ctx = make_ctx(tmp_path)
    project = make_project(ctx)
    _activate(project, started_minutes_ago=1)
    provider = FakeIssueProvider()
    provider.add(7, "Build it", "Doing")

    fixes = await check_project_health(ctx, provider, project, sessions={})

    assert fixes == []
    assert _slot(project).active


async def test_closed_issue_frees_slot(tmp_path: Path) -> None:
    ctx = make_ctx(tmp_path)
    project = make_project(ctx)
    _activate(project)
    provider = FakeIssueProvider()
    provider.add(7, "Build it", "Doing")
    await provider.close_issue("7")

    fixes = await check_project_health(ctx, provider, project, sessions={KEY: SessionInfo(KEY)})

    assert fixes[0].issue.kind is HealthIssueKind.ISSUE_GONE
    assert not _slot(project).active
    assert _slot(project).session_key is None


async def test_label_mismatch_deactivates_without_relabel(tmp_path: Path) -> None:
    ctx = make_ctx(tmp_path)
    project = make_project(ctx)
    _activate(project)
    provider = FakeIssueProvider()
    provider.add(7, "Build it", "To Review")

    fixes = await check_project_health(ctx, provider, project, sessions={KEY: SessionInfo(KEY)})

    assert fixes[0].issue.kind is HealthIssueKind.LABEL_MISMATCH
    assert fixes[0].issue.actual_label == "To Review"
    assert not _slot(project).active
    assert provider.labels_of("7") == ("To Review",)


async def test_transient_ticket_failure_skips_label_checks(tmp_path: Path) -> None:
    ctx = make_ctx(tmp_path)
    project = make_project(ctx)
    _activate(project)
    provider = FakeIssueProvider()
    provider.add(7, "Build it", "To Review")
    provider.failures["get_issue"] = IssueProviderError("502 from tracker")

    fixes = await check_project_health(ctx, provider, project, sessions={KEY: SessionInfo(KEY)})

    assert fixes == []
    assert _slot(project).active


async def test_dead_session_with_unreadable_ticket_frees_slot_without_relabel(
    tmp_path: Path,
) -> None:
    ctx = make_ctx(tmp_path)
    project = make_project(ctx)
    _activate(project)
    provider = FakeIssueProvider()
    provider.add(7, "Build it", "To Review")
    provider.failures["get_issue"] = IssueProviderError("502 from tracker")

    fixes = await check_project_health(ctx, provider, project, sessions={})

    assert [fix.issue.kind for fix in fixes] == [HealthIssueKind.SESSION_DEAD]
    assert fixes[0].fixed
    assert fixes[0].label_reverted is None
    assert provider.called("transition_label") == []
    assert provider.labels_of("7") == ("To Review",)
    assert not _slot(project).active


async def test_missing_session_reference_reverts_ticket(tmp_path: Path) -> None:
    ctx = make_ctx(tmp_path)
    project = make_project(ctx)
    _activate(project, session_key=None)
    provider = FakeIssueProvider()
    provider.add(7, "Build it", "Doing")

    fixes = await check_project_health(ctx, provider, project, sessions=None)

    assert fixes[0].issue.kind is HealthIssueKind.NO_SESSION
    assert "To Do" in provider.labels_of("7")
    assert not _slot(project).active


async def test_context_overflow_is_healed_and_audited(tmp_path: Path) -> None:
    ctx = make_ctx(tmp_path)
    project = make_project(ctx)
    _activate(project)
    provider = FakeIssueProvider()
    provider.add(7, "Build it", "Doing")

    fixes = await check_project_health(
        ctx, provider, project, sessions={KEY: SessionInfo(KEY, aborted_last_run=True)}
    )

    assert fixes[0].issue.kind is HealthIssueKind.CONTEXT_OVERFLOW
    assert "To Do" in provider.labels_of("7")
    assert _slot(project).session_key is None
    assert len(audit_events(ctx, AuditEvent.CONTEXT_OVERFLOW_HEALED)) == 1


async def test_stale_worker_is_reported_not_killed(tmp_path: Path) -> None:
    ctx = make_ctx(tmp_path)
    project = make_project(ctx)
    _activate(project, started_minutes_ago=5 * 60)
    provider = FakeIssueProvider()
    provider.add(7, "Build it", "Doing")

    fixes = await check_project_health(ctx, provider, project, sessions={KEY: SessionInfo(KEY)})

    assert fixes[0].issue.kind is HealthIssueKind.STALE_WORKER
    assert fixes[0].issue.severity is Severity.WARNING
    assert not fixes[0].fixed
    assert _slot(project).active
    assert audit_events(ctx, AuditEvent.HEALTH_FIX) == []


async def test_inactive_slot_with_active_label_reverts_stuck_ticket(tmp_path: Path) -> None:
    ctx = make_ctx(tmp_path)
    project = make_project(ctx)
    _slot(project).issue_id = "7"
    provider = FakeIssueProvider()
    provider.add(7, "Build it", "Doing")

    fixes = await check_project_health(ctx, provider, project, sessions={})

    assert fixes[0].issue.kind is HealthIssueKind.STUCK_LABEL
    assert "To Do" in provider.labels_of("7")
    assert _slot(project).issue_id is None


async def test_inactive_slot_with_stale_reference_is_cleared(tmp_path: Path) -> None:
    ctx = make_ctx(tmp_path)
    project = make_project(ctx)
    _slot(project).issue_id = "7"
    provider = FakeIssueProvider()
    provider.add(7, "Build it", "To Review")

    fixes = await check_project_health(ctx, provider, project, sessions={})

    assert fixes[0].issue.kind is HealthIssueKind.ORPHAN_ISSUE_ID
    assert _slot(project).issue_id is None
    assert provider.labels_of("7") == ("To Review",)


async def test_orphaned_active_label_returns_to_queue(tmp_path: Path) -> None:
    ctx = make_ctx(tmp_path)
    project = make_project(ctx)
    provider = FakeIssueProvider()
    provider.add(8, "Nobody works on this", "Doing")
    provider.add(9, "Claimed elsewhere", "Doing", "owner:other-instance")

    fixes = await check_project_health(ctx, provider, project, sessions={})

    kinds = [(fix.issue.kind, fix.issue.issue_id) for fix in fixes]
    assert kinds == [(HealthIssueKind.ORPHANED_LABEL, "8")]
    assert "To Do" in provider.labels_of("8")
    assert "Doing" in provider.labels_of("9")


async def test_auto_fix_disabled_reports_only(tmp_path: Path) -> None:
    ctx = make_ctx(tmp_path, config={"health": {"auto_fix": False}})
    project = make_project(ctx)
    _activate(project)
    provider = FakeIssueProvider()
    provider.add(7, "Build it", "Doing")

    fixes = await check_project_health(ctx, provider, project, sessions={})

    assert fixes[0].issue.kind is HealthIssueKind.SESSION_DEAD
    assert not fixes[0].fixed
    assert _slot(project).active
    assert "Doing" in provider.labels_of("7")


async def test_repeated_health_pass_is_idempotent(tmp_path: Path) -> None:
    ctx = make_ctx(tmp_path)
    project = make_project(ctx)
    _activate(project)
    provider = FakeIssueProvider()
    provider.add(7, "Build it", "Doing")

    first = await check_project_health(ctx, provider, project, sessions={})
    second = await check_project_health(ctx, provider, project, sessions={})

    assert [fix.issue.kind for fix in first] == [HealthIssueKind.SESSION_DEAD]
    assert second == []
