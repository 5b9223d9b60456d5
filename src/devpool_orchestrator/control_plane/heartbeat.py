"""
devpool-orchestrator — heartbeat tick runner and service loop

File: src/devpool_orchestrator/control_plane/heartbeat.py
Last updated: 2026-10-19

Purpose
- Drive the periodic tick across every registered project and keep the loop
  alive: a warm-up tick shortly after start, then one tick per interval.

Functional requirements
- Ticks never overlap; the next sleep starts after the previous tick returns.
- One project's failure is logged and counted as skipped; the others still run.
- The pickup budget is global per tick and shared across projects in slug order.
- ``project_execution=sequential`` lets at most one project have work in flight.
- Each tick emits exactly one ``heartbeat_tick`` audit record.

Non-functional requirements
- Slot tables are persisted per project in one store transaction, committed again
  after every successful dispatch so a later failure cannot lose a started worker.
- A failed project has its in-flight ledger resynced to the stored slot table.
"""

from __future__ import annotations

import uuid
from collections import defaultdict
from collections.abc import Callable
from typing import TYPE_CHECKING, TypeAlias

import structlog

from devpool_orchestrator.control_plane.health import fetch_session_lookup
from devpool_orchestrator.control_plane.scheduler import TickResult, tick_project
from devpool_orchestrator.observability.audit import AuditEvent
from devpool_orchestrator.observability.logging import correlation_scope
from devpool_orchestrator.persistence.project_store import ProjectStore, ProjectStoreError
from devpool_orchestrator.utils.concurrency import CancellationToken, sleep_or_cancel
from devpool_orchestrator.workflow.model import ExecutionMode

if TYPE_CHECKING:
    from devpool_orchestrator.capacity.projects import Project
    from devpool_orchestrator.config.settings import HeartbeatSettings
    from devpool_orchestrator.control_plane.context import ControlContext
    from devpool_orchestrator.control_plane.inflight import CompletionChannel, WorkCompletion
    from devpool_orchestrator.integration.issue_provider import IssueProvider

ProviderFactory: TypeAlias = Callable[["Project"], "IssueProvider"]

logger = structlog.get_logger(__name__)


class TickRunner:
    """Run one heartbeat tick over every registered project."""

    def __init__(
        self,
        ctx: ControlContext,
        store: ProjectStore,
        provider_factory: ProviderFactory,
        completions: CompletionChannel,
        *,
        max_pickups_per_tick: int,
        project_execution: ExecutionMode = ExecutionMode.PARALLEL,
    ) -> None:
        if max_pickups_per_tick < 0:
            raise ValueError("max_pickups_per_tick must be >= 0")
        self._ctx = ctx
        self._store = store
        self._provider_factory = provider_factory
        self._completions = completions
        self._max_pickups = max_pickups_per_tick
        self._project_execution = ExecutionMode(project_execution)

    async def run_once(self) -> TickResult:
        tick_id = uuid.uuid4().hex[:12]
        totals = TickResult()
        slugs = self._store.list_slugs()
        pending = self._group_completions(self._completions.drain(), slugs)
        sessions = await fetch_session_lookup(self._ctx)
        active_projects = 0

        for slug in slugs:
            with correlation_scope(tick_id=tick_id, project=slug):
                try:
                    with self._store.checkpointing(slug) as edit:
                        result = await tick_project(
                            self._ctx,
                            self._provider_factory(edit.project),
                            edit.project,
                            completions=pending.pop(slug, ()),
                            sessions=sessions,
                            dispatch_budget=self._max_pickups - totals.pickups,
                            project_execution=self._project_execution,
                            active_projects=active_projects,
                            checkpoint=edit.commit,
                        )
                except Exception as exc:  # noqa: BLE001 - isolate one project's failure
                    totals.skipped += 1
                    logger.exception(
                        "heartbeat_project_failed",
                        error=str(exc),
                        error_type=type(exc).__name__,
                    )
                    self._resync_ledger(slug)
                    continue
            totals.absorb(result)
            if result.active:
                active_projects += 1

        payload: dict[str, object] = {
            "tickId": tick_id,
            "projectsScanned": len(slugs),
            "healthFixes": totals.health_fixes,
            "reviewTransitions": totals.review_transitions,
            "reviewSkipTransitions": totals.review_skip_transitions,
            "testSkipTransitions": totals.test_skip_transitions,
            "completions": totals.completions,
            "pickups": totals.pickups,
            "skipped": totals.skipped,
        }
        self._ctx.audit.record(AuditEvent.HEARTBEAT_TICK, payload)
        if totals.has_activity:
            logger.info("heartbeat_tick", **payload)
        else:
            logger.debug("heartbeat_tick_idle", tick_id=tick_id, projects=len(slugs))
        return totals

    def _resync_ledger(self, slug: str) -> None:
        """Drop in-flight records the stored slot table no longer backs."""

        try:
            project = self._store.load(slug)
        except ProjectStoreError as exc:
            logger.warning("ledger_resync_failed", error=str(exc))
            return
        released = self._ctx.ledger.release_untracked(project)
        if released:
            logger.warning(
                "ledger_resynced",
                released=len(released),
                issues=[entry.issue_id for entry in released],
            )

    def _group_completions(
        self, completions: list[WorkCompletion], slugs: tuple[str, ...]
    ) -> dict[str, list[WorkCompletion]]:
        known = set(slugs)
        grouped: dict[str, list[WorkCompletion]] = defaultdict(list)
        for completion in completions:
            if completion.project not in known:
                logger.warning(
                    "completion_unknown_project",
                    project=completion.project,
                    issue_id=completion.issue_id,
                )
                continue
            grouped[completion.project].append(completion)
        return grouped


class HeartbeatService:
    """Warm-up tick, then one tick per interval until :meth:`stop`."""

    def __init__(self, runner: TickRunner, settings: HeartbeatSettings) -> None:
        if settings.interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        if settings.warmup_delay_seconds < 0:
            raise ValueError("warmup_delay_seconds must be >= 0")
        self._runner = runner
        self._settings = settings
        self._token = CancellationToken()
        self._ticks = 0

    @property
    def ticks(self) -> int:
        return self._ticks

    @property
    def stopped(self) -> bool:
        return self._token.is_cancelled

    def stop(self) -> None:
        self._token.cancel()

    async def run(self) -> None:
        if not self._settings.enabled:
            logger.info("heartbeat_disabled")
            return
        logger.info(
            "heartbeat_started",
            interval_seconds=self._settings.interval_seconds,
            warmup_delay_seconds=self._settings.warmup_delay_seconds,
        )
        delay = self._settings.warmup_delay_seconds
        while not await sleep_or_cancel(delay, self._token):
            await self._tick()
            delay = float(self._settings.interval_seconds)
        logger.info("heartbeat_stopped", ticks=self._ticks)

    async def _tick(self) -> None:
        self._ticks += 1
        try:
            await self._runner.run_once()
        except Exception as exc:  # noqa: BLE001 - the loop must survive a bad tick
            logger.exception("heartbeat_tick_failed", error=str(exc), tick=self._ticks)


__all__ = ["HeartbeatService", "ProviderFactory", "TickRunner"]
