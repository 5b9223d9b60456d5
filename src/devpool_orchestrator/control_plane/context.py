"""
devpool-orchestrator — shared control-plane context

File: src/devpool_orchestrator/control_plane/context.py
Last updated: 2026-10-19

Purpose
- Bundle the collaborators and settings every control-plane pass needs, and
  the soft-call helper used for best-effort external calls.

Functional requirements
- Every external call runs under an explicit timeout from ``TimeoutSettings``.
- A soft call returns its default on tracker/runtime/command failure or timeout
  and logs the failure; it never raises those families.
"""

from __future__ import annotations

from collections.abc import Awaitable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, TypeVar

import structlog

from devpool_orchestrator.constants import DEFAULT_AGENT_ID
from devpool_orchestrator.control_plane.inflight import InFlightLedger
from devpool_orchestrator.integration.commands import CommandError
from devpool_orchestrator.integration.issue_provider import IssueProviderError
from devpool_orchestrator.integration.session_runtime import SessionRuntimeError
from devpool_orchestrator.utils.concurrency import ms_to_seconds, run_with_timeout

if TYPE_CHECKING:
    from devpool_orchestrator.config.settings import HealthSettings, TimeoutSettings
    from devpool_orchestrator.domain.roles import RoleRegistry
    from devpool_orchestrator.integration.commands import CommandRunner
    from devpool_orchestrator.integration.session_runtime import Notifier, SessionRuntime
    from devpool_orchestrator.observability.audit import AuditLog
    from devpool_orchestrator.workflow.model import Workflow

T = TypeVar("T")

logger = structlog.get_logger(__name__)

# Failures that mean "outcome unknown" rather than a programming error.
SOFT_ERRORS: tuple[type[BaseException], ...] = (
    IssueProviderError,
    SessionRuntimeError,
    CommandError,
    TimeoutError,
)


@dataclass(frozen=True, slots=True)
class ControlContext:
    """Everything a tick needs besides the project itself and its tracker."""

    workflow: Workflow
    roles: RoleRegistry
    runtime: SessionRuntime
    audit: AuditLog
    runner: CommandRunner
    timeouts: TimeoutSettings
    health: HealthSettings
    instance_name: str
    agent_id: str = DEFAULT_AGENT_ID
    notifier: Notifier | None = None
    strict_labels: bool = False
    ledger: InFlightLedger = field(default_factory=InFlightLedger)

    def __post_init__(self) -> None:
        if not self.instance_name:
            raise ValueError("instance_name must be a non-empty string")
        if not self.agent_id:
            raise ValueError("agent_id must be a non-empty string")

    @property
    def provider_timeout(self) -> float:
        return ms_to_seconds(self.timeouts.provider_ms)

    @property
    def gateway_timeout(self) -> float:
        return ms_to_seconds(self.timeouts.gateway_ms)

    @property
    def session_patch_timeout(self) -> float:
        return ms_to_seconds(self.timeouts.session_patch_ms)

    @property
    def dispatch_timeout(self) -> float:
        return ms_to_seconds(self.timeouts.dispatch_ms)

    @property
    def git_pull_timeout(self) -> float:
        return ms_to_seconds(self.timeouts.git_pull_ms)


async def soft_call(
    awaitable: Awaitable[T],
    timeout_seconds: float,
    *,
    default: T,
    event: str,
    **log_fields: object,
) -> T:
    """Await under a deadline; on a soft failure log ``event`` and return ``default``."""

    try:
        return await run_with_timeout(awaitable, timeout_seconds)
    except SOFT_ERRORS as exc:
        logger.warning(event, error=str(exc), error_type=type(exc).__name__, **log_fields)
        return default


__all__ = ["ControlContext", "SOFT_ERRORS", "soft_call"]
