"""Wire typed runtime settings into a ready-to-run heartbeat."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from devpool_orchestrator.control_plane.context import ControlContext
from devpool_orchestrator.control_plane.heartbeat import HeartbeatService, TickRunner
from devpool_orchestrator.control_plane.inflight import CompletionChannel
from devpool_orchestrator.integration.commands import SubprocessCommandRunner
from devpool_orchestrator.observability.audit import AuditLog
from devpool_orchestrator.persistence.instance import resolve_instance_name
from devpool_orchestrator.persistence.project_store import ProjectStore

if TYPE_CHECKING:
    from devpool_orchestrator.config.settings import RuntimeSettings
    from devpool_orchestrator.control_plane.heartbeat import ProviderFactory
    from devpool_orchestrator.integration.commands import CommandRunner
    from devpool_orchestrator.integration.session_runtime import Notifier, SessionRuntime

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class ControlPlane:
    context: ControlContext
    store: ProjectStore
    completions: CompletionChannel
    runner: TickRunner
    service: HeartbeatService


def build_control_plane(
    settings: RuntimeSettings,
    *,
    runtime: SessionRuntime,
    provider_factory: ProviderFactory,
    command_runner: CommandRunner | None = None,
    notifier: Notifier | None = None,
    hostname: str | None = None,
) -> ControlPlane:
    """Resolve workflow, roles, instance identity and stores from ``settings``.

    Workflow and role defects raise here, before the first tick.
    """

    workflow = settings.load_workflow()
    roles = settings.role_registry()
    instance_name = resolve_instance_name(
        settings.paths.instance_file,
        workspace=settings.paths.workspace,
        config_name=settings.instance.name,
        hostname=hostname,
    )
    ctx = ControlContext(
        workflow=workflow,
        roles=roles,
        runtime=runtime,
        audit=AuditLog(
            settings.paths.audit_log, max_lines=settings.observability.audit_max_lines
        ),
        runner=command_runner or SubprocessCommandRunner(),
        timeouts=settings.timeouts,
        health=settings.health,
        instance_name=instance_name,
        agent_id=settings.instance.agent_id,
        notifier=notifier,
        strict_labels=settings.workflow.strict_labels,
    )
    store = ProjectStore(settings.paths.state_db)
    completions = CompletionChannel()
    runner = TickRunner(
        ctx,
        store,
        provider_factory,
        completions,
        max_pickups_per_tick=settings.heartbeat.max_pickups_per_tick,
        project_execution=settings.heartbeat.project_execution,
    )
    logger.info(
        "control_plane_ready",
        instance=instance_name,
        roles=list(roles.role_ids),
        initial_state=workflow.initial,
    )
    return ControlPlane(
        context=ctx,
        store=store,
        completions=completions,
        runner=runner,
        service=HeartbeatService(runner, settings.heartbeat),
    )


__all__ = ["ControlPlane", "build_control_plane"]
