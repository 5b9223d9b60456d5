"""Typed, frozen views over a validated config mapping."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Final

from devpool_orchestrator.config.schema import assert_valid_config, default_config, merge_config
from devpool_orchestrator.domain.roles import RoleRegistry
from devpool_orchestrator.observability.logging import LogFormat, LoggingConfig
from devpool_orchestrator.workflow.loader import load_workflow
from devpool_orchestrator.workflow.model import ExecutionMode

if TYPE_CHECKING:
    from devpool_orchestrator.workflow.model import Workflow

_WORKFLOW_OVERRIDE_KEYS: Final = (
    "review_policy",
    "test_policy",
    "role_execution",
    "max_workers_per_level",
)


@dataclass(frozen=True, slots=True)
class HeartbeatSettings:
    enabled: bool
    interval_seconds: int
    warmup_delay_seconds: float
    max_pickups_per_tick: int
    project_execution: ExecutionMode


@dataclass(frozen=True, slots=True)
class TimeoutSettings:
    git_pull_ms: int
    gateway_ms: int
    session_patch_ms: int
    dispatch_ms: int
    provider_ms: int
    stale_worker_hours: float
    session_context_budget: float


@dataclass(frozen=True, slots=True)
class HealthSettings:
    auto_fix: bool
    grace_period_seconds: int


@dataclass(frozen=True, slots=True)
class WorkflowSettings:
    definition_path: Path | None
    strict_labels: bool
    overrides: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class InstanceSettings:
    agent_id: str
    name: str | None = None


@dataclass(frozen=True, slots=True)
class PathSettings:
    state_db: Path
    audit_log: Path
    instance_file: Path
    workspace: Path


@dataclass(frozen=True, slots=True)
class ObservabilitySettings:
    log_level: str
    log_format: LogFormat
    redact_secrets: bool
    audit_max_lines: int
    log_dir: Path | None = None


@dataclass(frozen=True, slots=True)
class RuntimeSettings:
    heartbeat: HeartbeatSettings
    timeouts: TimeoutSettings
    health: HealthSettings
    workflow: WorkflowSettings
    instance: InstanceSettings
    paths: PathSettings
    observability: ObservabilitySettings
    roles: Mapping[str, Any] = field(default_factory=dict)

    def role_registry(self) -> RoleRegistry:
        return RoleRegistry.from_overrides(self.roles)

    def load_workflow(self) -> Workflow:
        return load_workflow(self.workflow.definition_path, overrides=self.workflow.overrides)

    def logging_config(self) -> LoggingConfig:
        return LoggingConfig(
            level=self.observability.log_level,
            log_format=self.observability.log_format,
            log_dir=self.observability.log_dir,
            redact_secrets=self.observability.redact_secrets,
        )


def resolve_runtime_settings(config: Mapping[str, object] | None = None) -> RuntimeSettings:
    """Validate ``config`` (defaults fill gaps) and convert it to typed settings."""

    cfg = assert_valid_config(merge_config(default_config(), config or {}))
    heartbeat = cfg["heartbeat"]
    timeouts = cfg["timeouts"]
    health = cfg["health"]
    workflow = cfg["workflow"]
    instance = cfg["instance"]
    paths = cfg["paths"]
    observability = cfg["observability"]

    definition_path = workflow.get("definition_path")
    log_dir = observability.get("log_dir")
    return RuntimeSettings(
        heartbeat=HeartbeatSettings(
            enabled=heartbeat["enabled"],
            interval_seconds=heartbeat["interval_seconds"],
            warmup_delay_seconds=float(heartbeat["warmup_delay_seconds"]),
            max_pickups_per_tick=heartbeat["max_pickups_per_tick"],
            project_execution=ExecutionMode(heartbeat["project_execution"]),
        ),
        timeouts=TimeoutSettings(
            git_pull_ms=timeouts["git_pull_ms"],
            gateway_ms=timeouts["gateway_ms"],
            session_patch_ms=timeouts["session_patch_ms"],
            dispatch_ms=timeouts["dispatch_ms"],
            provider_ms=timeouts["provider_ms"],
            stale_worker_hours=float(timeouts["stale_worker_hours"]),
            session_context_budget=float(timeouts["session_context_budget"]),
        ),
        health=HealthSettings(
            auto_fix=health["auto_fix"],
            grace_period_seconds=health["grace_period_seconds"],
        ),
        workflow=WorkflowSettings(
            definition_path=None if definition_path is None else Path(definition_path),
            strict_labels=workflow["strict_labels"],
            overrides={
                key: workflow[key]
                for key in _WORKFLOW_OVERRIDE_KEYS
                if key in workflow
            },
        ),
        instance=InstanceSettings(agent_id=instance["agent_id"], name=instance.get("name")),
        paths=PathSettings(
            state_db=Path(paths["state_db"]),
            audit_log=Path(paths["audit_log"]),
            instance_file=Path(paths["instance_file"]),
            workspace=Path(paths["workspace"]),
        ),
        observability=ObservabilitySettings(
            log_level=observability["log_level"],
            log_format=LogFormat(observability["log_format"]),
            redact_secrets=observability["redact_secrets"],
            audit_max_lines=observability["audit_max_lines"],
            log_dir=None if log_dir is None else Path(log_dir),
        ),
        roles=dict(cfg.get("roles") or {}),
    )


__all__ = [
    "HealthSettings",
    "HeartbeatSettings",
    "InstanceSettings",
    "ObservabilitySettings",
    "PathSettings",
    "RuntimeSettings",
    "TimeoutSettings",
    "WorkflowSettings",
    "resolve_runtime_settings",
]
