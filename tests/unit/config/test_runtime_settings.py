from __future__ import annotations

from pathlib import Path

import pytest

from devpool_orchestrator.config.schema import ConfigValidationError
from devpool_orchestrator.config.settings import resolve_runtime_settings
from devpool_orchestrator.observability.logging import LogFormat
from devpool_orchestrator.workflow.defaults import DEFAULT_WORKFLOW
from devpool_orchestrator.workflow.model import ExecutionMode, ReviewPolicy


def test_defaults_resolve_to_documented_values() -> None:
    settings = resolve_runtime_settings()

    assert settings.heartbeat.enabled
    assert settings.heartbeat.interval_seconds == 60
    assert settings.heartbeat.warmup_delay_seconds == pytest.approx(2.0)
    assert settings.heartbeat.max_pickups_per_tick == 4
    assert settings.heartbeat.project_execution is ExecutionMode.PARALLEL
    assert settings.timeouts.gateway_ms == 15_000
    assert settings.timeouts.session_context_budget == pytest.approx(0.6)
    assert settings.health.grace_period_seconds == 300
    assert settings.instance.agent_id == "devpool"
    assert settings.instance.name is None
    assert settings.paths.state_db == Path("state/devpool.sqlite3")
    assert settings.observability.log_format is LogFormat.JSON
    assert settings.workflow.definition_path is None


def test_default_settings_use_builtin_workflow_and_roles() -> None:
    settings = resolve_runtime_settings()

    assert settings.load_workflow() is DEFAULT_WORKFLOW
    assert settings.role_registry().role_ids == ("developer", "tester", "reviewer", "architect")


def test_workflow_policy_keys_become_overrides() -> None:
    settings = resolve_runtime_settings(
        {"workflow": {"review_policy": "skip", "max_workers_per_level": 3}}
    )

    workflow = settings.load_workflow()

    assert dict(settings.workflow.overrides) == {
        "review_policy": "skip",
        "max_workers_per_level": 3,
    }
    assert workflow.review_policy is ReviewPolicy.SKIP
    assert workflow.max_workers_per_level == 3


def test_role_overrides_flow_into_registry() -> None:
    settings = resolve_runtime_settings(
        {"roles": {"architect": False, "developer": {"max_workers": {"senior": 1}}}}
    )

    registry = settings.role_registry()

    assert registry.require("architect").enabled is False
    assert registry.require("developer").capacity_by_level(2) == {
        "junior": 2,
        "medior": 2,
        "senior": 1,
    }


def test_logging_config_reflects_observability_section(tmp_path: Path) -> None:
    settings = resolve_runtime_settings(
        {"observability": {"log_format": "console", "log_dir": str(tmp_path), "log_level": "DEBUG"}}
    )

    logging_config = settings.logging_config()

    assert logging_config.log_format is LogFormat.CONSOLE
    assert logging_config.log_dir == tmp_path
    assert logging_config.level == "DEBUG"


def test_invalid_config_raises_before_conversion() -> None:
    with pytest.raises(ConfigValidationError, match="heartbeat.max_pickups_per_tick"):
        resolve_runtime_settings({"heartbeat": {"max_pickups_per_tick": -1}})
