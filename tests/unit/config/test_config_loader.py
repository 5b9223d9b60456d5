"""
devpool-orchestrator — unit tests for config loader

File: tests/unit/config/test_config_loader.py
Last updated: 2026-10-19

Purpose
- Validate deterministic config loading from defaults, TOML, env overrides, and CLI overrides.

What this test file should cover
- Precedence: CLI > env > file > defaults.
- Deterministic env var path mapping and type coercion.
- Path normalization relative to the config file.
- Redacted effective config dumping.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path

import pytest

from devpool_orchestrator.config.loader import (
    ConfigLoadError,
    dump_effective_config,
    env_bindings,
    load_config,
)
from devpool_orchestrator.config.schema import ConfigValidationError

REPO_ROOT = Path(__file__).resolve().parents[3]


def _write_config(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


def _sha256_json(data: dict[str, object]) -> str:
    payload = json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def test_loader_precedence_default_file_env_cli(tmp_path: Path) -> None:
    config_path = tmp_path / "devpool.toml"
    default_path = tmp_path / "default.toml"
    _write_config(default_path, "")
    _write_config(
        config_path,
        """
[heartbeat]
max_pickups_per_tick = 2
""".strip(),
    )

    default_loaded = load_config(default_path, environ={})
    file_loaded = load_config(config_path, environ={})
    env_loaded = load_config(config_path, environ={"DEVPOOL_HEARTBEAT_MAX_PICKUPS_PER_TICK": "6"})
    cli_loaded = load_config(
        config_path,
        environ={"DEVPOOL_HEARTBEAT_MAX_PICKUPS_PER_TICK": "6"},
        cli_overrides={"heartbeat.max_pickups_per_tick": 7},
    )

    assert default_loaded["heartbeat"]["max_pickups_per_tick"] == 4
    assert file_loaded["heartbeat"]["max_pickups_per_tick"] == 2
    assert env_loaded["heartbeat"]["max_pickups_per_tick"] == 6
    assert cli_loaded["heartbeat"]["max_pickups_per_tick"] == 7


def test_env_mapping_coerces_types_and_binds_optional_keys(tmp_path: Path) -> None:
    config_path = tmp_path / "devpool.toml"
    _write_config(config_path, "")

    loaded = load_config(
        config_path,
        environ={
            "DEVPOOL_HEALTH_AUTO_FIX": "off",
            "DEVPOOL_TIMEOUTS_SESSION_CONTEXT_BUDGET": "0.75",
            "DEVPOOL_WORKFLOW_REVIEW_POLICY": "agent",
            "DEVPOOL_INSTANCE_NAME": "night-owl",
        },
    )

    assert loaded["health"]["auto_fix"] is False
    assert loaded["timeouts"]["session_context_budget"] == pytest.approx(0.75)
    assert loaded["workflow"]["review_policy"] == "agent"
    assert loaded["instance"]["name"] == "night-owl"


def test_invalid_env_coercion_raises_actionable_error(tmp_path: Path) -> None:
    config_path = tmp_path / "devpool.toml"
    _write_config(config_path, "")

    with pytest.raises(ConfigLoadError, match="DEVPOOL_HEARTBEAT_INTERVAL_SECONDS"):
        load_config(config_path, environ={"DEVPOOL_HEARTBEAT_INTERVAL_SECONDS": "soon"})


def test_env_value_is_still_validated(tmp_path: Path) -> None:
    config_path = tmp_path / "devpool.toml"
    _write_config(config_path, "")

    with pytest.raises(ConfigValidationError, match="heartbeat.project_execution"):
        load_config(config_path, environ={"DEVPOOL_HEARTBEAT_PROJECT_EXECUTION": "serial"})


def test_roles_section_is_file_only(tmp_path: Path) -> None:
    config_path = tmp_path / "devpool.toml"
    _write_config(
        config_path,
        """
[roles]
architect = false

[roles.developer.max_workers]
senior = 1
""".strip(),
    )

    loaded = load_config(config_path, environ={"DEVPOOL_ROLES_DEVELOPER_ENABLED": "false"})

    assert loaded["roles"]["developer"] == {"max_workers": {"senior": 1}}
    assert loaded["roles"]["architect"] is False


def test_loader_is_deterministic_for_same_inputs(tmp_path: Path) -> None:
    config_path = tmp_path / "devpool.toml"
    _write_config(config_path, "")

    env = {"DEVPOOL_HEARTBEAT_INTERVAL_SECONDS": "30", "DEVPOOL_HEALTH_AUTO_FIX": "false"}
    cli = {"timeouts.stale_worker_hours": 3.5}

    first = load_config(config_path, environ=env, cli_overrides=cli)
    second = load_config(config_path, environ=env, cli_overrides=cli)

    assert _sha256_json(first) == _sha256_json(second)


def test_path_normalization_is_relative_to_config_file(tmp_path: Path) -> None:
    config_path = tmp_path / "nested" / "devpool.toml"
    _write_config(
        config_path,
        """
[workflow]
definition_path = "workflow.yaml"
""".strip(),
    )

    loaded = load_config(config_path, environ={})

    base = config_path.parent
    assert loaded["workflow"]["definition_path"] == (base / "workflow.yaml").as_posix()
    assert loaded["paths"]["state_db"] == (base / "state/devpool.sqlite3").as_posix()


def test_missing_explicit_file_and_bad_toml_raise(tmp_path: Path) -> None:
    broken = tmp_path / "broken.toml"
    _write_config(broken, "[heartbeat\n")

    with pytest.raises(ConfigLoadError, match="config file not found"):
        load_config(tmp_path / "missing.toml")
    with pytest.raises(ConfigLoadError, match="invalid TOML"):
        load_config(broken)


def test_dump_effective_config_is_deterministic(tmp_path: Path) -> None:
    config_path = tmp_path / "devpool.toml"
    _write_config(config_path, "")

    loaded = load_config(config_path, environ={})
    first = dump_effective_config(loaded)

    assert first == dump_effective_config(loaded)
    assert json.loads(first)["instance"]["agent_id"] == "devpool"


def test_repo_sample_config_loads() -> None:
    loaded = load_config(REPO_ROOT / "devpool.toml", environ={})

    assert loaded["meta"]["schema_version"] == 1
    assert loaded["workflow"]["review_policy"] == "human"


def test_config_package_exports_loader_and_errors(tmp_path: Path) -> None:
    import devpool_orchestrator.config as config_pkg

    config_path = tmp_path / "devpool.toml"
    _write_config(config_path, "")

    loaded = config_pkg.load_config(config_path, environ={})
    assert loaded["meta"]["schema_version"] == 1

    with pytest.raises(config_pkg.ConfigLoadError):
        config_pkg.load_config(tmp_path / "missing.toml")


def test_env_bindings_cover_typed_sections_only() -> None:
    bindings = env_bindings()

    assert bindings["DEVPOOL_WORKFLOW_DEFINITION_PATH"].value_type is str
    assert bindings["DEVPOOL_OBSERVABILITY_LOG_DIR"].dotted == "observability.log_dir"
    assert bindings["DEVPOOL_HEALTH_AUTO_FIX"].value_type is bool
    assert bindings["DEVPOOL_TIMEOUTS_STALE_WORKER_HOURS"].value_type is float
    assert not any(name.startswith("DEVPOOL_ROLES") for name in bindings)
