"""
devpool-orchestrator — configuration schema and validation.

File: src/devpool_orchestrator/config/schema.py
Last updated: 2026-10-19

Purpose
- Define authoritative configuration defaults and strict validation rules for
  ``devpool.toml``.

What is included in this file
- Schema versioning and migration guidance.
- Validation rules for required fields, types, enums and numeric constraints.
- Deterministic deep-merge helpers.
- Redaction rules for sensitive fields.

Functional requirements
- Validate config payloads and return structured errors (field path + message).
- ``roles.<id>`` accepts ``false`` (disable) or a table overlaying the built-in role.
"""

from __future__ import annotations

import copy
import math
import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, NotRequired, TypedDict

from devpool_orchestrator.constants import (
    CONFIG_SCHEMA_VERSION,
    DEFAULT_AGENT_ID,
    DEFAULT_AUDIT_LOG,
    DEFAULT_AUDIT_MAX_LINES,
    DEFAULT_DISPATCH_MS,
    DEFAULT_GATEWAY_MS,
    DEFAULT_GIT_PULL_MS,
    DEFAULT_GRACE_PERIOD_SECONDS,
    DEFAULT_HEARTBEAT_INTERVAL_SECONDS,
    DEFAULT_INSTANCE_FILE,
    DEFAULT_MAX_PICKUPS_PER_TICK,
    DEFAULT_PROVIDER_MS,
    DEFAULT_SESSION_CONTEXT_BUDGET,
    DEFAULT_SESSION_PATCH_MS,
    DEFAULT_STALE_WORKER_HOURS,
    DEFAULT_STATE_DB,
    DEFAULT_WARMUP_DELAY_SECONDS,
)

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION

_ROLE_ID_PATTERN = re.compile(r"^[a-z][a-z0-9_-]*$")
_CAMEL_CASE_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")

_SENSITIVE_KEY_TOKENS: Final[frozenset[str]] = frozenset(
    {"secret", "token", "password", "passwd", "apikey", "credential", "credentials"}
)
_SENSITIVE_KEY_PHRASES: Final[tuple[str, ...]] = ("api_key", "private_key", "access_key")

_EXECUTION_MODES: Final[tuple[str, ...]] = ("parallel", "sequential")
_REVIEW_POLICIES: Final[tuple[str, ...]] = ("human", "agent", "skip")
_TEST_POLICIES: Final[tuple[str, ...]] = ("skip", "agent")

PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (
    ("paths", "state_db"),
    ("paths", "audit_log"),
    ("paths", "instance_file"),
    ("paths", "workspace"),
    ("workflow", "definition_path"),
    ("observability", "log_dir"),
)


class MetaConfig(TypedDict):
    schema_version: int


class HeartbeatConfig(TypedDict):
    enabled: bool
    interval_seconds: int
    warmup_delay_seconds: float
    max_pickups_per_tick: int
    project_execution: str


class TimeoutsConfig(TypedDict):
    git_pull_ms: int
    gateway_ms: int
    session_patch_ms: int
    dispatch_ms: int
    provider_ms: int
    stale_worker_hours: float
    session_context_budget: float


class HealthConfig(TypedDict):
    auto_fix: bool
    grace_period_seconds: int


class WorkflowConfig(TypedDict):
    strict_labels: bool
    definition_path: NotRequired[str]
    review_policy: NotRequired[str]
    test_policy: NotRequired[str]
    role_execution: NotRequired[str]
    max_workers_per_level: NotRequired[int]


class InstanceConfig(TypedDict):
    agent_id: str
    name: NotRequired[str]


class PathsConfig(TypedDict):
    state_db: str
    audit_log: str
    instance_file: str
    workspace: str


class ObservabilityConfig(TypedDict):
    log_level: str
    log_format: str
    redact_secrets: bool
    audit_max_lines: int
    log_dir: NotRequired[str]


class DevpoolConfig(TypedDict):
    meta: MetaConfig
    heartbeat: HeartbeatConfig
    timeouts: TimeoutsConfig
    health: HealthConfig
    workflow: WorkflowConfig
    instance: InstanceConfig
    paths: PathsConfig
    observability: ObservabilityConfig
    roles: dict[str, Any]


DEFAULT_CONFIG: Final[DevpoolConfig] = {
    "meta": {"schema_version": ConfigSchemaVersion},
    "heartbeat": {
        "enabled": True,
        "interval_seconds": DEFAULT_HEARTBEAT_INTERVAL_SECONDS,
        "warmup_delay_seconds": DEFAULT_WARMUP_DELAY_SECONDS,
        "max_pickups_per_tick": DEFAULT_MAX_PICKUPS_PER_TICK,
        "project_execution": "parallel",
    },
    "timeouts": {
        "git_pull_ms": DEFAULT_GIT_PULL_MS,
        "gateway_ms": DEFAULT_GATEWAY_MS,
        "session_patch_ms": DEFAULT_SESSION_PATCH_MS,
        "dispatch_ms": DEFAULT_DISPATCH_MS,
        "provider_ms": DEFAULT_PROVIDER_MS,
        "stale_worker_hours": DEFAULT_STALE_WORKER_HOURS,
        "session_context_budget": DEFAULT_SESSION_CONTEXT_BUDGET,
    },
    "health": {
        "auto_fix": True,
        "grace_period_seconds": DEFAULT_GRACE_PERIOD_SECONDS,
    },
    "workflow": {"strict_labels": False},
    "instance": {"agent_id": DEFAULT_AGENT_ID},
    "paths": {
        "state_db": DEFAULT_STATE_DB.as_posix(),
        "audit_log": DEFAULT_AUDIT_LOG.as_posix(),
        "instance_file": DEFAULT_INSTANCE_FILE.as_posix(),
        "workspace": ".",
    },
    "observability": {
        "log_level": "INFO",
        "log_format": "json",
        "redact_secrets": True,
        "audit_max_lines": DEFAULT_AUDIT_MAX_LINES,
    },
    "roles": {},
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        if not self.issues:
            rendered = "unknown validation failure"
        else:
            rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid config:\n{rendered}")


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(ConfigValidationIssue(path=path, message=message))

    def items(self) -> tuple[ConfigValidationIssue, ...]:
        return tuple(self._items)

    @property
    def has_issues(self) -> bool:
        return bool(self._items)


def default_config() -> DevpoolConfig:
    """Return a deep copy of deterministic built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def migration_guidance(found_version: int) -> str:
    if found_version < ConfigSchemaVersion:
        return (
            f"schema version {found_version} is older than supported {ConfigSchemaVersion}; "
            "upgrade devpool.toml to the current schema"
        )
    if found_version > ConfigSchemaVersion:
        return (
            f"schema version {found_version} is newer than supported {ConfigSchemaVersion}; "
            "upgrade the devpool-orchestrator runtime"
        )
    return "schema version is current"


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deterministically deep-merge ``overlay`` onto ``base``."""

    merged = _deep_copy_mapping(base)
    _merge_into(merged, overlay)
    return merged


def validate_config(config: Mapping[str, object] | object) -> ConfigValidationResult:
    """Validate config and return structured issues with deterministic paths."""

    issues = _IssueCollector()
    root = _as_object(config, "<root>", issues)
    if root is None:
        return ConfigValidationResult(config=None, issues=issues.items())

    normalized = _validate_root(root, issues)
    if issues.has_issues:
        return ConfigValidationResult(config=None, issues=issues.items())
    return ConfigValidationResult(config=normalized, issues=())


def assert_valid_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Validate config and raise ``ConfigValidationError`` on failure."""

    result = validate_config(config)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def redact_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Return deterministic redacted representation for logs."""

    if not isinstance(config, Mapping):
        return {}
    redacted = _redact_value(config, parent_key=None)
    if isinstance(redacted, dict):
        return redacted
    return {}


def _validate_root(payload: Mapping[str, object], issues: _IssueCollector) -> dict[str, Any]:
    validators: dict[str, Callable[[dict[str, object], str, _IssueCollector], dict[str, Any]]] = {
        "meta": _validate_meta,
        "heartbeat": _validate_heartbeat,
        "timeouts": _validate_timeouts,
        "health": _validate_health,
        "workflow": _validate_workflow,
        "instance": _validate_instance,
        "paths": _validate_paths,
        "observability": _validate_observability,
        "roles": _validate_roles,
    }
    _reject_unknown_keys(payload, set(validators), "", issues)
    _require_keys(payload, {"meta"}, "", issues)

    out: dict[str, Any] = {}
    for key in sorted(validators):
        raw = payload.get(key)
        if raw is None:
            continue
        section_obj = _as_object(raw, key, issues)
        if section_obj is None:
            continue
        out[key] = validators[key](section_obj, key, issues)
    return out


def _validate_meta(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    _reject_unknown_keys(payload, {"schema_version"}, path, issues)
    _require_keys(payload, {"schema_version"}, path, issues)
    out: dict[str, Any] = {}
    if "schema_version" in payload:
        parsed = _as_int(
            payload["schema_version"], _join(path, "schema_version"), issues, minimum=1
        )
        if parsed is not None:
            out["schema_version"] = parsed
            if parsed != ConfigSchemaVersion:
                issues.add(_join(path, "schema_version"), migration_guidance(parsed))
    return out


def _validate_heartbeat(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = {
        "enabled",
        "interval_seconds",
        "warmup_delay_seconds",
        "max_pickups_per_tick",
        "project_execution",
    }
    _reject_unknown_keys(payload, allowed, path, issues)
    out: dict[str, Any] = {}
    if "enabled" in payload:
        _store(out, "enabled", _as_bool(payload["enabled"], _join(path, "enabled"), issues))
    if "interval_seconds" in payload:
        _store(
            out,
            "interval_seconds",
            _as_int(
                payload["interval_seconds"], _join(path, "interval_seconds"), issues, minimum=1
            ),
        )
    if "warmup_delay_seconds" in payload:
        _store(
            out,
            "warmup_delay_seconds",
            _as_float(
                payload["warmup_delay_seconds"],
                _join(path, "warmup_delay_seconds"),
                issues,
                minimum=0.0,
            ),
        )
    if "max_pickups_per_tick" in payload:
        _store(
            out,
            "max_pickups_per_tick",
            _as_int(
                payload["max_pickups_per_tick"],
                _join(path, "max_pickups_per_tick"),
                issues,
                minimum=0,
            ),
        )
    if "project_execution" in payload:
        _store(
            out,
            "project_execution",
            _as_enum(
                payload["project_execution"],
                _join(path, "project_execution"),
                issues,
                allowed_values=_EXECUTION_MODES,
            ),
        )
    return out


def _validate_timeouts(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    ms_fields = ("git_pull_ms", "gateway_ms", "session_patch_ms", "dispatch_ms", "provider_ms")
    allowed = {*ms_fields, "stale_worker_hours", "session_context_budget"}
    _reject_unknown_keys(payload, allowed, path, issues)
    out: dict[str, Any] = {}
    for key in ms_fields:
        if key in payload:
            _store(out, key, _as_int(payload[key], _join(path, key), issues, minimum=1))
    if "stale_worker_hours" in payload:
        parsed_hours = _as_float(
            payload["stale_worker_hours"], _join(path, "stale_worker_hours"), issues, minimum=0.0
        )
        if parsed_hours is not None and parsed_hours <= 0:
            issues.add(_join(path, "stale_worker_hours"), "must be > 0")
        else:
            _store(out, "stale_worker_hours", parsed_hours)
    if "session_context_budget" in payload:
        budget_path = _join(path, "session_context_budget")
        parsed_budget = _as_float(payload["session_context_budget"], budget_path, issues)
        if parsed_budget is not None and not 0.0 < parsed_budget <= 1.0:
            issues.add(budget_path, "must be in (0, 1]")
        else:
            _store(out, "session_context_budget", parsed_budget)
    return out


def _validate_health(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    _reject_unknown_keys(payload, {"auto_fix", "grace_period_seconds"}, path, issues)
    out: dict[str, Any] = {}
    if "auto_fix" in payload:
        _store(out, "auto_fix", _as_bool(payload["auto_fix"], _join(path, "auto_fix"), issues))
    if "grace_period_seconds" in payload:
        _store(
            out,
            "grace_period_seconds",
            _as_int(
                payload["grace_period_seconds"],
                _join(path, "grace_period_seconds"),
                issues,
                minimum=0,
            ),
        )
    return out


def _validate_workflow(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = {
        "definition_path",
        "review_policy",
        "test_policy",
        "role_execution",
        "max_workers_per_level",
        "strict_labels",
    }
    _reject_unknown_keys(payload, allowed, path, issues)
    out: dict[str, Any] = {}
    if "definition_path" in payload:
        _store(
            out,
            "definition_path",
            _as_path_text(payload["definition_path"], _join(path, "definition_path"), issues),
        )
    enum_fields: tuple[tuple[str, tuple[str, ...]], ...] = (
        ("review_policy", _REVIEW_POLICIES),
        ("test_policy", _TEST_POLICIES),
        ("role_execution", _EXECUTION_MODES),
    )
    for key, allowed_values in enum_fields:
        if key in payload:
            _store(
                out,
                key,
                _as_enum(payload[key], _join(path, key), issues, allowed_values=allowed_values),
            )
    if "max_workers_per_level" in payload:
        _store(
            out,
            "max_workers_per_level",
            _as_int(
                payload["max_workers_per_level"],
                _join(path, "max_workers_per_level"),
                issues,
                minimum=1,
            ),
        )
    if "strict_labels" in payload:
        _store(
            out,
            "strict_labels",
            _as_bool(payload["strict_labels"], _join(path, "strict_labels"), issues),
        )
    return out


def _validate_instance(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    _reject_unknown_keys(payload, {"name", "agent_id"}, path, issues)
    out: dict[str, Any] = {}
    for key in ("name", "agent_id"):
        if key in payload:
            _store(out, key, _as_str(payload[key], _join(path, key), issues))
    return out


def _validate_paths(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = {"state_db", "audit_log", "instance_file", "workspace"}
    _reject_unknown_keys(payload, allowed, path, issues)
    out: dict[str, Any] = {}
    for key in sorted(allowed):
        if key in payload:
            _store(out, key, _as_path_text(payload[key], _join(path, key), issues))
    return out


def _validate_observability(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = {"log_level", "log_format", "log_dir", "redact_secrets", "audit_max_lines"}
    _reject_unknown_keys(payload, allowed, path, issues)
    out: dict[str, Any] = {}
    if "log_level" in payload:
        _store(
            out,
            "log_level",
            _as_enum(
                payload["log_level"],
                _join(path, "log_level"),
                issues,
                allowed_values=("DEBUG", "INFO", "WARNING", "ERROR"),
            ),
        )
    if "log_format" in payload:
        _store(
            out,
            "log_format",
            _as_enum(
                payload["log_format"],
                _join(path, "log_format"),
                issues,
                allowed_values=("json", "console"),
            ),
        )
    if "log_dir" in payload:
        _store(out, "log_dir", _as_path_text(payload["log_dir"], _join(path, "log_dir"), issues))
    if "redact_secrets" in payload:
        _store(
            out,
            "redact_secrets",
            _as_bool(payload["redact_secrets"], _join(path, "redact_secrets"), issues),
        )
    if "audit_max_lines" in payload:
        _store(
            out,
            "audit_max_lines",
            _as_int(payload["audit_max_lines"], _join(path, "audit_max_lines"), issues, minimum=1),
        )
    return out


def _validate_roles(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for role_id in sorted(payload):
        role_path = _join(path, role_id)
        if not _ROLE_ID_PATTERN.fullmatch(role_id):
            issues.add(role_path, "role id must match [a-z][a-z0-9_-]*")
            continue
        raw = payload[role_id]
        if raw is False:
            out[role_id] = False
            continue
        role_obj = _as_object(raw, role_path, issues)
        if role_obj is None:
            continue
        out[role_id] = _validate_role(role_obj, role_path, issues)
    return out


def _validate_role(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = {
        "enabled",
        "display_name",
        "levels",
        "default_level",
        "models",
        "max_workers",
        "completion_results",
    }
    _reject_unknown_keys(payload, allowed, path, issues)
    out: dict[str, Any] = {}
    if "enabled" in payload:
        _store(out, "enabled", _as_bool(payload["enabled"], _join(path, "enabled"), issues))
    for key in ("display_name", "default_level"):
        if key in payload:
            _store(out, key, _as_str(payload[key], _join(path, key), issues))
    for key in ("levels", "completion_results"):
        if key in payload:
            _store(out, key, _as_str_list(payload[key], _join(path, key), issues))
    if "models" in payload:
        models = _as_object(payload["models"], _join(path, "models"), issues)
        if models is not None:
            parsed_models: dict[str, str] = {}
            for level in sorted(models):
                parsed = _as_str(models[level], _join(path, f"models.{level}"), issues)
                if parsed is not None:
                    parsed_models[level] = parsed
            out["models"] = parsed_models
    if "max_workers" in payload:
        workers = _as_object(payload["max_workers"], _join(path, "max_workers"), issues)
        if workers is not None:
            parsed_workers: dict[str, int] = {}
            for level in sorted(workers):
                count = _as_int(
                    workers[level], _join(path, f"max_workers.{level}"), issues, minimum=0
                )
                if count is not None:
                    parsed_workers[level] = count
            out["max_workers"] = parsed_workers
    return out


def _store(out: dict[str, Any], key: str, value: object | None) -> None:
    if value is not None:
        out[key] = value


def _as_object(value: object, path: str, issues: _IssueCollector) -> dict[str, object] | None:
    if not isinstance(value, Mapping):
        issues.add(path, f"expected object, got {type(value).__name__}")
        return None
    out: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            issues.add(path, f"object key must be string, got {type(key).__name__}")
            continue
        out[key] = item
    return out


def _as_str(value: object, path: str, issues: _IssueCollector) -> str | None:
    if not isinstance(value, str):
        issues.add(path, f"expected string, got {type(value).__name__}")
        return None
    parsed = value.strip()
    if not parsed:
        issues.add(path, "must not be empty")
        return None
    return parsed


def _as_str_list(value: object, path: str, issues: _IssueCollector) -> list[str] | None:
    if not isinstance(value, list | tuple):
        issues.add(path, f"expected array, got {type(value).__name__}")
        return None
    out: list[str] = []
    for index, item in enumerate(value):
        parsed = _as_str(item, f"{path}[{index}]", issues)
        if parsed is None:
            return None
        out.append(parsed)
    if not out:
        issues.add(path, "must not be empty")
        return None
    if len(set(out)) != len(out):
        issues.add(path, "must not contain duplicates")
        return None
    return out


def _as_path_text(value: object, path: str, issues: _IssueCollector) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if "\x00" in parsed:
        issues.add(path, "must not contain NUL bytes")
        return None
    return parsed


def _as_bool(value: object, path: str, issues: _IssueCollector) -> bool | None:
    if isinstance(value, bool):
        return value
    issues.add(path, f"expected boolean, got {type(value).__name__}")
    return None


def _as_int(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: int | None = None,
) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        issues.add(path, f"expected integer, got {type(value).__name__}")
        return None
    if minimum is not None and value < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    return value


def _as_float(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: float | None = None,
) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        issues.add(path, f"expected number, got {type(value).__name__}")
        return None
    parsed = float(value)
    if not math.isfinite(parsed):
        issues.add(path, "must be finite")
        return None
    if minimum is not None and parsed < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    return parsed


def _as_enum(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    allowed_values: tuple[str, ...],
) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if parsed not in allowed_values:
        expected = ", ".join(sorted(allowed_values))
        issues.add(path, f"invalid value {parsed!r}; expected one of: {expected}")
        return None
    return parsed


def _reject_unknown_keys(
    payload: Mapping[str, object],
    allowed: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(payload):
        if key in allowed:
            continue
        key_path = _join(path, key)
        if _looks_sensitive_key(key):
            issues.add(key_path, "embedded secret values are forbidden in devpool.toml")
        else:
            issues.add(key_path, "unknown field")


def _require_keys(
    payload: Mapping[str, object],
    required: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(required):
        if key not in payload:
            issues.add(_join(path, key), "missing required field")


def _looks_sensitive_key(key: str) -> bool:
    normalized = _normalize_key(key)
    if any(phrase in normalized for phrase in _SENSITIVE_KEY_PHRASES):
        return True
    tokens = tuple(token for token in normalized.split("_") if token)
    return any(token in _SENSITIVE_KEY_TOKENS for token in tokens)


def _normalize_key(key: str) -> str:
    with_boundaries = _CAMEL_CASE_BOUNDARY.sub(r"\1_\2", key.strip())
    return _NON_ALNUM.sub("_", with_boundaries.lower()).strip("_")


def _join(path: str, key: str) -> str:
    if not path:
        return key
    return f"{path}.{key}"


def _merge_into(target: dict[str, Any], overlay: Mapping[str, object]) -> None:
    for key in sorted(overlay):
        value = overlay[key]
        if isinstance(value, Mapping):
            existing = target.get(key)
            if isinstance(existing, dict):
                _merge_into(existing, value)
            else:
                nested: dict[str, Any] = {}
                _merge_into(nested, value)
                target[key] = nested
        else:
            target[key] = _deep_copy_value(value)


def _deep_copy_mapping(value: Mapping[str, object]) -> dict[str, Any]:
    return {key: _deep_copy_value(value[key]) for key in sorted(value)}


def _deep_copy_value(value: object) -> Any:
    if isinstance(value, Mapping):
        return {key: _deep_copy_value(item) for key, item in value.items() if isinstance(key, str)}
    if isinstance(value, list):
        return [_deep_copy_value(item) for item in value]
    if isinstance(value, tuple):
        return tuple(_deep_copy_value(item) for item in value)
    return copy.deepcopy(value)


def _redact_value(value: object, parent_key: str | None) -> object:
    if isinstance(value, Mapping):
        out: dict[str, object] = {}
        for key in sorted(value):
            item = value[key]
            if _looks_sensitive_key(key):
                out[key] = "<redacted>"
            else:
                out[key] = _redact_value(item, key)
        return out
    if isinstance(value, list | tuple):
        return [_redact_value(item, parent_key) for item in value]
    return value


__all__ = [
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "DevpoolConfig",
    "PATH_FIELDS",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "migration_guidance",
    "redact_config",
    "validate_config",
]
