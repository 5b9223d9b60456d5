"""Configuration: TOML schema, layered loader and typed runtime settings."""

from devpool_orchestrator.config.loader import (
    DEFAULT_CONFIG_FILE,
    ENV_PREFIX,
    ConfigLoadError,
    dump_effective_config,
    env_bindings,
    load_config,
    normalize_paths,
)
from devpool_orchestrator.config.schema import (
    DEFAULT_CONFIG,
    ConfigValidationError,
    ConfigValidationIssue,
    assert_valid_config,
    default_config,
    merge_config,
    redact_config,
    validate_config,
)
from devpool_orchestrator.config.settings import RuntimeSettings, resolve_runtime_settings

__all__ = [
    "ConfigLoadError",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "DEFAULT_CONFIG",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "RuntimeSettings",
    "assert_valid_config",
    "default_config",
    "dump_effective_config",
    "env_bindings",
    "load_config",
    "merge_config",
    "normalize_paths",
    "redact_config",
    "resolve_runtime_settings",
    "validate_config",
]
