"""
devpool-orchestrator — runtime config loader.

File: src/devpool_orchestrator/config/loader.py
Last updated: 2026-10-19

Purpose
- Build the effective runtime config from four layers: built-in defaults, the
  ``devpool.toml`` file, ``DEVPOOL_*`` environment variables and CLI overrides.

What is included in this file
- Layer precedence: CLI > env > file > defaults. The file layer is validated on
  its own first so a broken file is reported against the file, not the env.
- Environment bindings derived from the typed config sections in
  ``config.schema``: every scalar key of every section gets exactly one
  variable, ``DEVPOOL_<SECTION>_<KEY>``. The open-ended ``roles`` table has no
  typed shape and is configured through the file only.
- Path normalization relative to the config file location.
- Redacted deterministic dump of the effective config.
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final, get_type_hints, is_typeddict

from devpool_orchestrator.config.schema import (
    PATH_FIELDS,
    DevpoolConfig,
    assert_valid_config,
    default_config,
    merge_config,
    redact_config,
)

DEFAULT_CONFIG_FILE: Final[str] = "devpool.toml"
ENV_PREFIX: Final[str] = "DEVPOOL_"

_TRUTHY: Final[frozenset[str]] = frozenset({"1", "true", "t", "yes", "y", "on"})
_FALSY: Final[frozenset[str]] = frozenset({"0", "false", "f", "no", "n", "off"})


class ConfigLoadError(ValueError):
    """Raised when config cannot be loaded or overrides cannot be coerced."""


@dataclass(frozen=True, slots=True)
class EnvBinding:
    """One environment variable bound to one scalar config key."""

    section: str
    key: str
    value_type: type

    @property
    def env_name(self) -> str:
        return f"{ENV_PREFIX}{self.section.upper()}_{self.key.upper()}"

    @property
    def dotted(self) -> str:
        return f"{self.section}.{self.key}"

    def coerce(self, raw: str) -> object:
        text = raw.strip()
        if self.value_type is bool:
            lowered = text.lower()
            if lowered in _TRUTHY:
                return True
            if lowered in _FALSY:
                return False
            raise ConfigLoadError(
                f"{self.env_name} -> {self.dotted} must be a boolean "
                "(true/false/1/0/yes/no/on/off)"
            )
        parser = _SCALAR_PARSERS.get(self.value_type)
        if parser is None:
            return text
        try:
            return parser(text)
        except ValueError as exc:
            noun = "an integer" if self.value_type is int else "a number"
            raise ConfigLoadError(f"{self.env_name} -> {self.dotted} must be {noun}") from exc


_SCALAR_PARSERS: Final[Mapping[type, Callable[[str], object]]] = {int: int, float: float}


def env_bindings() -> dict[str, EnvBinding]:
    """Return every supported ``DEVPOOL_*`` variable keyed by its name."""

    bindings: dict[str, EnvBinding] = {}
    for section, section_type in get_type_hints(DevpoolConfig).items():
        if not is_typeddict(section_type):
            continue
        for key, value_type in get_type_hints(section_type).items():
            if value_type not in (bool, int, float, str):
                continue
            binding = EnvBinding(section=section, key=key, value_type=value_type)
            bindings[binding.env_name] = binding
    return bindings


def load_config(
    config_path: str | Path | None = None,
    *,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Load effective config with deterministic precedence: CLI > env > file > defaults."""

    explicit = config_path is not None
    path = (
        Path(config_path).expanduser().resolve()
        if config_path is not None
        else (Path.cwd() / DEFAULT_CONFIG_FILE).resolve()
    )

    config = assert_valid_config(merge_config(default_config(), _read_toml(path, explicit)))
    for layer in (
        _env_layer(os.environ if environ is None else environ),
        _cli_layer(cli_overrides or {}),
    ):
        config = merge_config(config, layer)
    config = assert_valid_config(config)

    return normalize_paths(config, base_dir=path.parent)


def normalize_paths(config: Mapping[str, object], *, base_dir: Path) -> dict[str, Any]:
    """Resolve configured path fields against ``base_dir``; absolute paths only get normalized."""

    normalized = merge_config({}, config)
    for section, key in PATH_FIELDS:
        table = normalized.get(section)
        if not isinstance(table, dict) or not isinstance(table.get(key), str):
            continue
        candidate = Path(os.path.expandvars(table[key])).expanduser()
        if not candidate.is_absolute():
            candidate = base_dir / candidate
        table[key] = Path(os.path.normpath(candidate)).as_posix()
    return normalized


def dump_effective_config(config: Mapping[str, object]) -> str:
    """Return deterministic JSON dump of redacted effective config."""

    return json.dumps(
        redact_config(config), sort_keys=True, separators=(",", ":"), ensure_ascii=False
    )


def _read_toml(path: Path, required: bool) -> dict[str, Any]:
    if not path.exists():
        if required:
            raise ConfigLoadError(f"config file not found: {path}")
        return {}
    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc


def _env_layer(environ: Mapping[str, str]) -> dict[str, Any]:
    layer: dict[str, Any] = {}
    for name, binding in sorted(env_bindings().items()):
        raw = environ.get(name)
        if raw is not None:
            layer.setdefault(binding.section, {})[binding.key] = binding.coerce(raw)
    return layer


def _cli_layer(overrides: Mapping[str, object]) -> dict[str, Any]:
    layer: dict[str, Any] = {}
    for dotted in sorted(overrides):
        value = overrides[dotted]
        parts = [part for part in dotted.split(".") if part]
        if not parts:
            raise ConfigLoadError(f"invalid CLI override key {dotted!r}")
        table = layer
        for part in parts[:-1]:
            nested = table.get(part)
            if not isinstance(nested, dict):
                nested = table[part] = {}
            table = nested
        table[parts[-1]] = merge_config({}, value) if isinstance(value, Mapping) else value
    return layer


__all__ = [
    "ConfigLoadError",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "EnvBinding",
    "dump_effective_config",
    "env_bindings",
    "load_config",
    "normalize_paths",
]
