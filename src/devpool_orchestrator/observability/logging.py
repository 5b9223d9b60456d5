"""Structured logging setup: structlog over stdlib logging with secret redaction."""

from __future__ import annotations

import logging
import re
import sys
from collections.abc import Iterator, Mapping, MutableMapping
from contextlib import contextmanager
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import Any, Final

import structlog

_REDACTED_VALUE: Final[str] = "***REDACTED***"
_DEFAULT_LOG_FILENAME: Final[str] = "devpool.jsonl"
_ROOT_LOGGER_NAME: Final[str] = "devpool_orchestrator"

_SENSITIVE_KEY_TERMS: Final[tuple[str, ...]] = (
    "secret",
    "token",
    "password",
    "passphrase",
    "api_key",
    "apikey",
    "authorization",
    "credential",
    "cookie",
    "private_key",
)

# Keys that look sensitive but carry counters or identifiers.
_SAFE_KEYS: Final[frozenset[str]] = frozenset({"total_tokens", "context_tokens"})

_SENSITIVE_ASSIGNMENT_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"(?i)\b(api[_-]?key|token|password|secret|client_secret|authorization)\b\s*([:=])\s*([^\s,;]+)"
)
_BEARER_TOKEN_PATTERN: Final[re.Pattern[str]] = re.compile(r"(?i)\bbearer\s+[A-Za-z0-9._~+/-]+=*")
_API_KEY_PATTERN: Final[re.Pattern[str]] = re.compile(r"\bsk-(?:ant-)?[A-Za-z0-9_-]{12,}\b")


class LogFormat(StrEnum):
    JSON = "json"
    CONSOLE = "console"


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    level: int | str = "INFO"
    log_format: LogFormat = LogFormat.JSON
    log_dir: Path | None = None
    log_filename: str = _DEFAULT_LOG_FILENAME
    log_to_stdout: bool = True
    redact_secrets: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "log_format", LogFormat(self.log_format))
        if self.log_dir is not None:
            object.__setattr__(self, "log_dir", Path(self.log_dir))
        if not self.log_filename or "/" in self.log_filename or "\\" in self.log_filename:
            raise ValueError("log_filename must be a bare file name")


def setup_logging(config: LoggingConfig | None = None) -> logging.Logger:
    """Configure structlog and the package's stdlib logger; return the stdlib logger.

    Calling it again replaces the handlers installed by the previous call.
    """

    cfg = config or LoggingConfig()
    level = _parse_log_level(cfg.level)

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]
    if cfg.redact_secrets:
        shared_processors.append(redact_event_dict)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    json_formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(sort_keys=True),
        ],
    )
    stream_formatter = (
        json_formatter
        if cfg.log_format is LogFormat.JSON
        else structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.dev.ConsoleRenderer(colors=False),
            ],
        )
    )

    handlers: list[logging.Handler] = []
    if cfg.log_to_stdout:
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setFormatter(stream_formatter)
        handlers.append(stream_handler)
    if cfg.log_dir is not None:
        cfg.log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(cfg.log_dir / cfg.log_filename, encoding="utf-8")
        file_handler.setFormatter(json_formatter)
        handlers.append(file_handler)

    logger = logging.getLogger(_ROOT_LOGGER_NAME)
    logger.setLevel(level)
    logger.propagate = False
    for existing in list(logger.handlers):
        logger.removeHandler(existing)
        existing.close()
    for handler in handlers:
        handler.setLevel(level)
        logger.addHandler(handler)
    return logger


@contextmanager
def correlation_scope(**fields: str | None) -> Iterator[None]:
    """Bind correlation fields (``project``, ``tick_id``) for every log line in the block."""

    bound = {key: value for key, value in fields.items() if value is not None}
    with structlog.contextvars.bound_contextvars(**bound):
        yield


def redact_event_dict(
    _logger: object, _method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """structlog processor masking secret-looking keys and inline credentials."""

    for key in list(event_dict):
        event_dict[key] = _redact_value(event_dict[key], key_context=key)
    return event_dict


def _redact_value(value: object, *, key_context: str | None) -> object:
    if key_context is not None and _requires_redaction_for_key(key_context):
        return _REDACTED_VALUE
    if isinstance(value, str):
        return _redact_string(value)
    if isinstance(value, list | tuple):
        return [_redact_value(item, key_context=None) for item in value]
    if isinstance(value, Mapping):
        return {str(k): _redact_value(v, key_context=str(k)) for k, v in value.items()}
    return value


def _requires_redaction_for_key(key: str) -> bool:
    key_lower = key.lower()
    if key_lower in _SAFE_KEYS:
        return False
    return any(term in key_lower for term in _SENSITIVE_KEY_TERMS)


def _redact_string(text: str) -> str:
    redacted = _SENSITIVE_ASSIGNMENT_PATTERN.sub(
        lambda match: f"{match.group(1)}{match.group(2)}{_REDACTED_VALUE}", text
    )
    redacted = _BEARER_TOKEN_PATTERN.sub(f"Bearer {_REDACTED_VALUE}", redacted)
    return _API_KEY_PATTERN.sub(_REDACTED_VALUE, redacted)


def _parse_log_level(value: int | str) -> int:
    if isinstance(value, int):
        return value
    resolved = logging.getLevelName(value.strip().upper())
    if not isinstance(resolved, int):
        raise ValueError(f"unknown log level: {value!r}")
    return resolved


__all__ = [
    "LogFormat",
    "LoggingConfig",
    "correlation_scope",
    "redact_event_dict",
    "setup_logging",
]
