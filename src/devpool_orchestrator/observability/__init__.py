"""Observability plane: structured logging and the NDJSON audit log."""

from devpool_orchestrator.observability.audit import AuditEvent, AuditLog
from devpool_orchestrator.observability.logging import (
    LogFormat,
    LoggingConfig,
    correlation_scope,
    redact_event_dict,
    setup_logging,
)

__all__ = [
    "AuditEvent",
    "AuditLog",
    "LogFormat",
    "LoggingConfig",
    "correlation_scope",
    "redact_event_dict",
    "setup_logging",
]
