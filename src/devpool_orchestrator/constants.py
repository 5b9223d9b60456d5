"""Stable constants shared across orchestrator planes."""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Final

# Schema versions for persisted contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1
PROJECT_STORE_SCHEMA_VERSION: Final[int] = 1
PROJECT_DOCUMENT_VERSION: Final[int] = 2

# Default runtime paths (relative to the config file directory unless overridden).
STATE_DIR: Final[PurePosixPath] = PurePosixPath("state")
DEFAULT_STATE_DB: Final[PurePosixPath] = STATE_DIR / "devpool.sqlite3"
DEFAULT_AUDIT_LOG: Final[PurePosixPath] = STATE_DIR / "audit.ndjson"
DEFAULT_INSTANCE_FILE: Final[PurePosixPath] = STATE_DIR / "instance.json"

# Heartbeat defaults.
DEFAULT_HEARTBEAT_INTERVAL_SECONDS: Final[int] = 60
DEFAULT_WARMUP_DELAY_SECONDS: Final[float] = 2.0
DEFAULT_MAX_PICKUPS_PER_TICK: Final[int] = 4

# Timeouts (milliseconds unless stated otherwise).
DEFAULT_GIT_PULL_MS: Final[int] = 30_000
DEFAULT_GATEWAY_MS: Final[int] = 15_000
DEFAULT_SESSION_PATCH_MS: Final[int] = 30_000
DEFAULT_DISPATCH_MS: Final[int] = 600_000
DEFAULT_PROVIDER_MS: Final[int] = 15_000
DEFAULT_STALE_WORKER_HOURS: Final[float] = 2.0
DEFAULT_SESSION_CONTEXT_BUDGET: Final[float] = 0.6

# Health.
DEFAULT_GRACE_PERIOD_SECONDS: Final[int] = 5 * 60

# Capacity.
DEFAULT_MAX_WORKERS_PER_LEVEL: Final[int] = 2

# Task message limits.
MAX_MESSAGE_COMMENTS: Final[int] = 20
MAX_DIFF_CHARS: Final[int] = 50_000

# Audit log retention.
DEFAULT_AUDIT_MAX_LINES: Final[int] = 5_000

DEFAULT_AGENT_ID: Final[str] = "devpool"
DEFAULT_BASE_BRANCH: Final[str] = "main"

__all__ = [
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_AGENT_ID",
    "DEFAULT_AUDIT_LOG",
    "DEFAULT_AUDIT_MAX_LINES",
    "DEFAULT_BASE_BRANCH",
    "DEFAULT_DISPATCH_MS",
    "DEFAULT_GATEWAY_MS",
    "DEFAULT_GIT_PULL_MS",
    "DEFAULT_GRACE_PERIOD_SECONDS",
    "DEFAULT_HEARTBEAT_INTERVAL_SECONDS",
    "DEFAULT_INSTANCE_FILE",
    "DEFAULT_MAX_PICKUPS_PER_TICK",
    "DEFAULT_MAX_WORKERS_PER_LEVEL",
    "DEFAULT_PROVIDER_MS",
    "DEFAULT_SESSION_CONTEXT_BUDGET",
    "DEFAULT_SESSION_PATCH_MS",
    "DEFAULT_STALE_WORKER_HOURS",
    "DEFAULT_STATE_DB",
    "DEFAULT_WARMUP_DELAY_SECONDS",
    "MAX_DIFF_CHARS",
    "MAX_MESSAGE_COMMENTS",
    "PROJECT_DOCUMENT_VERSION",
    "PROJECT_STORE_SCHEMA_VERSION",
    "STATE_DIR",
]
