"""Shared utility helpers (async timeouts, deterministic naming)."""

from devpool_orchestrator.utils.concurrency import (
    CancellationToken,
    ms_to_seconds,
    run_with_timeout,
    sleep_or_cancel,
)
from devpool_orchestrator.utils.names import name_from_seed, slot_name

__all__ = [
    "CancellationToken",
    "ms_to_seconds",
    "name_from_seed",
    "run_with_timeout",
    "sleep_or_cancel",
    "slot_name",
]
