"""
devpool-orchestrator — audit log

File: src/devpool_orchestrator/observability/audit.py
Last updated: 2026-10-19

Purpose
- Append-only NDJSON record of orchestration decisions (dispatches, repairs,
  auto-transitions, ticks), one ``{"ts", "event", ...payload}`` object per line.

Functional requirements
- Retain only the most recent ``max_lines`` entries.
- Best-effort: write failures are logged and never raised to the caller.
"""

from __future__ import annotations

import json
import threading
from collections.abc import Mapping
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path
from typing import Final

import structlog

from devpool_orchestrator.constants import DEFAULT_AUDIT_MAX_LINES

logger = structlog.get_logger(__name__)

_RESERVED_KEYS: Final[frozenset[str]] = frozenset({"ts", "event"})


class AuditEvent(StrEnum):
    DISPATCH = "dispatch"
    MODEL_SELECTION = "model_selection"
    SESSION_BUDGET_RESET = "session_budget_reset"
    HEALTH_FIX = "health_fix"
    CONTEXT_OVERFLOW_HEALED = "context_overflow_healed"
    REVIEW_TRANSITION = "review_transition"
    REVIEW_MERGE_FAILED = "review_merge_failed"
    REVIEW_SKIP_TRANSITION = "review_skip_transition"
    REVIEW_SKIP_MERGE_FAILED = "review_skip_merge_failed"
    TEST_SKIP_TRANSITION = "test_skip_transition"
    WORK_FINISH = "work_finish"
    HEARTBEAT_TICK = "heartbeat_tick"


class AuditLog:
    """NDJSON audit file truncated to the newest ``max_lines`` entries."""

    def __init__(self, path: str | Path, *, max_lines: int = DEFAULT_AUDIT_MAX_LINES) -> None:
        if max_lines <= 0:
            raise ValueError("max_lines must be > 0")
        self._path = Path(path).expanduser()
        self._max_lines = max_lines
        self._line_count: int | None = None
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def record(self, event: str, payload: Mapping[str, object] | None = None) -> bool:
        """Append one entry; return ``False`` when it could not be written."""

        entry: dict[str, object] = {"ts": _utc_now_iso(), "event": str(event)}
        for key, value in (payload or {}).items():
            if key in _RESERVED_KEYS:
                entry[f"payload_{key}"] = value
            else:
                entry[key] = value
        try:
            line = json.dumps(entry, sort_keys=True, separators=(",", ":"), default=str)
        except (TypeError, ValueError) as exc:
            logger.warning("audit_encode_failed", audit_event=str(event), error=str(exc))
            return False

        with self._lock:
            try:
                self._append(line)
            except OSError as exc:
                logger.warning(
                    "audit_write_failed",
                    audit_event=str(event),
                    path=str(self._path),
                    error=str(exc),
                )
                self._line_count = None
                return False
        return True

    def entries(self, *, event: str | None = None) -> list[dict[str, object]]:
        """Parsed entries, oldest first; malformed lines are skipped."""

        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []
        out: list[dict[str, object]] = []
        for line in raw.splitlines():
            if not line.strip():
                continue
            try:
                parsed = json.loads(line)
            except json.JSONDecodeError:
                continue
            if isinstance(parsed, dict) and (event is None or parsed.get("event") == event):
                out.append(parsed)
        return out

    def _append(self, line: str) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        if self._line_count is None:
            self._line_count = self._count_lines()
        with self._path.open("a", encoding="utf-8") as handle:
            handle.write(line + "\n")
        self._line_count += 1
        if self._line_count > self._max_lines:
            self._truncate()

    def _count_lines(self) -> int:
        try:
            with self._path.open("r", encoding="utf-8") as handle:
                return sum(1 for _ in handle)
        except FileNotFoundError:
            return 0

    def _truncate(self) -> None:
        lines = self._path.read_text(encoding="utf-8").splitlines()
        kept = lines[-self._max_lines :]
        tmp_path = self._path.with_name(f"{self._path.name}.tmp")
        tmp_path.write_text("".join(f"{item}\n" for item in kept), encoding="utf-8")
        tmp_path.replace(self._path)
        self._line_count = len(kept)


def _utc_now_iso() -> str:
    return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


__all__ = ["AuditEvent", "AuditLog"]
