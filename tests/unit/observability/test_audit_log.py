"""Unit tests for the NDJSON audit log."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import pytest

from devpool_orchestrator.observability.audit import AuditEvent, AuditLog

if TYPE_CHECKING:
    from pathlib import Path


def test_record_appends_one_json_object_per_line(tmp_path: Path) -> None:
    audit = AuditLog(tmp_path / "state" / "audit.ndjson")

    assert audit.record(AuditEvent.DISPATCH, {"project": "demo", "issueId": "7"})
    assert audit.record(AuditEvent.HEARTBEAT_TICK, {"pickups": 1})

    lines = audit.path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 2
    first = json.loads(lines[0])
    assert first["event"] == "dispatch"
    assert first["project"] == "demo"
    assert first["ts"].endswith("Z")


def test_entries_filter_by_event(tmp_path: Path) -> None:
    audit = AuditLog(tmp_path / "audit.ndjson")
    audit.record(AuditEvent.DISPATCH, {"issueId": "1"})
    audit.record(AuditEvent.HEALTH_FIX, {"issueId": "2"})
    audit.record(AuditEvent.DISPATCH, {"issueId": "3"})

    dispatches = audit.entries(event=AuditEvent.DISPATCH)

    assert [entry["issueId"] for entry in dispatches] == ["1", "3"]
    assert len(audit.entries()) == 3


def test_reserved_payload_keys_are_prefixed(tmp_path: Path) -> None:
    audit = AuditLog(tmp_path / "audit.ndjson")

    audit.record(AuditEvent.HEALTH_FIX, {"event": "repair", "ts": "yesterday"})

    (entry,) = audit.entries()
    assert entry["event"] == "health_fix"
    assert entry["payload_event"] == "repair"
    assert entry["payload_ts"] == "yesterday"
    assert entry["ts"] != "yesterday"


def test_log_is_truncated_to_newest_lines(tmp_path: Path) -> None:
    audit = AuditLog(tmp_path / "audit.ndjson", max_lines=3)

    for index in range(5):
        audit.record(AuditEvent.HEARTBEAT_TICK, {"tick": index})

    assert [entry["tick"] for entry in audit.entries()] == [2, 3, 4]
    assert not (tmp_path / "audit.ndjson.tmp").exists()


def test_existing_file_counts_toward_limit(tmp_path: Path) -> None:
    path = tmp_path / "audit.ndjson"
    AuditLog(path, max_lines=10).record(AuditEvent.DISPATCH, {"n": 0})
    AuditLog(path, max_lines=10).record(AuditEvent.DISPATCH, {"n": 1})

    reopened = AuditLog(path, max_lines=2)
    reopened.record(AuditEvent.DISPATCH, {"n": 2})

    assert [entry["n"] for entry in reopened.entries()] == [1, 2]


def test_malformed_lines_are_skipped(tmp_path: Path) -> None:
    path = tmp_path / "audit.ndjson"
    path.write_text('{"event": "dispatch", "ts": "x"}\nnot json\n\n[1, 2]\n', encoding="utf-8")

    assert AuditLog(path).entries() == [{"event": "dispatch", "ts": "x"}]


def test_missing_file_has_no_entries(tmp_path: Path) -> None:
    assert AuditLog(tmp_path / "absent.ndjson").entries() == []


def test_non_positive_max_lines_is_rejected(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="max_lines"):
        AuditLog(tmp_path / "audit.ndjson", max_lines=0)


def test_write_failure_returns_false(tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")
    audit = AuditLog(blocker / "audit.ndjson")

    assert audit.record(AuditEvent.DISPATCH, {"issueId": "1"}) is False
    assert audit.entries() == []


def test_unserializable_values_fall_back_to_str(tmp_path: Path) -> None:
    audit = AuditLog(tmp_path / "audit.ndjson")

    assert audit.record(AuditEvent.DISPATCH, {"path": tmp_path})

    assert audit.entries()[0]["path"] == str(tmp_path)
