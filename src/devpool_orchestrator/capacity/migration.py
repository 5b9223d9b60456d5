"""
devpool-orchestrator — one-time project document migration

File: src/devpool_orchestrator/capacity/migration.py
Last updated: 2026-10-19

Purpose
- Rewrite project documents written by older releases into the current shape
  so renamed roles and levels never need alias lookups on the hot path.

Handled shapes
- Hard-coded ``dev`` / ``qa`` / ``architect`` worker fields instead of a ``workers`` map.
- Renamed role keys (``dev`` -> ``developer``, ``qa`` -> ``tester``).
- Renamed levels (``mid`` -> ``medior``, tester ``reviewer`` -> ``medior`` ...).
- The flat single-worker format ``{active, issueId, level, sessions}``.
- camelCase field names.

The store runs this once per document on load and writes the result back.
"""

from __future__ import annotations

import copy
from collections.abc import Mapping
from typing import Any, Final

from devpool_orchestrator.capacity.projects import slugify
from devpool_orchestrator.constants import PROJECT_DOCUMENT_VERSION

ROLE_ALIASES: Final[dict[str, str]] = {"dev": "developer", "qa": "tester"}

LEVEL_ALIASES: Final[dict[str, dict[str, str]]] = {
    "developer": {"mid": "medior"},
    "tester": {"mid": "medior", "reviewer": "medior", "tester": "junior"},
    "architect": {"opus": "senior", "sonnet": "junior"},
}

_LEGACY_ROLE_FIELDS: Final[tuple[str, ...]] = ("dev", "qa", "architect")

_PROJECT_KEYS: Final[dict[str, str]] = {
    "groupName": "group_name",
    "baseBranch": "base_branch",
    "repoRemote": "repo_remote",
    "roleExecution": "role_execution",
}
_SLOT_KEYS: Final[dict[str, str]] = {
    "issueId": "issue_id",
    "sessionKey": "session_key",
    "startTime": "start_time",
    "previousLabel": "previous_label",
}
_CHANNEL_KEYS: Final[dict[str, str]] = {
    "channelId": "target",
    "groupId": "target",
    "threadId": "thread_id",
}


def canonical_role(role: str) -> str:
    return ROLE_ALIASES.get(role, role)


def canonical_level(role: str, level: str) -> str:
    return LEVEL_ALIASES.get(canonical_role(role), {}).get(level, level)


def needs_migration(document: Mapping[str, object]) -> bool:
    return document.get("version") != PROJECT_DOCUMENT_VERSION


def migrate_project_document(
    document: Mapping[str, object],
    *,
    slug: str | None = None,
) -> tuple[dict[str, Any], bool]:
    """Return ``(current_document, changed)``; the input is never mutated."""

    if not needs_migration(document):
        return copy.deepcopy(dict(document)), False

    raw: dict[str, Any] = _rename_keys(copy.deepcopy(dict(document)), _PROJECT_KEYS)

    if "workers" not in raw and any(name in raw for name in _LEGACY_ROLE_FIELDS):
        raw["workers"] = {name: raw.pop(name) for name in _LEGACY_ROLE_FIELDS if name in raw}
    for name in _LEGACY_ROLE_FIELDS:
        raw.pop(name, None)

    workers_raw = raw.get("workers") or {}
    if not isinstance(workers_raw, Mapping):
        raise ValueError("workers: expected object")
    workers: dict[str, dict[str, Any]] = {}
    for role_key, state in workers_raw.items():
        role = canonical_role(str(role_key))
        migrated = _migrate_role_state(str(role_key), state)
        _merge_levels(workers.setdefault(role, {"levels": {}})["levels"], migrated)
    raw["workers"] = workers

    raw["channels"] = [_migrate_channel(item) for item in raw.get("channels") or []]
    legacy_channel = raw.pop("channel", None)
    if not raw["channels"] and isinstance(legacy_channel, str) and raw.get("group_id"):
        raw["channels"] = [{"channel": legacy_channel, "target": str(raw["group_id"])}]
    raw.pop("group_id", None)

    if not raw.get("slug"):
        raw["slug"] = slug or slugify(str(raw.get("name") or ""))
    raw["version"] = PROJECT_DOCUMENT_VERSION
    return raw, True


def _migrate_role_state(role_key: str, state: object) -> dict[str, list[dict[str, Any]]]:
    if state is None:
        return {}
    if not isinstance(state, Mapping):
        raise ValueError(f"workers.{role_key}: expected object")
    if "levels" in state:
        levels_raw = state.get("levels") or {}
        if not isinstance(levels_raw, Mapping):
            raise ValueError(f"workers.{role_key}.levels: expected object")
        levels: dict[str, list[dict[str, Any]]] = {}
        for level, slots in levels_raw.items():
            if not isinstance(slots, list):
                raise ValueError(f"workers.{role_key}.levels.{level}: expected array")
            target = levels.setdefault(canonical_level(role_key, str(level)), [])
            target.extend(_rename_keys(dict(slot), _SLOT_KEYS) for slot in slots)
        return levels
    return _migrate_flat_worker(role_key, state)


def _migrate_flat_worker(
    role_key: str,
    state: Mapping[str, object],
) -> dict[str, list[dict[str, Any]]]:
    """Convert ``{active, issueId, level, sessions}`` into one slot per known level."""

    sessions_raw = state.get("sessions") or {}
    sessions: dict[str, object] = {}
    if isinstance(sessions_raw, Mapping):
        for level, key in sessions_raw.items():
            sessions[canonical_level(role_key, str(level))] = key

    level_raw = state.get("level") or state.get("tier")
    active_level = None if level_raw is None else canonical_level(role_key, str(level_raw))
    if active_level is not None and active_level not in sessions:
        sessions[active_level] = None

    active = bool(state.get("active", False))
    issue_id = state.get("issueId", state.get("issue_id"))
    start_time = state.get("startTime", state.get("start_time"))

    levels: dict[str, list[dict[str, Any]]] = {}
    for level, session_key in sessions.items():
        owns_ticket = level == active_level
        levels[level] = [
            {
                "active": active and owns_ticket,
                "issue_id": None if issue_id is None or not owns_ticket else str(issue_id),
                "session_key": session_key,
                "start_time": start_time if active and owns_ticket else None,
                "previous_label": None,
            }
        ]
    return levels


def _merge_levels(
    target: dict[str, list[dict[str, Any]]],
    source: Mapping[str, list[dict[str, Any]]],
) -> None:
    for level, slots in source.items():
        target.setdefault(level, []).extend(slots)


def _migrate_channel(item: object) -> dict[str, Any]:
    if not isinstance(item, Mapping):
        raise ValueError("channels: expected array of objects")
    channel = _rename_keys(dict(item), _CHANNEL_KEYS)
    channel.pop("accountId", None)
    return channel


def _rename_keys(payload: dict[str, Any], mapping: Mapping[str, str]) -> dict[str, Any]:
    for old, new in mapping.items():
        if old in payload:
            value = payload.pop(old)
            payload.setdefault(new, value)
    return payload


__all__ = [
    "LEVEL_ALIASES",
    "ROLE_ALIASES",
    "canonical_level",
    "canonical_role",
    "migrate_project_document",
    "needs_migration",
]
