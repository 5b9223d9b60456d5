"""
devpool-orchestrator — worker slot tables

File: src/devpool_orchestrator/capacity/slots.py
Last updated: 2026-10-19

Purpose
- Per-role, per-level tables of worker slots and the pure helpers that
  fill, free and resize them.

Functional requirements
- ``find_free_slot`` returns the lowest inactive index so fill order is deterministic.
- ``reconcile_slots`` grows a level by appending empty slots and shrinks it by
  popping trailing inactive slots only; an active trailing slot stops the shrink.
- Re-applying the same capacity is a no-op.

Non-functional requirements
- Synchronous, in-memory, no IO. Callers own load -> mutate -> store.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import TypeAlias

from devpool_orchestrator.domain.models import as_utc_datetime, datetime_to_iso8601z

SlotNamer: TypeAlias = Callable[[str, int], str]


@dataclass(slots=True)
class WorkerSlot:
    """One capacity unit. The level is implied by the slot's position in the table."""

    active: bool = False
    issue_id: str | None = None
    session_key: str | None = None
    start_time: datetime | None = None
    previous_label: str | None = None
    name: str | None = None

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "active": self.active,
            "issue_id": self.issue_id,
            "session_key": self.session_key,
            "start_time": (
                None if self.start_time is None else datetime_to_iso8601z(self.start_time)
            ),
            "previous_label": self.previous_label,
        }
        if self.name is not None:
            payload["name"] = self.name
        return payload

    @classmethod
    def from_dict(cls, data: Mapping[str, object], path: str = "slot") -> WorkerSlot:
        if not isinstance(data, Mapping):
            raise ValueError(f"{path}: expected object, got {type(data).__name__}")
        active = data.get("active", False)
        if not isinstance(active, bool):
            raise ValueError(f"{path}.active: expected boolean")
        issue_id = data.get("issue_id")
        start_raw = data.get("start_time")
        return cls(
            active=active,
            issue_id=None if issue_id is None else str(issue_id),
            session_key=_optional_str(data.get("session_key"), f"{path}.session_key"),
            start_time=(
                None if start_raw is None else as_utc_datetime(start_raw, f"{path}.start_time")
            ),
            previous_label=_optional_str(data.get("previous_label"), f"{path}.previous_label"),
            name=_optional_str(data.get("name"), f"{path}.name"),
        )


@dataclass(slots=True)
class RoleWorkerState:
    """Level -> ordered slot list for one role of one project."""

    levels: dict[str, list[WorkerSlot]] = field(default_factory=dict)

    def slots(self, level: str) -> list[WorkerSlot]:
        return self.levels.get(level, [])

    def iter_slots(self) -> Iterator[tuple[str, int, WorkerSlot]]:
        for level, slots in self.levels.items():
            for index, slot in enumerate(slots):
                yield level, index, slot

    def to_dict(self) -> dict[str, object]:
        return {
            "levels": {
                level: [slot.to_dict() for slot in slots] for level, slots in self.levels.items()
            }
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object], path: str = "workers") -> RoleWorkerState:
        levels_raw = data.get("levels", {})
        if not isinstance(levels_raw, Mapping):
            raise ValueError(f"{path}.levels: expected object")
        levels: dict[str, list[WorkerSlot]] = {}
        for level, slots_raw in levels_raw.items():
            if not isinstance(slots_raw, list):
                raise ValueError(f"{path}.levels.{level}: expected array")
            levels[str(level)] = [
                WorkerSlot.from_dict(item, f"{path}.levels.{level}[{index}]")
                for index, item in enumerate(slots_raw)
            ]
        return cls(levels=levels)


def _optional_str(value: object, path: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"{path}: expected string, got {type(value).__name__}")
    return value


def empty_slot(name: str | None = None) -> WorkerSlot:
    return WorkerSlot(name=name)


def empty_role_worker_state(
    capacity_by_level: Mapping[str, int],
    *,
    namer: SlotNamer | None = None,
) -> RoleWorkerState:
    levels: dict[str, list[WorkerSlot]] = {}
    for level, capacity in capacity_by_level.items():
        _check_capacity(level, capacity)
        levels[level] = [
            empty_slot(None if namer is None else namer(level, index)) for index in range(capacity)
        ]
    return RoleWorkerState(levels=levels)


def find_free_slot(state: RoleWorkerState, level: str) -> int | None:
    """Lowest inactive index in ``level``, or ``None`` when the level is full or unknown."""

    for index, slot in enumerate(state.levels.get(level, ())):
        if not slot.active:
            return index
    return None


def reconcile_slots(
    state: RoleWorkerState,
    capacity_by_level: Mapping[str, int],
    *,
    namer: SlotNamer | None = None,
) -> bool:
    """Resize every configured level to its capacity in place; return whether anything changed.

    Active slots are never removed: shrinking stops at the first active
    trailing slot and finishes on a later reconcile once that worker is done.
    Levels absent from ``capacity_by_level`` are left untouched.
    """

    changed = False
    for level, capacity in capacity_by_level.items():
        _check_capacity(level, capacity)
        slots = state.levels.setdefault(level, [])
        while len(slots) < capacity:
            slots.append(empty_slot(None if namer is None else namer(level, len(slots))))
            changed = True
        while len(slots) > capacity and not slots[-1].active:
            slots.pop()
            changed = True
        if namer is not None:
            for index, slot in enumerate(slots):
                if slot.name is None:
                    slot.name = namer(level, index)
                    changed = True
    return changed


def find_slot_by_issue(
    state: RoleWorkerState,
    issue_id: str,
) -> tuple[str, int, WorkerSlot] | None:
    target = str(issue_id)
    for level, index, slot in state.iter_slots():
        if slot.issue_id == target:
            return level, index, slot
    return None


def count_active_slots(state: RoleWorkerState) -> int:
    return sum(1 for _, _, slot in state.iter_slots() if slot.active)


def activate_slot(
    state: RoleWorkerState,
    level: str,
    index: int,
    *,
    issue_id: str,
    session_key: str,
    start_time: datetime,
    previous_label: str | None = None,
) -> WorkerSlot:
    slot = _slot_at(state, level, index)
    if slot.active:
        raise ValueError(f"slot {level}[{index}] is already active")
    slot.active = True
    slot.issue_id = str(issue_id)
    slot.session_key = session_key
    slot.start_time = start_time
    slot.previous_label = previous_label
    return slot


def deactivate_slot(
    state: RoleWorkerState,
    level: str,
    index: int,
    *,
    clear_issue: bool = True,
    clear_session: bool = False,
) -> WorkerSlot:
    """Mark a slot inactive. Idempotent.

    The session key is kept by default so a later dispatch into the same slot
    can reuse the session; repairs pass ``clear_session=True``.
    """

    slot = _slot_at(state, level, index)
    slot.active = False
    slot.start_time = None
    slot.previous_label = None
    if clear_issue:
        slot.issue_id = None
    if clear_session:
        slot.session_key = None
    return slot


def _slot_at(state: RoleWorkerState, level: str, index: int) -> WorkerSlot:
    slots = state.levels.get(level)
    if slots is None or index < 0 or index >= len(slots):
        raise IndexError(f"no slot {level}[{index}]")
    return slots[index]


def _check_capacity(level: str, capacity: int) -> None:
    if isinstance(capacity, bool) or not isinstance(capacity, int) or capacity < 0:
        raise ValueError(f"capacity for level {level!r} must be an integer >= 0")


__all__ = [
    "RoleWorkerState",
    "SlotNamer",
    "WorkerSlot",
    "activate_slot",
    "count_active_slots",
    "deactivate_slot",
    "empty_role_worker_state",
    "empty_slot",
    "find_free_slot",
    "find_slot_by_issue",
    "reconcile_slots",
]
