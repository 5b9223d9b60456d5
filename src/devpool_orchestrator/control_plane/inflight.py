"""
devpool-orchestrator — in-flight dispatch ledger and completion channel

File: src/devpool_orchestrator/control_plane/inflight.py
Last updated: 2026-10-19

Purpose
- Model dispatch as enqueue + completion: the ledger records which slot has
  work in flight, the channel carries worker completions back to the tick.

Functional requirements
- At most one in-flight dispatch per slot until completion or repair.
- Completions are fed out-of-band (hosting callback) and drained by the tick.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

import structlog

from devpool_orchestrator.domain.models import normalize_issue_id, utc_now

if TYPE_CHECKING:
    from collections.abc import Iterator

    from devpool_orchestrator.capacity.projects import Project

logger = structlog.get_logger(__name__)


class DispatchError(RuntimeError):
    """Base class for dispatch-plane failures."""


class SlotBusyError(DispatchError):
    def __init__(self, slot: SlotRef, issue_id: str) -> None:
        self.slot = slot
        self.issue_id = issue_id
        super().__init__(f"slot {slot} already has an in-flight dispatch for ticket {issue_id}")


@dataclass(frozen=True, slots=True)
class SlotRef:
    project: str
    role: str
    level: str
    slot_index: int

    def __post_init__(self) -> None:
        if self.slot_index < 0:
            raise ValueError("slot_index must be >= 0")

    def __str__(self) -> str:
        return f"{self.project}/{self.role}/{self.level}[{self.slot_index}]"


@dataclass(frozen=True, slots=True)
class InFlightDispatch:
    slot: SlotRef
    issue_id: str
    session_key: str
    dispatched_at: datetime


class InFlightLedger:
    """In-memory record of dispatched-but-unfinished work, keyed by slot."""

    def __init__(self) -> None:
        self._entries: dict[SlotRef, InFlightDispatch] = {}

    def submit(
        self,
        slot: SlotRef,
        issue_id: str,
        *,
        session_key: str,
        dispatched_at: datetime | None = None,
    ) -> InFlightDispatch:
        existing = self._entries.get(slot)
        if existing is not None:
            raise SlotBusyError(slot, existing.issue_id)
        entry = InFlightDispatch(
            slot=slot,
            issue_id=normalize_issue_id(issue_id),
            session_key=session_key,
            dispatched_at=dispatched_at or utc_now(),
        )
        self._entries[slot] = entry
        return entry

    def release(self, slot: SlotRef) -> InFlightDispatch | None:
        """Drop the record for ``slot``. Idempotent."""

        return self._entries.pop(slot, None)

    def get(self, slot: SlotRef) -> InFlightDispatch | None:
        return self._entries.get(slot)

    def is_busy(self, slot: SlotRef) -> bool:
        return slot in self._entries

    def for_project(self, project: str) -> tuple[InFlightDispatch, ...]:
        return tuple(entry for slot, entry in self._entries.items() if slot.project == project)

    def release_untracked(self, project: Project) -> tuple[InFlightDispatch, ...]:
        """Drop records whose slot in ``project`` is not active on the same ticket."""

        released: list[InFlightDispatch] = []
        for entry in self.for_project(project.slug):
            slot = entry.slot
            worker = project.workers.get(slot.role)
            slots = [] if worker is None else worker.slots(slot.level)
            if slot.slot_index < len(slots):
                current = slots[slot.slot_index]
                if current.active and current.issue_id == entry.issue_id:
                    continue
            self._entries.pop(slot, None)
            released.append(entry)
        return tuple(released)

    def __iter__(self) -> Iterator[InFlightDispatch]:
        return iter(tuple(self._entries.values()))

    def __len__(self) -> int:
        return len(self._entries)


@dataclass(frozen=True, slots=True)
class WorkCompletion:
    """A worker's reported result for the ticket it was dispatched on."""

    project: str
    role: str
    level: str
    slot_index: int
    issue_id: str
    result: str
    summary: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "issue_id", normalize_issue_id(self.issue_id))
        object.__setattr__(self, "result", str(self.result).strip().lower())
        if not self.result:
            raise ValueError("result must be a non-empty string")
        if self.slot_index < 0:
            raise ValueError("slot_index must be >= 0")

    @property
    def slot(self) -> SlotRef:
        return SlotRef(self.project, self.role, self.level, self.slot_index)


class CompletionChannel:
    """Unbounded FIFO of :class:`WorkCompletion` drained once per tick."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[WorkCompletion] = asyncio.Queue()

    def submit(self, completion: WorkCompletion) -> None:
        self._queue.put_nowait(completion)
        logger.debug(
            "completion_submitted",
            project=completion.project,
            role=completion.role,
            issue_id=completion.issue_id,
            result=completion.result,
        )

    def drain(self) -> list[WorkCompletion]:
        """Everything queued right now, oldest first; never waits."""

        drained: list[WorkCompletion] = []
        while True:
            try:
                drained.append(self._queue.get_nowait())
            except asyncio.QueueEmpty:
                return drained

    def pending(self) -> int:
        return self._queue.qsize()


__all__ = [
    "CompletionChannel",
    "DispatchError",
    "InFlightDispatch",
    "InFlightLedger",
    "SlotBusyError",
    "SlotRef",
    "WorkCompletion",
]
