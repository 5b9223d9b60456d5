"""
devpool-orchestrator — unit tests for worker slot tables

File: tests/unit/capacity/test_slots.py
Last updated: 2026-10-19

Purpose
- Validate slot fill order, activation bookkeeping and capacity reconciliation.

What this test file should cover
- Lowest free index wins; full and unknown levels yield None.
- Activate/deactivate keep or clear the session key as requested.
- Reconcile grows, shrinks past inactive slots only, and is idempotent.
"""

from __future__ import annotations

from datetime import UTC, datetime

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from devpool_orchestrator.capacity.slots import (
    RoleWorkerState,
    WorkerSlot,
    activate_slot,
    count_active_slots,
    deactivate_slot,
    empty_role_worker_state,
    find_free_slot,
    find_slot_by_issue,
    reconcile_slots,
)

START = datetime(2026, 10, 19, 8, 0, tzinfo=UTC)


def _namer(level: str, index: int) -> str:
    return f"{level}-{index}"


def _activate(state: RoleWorkerState, level: str, index: int, issue_id: str) -> WorkerSlot:
    return activate_slot(
        state,
        level,
        index,
        issue_id=issue_id,
        session_key=f"session-{level}-{index}",
        start_time=START,
        previous_label="To Do",
    )


def test_empty_state_follows_capacity_and_namer() -> None:
    state = empty_role_worker_state({"junior": 2, "senior": 1}, namer=_namer)

    assert [slot.name for slot in state.slots("junior")] == ["junior-0", "junior-1"]
    assert state.slots("senior")[0].active is False
    assert state.slots("medior") == []
    with pytest.raises(ValueError, match="capacity"):
        empty_role_worker_state({"junior": -1})


def test_free_slot_is_lowest_inactive_index() -> None:
    state = empty_role_worker_state({"junior": 3})

    _activate(state, "junior", 0, "1")
    _activate(state, "junior", 2, "3")

    assert find_free_slot(state, "junior") == 1
    _activate(state, "junior", 1, "2")
    assert find_free_slot(state, "junior") is None
    assert find_free_slot(state, "senior") is None


def test_activate_and_deactivate_bookkeeping() -> None:
    state = empty_role_worker_state({"medior": 1})

    slot = _activate(state, "medior", 0, "42")

    assert slot.active
    assert slot.issue_id == "42"
    assert slot.previous_label == "To Do"
    assert find_slot_by_issue(state, "42") == ("medior", 0, slot)
    assert count_active_slots(state) == 1
    with pytest.raises(ValueError, match="already active"):
        _activate(state, "medior", 0, "43")

    deactivate_slot(state, "medior", 0)
    assert slot.active is False
    assert slot.issue_id is None
    assert slot.start_time is None
    assert slot.session_key == "session-medior-0"

    deactivate_slot(state, "medior", 0, clear_session=True)
    assert slot.session_key is None
    assert count_active_slots(state) == 0


def test_deactivate_can_keep_issue_reference() -> None:
    state = empty_role_worker_state({"junior": 1})
    _activate(state, "junior", 0, "9")

    slot = deactivate_slot(state, "junior", 0, clear_issue=False)

    assert slot.issue_id == "9"
    assert not slot.active


def test_out_of_range_slots_raise_index_error() -> None:
    state = empty_role_worker_state({"junior": 1})

    with pytest.raises(IndexError):
        deactivate_slot(state, "junior", 1)
    with pytest.raises(IndexError):
        _activate(state, "senior", 0, "1")
    with pytest.raises(IndexError):
        deactivate_slot(state, "junior", -1)


def test_reconcile_grows_and_names_new_slots() -> None:
    state = empty_role_worker_state({"junior": 1})

    changed = reconcile_slots(state, {"junior": 3, "senior": 1}, namer=_namer)

    assert changed
    assert [slot.name for slot in state.slots("junior")] == ["junior-0", "junior-1", "junior-2"]
    assert len(state.slots("senior")) == 1
    assert reconcile_slots(state, {"junior": 3, "senior": 1}, namer=_namer) is False


def test_reconcile_shrink_stops_at_active_trailing_slot() -> None:
    state = empty_role_worker_state({"junior": 4})
    _activate(state, "junior", 2, "7")

    assert reconcile_slots(state, {"junior": 1})
    assert len(state.slots("junior")) == 3
    assert state.slots("junior")[2].issue_id == "7"

    deactivate_slot(state, "junior", 2)
    assert reconcile_slots(state, {"junior": 1})
    assert len(state.slots("junior")) == 1


def test_reconcile_leaves_unconfigured_levels_alone() -> None:
    state = empty_role_worker_state({"junior": 1, "legacy": 2})

    reconcile_slots(state, {"junior": 2})

    assert len(state.slots("legacy")) == 2


def test_slot_documents_round_trip_and_validate() -> None:
    state = empty_role_worker_state({"junior": 1}, namer=_namer)
    _activate(state, "junior", 0, "5")

    document = state.to_dict()
    restored = RoleWorkerState.from_dict(document)

    assert restored == state
    junior = document["levels"]["junior"]  # type: ignore[index]
    assert junior[0]["start_time"] == "2026-10-19T08:00:00.000Z"
    with pytest.raises(ValueError, match=r"workers.levels.junior\[0\].active"):
        RoleWorkerState.from_dict({"levels": {"junior": [{"active": "yes"}]}})
    with pytest.raises(ValueError, match="expected array"):
        RoleWorkerState.from_dict({"levels": {"junior": {}}})
    with pytest.raises(ValueError, match="session_key"):
        WorkerSlot.from_dict({"session_key": 5})


@settings(max_examples=25, derandomize=True, deadline=None)
@given(
    initial=st.integers(min_value=0, max_value=6),
    target=st.integers(min_value=0, max_value=6),
    active=st.sets(st.integers(min_value=0, max_value=5), max_size=4),
)
def test_reconcile_never_drops_active_slots(initial: int, target: int, active: set[int]) -> None:
    state = empty_role_worker_state({"junior": initial})
    for index in sorted(active):
        if index < initial:
            _activate(state, "junior", index, str(index))
    before = {slot.issue_id for _, _, slot in state.iter_slots() if slot.active}

    reconcile_slots(state, {"junior": target})
    first_pass = [slot.to_dict() for slot in state.slots("junior")]
    reconcile_slots(state, {"junior": target})

    after = {slot.issue_id for _, _, slot in state.iter_slots() if slot.active}
    assert after == before
    assert len(state.slots("junior")) >= target
    assert [slot.to_dict() for slot in state.slots("junior")] == first_pass
    if len(state.slots("junior")) > target:
        assert state.slots("junior")[-1].active
