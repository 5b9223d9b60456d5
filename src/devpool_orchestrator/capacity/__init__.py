"""Capacity plane: worker slot tables, project records and document migration."""

from devpool_orchestrator.capacity.migration import migrate_project_document
from devpool_orchestrator.capacity.projects import (
    Channel,
    Project,
    reconcile_project_capacity,
    slugify,
)
from devpool_orchestrator.capacity.slots import (
    RoleWorkerState,
    WorkerSlot,
    activate_slot,
    count_active_slots,
    deactivate_slot,
    empty_role_worker_state,
    empty_slot,
    find_free_slot,
    find_slot_by_issue,
    reconcile_slots,
)

__all__ = [
    "Channel",
    "Project",
    "RoleWorkerState",
    "WorkerSlot",
    "activate_slot",
    "count_active_slots",
    "deactivate_slot",
    "empty_role_worker_state",
    "empty_slot",
    "find_free_slot",
    "find_slot_by_issue",
    "migrate_project_document",
    "reconcile_project_capacity",
    "reconcile_slots",
    "slugify",
]
