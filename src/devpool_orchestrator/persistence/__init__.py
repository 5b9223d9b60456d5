"""Persistence plane: SQLite project documents and instance identity."""

from devpool_orchestrator.persistence.instance import InstanceIdentity, resolve_instance_name
from devpool_orchestrator.persistence.project_store import (
    ProjectCheckpoint,
    ProjectNotFoundError,
    ProjectStore,
    ProjectStoreBusyError,
    ProjectStoreError,
    ProjectStoreMigrationError,
    canonical_json,
)

__all__ = [
    "InstanceIdentity",
    "ProjectCheckpoint",
    "ProjectNotFoundError",
    "ProjectStore",
    "ProjectStoreBusyError",
    "ProjectStoreError",
    "ProjectStoreMigrationError",
    "canonical_json",
    "resolve_instance_name",
]
