"""Domain value types: tickets, pull requests, sessions and worker roles."""

from devpool_orchestrator.domain.models import (
    Comment,
    PrReviewComment,
    PrState,
    PrStatus,
    SessionInfo,
    Ticket,
    utc_now,
)
from devpool_orchestrator.domain.roles import (
    DEFAULT_ROLES,
    LevelSelection,
    RoleConfig,
    RoleRegistry,
    UnknownRoleError,
    select_level,
)

__all__ = [
    "DEFAULT_ROLES",
    "Comment",
    "LevelSelection",
    "PrReviewComment",
    "PrState",
    "PrStatus",
    "RoleConfig",
    "RoleRegistry",
    "SessionInfo",
    "Ticket",
    "UnknownRoleError",
    "select_level",
    "utc_now",
]
