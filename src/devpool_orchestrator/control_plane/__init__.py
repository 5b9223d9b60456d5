"""Control plane: dispatch, health repair, auto-transition passes and the heartbeat."""

from devpool_orchestrator.control_plane.bootstrap import ControlPlane, build_control_plane
from devpool_orchestrator.control_plane.completion import (
    CompletionOutcome,
    apply_completion,
    apply_completions,
)
from devpool_orchestrator.control_plane.context import SOFT_ERRORS, ControlContext, soft_call
from devpool_orchestrator.control_plane.dispatch import DispatchOutcome, dispatch_task
from devpool_orchestrator.control_plane.health import (
    HealthFix,
    HealthIssue,
    HealthIssueKind,
    check_project_health,
)
from devpool_orchestrator.control_plane.heartbeat import (
    HeartbeatService,
    ProviderFactory,
    TickRunner,
)
from devpool_orchestrator.control_plane.inflight import (
    CompletionChannel,
    DispatchError,
    InFlightLedger,
    SlotBusyError,
    SlotRef,
    WorkCompletion,
)
from devpool_orchestrator.control_plane.scheduler import TickResult, tick_project

__all__ = [
    "CompletionChannel",
    "CompletionOutcome",
    "ControlContext",
    "ControlPlane",
    "DispatchError",
    "DispatchOutcome",
    "HealthFix",
    "HealthIssue",
    "HealthIssueKind",
    "HeartbeatService",
    "InFlightLedger",
    "ProviderFactory",
    "SOFT_ERRORS",
    "SlotBusyError",
    "SlotRef",
    "TickResult",
    "TickRunner",
    "WorkCompletion",
    "apply_completion",
    "apply_completions",
    "build_control_plane",
    "check_project_health",
    "dispatch_task",
    "soft_call",
    "tick_project",
]
