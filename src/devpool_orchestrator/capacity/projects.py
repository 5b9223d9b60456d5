"""Project registration records and their per-role worker tables."""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Final

from devpool_orchestrator.capacity.slots import RoleWorkerState, reconcile_slots
from devpool_orchestrator.constants import DEFAULT_BASE_BRANCH, PROJECT_DOCUMENT_VERSION
from devpool_orchestrator.utils.names import slot_name
from devpool_orchestrator.workflow.model import ExecutionMode

if TYPE_CHECKING:
    from devpool_orchestrator.domain.roles import RoleRegistry

_SLUG_RE: Final[re.Pattern[str]] = re.compile(r"^[a-z0-9][a-z0-9._-]*$")


def slugify(name: str) -> str:
    slug = re.sub(r"\s+", "-", name.strip().lower())
    if not _SLUG_RE.fullmatch(slug):
        raise ValueError(f"cannot derive a project slug from {name!r}")
    return slug


@dataclass(frozen=True, slots=True)
class Channel:
    """Notification endpoint; ``thread_id`` routes worker messages to a dedicated thread."""

    channel: str
    target: str
    name: str = "primary"
    thread_id: str | None = None
    events: tuple[str, ...] = ("*",)

    def __post_init__(self) -> None:
        if not self.channel:
            raise ValueError("channel must be a non-empty string")
        if not self.target:
            raise ValueError("target must be a non-empty string")
        object.__setattr__(self, "events", tuple(self.events))
        if self.thread_id is not None:
            object.__setattr__(self, "thread_id", str(self.thread_id))

    def to_dict(self) -> dict[str, object]:
        return {
            "channel": self.channel,
            "target": self.target,
            "name": self.name,
            "thread_id": self.thread_id,
            "events": list(self.events),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> Channel:
        events = data.get("events") or ("*",)
        thread_id = data.get("thread_id")
        return cls(
            channel=str(data.get("channel") or ""),
            target=str(data.get("target") or ""),
            name=str(data.get("name") or "primary"),
            thread_id=None if thread_id is None else str(thread_id),
            events=tuple(str(item) for item in events),  # type: ignore[union-attr]
        )


@dataclass(slots=True)
class Project:
    """A registered project. ``workers`` is the only field mutated by the heartbeat."""

    slug: str
    name: str
    repo: str
    group_name: str = ""
    base_branch: str = DEFAULT_BASE_BRANCH
    repo_remote: str | None = None
    channels: tuple[Channel, ...] = ()
    provider: str | None = None
    role_execution: ExecutionMode | None = None
    workers: dict[str, RoleWorkerState] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not isinstance(self.slug, str) or not _SLUG_RE.fullmatch(self.slug):
            raise ValueError("slug must match [a-z0-9][a-z0-9._-]*")
        if not self.name:
            raise ValueError("name must be a non-empty string")
        if not self.repo:
            raise ValueError("repo must be a non-empty string")
        self.channels = tuple(self.channels)
        if self.role_execution is not None:
            self.role_execution = ExecutionMode(self.role_execution)

    @property
    def primary_channel(self) -> Channel | None:
        return self.channels[0] if self.channels else None

    def role_worker(self, role: str) -> RoleWorkerState:
        """Worker table for ``role``, created empty on first access."""

        state = self.workers.get(role)
        if state is None:
            state = RoleWorkerState()
            self.workers[role] = state
        return state

    def to_dict(self) -> dict[str, object]:
        return {
            "version": PROJECT_DOCUMENT_VERSION,
            "slug": self.slug,
            "name": self.name,
            "repo": self.repo,
            "group_name": self.group_name,
            "base_branch": self.base_branch,
            "repo_remote": self.repo_remote,
            "channels": [channel.to_dict() for channel in self.channels],
            "provider": self.provider,
            "role_execution": None if self.role_execution is None else self.role_execution.value,
            "workers": {role: state.to_dict() for role, state in self.workers.items()},
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> Project:
        """Parse a current-version document (older ones go through the migration pass)."""

        version = data.get("version")
        if version != PROJECT_DOCUMENT_VERSION:
            raise ValueError(
                f"project document version must be {PROJECT_DOCUMENT_VERSION}, got {version!r}"
            )
        channels_raw = data.get("channels") or []
        workers_raw = data.get("workers") or {}
        if not isinstance(channels_raw, list):
            raise ValueError("channels: expected array")
        if not isinstance(workers_raw, Mapping):
            raise ValueError("workers: expected object")
        role_execution = data.get("role_execution")
        repo_remote = data.get("repo_remote")
        provider = data.get("provider")
        return cls(
            slug=str(data.get("slug") or ""),
            name=str(data.get("name") or ""),
            repo=str(data.get("repo") or ""),
            group_name=str(data.get("group_name") or ""),
            base_branch=str(data.get("base_branch") or DEFAULT_BASE_BRANCH),
            repo_remote=None if repo_remote is None else str(repo_remote),
            channels=tuple(Channel.from_dict(item) for item in channels_raw),
            provider=None if provider is None else str(provider),
            role_execution=None if role_execution is None else ExecutionMode(str(role_execution)),
            workers={
                str(role): RoleWorkerState.from_dict(state, f"workers.{role}")
                for role, state in workers_raw.items()
            },
        )


def reconcile_project_capacity(
    project: Project,
    registry: RoleRegistry,
    *,
    roles: tuple[str, ...],
    default_max: int,
) -> bool:
    """Resize every enabled role's table in ``roles`` to its configured capacity."""

    changed = False
    for role_id in roles:
        role = registry.get(role_id)
        if role is None or not role.enabled:
            continue
        capacity = role.capacity_by_level(default_max)
        state = project.role_worker(role_id)
        changed = (
            reconcile_slots(
                state,
                capacity,
                namer=lambda level, index, _role=role_id: slot_name(
                    project.slug, _role, level, index
                ),
            )
            or changed
        )
    return changed


__all__ = [
    "Channel",
    "Project",
    "reconcile_project_capacity",
    "slugify",
]
