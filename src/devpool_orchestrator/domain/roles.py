"""
devpool-orchestrator — worker role registry

File: src/devpool_orchestrator/domain/roles.py
Last updated: 2026-10-19

Purpose
- Describe every worker role: its levels, default level, model per level,
  per-level capacity and the completion results a worker may report.
- Pick a level for a ticket when no ``role:level`` label pins one.

Functional requirements
- Built-in roles: developer, tester, reviewer, architect.
- Config overlays merge per role; ``false`` disables a role, ``models`` merge per level.
- Level heuristic adapts to the number of levels a role has.

Non-functional requirements
- Pure and deterministic; no IO.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field, replace
from typing import Final

_SIMPLE_KEYWORDS: Final[tuple[str, ...]] = (
    "typo",
    "fix typo",
    "rename",
    "update text",
    "change color",
    "minor",
    "small",
    "css",
    "style",
    "copy",
    "wording",
)
_COMPLEX_KEYWORDS: Final[tuple[str, ...]] = (
    "architect",
    "refactor",
    "redesign",
    "system-wide",
    "migration",
    "database schema",
    "security",
    "performance",
    "infrastructure",
    "multi-service",
)
_SIMPLE_MAX_WORDS: Final[int] = 100
_COMPLEX_MIN_WORDS: Final[int] = 500

_HAIKU: Final[str] = "anthropic/claude-haiku-4-5"
_SONNET: Final[str] = "anthropic/claude-sonnet-4-5"
_OPUS: Final[str] = "anthropic/claude-opus-4-5"


class UnknownRoleError(KeyError):
    """Raised when a role id is not registered."""


@dataclass(frozen=True, slots=True)
class RoleConfig:
    id: str
    display_name: str
    levels: tuple[str, ...]
    default_level: str
    models: Mapping[str, str] = field(default_factory=dict)
    completion_results: tuple[str, ...] = ("done", "blocked")
    enabled: bool = True
    max_workers: Mapping[str, int] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.id or not self.id.strip():
            raise ValueError("id must be a non-empty string")
        object.__setattr__(self, "levels", tuple(self.levels))
        object.__setattr__(self, "completion_results", tuple(self.completion_results))
        object.__setattr__(self, "models", dict(self.models))
        object.__setattr__(self, "max_workers", dict(self.max_workers))
        if not self.levels:
            raise ValueError(f"role {self.id!r} levels must be non-empty")
        if len(set(self.levels)) != len(self.levels):
            raise ValueError(f"role {self.id!r} levels must be unique")
        if self.default_level not in self.levels:
            raise ValueError(f"role {self.id!r} default_level must be one of {list(self.levels)}")
        if not self.completion_results:
            raise ValueError(f"role {self.id!r} completion_results must be non-empty")
        for level, count in self.max_workers.items():
            if level not in self.levels:
                raise ValueError(f"role {self.id!r} max_workers names unknown level {level!r}")
            if isinstance(count, bool) or not isinstance(count, int) or count < 0:
                raise ValueError(f"role {self.id!r} max_workers.{level} must be an integer >= 0")

    def model_for(self, level: str) -> str:
        """Configured model for ``level``; an unknown level is passed through as a raw model id."""

        return self.models.get(level, level)

    def capacity_by_level(self, default_max: int) -> dict[str, int]:
        return {level: self.max_workers.get(level, default_max) for level in self.levels}


DEFAULT_ROLES: Final[tuple[RoleConfig, ...]] = (
    RoleConfig(
        id="developer",
        display_name="DEVELOPER",
        levels=("junior", "medior", "senior"),
        default_level="medior",
        models={"junior": _HAIKU, "medior": _SONNET, "senior": _OPUS},
        completion_results=("done", "blocked"),
    ),
    RoleConfig(
        id="tester",
        display_name="TESTER",
        levels=("junior", "medior", "senior"),
        default_level="medior",
        models={"junior": _HAIKU, "medior": _SONNET, "senior": _OPUS},
        completion_results=("pass", "fail", "refine", "blocked"),
    ),
    RoleConfig(
        id="reviewer",
        display_name="REVIEWER",
        levels=("junior", "senior"),
        default_level="junior",
        models={"junior": _SONNET, "senior": _OPUS},
        completion_results=("approve", "reject", "blocked"),
    ),
    RoleConfig(
        id="architect",
        display_name="ARCHITECT",
        levels=("junior", "senior"),
        default_level="junior",
        models={"junior": _SONNET, "senior": _OPUS},
        completion_results=("done", "blocked"),
    ),
)


class RoleRegistry:
    """Ordered, immutable set of role configs (registration order is dispatch tie-break order)."""

    __slots__ = ("_roles",)

    def __init__(self, roles: Iterable[RoleConfig] = DEFAULT_ROLES) -> None:
        ordered: dict[str, RoleConfig] = {}
        for role in roles:
            if role.id in ordered:
                raise ValueError(f"duplicate role id {role.id!r}")
            ordered[role.id] = role
        self._roles = ordered

    @classmethod
    def from_overrides(
        cls,
        overrides: Mapping[str, object] | None,
        *,
        base: Iterable[RoleConfig] = DEFAULT_ROLES,
    ) -> RoleRegistry:
        """Overlay config ``roles.<id>`` tables on ``base``.

        ``False`` disables a role. Mapping values update individual fields;
        ``models`` and ``max_workers`` merge per level instead of replacing.
        """

        merged: dict[str, RoleConfig] = {role.id: role for role in base}
        for role_id, raw in (overrides or {}).items():
            existing = merged.get(role_id)
            if raw is False:
                if existing is not None:
                    merged[role_id] = replace(existing, enabled=False)
                continue
            if not isinstance(raw, Mapping):
                raise ValueError(f"roles.{role_id} must be a table or false")
            merged[role_id] = _apply_role_override(role_id, existing, raw)
        return cls(merged.values())

    def __contains__(self, role_id: object) -> bool:
        return role_id in self._roles

    def __iter__(self) -> Iterator[RoleConfig]:
        return iter(self._roles.values())

    def __len__(self) -> int:
        return len(self._roles)

    def get(self, role_id: str) -> RoleConfig | None:
        return self._roles.get(role_id)

    def require(self, role_id: str) -> RoleConfig:
        role = self._roles.get(role_id)
        if role is None:
            raise UnknownRoleError(
                f"unknown role {role_id!r}; valid roles: {', '.join(self._roles)}"
            )
        return role

    @property
    def role_ids(self) -> tuple[str, ...]:
        return tuple(self._roles)

    def enabled_roles(self) -> tuple[RoleConfig, ...]:
        return tuple(role for role in self._roles.values() if role.enabled)

    def levels_by_role(self) -> dict[str, tuple[str, ...]]:
        return {role.id: role.levels for role in self._roles.values()}

    def model_for(self, role_id: str, level: str) -> str:
        return self.require(role_id).model_for(level)


def _apply_role_override(
    role_id: str,
    existing: RoleConfig | None,
    raw: Mapping[str, object],
) -> RoleConfig:
    levels_raw = raw.get("levels")
    levels = (
        tuple(str(item) for item in levels_raw)  # type: ignore[union-attr]
        if isinstance(levels_raw, (list, tuple))
        else (existing.levels if existing is not None else ())
    )
    models: dict[str, str] = dict(existing.models) if existing is not None else {}
    models_raw = raw.get("models")
    if isinstance(models_raw, Mapping):
        models.update({str(key): str(value) for key, value in models_raw.items()})
    max_workers: dict[str, int] = dict(existing.max_workers) if existing is not None else {}
    max_raw = raw.get("max_workers")
    if isinstance(max_raw, Mapping):
        max_workers.update(
            {str(key): value for key, value in max_raw.items()}  # type: ignore[misc]
        )
    # Drop entries for levels the override removed.
    max_workers = {key: value for key, value in max_workers.items() if key in levels}

    default_level_raw = raw.get("default_level")
    if isinstance(default_level_raw, str):
        default_level = default_level_raw
    elif existing is not None and existing.default_level in levels:
        default_level = existing.default_level
    else:
        default_level = levels[len(levels) // 2] if levels else ""

    results_raw = raw.get("completion_results")
    results = (
        tuple(str(item) for item in results_raw)  # type: ignore[union-attr]
        if isinstance(results_raw, (list, tuple))
        else (existing.completion_results if existing is not None else ("done", "blocked"))
    )
    enabled_raw = raw.get("enabled", True)
    return RoleConfig(
        id=role_id,
        display_name=str(
            raw.get("display_name") or (existing.display_name if existing else role_id.upper())
        ),
        levels=levels,
        default_level=default_level,
        models=models,
        completion_results=results,
        enabled=bool(enabled_raw),
        max_workers=max_workers,
    )


@dataclass(frozen=True, slots=True)
class LevelSelection:
    level: str
    reason: str


def select_level(title: str, description: str, role: RoleConfig) -> LevelSelection:
    """Keyword/length heuristic used when a ticket carries no ``role:level`` label.

    - one level: that level
    - two levels: complex keywords pick the highest, otherwise the lowest
    - three or more: simple and short picks the lowest, complex or long picks
      the highest, anything else the role's default level
    """

    levels = role.levels
    if len(levels) == 1:
        return LevelSelection(levels[0], f"only level for {role.id}")

    text = f"{title} {description}".lower()
    word_count = len(text.split())
    simple_hits = [keyword for keyword in _SIMPLE_KEYWORDS if keyword in text]
    complex_hits = [keyword for keyword in _COMPLEX_KEYWORDS if keyword in text]
    lowest, highest = levels[0], levels[-1]

    if len(levels) == 2:
        if complex_hits:
            return LevelSelection(highest, f"complex task, using {highest}")
        return LevelSelection(lowest, f"standard task, using {lowest}")

    if simple_hits and word_count < _SIMPLE_MAX_WORDS:
        return LevelSelection(lowest, f"simple task (keywords: {', '.join(simple_hits)})")
    if complex_hits or word_count > _COMPLEX_MIN_WORDS:
        detail = f"keywords: {', '.join(complex_hits)}" if complex_hits else "long description"
        return LevelSelection(highest, f"complex task ({detail})")
    return LevelSelection(role.default_level, f"standard {role.id} task")


__all__ = [
    "DEFAULT_ROLES",
    "LevelSelection",
    "RoleConfig",
    "RoleRegistry",
    "UnknownRoleError",
    "select_level",
]
