"""Routing, ownership and role-level label helpers.

Labels are the durable record on a ticket between ticks: besides the workflow
state label a ticket may carry

- step routing overrides (``review:skip``, ``test:agent`` ...),
- an owner label (``owner:<instance>``) claiming it for one orchestrator,
- a role-level label (``developer:senior[:Name]``) pinning the worker level.
"""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING, Final

from devpool_orchestrator.workflow.model import ReviewPolicy, TestPolicy

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence


class StepRouting(StrEnum):
    HUMAN = "human"
    AGENT = "agent"
    SKIP = "skip"


REVIEW_STEP: Final[str] = "review"
TEST_STEP: Final[str] = "test"

STEP_ROUTING_LABELS: Final[tuple[str, ...]] = (
    "review:human",
    "review:agent",
    "review:skip",
    "test:skip",
    "test:agent",
)
STEP_ROUTING_COLOR: Final[str] = "#d93f0b"

OWNER_LABEL_PREFIX: Final[str] = "owner:"
OWNER_LABEL_COLOR: Final[str] = "#e4e4e4"

_ROLE_LABEL_COLORS: Final[dict[str, str]] = {
    "developer": "#0e8a16",
    "tester": "#5319e7",
    "architect": "#0075ca",
    "reviewer": "#d93f0b",
}
_FALLBACK_ROLE_COLOR: Final[str] = "#cccccc"


def detect_step_routing(labels: Iterable[str], step: str) -> str | None:
    """Return the lower-cased routing value for ``step`` (``review:skip`` -> ``skip``)."""

    prefix = f"{step}:"
    for label in labels:
        if label.lower().startswith(prefix):
            return label[len(prefix) :].lower()
    return None


def resolve_review_routing(policy: ReviewPolicy | str) -> str:
    try:
        resolved = ReviewPolicy(policy)
    except ValueError:
        resolved = ReviewPolicy.HUMAN
    return f"{REVIEW_STEP}:{resolved.value}"


def resolve_test_routing(policy: TestPolicy | str) -> str:
    if policy == TestPolicy.AGENT:
        return f"{TEST_STEP}:{StepRouting.AGENT.value}"
    return f"{TEST_STEP}:{StepRouting.SKIP.value}"


def owner_label(instance_name: str) -> str:
    if not instance_name:
        raise ValueError("instance_name must be a non-empty string")
    return f"{OWNER_LABEL_PREFIX}{instance_name}"


def detect_owner(labels: Iterable[str]) -> str | None:
    for label in labels:
        if label.startswith(OWNER_LABEL_PREFIX):
            return label[len(OWNER_LABEL_PREFIX) :]
    return None


def is_owned_by_or_unclaimed(labels: Iterable[str], instance_name: str) -> bool:
    owner = detect_owner(labels)
    return owner is None or owner == instance_name


def role_label_color(role: str) -> str:
    return _ROLE_LABEL_COLORS.get(role, _FALLBACK_ROLE_COLOR)


def role_level_label(role: str, level: str, name: str | None = None) -> str:
    base = f"{role}:{level}"
    return base if not name else f"{base}:{name}"


def detect_role_level_from_labels(
    labels: Iterable[str],
    levels_by_role: Mapping[str, Sequence[str]],
) -> tuple[str, str, str | None] | None:
    """Find the first ``role:level[:name]`` label naming a known level of a known role."""

    for label in labels:
        parts = label.split(":")
        if len(parts) < 2:
            continue
        role = parts[0].lower()
        level = parts[1].lower()
        if level in levels_by_role.get(role, ()):
            name = parts[2] if len(parts) > 2 and parts[2] else None
            return role, level, name
    return None


__all__ = [
    "OWNER_LABEL_COLOR",
    "OWNER_LABEL_PREFIX",
    "REVIEW_STEP",
    "STEP_ROUTING_COLOR",
    "STEP_ROUTING_LABELS",
    "StepRouting",
    "TEST_STEP",
    "detect_owner",
    "detect_role_level_from_labels",
    "detect_step_routing",
    "is_owned_by_or_unclaimed",
    "owner_label",
    "resolve_review_routing",
    "resolve_test_routing",
    "role_label_color",
    "role_level_label",
]
