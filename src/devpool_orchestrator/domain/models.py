"""Value types exchanged with the issue tracker and session runtime.

All types are frozen dataclasses validated in ``__post_init__``; ``from_dict``
accepts the loose JSON shapes adapters tend to return and normalizes them
(ticket ids are always strings, datetimes are always aware UTC).
"""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import NoReturn


class PrState(StrEnum):
    OPEN = "open"
    APPROVED = "approved"
    CHANGES_REQUESTED = "changes_requested"
    HAS_COMMENTS = "has_comments"
    MERGED = "merged"
    CLOSED = "closed"


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def _fail(path: str, message: str) -> NoReturn:
    raise ValueError(f"{path}: {message}")


def as_utc_datetime(value: object, path: str) -> datetime:
    """Parse a datetime, ISO-8601 string or epoch milliseconds into aware UTC."""

    parsed: datetime
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value[:-1] + "+00:00" if value.endswith("Z") else value
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as exc:
            _fail(path, f"invalid ISO-8601 datetime: {value!r} ({exc})")
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        if not math.isfinite(value):
            _fail(path, "epoch milliseconds must be finite")
        parsed = datetime.fromtimestamp(float(value) / 1000.0, tz=UTC)
    else:
        _fail(path, f"expected datetime or ISO-8601 string, got {type(value).__name__}")

    if parsed.tzinfo is None or parsed.utcoffset() is None:
        _fail(path, "datetime must be timezone-aware")
    return parsed.astimezone(UTC)


def datetime_to_iso8601z(value: datetime) -> str:
    normalized = as_utc_datetime(value, "datetime")
    return normalized.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def normalize_issue_id(value: object, path: str = "issue_id") -> str:
    if isinstance(value, bool):
        _fail(path, "expected string or integer ticket id")
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str) and value.strip():
        return value.strip()
    _fail(path, f"expected non-empty ticket id, got {value!r}")


def _optional_str(value: object, path: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        _fail(path, f"expected string, got {type(value).__name__}")
    return value


@dataclass(frozen=True, slots=True)
class Comment:
    author: str
    body: str
    created_at: datetime | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.author, str):
            raise ValueError("author must be a string")
        if not isinstance(self.body, str):
            raise ValueError("body must be a string")
        if self.created_at is not None:
            object.__setattr__(
                self, "created_at", as_utc_datetime(self.created_at, "Comment.created_at")
            )

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> Comment:
        created = data.get("created_at")
        return cls(
            author=str(data.get("author") or "unknown"),
            body=str(data.get("body") or ""),
            created_at=None if created is None else as_utc_datetime(created, "Comment.created_at"),
        )


@dataclass(frozen=True, slots=True)
class Ticket:
    """External tracker issue. Labels carry workflow position, routing and ownership."""

    id: str
    title: str
    description: str = ""
    labels: tuple[str, ...] = ()
    url: str | None = None
    state: str = "open"

    def __post_init__(self) -> None:
        object.__setattr__(self, "id", normalize_issue_id(self.id, "Ticket.id"))
        if not isinstance(self.title, str):
            raise ValueError("title must be a string")
        if not isinstance(self.description, str):
            raise ValueError("description must be a string")
        if isinstance(self.labels, str) or not isinstance(self.labels, Sequence):
            raise ValueError("labels must be a sequence of strings")
        labels = tuple(self.labels)
        for label in labels:
            if not isinstance(label, str) or not label:
                raise ValueError("labels must be non-empty strings")
        object.__setattr__(self, "labels", labels)

    def has_label(self, label: str) -> bool:
        return label in self.labels

    def with_labels(self, labels: Sequence[str]) -> Ticket:
        return Ticket(
            id=self.id,
            title=self.title,
            description=self.description,
            labels=tuple(labels),
            url=self.url,
            state=self.state,
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> Ticket:
        raw_labels = data.get("labels") or ()
        if isinstance(raw_labels, str) or not isinstance(raw_labels, Sequence):
            _fail("Ticket.labels", "expected array of strings")
        return cls(
            id=normalize_issue_id(data.get("id"), "Ticket.id"),
            title=str(data.get("title") or ""),
            description=str(data.get("description") or ""),
            labels=tuple(str(item) for item in raw_labels),
            url=_optional_str(data.get("url"), "Ticket.url"),
            state=str(data.get("state") or "open"),
        )


@dataclass(frozen=True, slots=True)
class PrStatus:
    state: PrState
    url: str | None = None
    title: str | None = None
    source_branch: str | None = None
    mergeable: bool | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "state", PrState(self.state))
        if self.mergeable is not None and not isinstance(self.mergeable, bool):
            raise ValueError("mergeable must be a bool or None")

    @property
    def is_merged(self) -> bool:
        return self.state is PrState.MERGED

    @property
    def is_closed_unmerged(self) -> bool:
        return self.state is PrState.CLOSED


@dataclass(frozen=True, slots=True)
class PrReviewComment:
    id: str
    author: str
    body: str
    state: str = "COMMENTED"
    created_at: datetime | None = None
    path: str | None = None
    line: int | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.body, str):
            raise ValueError("body must be a string")
        if self.line is not None and (
            isinstance(self.line, bool) or not isinstance(self.line, int)
        ):
            raise ValueError("line must be an integer or None")
        if self.created_at is not None:
            object.__setattr__(
                self, "created_at", as_utc_datetime(self.created_at, "PrReviewComment.created_at")
            )


@dataclass(frozen=True, slots=True)
class SessionInfo:
    """Liveness/usage snapshot of one worker session as reported by the runtime."""

    key: str
    updated_at: datetime | None = None
    percent_used: float = 0.0
    aborted_last_run: bool = False
    total_tokens: int | None = None
    context_tokens: int | None = None
    metadata: dict[str, object] = field(default_factory=dict, compare=False)

    def __post_init__(self) -> None:
        if not isinstance(self.key, str) or not self.key:
            raise ValueError("key must be a non-empty string")
        if isinstance(self.percent_used, bool) or not isinstance(self.percent_used, (int, float)):
            raise ValueError("percent_used must be a number")
        if not math.isfinite(float(self.percent_used)) or self.percent_used < 0:
            raise ValueError("percent_used must be a finite number >= 0")
        if self.updated_at is not None:
            object.__setattr__(
                self, "updated_at", as_utc_datetime(self.updated_at, "SessionInfo.updated_at")
            )

    @property
    def context_ratio(self) -> float:
        return float(self.percent_used) / 100.0


__all__ = [
    "Comment",
    "PrReviewComment",
    "PrState",
    "PrStatus",
    "SessionInfo",
    "Ticket",
    "as_utc_datetime",
    "datetime_to_iso8601z",
    "normalize_issue_id",
    "utc_now",
]
