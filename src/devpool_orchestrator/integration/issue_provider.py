"""
devpool-orchestrator — issue tracker capability

File: src/devpool_orchestrator/integration/issue_provider.py
Last updated: 2026-10-19

Purpose
- Async protocol every issue-tracker adapter implements. Concrete GitHub /
  GitLab adapters live outside this package.

Error contract
- ``TicketNotFoundError``: the ticket is confirmed gone (deleted, transferred).
- ``IssueProviderError``: any other tracker failure; callers treat it as
  "unknown" and skip the dependent check for the tick.
- ``TimeoutError`` from the caller's own deadline is handled the same way.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Sequence

    from devpool_orchestrator.domain.models import Comment, PrReviewComment, PrStatus, Ticket


class IssueProviderError(RuntimeError):
    """Tracker call failed; outcome unknown."""


class TicketNotFoundError(IssueProviderError):
    """The tracker confirms the ticket does not exist."""

    def __init__(self, issue_id: str) -> None:
        self.issue_id = issue_id
        super().__init__(f"ticket {issue_id} not found")


@runtime_checkable
class IssueProvider(Protocol):
    async def ensure_label(self, name: str, color: str) -> None: ...

    async def create_issue(self, title: str, description: str, label: str) -> Ticket: ...

    async def list_issues_by_label(self, label: str) -> Sequence[Ticket]: ...

    async def get_issue(self, issue_id: str) -> Ticket: ...

    async def list_comments(self, issue_id: str) -> Sequence[Comment]: ...

    async def transition_label(self, issue_id: str, from_label: str, to_label: str) -> None: ...

    async def add_label(self, issue_id: str, label: str) -> None: ...

    async def remove_labels(self, issue_id: str, labels: Sequence[str]) -> None: ...

    async def close_issue(self, issue_id: str) -> None: ...

    async def reopen_issue(self, issue_id: str) -> None: ...

    async def add_comment(self, issue_id: str, body: str) -> None: ...

    async def get_pr_status(self, issue_id: str) -> PrStatus | None:
        """Status of the PR linked to the ticket, or ``None`` when no PR exists."""
        ...

    async def merge_pr(self, issue_id: str) -> None: ...

    async def get_pr_diff(self, issue_id: str) -> str | None: ...

    async def get_pr_review_comments(self, issue_id: str) -> Sequence[PrReviewComment]: ...

    async def health_check(self) -> bool: ...


__all__ = ["IssueProvider", "IssueProviderError", "TicketNotFoundError"]
