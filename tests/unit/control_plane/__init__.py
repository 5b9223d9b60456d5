"""In-memory tracker, session runtime and command fakes shared by control-plane tests."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any

from devpool_orchestrator.capacity.projects import Project, reconcile_project_capacity
from devpool_orchestrator.config.settings import resolve_runtime_settings
from devpool_orchestrator.control_plane.context import ControlContext
from devpool_orchestrator.domain.models import (
    Comment,
    PrReviewComment,
    PrState,
    PrStatus,
    SessionInfo,
    Ticket,
)
from devpool_orchestrator.domain.roles import RoleRegistry
from devpool_orchestrator.integration.commands import CommandError, CommandResult
from devpool_orchestrator.integration.issue_provider import IssueProviderError, TicketNotFoundError
from devpool_orchestrator.integration.session_runtime import SessionRuntimeError
from devpool_orchestrator.observability.audit import AuditLog
from devpool_orchestrator.workflow.defaults import DEFAULT_WORKFLOW

INSTANCE = "amber-falcon"


class FakeIssueProvider:
    """Tracker double: tickets keyed by id, labels mutated by the label calls."""

    def __init__(self, tickets: Sequence[Ticket] = ()) -> None:
        self.tickets: dict[str, Ticket] = {ticket.id: ticket for ticket in tickets}
        self.pr_status: dict[str, PrStatus] = {}
        self.comments: dict[str, list[Comment]] = {}
        self.review_comments: dict[str, list[PrReviewComment]] = {}
        self.diffs: dict[str, str] = {}
        self.labels_ensured: dict[str, str] = {}
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.failures: dict[str, BaseException] = {}
        self.merge_error: BaseException | None = None
        self._next_id = 1000

    def add(self, issue_id: str | int, title: str, *labels: str, description: str = "") -> Ticket:
        ticket = Ticket(id=str(issue_id), title=title, description=description, labels=labels)
        self.tickets[ticket.id] = ticket
        return ticket

    def labels_of(self, issue_id: str) -> tuple[str, ...]:
        return self.tickets[issue_id].labels

    def called(self, method: str) -> list[tuple[Any, ...]]:
        return [args for name, args in self.calls if name == method]

    def _record(self, method: str, *args: Any) -> None:
        self.calls.append((method, args))
        failure = self.failures.get(method)
        if failure is not None:
            raise failure

    def _require(self, issue_id: str) -> Ticket:
        ticket = self.tickets.get(str(issue_id))
        if ticket is None:
            raise TicketNotFoundError(str(issue_id))
        return ticket

    def _relabel(self, issue_id: str, labels: Sequence[str]) -> None:
        ticket = self._require(issue_id)
        self.tickets[ticket.id] = ticket.with_labels(labels)

    async def ensure_label(self, name: str, color: str) -> None:
        self._record("ensure_label", name, color)
        self.labels_ensured[name] = color

    async def create_issue(self, title: str, description: str, label: str) -> Ticket:
        self._record("create_issue", title, description, label)
        self._next_id += 1
        return self.add(self._next_id, title, label, description=description)

    async def list_issues_by_label(self, label: str) -> Sequence[Ticket]:
        self._record("list_issues_by_label", label)
        return [
            ticket
            for ticket in self.tickets.values()
            if label in ticket.labels and ticket.state == "open"
        ]

    async def get_issue(self, issue_id: str) -> Ticket:
        self._record("get_issue", issue_id)
        return self._require(issue_id)

    async def list_comments(self, issue_id: str) -> Sequence[Comment]:
        self._record("list_comments", issue_id)
        return list(self.comments.get(issue_id, ()))

    async def transition_label(self, issue_id: str, from_label: str, to_label: str) -> None:
        self._record("transition_label", issue_id, from_label, to_label)
        labels = [label for label in self._require(issue_id).labels if label != from_label]
        if to_label not in labels:
            labels.append(to_label)
        self._relabel(issue_id, labels)

    async def add_label(self, issue_id: str, label: str) -> None:
        self._record("add_label", issue_id, label)
        labels = list(self._require(issue_id).labels)
        if label not in labels:
            labels.append(label)
        self._relabel(issue_id, labels)

    async def remove_labels(self, issue_id: str, labels: Sequence[str]) -> None:
        self._record("remove_labels", issue_id, tuple(labels))
        drop = set(labels)
        self._relabel(
            issue_id, [label for label in self._require(issue_id).labels if label not in drop]
        )

    async def close_issue(self, issue_id: str) -> None:
        self._record("close_issue", issue_id)
        ticket = self._require(issue_id)
        self.tickets[ticket.id] = Ticket(
            id=ticket.id,
            title=ticket.title,
            description=ticket.description,
            labels=ticket.labels,
            url=ticket.url,
            state="closed",
        )

    async def reopen_issue(self, issue_id: str) -> None:
        self._record("reopen_issue", issue_id)
        ticket = self._require(issue_id)
        self.tickets[ticket.id] = Ticket(
            id=ticket.id,
            title=ticket.title,
            description=ticket.description,
            labels=ticket.labels,
            url=ticket.url,
            state="open",
        )

    async def add_comment(self, issue_id: str, body: str) -> None:
        self._record("add_comment", issue_id, body)
        self.comments.setdefault(issue_id, []).append(Comment(author="devpool", body=body))

    async def get_pr_status(self, issue_id: str) -> PrStatus | None:
        self._record("get_pr_status", issue_id)
        return self.pr_status.get(issue_id)

    async def merge_pr(self, issue_id: str) -> None:
        self._record("merge_pr", issue_id)
        if self.merge_error is not None:
            raise self.merge_error
        status = self.pr_status.get(issue_id)
        if status is not None:
            self.pr_status[issue_id] = PrStatus(
                state=PrState.MERGED,
                url=status.url,
                title=status.title,
                source_branch=status.source_branch,
                mergeable=status.mergeable,
            )

    async def get_pr_diff(self, issue_id: str) -> str | None:
        self._record("get_pr_diff", issue_id)
        return self.diffs.get(issue_id)

    async def get_pr_review_comments(self, issue_id: str) -> Sequence[PrReviewComment]:
        self._record("get_pr_review_comments", issue_id)
        return list(self.review_comments.get(issue_id, ()))

    async def health_check(self) -> bool:
        self._record("health_check")
        return True


class FakeSessionRuntime:
    """Session runtime double whose ``sessions`` map doubles as the liveness oracle."""

    def __init__(self) -> None:
        self.sessions: dict[str, SessionInfo] = {}
        self.ensured: list[tuple[str, str, str | None]] = []
        self.sent: list[dict[str, Any]] = []
        self.resets: list[str] = []
        self.list_error: BaseException | None = None
        self.list_delay: float = 0.0
        self.send_error: BaseException | None = None
        self.ensure_error: BaseException | None = None

    async def ensure_session(self, key: str, model: str, label: str | None = None) -> None:
        if self.ensure_error is not None:
            raise self.ensure_error
        self.ensured.append((key, model, label))
        self.sessions.setdefault(key, SessionInfo(key=key))

    async def send_message(
        self,
        key: str,
        message: str,
        *,
        idempotency_key: str,
        thread_id: str | None = None,
    ) -> None:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(
            {
                "key": key,
                "message": message,
                "idempotency_key": idempotency_key,
                "thread_id": thread_id,
            }
        )

    async def get_session(self, key: str) -> SessionInfo | None:
        return self.sessions.get(key)

    async def list_sessions(self) -> Mapping[str, SessionInfo]:
        if self.list_delay:
            await asyncio.sleep(self.list_delay)
        if self.list_error is not None:
            raise self.list_error
        return dict(self.sessions)

    async def reset_session(self, key: str) -> None:
        self.resets.append(key)
        self.sessions.pop(key, None)


class FakeNotifier:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, object]]] = []

    async def notify(self, event: str, payload: Mapping[str, object]) -> None:
        self.events.append((event, dict(payload)))


class FakeCommandRunner:
    def __init__(self, *, fail: bool = False) -> None:
        self.commands: list[tuple[tuple[str, ...], Path]] = []
        self.fail = fail

    async def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path,
        timeout_seconds: float,
        check: bool = True,
    ) -> CommandResult:
        self.commands.append((tuple(command), cwd))
        result = CommandResult(
            command=tuple(command),
            cwd=str(cwd),
            returncode=1 if self.fail else 0,
            stdout="",
            stderr="fatal: not a git repository" if self.fail else "",
        )
        if self.fail and check:
            raise CommandError(
                command=result.command,
                returncode=result.returncode,
                stderr=result.stderr,
            )
        return result


def make_ctx(
    tmp_path: Path,
    *,
    runtime: FakeSessionRuntime | None = None,
    runner: FakeCommandRunner | None = None,
    notifier: FakeNotifier | None = None,
    workflow: Any = DEFAULT_WORKFLOW,
    roles: RoleRegistry | None = None,
    config: Mapping[str, object] | None = None,
    instance_name: str = INSTANCE,
) -> ControlContext:
    settings = resolve_runtime_settings(config)
    return ControlContext(
        workflow=workflow,
        roles=roles or RoleRegistry(),
        runtime=runtime or FakeSessionRuntime(),
        audit=AuditLog(tmp_path / "audit.ndjson", max_lines=500),
        runner=runner or FakeCommandRunner(),
        timeouts=settings.timeouts,
        health=settings.health,
        instance_name=instance_name,
        notifier=notifier,
    )


def make_project(
    ctx: ControlContext,
    slug: str = "demo",
    *,
    repo: str = "/srv/repos/demo",
    max_workers: int | None = None,
) -> Project:
    project = Project(slug=slug, name=slug.title(), repo=repo)
    reconcile_project_capacity(
        project,
        ctx.roles,
        roles=ctx.workflow.roles,
        default_max=ctx.workflow.max_workers_per_level if max_workers is None else max_workers,
    )
    return project


def audit_events(ctx: ControlContext, event: str | None = None) -> list[dict[str, object]]:
    return ctx.audit.entries(event=event)


__all__ = [
    "FakeCommandRunner",
    "FakeIssueProvider",
    "FakeNotifier",
    "FakeSessionRuntime",
    "INSTANCE",
    "IssueProviderError",
    "SessionRuntimeError",
    "audit_events",
    "make_ctx",
    "make_project",
]
