"""
devpool-orchestrator — worker task messages

File: src/devpool_orchestrator/control_plane/messages.py
Last updated: 2026-10-19

Purpose
- Render the task message a worker session receives on dispatch, plus the
  human-readable session label.

Functional requirements
- Deterministic output for the same inputs (Jinja2 with StrictUndefined).
- Only the most recent comments are included; PR diffs are truncated.
- The completion contract section always lists the role's valid results.

Non-functional requirements
- No autoescaping: ticket text is passed through verbatim as Markdown.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Final

from jinja2 import Environment, StrictUndefined

from devpool_orchestrator.constants import MAX_DIFF_CHARS, MAX_MESSAGE_COMMENTS

if TYPE_CHECKING:
    from collections.abc import Sequence

    from devpool_orchestrator.domain.models import Comment, PrReviewComment

_DIFF_TRUNCATED_NOTE: Final[str] = "\n... (diff truncated, see PR for full changes)"

_TASK_MESSAGE_TEMPLATE: Final[str] = """\
{{ role | upper }} task for project "{{ project }}" - Issue #{{ issue_id }}

{{ title }}
{% if description %}

{{ description }}
{% endif %}
{% if feedback_cycle %}

> **FEEDBACK CYCLE: this issue is returning from review.**
> The original description above is for context only.
> Your job is to address the PR review feedback and comments below.
> When feedback conflicts with the original description, follow the feedback.
{% endif %}
{% if comments %}

## Comments
{% for comment in comments %}

**{{ comment.author }}** ({{ comment.created }}):
{{ comment.body }}
{% endfor %}
{% endif %}
{% if pr_context %}

## Pull Request
{{ pr_context.url }}
{% if pr_context.diff %}

### Diff
```diff
{{ pr_context.diff }}
```
{% endif %}
{% endif %}
{% if pr_feedback and pr_feedback.comments %}

## PR Review Feedback
{{ feedback_reason_label }}. Address the feedback below.
{{ pr_feedback.url }}
{% for comment in pr_feedback.comments %}

**{{ comment.author }}** [{{ comment.state }}]{{ comment_location(comment) }}:
{{ comment.body }}
{% endfor %}
{% if pr_feedback.reason == "merge_conflict" %}

### Conflict Resolution Instructions

**Important:** update the EXISTING PR branch, do not create a new one.

- PR: {{ pr_feedback.url }}
- Branch: `{{ branch }}`

1. Fetch and check out the PR branch:
   ```bash
   git fetch origin {{ branch }}
   git checkout {{ branch }}
   ```

2. Rebase onto `{{ base_branch }}`:
   ```bash
   git rebase {{ base_branch }}
   ```

3. Resolve any conflicts:
   - Edit conflicted files (marked with <<<<<<< and >>>>>>>)
   - `git add <resolved-files>`
   - `git rebase --continue`
   - Repeat until the rebase completes

4. Force-push to the SAME branch:
   ```bash
   git push --force-with-lease origin {{ branch }}
   ```

Do NOT create a new PR. Do NOT switch branches. Update THIS PR only.
{% endif %}
{% endif %}

Repo: {{ repo }} | Branch: {{ base_branch }} | {{ issue_url }}
Project: {{ project }}{% if channel %} | Channel: {{ channel }}{% endif %}


---

## MANDATORY: Task Completion

When you finish this task, you MUST call `work_finish` with:
- `role`: "{{ role }}"
- `project`: "{{ project }}"
- `result`: {{ results }}
- `summary`: brief description of what you did

You MUST call work_finish even if you encounter errors or cannot finish.
Use "blocked" with a summary explaining why you are stuck.
Never end your session without calling work_finish.
"""

_environment = Environment(
    undefined=StrictUndefined,
    autoescape=False,
    trim_blocks=True,
    lstrip_blocks=True,
    newline_sequence="\n",
    keep_trailing_newline=True,
)


class FeedbackReason(StrEnum):
    CHANGES_REQUESTED = "changes_requested"
    MERGE_CONFLICT = "merge_conflict"
    REJECTED = "rejected"


_REASON_LABELS: Final[dict[FeedbackReason, str]] = {
    FeedbackReason.CHANGES_REQUESTED: "Changes were requested",
    FeedbackReason.MERGE_CONFLICT: "Merge conflicts detected",
    FeedbackReason.REJECTED: "PR was rejected",
}


@dataclass(frozen=True, slots=True)
class PrContext:
    url: str
    diff: str | None = None


@dataclass(frozen=True, slots=True)
class PrFeedback:
    url: str
    reason: FeedbackReason
    comments: tuple[PrReviewComment, ...] = ()
    branch_name: str | None = None


@dataclass(frozen=True, slots=True)
class TaskMessageInput:
    project: str
    role: str
    issue_id: str
    title: str
    issue_url: str
    repo: str
    base_branch: str
    completion_results: tuple[str, ...]
    description: str = ""
    channel: str | None = None
    comments: tuple[Comment, ...] = ()
    feedback_cycle: bool = False
    pr_context: PrContext | None = None
    pr_feedback: PrFeedback | None = None


def build_task_message(data: TaskMessageInput) -> str:
    template = _environment.from_string(_TASK_MESSAGE_TEMPLATE)
    pr_context = data.pr_context
    if pr_context is not None and pr_context.diff:
        pr_context = PrContext(url=pr_context.url, diff=truncate_diff(pr_context.diff))
    feedback = data.pr_feedback
    return template.render(
        project=data.project,
        role=data.role,
        issue_id=data.issue_id,
        title=data.title,
        description=data.description.strip(),
        feedback_cycle=data.feedback_cycle or feedback is not None,
        comments=[_comment_view(comment) for comment in recent_comments(data.comments)],
        pr_context=pr_context,
        pr_feedback=feedback,
        feedback_reason_label=_REASON_LABELS[feedback.reason] if feedback is not None else "",
        branch=(feedback.branch_name if feedback is not None else None) or "your-branch",
        comment_location=_comment_location,
        repo=data.repo,
        base_branch=data.base_branch,
        issue_url=data.issue_url,
        channel=data.channel,
        results=", ".join(f'"{result}"' for result in data.completion_results),
    )


def recent_comments(
    comments: Sequence[Comment], limit: int = MAX_MESSAGE_COMMENTS
) -> tuple[Comment, ...]:
    if limit <= 0:
        return ()
    return tuple(comments[-limit:])


def truncate_diff(diff: str, limit: int = MAX_DIFF_CHARS) -> str:
    if len(diff) <= limit:
        return diff
    return diff[:limit] + _DIFF_TRUNCATED_NOTE


def format_session_label(project: str, role: str, level: str, name: str | None = None) -> str:
    """``my-project``, ``developer``, ``medior`` -> ``My Project - Developer (Medior)``."""

    name_part = f" {name}" if name else ""
    return f"{_title_case(project)} - {_title_case(role)}{name_part} ({_title_case(level)})"


def _title_case(value: str) -> str:
    words = re.split(r"[\s_-]+", value.strip())
    return " ".join(word[:1].upper() + word[1:] for word in words if word)


def _comment_view(comment: Comment) -> dict[str, str]:
    created = (
        comment.created_at.strftime("%Y-%m-%d %H:%M UTC")
        if comment.created_at is not None
        else "unknown date"
    )
    return {"author": comment.author, "body": comment.body, "created": created}


def _comment_location(comment: PrReviewComment) -> str:
    if not comment.path:
        return ""
    if comment.line:
        return f" ({comment.path}:{comment.line})"
    return f" ({comment.path})"


__all__ = [
    "FeedbackReason",
    "PrContext",
    "PrFeedback",
    "TaskMessageInput",
    "build_task_message",
    "format_session_label",
    "recent_comments",
    "truncate_diff",
]
