"""
devpool-orchestrator — integration plane

File: src/devpool_orchestrator/integration/__init__.py
Last updated: 2026-10-19

Purpose
- Capabilities consumed from the outside world: the issue tracker, the
  session runtime, notifications and external commands.
"""

from devpool_orchestrator.integration.commands import (
    CommandError,
    CommandResult,
    CommandRunner,
    SubprocessCommandRunner,
    git_pull,
)
from devpool_orchestrator.integration.issue_provider import (
    IssueProvider,
    IssueProviderError,
    TicketNotFoundError,
)
from devpool_orchestrator.integration.session_runtime import (
    Notifier,
    SessionRuntime,
    SessionRuntimeError,
    session_key,
)

__all__ = [
    "CommandError",
    "CommandResult",
    "CommandRunner",
    "IssueProvider",
    "IssueProviderError",
    "Notifier",
    "SessionRuntime",
    "SessionRuntimeError",
    "SubprocessCommandRunner",
    "TicketNotFoundError",
    "git_pull",
    "session_key",
]
