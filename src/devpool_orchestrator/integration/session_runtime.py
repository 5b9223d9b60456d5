"""Async capability for the runtime that hosts worker sessions, plus the optional notifier."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Mapping

    from devpool_orchestrator.domain.models import SessionInfo


class SessionRuntimeError(RuntimeError):
    """Runtime call failed; the session's state is unknown."""


@runtime_checkable
class SessionRuntime(Protocol):
    async def ensure_session(self, key: str, model: str, label: str | None = None) -> None:
        """Create or patch the session. Idempotent per ``key``."""
        ...

    async def send_message(
        self,
        key: str,
        message: str,
        *,
        idempotency_key: str,
        thread_id: str | None = None,
    ) -> None:
        """Submit one agent turn. Returns once accepted, not once the turn finishes."""
        ...

    async def get_session(self, key: str) -> SessionInfo | None: ...

    async def list_sessions(self) -> Mapping[str, SessionInfo]:
        """Liveness oracle: every session the runtime knows about, keyed by session key."""
        ...

    async def reset_session(self, key: str) -> None: ...


@runtime_checkable
class Notifier(Protocol):
    async def notify(self, event: str, payload: Mapping[str, object]) -> None: ...


def session_key(agent_id: str, project: str, role: str, level: str, slot_index: int) -> str:
    """Deterministic key so repeated ensures for one slot hit the same session."""

    return f"agent:{agent_id}:subagent:{project}-{role}-{level}-{slot_index}"


__all__ = ["Notifier", "SessionRuntime", "SessionRuntimeError", "session_key"]
