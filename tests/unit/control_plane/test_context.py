"""Unit tests for the control context and best-effort external calls."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import pytest

from devpool_orchestrator.control_plane.context import soft_call
from devpool_orchestrator.integration.commands import CommandError
from devpool_orchestrator.integration.issue_provider import IssueProviderError
from devpool_orchestrator.integration.session_runtime import SessionRuntimeError

from . import make_ctx

if TYPE_CHECKING:
    from pathlib import Path


async def _returns(value: object) -> object:
    return value


async def _raises(exc: BaseException) -> object:
    raise exc


async def _hangs() -> object:
    await asyncio.sleep(10)
    return "late"


async def test_soft_call_returns_value() -> None:
    assert await soft_call(_returns(3), 1.0, default=0, event="lookup_failed") == 3


@pytest.mark.parametrize(
    "failure",
    [
        IssueProviderError("tracker down"),
        SessionRuntimeError("gateway down"),
        CommandError(command=("git", "pull"), returncode=1),
    ],
)
async def test_soft_call_swallows_external_failures(failure: BaseException) -> None:
    result = await soft_call(_raises(failure), 1.0, default=[], event="lookup_failed", issue="1")

    assert result == []


async def test_soft_call_times_out_to_default() -> None:
    assert await soft_call(_hangs(), 0.01, default=None, event="lookup_timeout") is None


async def test_soft_call_propagates_programming_errors() -> None:
    with pytest.raises(KeyError):
        await soft_call(_raises(KeyError("slot")), 1.0, default=None, event="lookup_failed")


def test_context_timeouts_are_seconds(tmp_path: Path) -> None:
    ctx = make_ctx(tmp_path, config={"timeouts": {"gateway_ms": 2_500, "git_pull_ms": 30_000}})

    assert ctx.gateway_timeout == pytest.approx(2.5)
    assert ctx.git_pull_timeout == pytest.approx(30.0)
    assert ctx.provider_timeout == pytest.approx(15.0)
    assert ctx.dispatch_timeout == pytest.approx(600.0)
    assert ctx.session_patch_timeout == pytest.approx(30.0)


def test_context_requires_identity(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="instance_name"):
        make_ctx(tmp_path, instance_name="")
