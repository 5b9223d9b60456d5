"""Timeouts, cooperative cancellation and coroutine hygiene for heartbeat calls."""

from __future__ import annotations

import asyncio
import gc
import sys
import warnings
from contextlib import contextmanager
from typing import TYPE_CHECKING

import pytest

from devpool_orchestrator.utils.concurrency import (
    CancellationToken,
    ms_to_seconds,
    run_with_timeout,
    sleep_or_cancel,
)

if TYPE_CHECKING:
    from collections.abc import Iterator


@contextmanager
def _no_leaked_coroutines() -> Iterator[list[object]]:
    captured: list[object] = []
    original = sys.unraisablehook
    sys.unraisablehook = captured.append
    try:
        with warnings.catch_warnings():
            warnings.simplefilter("error", RuntimeWarning)
            yield captured
            gc.collect()
    finally:
        sys.unraisablehook = original


async def _value(delay: float, value: int = 1) -> int:
    await asyncio.sleep(delay)
    return value


async def test_result_is_returned_before_deadline() -> None:
    assert await run_with_timeout(_value(0, 7), 1.0) == 7


async def test_timeout_raises_and_cancels_work() -> None:
    with _no_leaked_coroutines() as leaked, pytest.raises(TimeoutError, match="timed out"):
        await run_with_timeout(_value(0.05), 0.001)

    assert leaked == []


async def test_pre_cancelled_token_closes_the_coroutine() -> None:
    token = CancellationToken()
    token.cancel()

    with _no_leaked_coroutines() as leaked:
        with pytest.raises(asyncio.CancelledError):
            await run_with_timeout(_value(0.01), 1.0, token)

    assert leaked == []


async def test_cancel_during_wait_interrupts_work() -> None:
    token = CancellationToken()
    asyncio.get_running_loop().call_later(0.01, token.cancel)

    with pytest.raises(asyncio.CancelledError):
        await run_with_timeout(_value(5.0), 10.0, token)

    assert token.is_cancelled


async def test_invalid_timeout_is_rejected_without_leaking() -> None:
    with _no_leaked_coroutines() as leaked:
        with pytest.raises(ValueError, match="timeout_seconds"):
            await run_with_timeout(_value(0), 0)

    assert leaked == []


async def test_sleep_or_cancel_reports_cancellation() -> None:
    token = CancellationToken()

    assert await sleep_or_cancel(0.001, token) is False
    token.cancel()
    assert await sleep_or_cancel(10.0, token) is True
    with pytest.raises(ValueError, match="delay_seconds"):
        await sleep_or_cancel(-1, token)


async def test_token_raise_if_cancelled() -> None:
    token = CancellationToken()

    token.raise_if_cancelled()
    token.cancel()
    with pytest.raises(asyncio.CancelledError):
        token.raise_if_cancelled()


def test_ms_to_seconds() -> None:
    assert ms_to_seconds(15_000) == pytest.approx(15.0)
    assert ms_to_seconds(1.5) == pytest.approx(0.0015)
    with pytest.raises(ValueError, match="timeout_ms"):
        ms_to_seconds(0)
