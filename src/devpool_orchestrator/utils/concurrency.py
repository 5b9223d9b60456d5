"""Async concurrency primitives used by the heartbeat and its external calls."""

from __future__ import annotations

import asyncio
import inspect
from contextlib import suppress
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Awaitable

T = TypeVar("T")


class CancellationToken:
    """Cooperative cancellation token backed by ``asyncio.Event``."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise asyncio.CancelledError("operation cancelled")


async def run_with_timeout(
    coroutine: Awaitable[T],
    timeout_seconds: float,
    cancel_token: CancellationToken | None = None,
) -> T:
    """Run ``coroutine`` with timeout and cooperative cancellation support.

    Raises ``TimeoutError`` when the deadline passes; callers on best-effort
    paths treat that as "unknown" and move on.
    """
    if timeout_seconds <= 0:
        _close_unscheduled_coroutine(coroutine)
        raise ValueError("timeout_seconds must be > 0")

    token = cancel_token or CancellationToken()
    if token.is_cancelled:
        _close_unscheduled_coroutine(coroutine)
        raise asyncio.CancelledError("operation cancelled")

    task: asyncio.Task[T] = asyncio.create_task(_await_value(coroutine))
    cancel_wait_task = asyncio.create_task(token.wait())

    try:
        done, _ = await asyncio.wait(
            {task, cancel_wait_task},
            timeout=timeout_seconds,
            return_when=asyncio.FIRST_COMPLETED,
        )

        if task in done:
            return await task

        if cancel_wait_task in done and token.is_cancelled:
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
            raise asyncio.CancelledError("operation cancelled")

        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
        raise TimeoutError(f"operation timed out after {timeout_seconds} seconds")
    finally:
        cancel_wait_task.cancel()
        with suppress(asyncio.CancelledError):
            await cancel_wait_task


def ms_to_seconds(timeout_ms: int | float) -> float:
    """Convert a configured millisecond timeout to the seconds ``run_with_timeout`` expects."""

    if timeout_ms <= 0:
        raise ValueError("timeout_ms must be > 0")
    return float(timeout_ms) / 1000.0


async def sleep_or_cancel(delay_seconds: float, cancel_token: CancellationToken) -> bool:
    """Sleep for ``delay_seconds``; return ``True`` if cancelled before the delay elapsed."""

    if delay_seconds < 0:
        raise ValueError("delay_seconds must be >= 0")
    if cancel_token.is_cancelled:
        return True
    try:
        await asyncio.wait_for(cancel_token.wait(), timeout=delay_seconds)
    except TimeoutError:
        return False
    return True


async def _await_value(awaitable: Awaitable[T]) -> T:
    return await awaitable


def _close_unscheduled_coroutine(awaitable: Awaitable[object]) -> None:
    # Close raw coroutine objects that were never scheduled so CPython does not
    # emit "coroutine was never awaited" at GC time.
    if inspect.iscoroutine(awaitable):
        awaitable.close()


__all__ = [
    "CancellationToken",
    "ms_to_seconds",
    "run_with_timeout",
    "sleep_or_cancel",
]
