"""
compat-matrix — asyncio helpers for matrix runs

File: src/compat_matrix/utils/concurrency.py

Purpose
- Share one abort signal (and the reason for it) across environment runs.
- Run environment jobs with at most N in flight, yielding each result as soon
  as it is ready.
- Bound a single environment by a deadline that also honours the abort signal.
"""

from __future__ import annotations

import asyncio
import inspect
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable, Iterable

T = TypeVar("T")

_SKIPPED = object()


class CancellationToken:
    """Abort signal for a matrix run; the first reason given is kept."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None

    def cancel(self, reason: str = "cancelled") -> None:
        if self._reason is None:
            self._reason = reason
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    async def wait(self) -> None:
        await self._event.wait()


async def run_bounded(
    jobs: Iterable[Callable[[], Awaitable[T]]],
    *,
    limit: int,
    cancel_token: CancellationToken | None = None,
) -> AsyncIterator[T]:
    """Yield job results in completion order with at most ``limit`` jobs running.

    A job is only called once it holds a slot, so jobs still queued when the
    token is cancelled are never started and produce no result. The first job
    exception cancels the remaining jobs and propagates.
    """

    if limit < 1:
        raise ValueError("limit must be >= 1")
    token = cancel_token or CancellationToken()
    slots = asyncio.Semaphore(limit)
    finished: asyncio.Queue[asyncio.Task[object]] = asyncio.Queue()

    async def admit(job: Callable[[], Awaitable[T]]) -> object:
        async with slots:
            if token.is_cancelled:
                return _SKIPPED
            return await job()

    tasks: list[asyncio.Task[object]] = []
    for job in jobs:
        task = asyncio.create_task(admit(job))
        task.add_done_callback(finished.put_nowait)
        tasks.append(task)
    try:
        for _ in tasks:
            result = (await finished.get()).result()
            if result is not _SKIPPED:
                yield result  # type: ignore[misc]
    finally:
        await _cancel_all(tasks)


async def run_with_timeout(
    awaitable: Awaitable[T],
    timeout_seconds: float,
    cancel_token: CancellationToken | None = None,
) -> T:
    """Await ``awaitable`` for at most ``timeout_seconds``.

    On timeout the work is cancelled and awaited before ``TimeoutError`` is
    raised, so a process owner can kill its child first. A cancelled token
    raises ``asyncio.CancelledError`` carrying the token's reason.
    """

    if timeout_seconds <= 0:
        _discard(awaitable)
        raise ValueError("timeout_seconds must be > 0")
    token = cancel_token or CancellationToken()
    if token.is_cancelled:
        _discard(awaitable)
        raise asyncio.CancelledError(token.reason or "cancelled")

    work = asyncio.ensure_future(awaitable)
    aborted = asyncio.create_task(token.wait())
    try:
        done, _ = await asyncio.wait(
            {work, aborted}, timeout=timeout_seconds, return_when=asyncio.FIRST_COMPLETED
        )
    except asyncio.CancelledError:
        await _cancel_all([work, aborted])
        raise
    await _cancel_all([aborted])
    if work in done:
        return work.result()
    await _cancel_all([work])
    if token.is_cancelled:
        raise asyncio.CancelledError(token.reason or "cancelled")
    raise TimeoutError(f"timed out after {timeout_seconds:g}s")


async def _cancel_all(tasks: Iterable[asyncio.Future[object]]) -> None:
    pending = [task for task in tasks if not task.done()]
    for task in pending:
        task.cancel()
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)


def _discard(awaitable: Awaitable[object]) -> None:
    # A coroutine that is never scheduled warns "never awaited" unless closed.
    if inspect.iscoroutine(awaitable):
        awaitable.close()


__all__ = ["CancellationToken", "run_bounded", "run_with_timeout"]
