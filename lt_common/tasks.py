"""Small asyncio helpers for supervised background work."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Interrupted(Exception):
    """Raised when a raced operation lost against its stop event."""


async def run_until_set(awaitable: Awaitable[T], event: asyncio.Event) -> T:
    """Await `awaitable` unless `event` is set first.

    When the event wins the operation task is cancelled and awaited before
    `Interrupted` is raised, so its cleanup has run by the time the caller
    regains control.
    """
    if event.is_set():
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise Interrupted()
    work = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(event.wait())
    try:
        await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        await cancel_and_wait(work, waiter)
        raise
    if work.done():
        await cancel_and_wait(waiter)
        return work.result()
    await cancel_and_wait(work)
    raise Interrupted()


async def cancel_and_wait(*tasks: asyncio.Future[Any]) -> None:
    """Cancel `tasks` and wait for them to settle, ignoring their outcome."""
    pending = [task for task in tasks if task is not None and not task.done()]
    for task in pending:
        task.cancel()
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)


def supervise(
    task: asyncio.Task[Any],
    description: str,
    on_error: Callable[[BaseException], None] | None = None,
) -> asyncio.Task[Any]:
    """Log (and report) a background task failure instead of losing it."""

    def _done(finished: asyncio.Task[Any]) -> None:
        if finished.cancelled():
            return
        exc = finished.exception()
        if exc is None:
            return
        logger.error("%s failed: %s", description, exc, exc_info=exc)
        if on_error is not None:
            on_error(exc)

    task.add_done_callback(_done)
    return task
