"""Async helpers: detached side effects and per-call deadlines."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Optional, Set, TypeVar

from .errors import ServiceTimeoutError, TurnCancelledError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def call_with_deadline(
    awaitable: Awaitable[T],
    *,
    timeout: Optional[float] = None,
    cancel: Optional[asyncio.Event] = None,
    label: str = "call",
) -> T:
    """Await ``awaitable`` until it finishes, ``timeout`` expires or ``cancel`` is set."""

    if cancel is not None and cancel.is_set():
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise TurnCancelledError(f"{label} cancelled before dispatch")

    task = asyncio.ensure_future(awaitable)
    waiters: Set[asyncio.Future[Any]] = {task}
    cancel_waiter: Optional[asyncio.Task[Any]] = None
    if cancel is not None:
        cancel_waiter = asyncio.ensure_future(cancel.wait())
        waiters.add(cancel_waiter)

    try:
        done, _ = await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        if cancel_waiter is not None and not cancel_waiter.done():
            cancel_waiter.cancel()

    if task in done:
        return task.result()

    task.cancel()
    if cancel_waiter is not None and cancel_waiter in done:
        raise TurnCancelledError(f"{label} cancelled")
    raise ServiceTimeoutError(f"{label} exceeded {timeout}s deadline")


class SideEffectQueue:
    """Runs fire-and-forget coroutines as detached tasks.

    Each task logs its own failure; nothing is re-raised into the turn that
    submitted it. ``drain()`` waits for everything still pending, which gives
    tests and shutdown a deterministic join point.
    """

    def __init__(self) -> None:
        self._pending: Set[asyncio.Task[Any]] = set()
        self.completed = 0
        self.failed = 0

    @property
    def pending(self) -> int:
        return len(self._pending)

    def submit(self, coro: Awaitable[Any], *, label: str, quiet: bool = False) -> asyncio.Task[Any]:
        task = asyncio.ensure_future(coro)
        self._pending.add(task)
        task.add_done_callback(lambda done: self._finish(done, label, quiet))
        return task

    def _finish(self, task: asyncio.Task[Any], label: str, quiet: bool) -> None:
        self._pending.discard(task)
        if task.cancelled():
            logger.debug("Side effect %s cancelled", label)
            return
        exc = task.exception()
        if exc is None:
            self.completed += 1
            return
        self.failed += 1
        if quiet:
            logger.debug("Side effect %s failed: %s", label, exc)
        else:
            logger.error("Side effect %s failed: %s", label, exc)

    async def drain(self) -> None:
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


__all__ = ["SideEffectQueue", "call_with_deadline"]
