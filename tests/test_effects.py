from __future__ import annotations

import asyncio
import logging

import pytest

from symbiosis.memory.effects import SideEffectQueue, call_with_deadline
from symbiosis.memory.errors import ServiceTimeoutError, TurnCancelledError


async def _value(value: str, delay: float = 0.0) -> str:
    await asyncio.sleep(delay)
    return value


async def _boom() -> None:
    await asyncio.sleep(0)
    raise RuntimeError("boom")


async def test_deadline_returns_result_in_time() -> None:
    assert await call_with_deadline(_value("ok"), timeout=1.0) == "ok"


async def test_deadline_expires() -> None:
    with pytest.raises(ServiceTimeoutError):
        await call_with_deadline(_value("late", delay=5), timeout=0.01, label="slow")


async def test_cancel_event_set_before_dispatch() -> None:
    cancel = asyncio.Event()
    cancel.set()
    with pytest.raises(TurnCancelledError):
        await call_with_deadline(_value("never"), cancel=cancel)


async def test_cancel_event_set_while_in_flight() -> None:
    cancel = asyncio.Event()
    asyncio.get_running_loop().call_later(0.01, cancel.set)
    with pytest.raises(TurnCancelledError):
        await call_with_deadline(_value("late", delay=5), cancel=cancel)


async def test_cancelling_caller_cancels_inner_call() -> None:
    finished = []

    async def slow() -> None:
        await asyncio.sleep(0.1)
        finished.append("inner call kept running")

    outer = asyncio.ensure_future(call_with_deadline(slow(), timeout=5))
    await asyncio.sleep(0.01)
    outer.cancel()
    with pytest.raises(asyncio.CancelledError):
        await outer
    await asyncio.sleep(0.2)

    assert finished == []


async def test_inner_exception_propagates() -> None:
    with pytest.raises(RuntimeError):
        await call_with_deadline(_boom(), timeout=1.0)


async def test_queue_drain_waits_for_pending_effects() -> None:
    queue = SideEffectQueue()
    seen = []

    async def record() -> None:
        await asyncio.sleep(0.01)
        seen.append("done")

    queue.submit(record(), label="record")
    assert queue.pending == 1
    await queue.drain()
    assert seen == ["done"]
    assert queue.pending == 0
    assert queue.completed == 1


async def test_queue_logs_failures_without_raising(caplog) -> None:
    queue = SideEffectQueue()
    with caplog.at_level(logging.DEBUG, logger="symbiosis.memory.effects"):
        queue.submit(_boom(), label="store")
        queue.submit(_boom(), label="log_chat:assistant", quiet=True)
        await queue.drain()

    assert queue.failed == 2
    errors = [record for record in caplog.records if record.levelno == logging.ERROR]
    assert len(errors) == 1
    assert "store" in errors[0].getMessage()
