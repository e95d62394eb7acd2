from __future__ import annotations

import asyncio

import pytest

from meshroom.deferred import Deferred


class _Expired(Exception):
    pass


@pytest.mark.asyncio
async def test_first_settlement_wins() -> None:
    deferred = Deferred(1.0)
    assert deferred.resolve("a")
    assert not deferred.resolve("b")
    assert not deferred.reject(RuntimeError("late"))
    assert await deferred == "a"


@pytest.mark.asyncio
async def test_timeout_rejects_with_factory_error() -> None:
    deferred = Deferred(0.01, on_timeout=lambda: _Expired("too slow"))
    with pytest.raises(_Expired):
        await deferred
    assert not deferred.resolve("late")


@pytest.mark.asyncio
async def test_timeout_without_factory_raises_timeout_error() -> None:
    with pytest.raises(asyncio.TimeoutError):
        await Deferred(0.01)


@pytest.mark.asyncio
async def test_cleanups_run_once_on_any_path() -> None:
    calls = []
    deferred = Deferred(0.01)
    deferred.add_cleanup(lambda: calls.append("cleanup"))
    deferred.reject(RuntimeError("boom"))
    await asyncio.sleep(0.03)

    assert calls == ["cleanup"]
    with pytest.raises(RuntimeError):
        await deferred

    # registered after settlement: runs immediately
    deferred.add_cleanup(lambda: calls.append("late"))
    assert calls == ["cleanup", "late"]


@pytest.mark.asyncio
async def test_cancelled_waiter_still_cleans_up() -> None:
    calls = []
    deferred = Deferred(5.0)
    deferred.add_cleanup(lambda: calls.append("cleanup"))

    async def waiter():
        return await deferred

    task = asyncio.create_task(waiter())
    await asyncio.sleep(0)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert calls == ["cleanup"]
    assert deferred.settled
