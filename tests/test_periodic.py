from __future__ import annotations

import asyncio

import pytest

from pathScope.scheduler.periodic import PeriodicTask


def test_interval_must_be_positive() -> None:
    with pytest.raises(ValueError):
        PeriodicTask("bad", 0, lambda: asyncio.sleep(0))


def test_first_tick_runs_immediately() -> None:
    calls = []

    async def tick():
        calls.append(asyncio.get_running_loop().time())

    async def scenario():
        task = PeriodicTask("fast", 10.0, tick)
        task.start()
        await asyncio.sleep(0.05)
        await task.stop()
        return task

    task = asyncio.run(scenario())

    assert len(calls) == 1
    assert task.ticks_completed == 1
    assert not task.running


def test_overrunning_tick_is_skipped_not_queued() -> None:
    started = []

    async def slow_tick():
        started.append(1)
        await asyncio.sleep(0.25)

    async def scenario():
        task = PeriodicTask("slow", 0.05, slow_tick)
        task.start()
        await asyncio.sleep(0.32)
        await task.stop()
        return task

    task = asyncio.run(scenario())

    # Ticks due at 0.05..0.20 fall inside the first tick and are dropped
    assert task.ticks_skipped >= 3
    assert len(started) == task.ticks_started
    assert task.ticks_started <= 3


def test_tick_exception_does_not_end_the_loop() -> None:
    calls = []

    async def flaky():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("first tick fails")

    async def scenario():
        task = PeriodicTask("flaky", 0.02, flaky)
        task.start()
        await asyncio.sleep(0.1)
        await task.stop()
        return task

    task = asyncio.run(scenario())

    assert task.ticks_failed == 1
    assert task.ticks_completed >= 1


def test_stop_cancels_in_flight_tick() -> None:
    finished = []

    async def long_tick():
        await asyncio.sleep(5)
        finished.append(1)

    async def scenario():
        task = PeriodicTask("long", 1.0, long_tick)
        task.start()
        await asyncio.sleep(0.02)
        assert task.busy
        await task.stop()
        return task

    task = asyncio.run(scenario())

    assert finished == []
    assert not task.busy
    assert task.stats()["running"] is False
