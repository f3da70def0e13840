"""Test the delayed task timer and the interval scheduler."""
import asyncio

import pytest

from core.config import Duration
from core.scheduling.delayed_task import DelayedTask
from core.scheduling.task_scheduler import AsyncioTaskScheduler


@pytest.mark.asyncio
async def test_delayed_task_runs_once():
    calls = []

    async def callback():
        calls.append("ran")

    task = DelayedTask(10, callback)
    await task.wait()

    assert calls == ["ran"]
    assert task.done


@pytest.mark.asyncio
async def test_delayed_task_cancel():
    calls = []

    async def callback():
        calls.append("ran")

    task = DelayedTask(50, callback)
    task.cancel()
    await asyncio.sleep(0.1)

    assert calls == []
    assert task.cancelled


@pytest.mark.asyncio
async def test_run_once_timeout():
    scheduler = AsyncioTaskScheduler()

    async def slow():
        await asyncio.sleep(1)

    ok = await scheduler.run_once("slow", slow, Duration(milliseconds=20))
    assert ok is False


@pytest.mark.asyncio
async def test_run_once_failure_is_contained():
    scheduler = AsyncioTaskScheduler()

    async def broken():
        raise ConnectionError("catalog unavailable")

    assert await scheduler.run_once("broken", broken, Duration(seconds=1)) is False
    assert scheduler.run_counts["broken"] == 1


@pytest.mark.asyncio
async def test_schedule_task_repeats_until_shutdown():
    scheduler = AsyncioTaskScheduler()
    runs = []

    async def tick():
        runs.append(1)

    await scheduler.schedule_task("tick", tick, frequency=Duration(milliseconds=10), timeout=Duration(seconds=1))
    await asyncio.sleep(0.1)
    await scheduler.shutdown()
    count = len(runs)
    await asyncio.sleep(0.05)

    assert count >= 2
    assert len(runs) == count
    assert scheduler.task_ids == []


@pytest.mark.asyncio
async def test_duplicate_task_id_rejected():
    scheduler = AsyncioTaskScheduler()

    async def noop():
        return None

    await scheduler.schedule_task("sync", noop, frequency=Duration(seconds=60), timeout=Duration(seconds=1))
    with pytest.raises(ValueError, match="already scheduled"):
        await scheduler.schedule_task("sync", noop, frequency=Duration(seconds=60), timeout=Duration(seconds=1))
    await scheduler.shutdown()
