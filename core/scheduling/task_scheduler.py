"""
Interval task scheduler.

The sync engine only needs "run this coroutine every N, give up after T".
AsyncioTaskScheduler is the in-process implementation:
- One loop per task id, so a task never overlaps itself
- Per-run timeout (the in-flight run is cancelled)
- Failures are logged and the loop keeps going
"""
from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Awaitable, Callable
import asyncio
import logging

from core.config import Duration

logger = logging.getLogger(__name__)

TaskFn = Callable[[], Awaitable[None]]


class TaskScheduler(ABC):
    """Contract consumed by the sync provider."""

    @abstractmethod
    async def schedule_task(
        self,
        task_id: str,
        fn: TaskFn,
        frequency: Duration,
        timeout: Duration,
    ) -> None:
        ...


class AsyncioTaskScheduler(TaskScheduler):
    """Single-flight interval scheduler on the running event loop."""

    def __init__(self, initial_delay_seconds: float = 0.0):
        self.initial_delay_seconds = initial_delay_seconds
        self._tasks: dict[str, asyncio.Task] = {}
        self.run_counts: dict[str, int] = {}

    async def schedule_task(
        self,
        task_id: str,
        fn: TaskFn,
        frequency: Duration,
        timeout: Duration,
    ) -> None:
        if task_id in self._tasks:
            raise ValueError(f"Task already scheduled: {task_id}")
        self.run_counts[task_id] = 0
        self._tasks[task_id] = asyncio.get_running_loop().create_task(
            self._loop(task_id, fn, frequency, timeout), name=task_id
        )

    async def run_once(self, task_id: str, fn: TaskFn, timeout: Duration) -> bool:
        """Execute one run with the timeout applied. Returns True on success."""
        self.run_counts[task_id] = self.run_counts.get(task_id, 0) + 1
        try:
            await asyncio.wait_for(fn(), timeout=timeout.total_seconds)
            return True
        except asyncio.TimeoutError:
            logger.error("Task %s timed out after %.1fs", task_id, timeout.total_seconds)
        except Exception as exc:
            logger.error("Task %s failed: %s", task_id, exc, exc_info=True)
        return False

    async def _loop(
        self,
        task_id: str,
        fn: TaskFn,
        frequency: Duration,
        timeout: Duration,
    ) -> None:
        if self.initial_delay_seconds:
            await asyncio.sleep(self.initial_delay_seconds)
        while True:
            await self.run_once(task_id, fn, timeout)
            await asyncio.sleep(frequency.total_seconds)

    @property
    def task_ids(self) -> list[str]:
        return list(self._tasks)

    async def shutdown(self) -> None:
        """Cancel every scheduled loop and wait for them to unwind."""
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
