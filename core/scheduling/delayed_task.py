"""
Cancellable one-shot timer for coroutine callbacks.

Each owner keeps its own handle; there is no shared timer registry.
"""
from __future__ import annotations
from typing import Awaitable, Callable, Optional
import asyncio
import logging

logger = logging.getLogger(__name__)


class DelayedTask:
    """Runs ``callback()`` once after ``delay_ms`` milliseconds unless cancelled."""

    def __init__(
        self,
        delay_ms: float,
        callback: Callable[[], Awaitable[None]],
        name: str = "delayed-task",
    ):
        self.delay_ms = delay_ms
        self.name = name
        self._callback = callback
        self._task: Optional[asyncio.Task] = asyncio.get_running_loop().create_task(
            self._run(), name=name
        )

    async def _run(self) -> None:
        await asyncio.sleep(self.delay_ms / 1000)
        await self._callback()

    @property
    def done(self) -> bool:
        return self._task is None or self._task.done()

    @property
    def cancelled(self) -> bool:
        return self._task is not None and self._task.cancelled()

    def is_current(self) -> bool:
        """True when called from inside this timer's own callback."""
        return self._task is not None and self._task is asyncio.current_task()

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def wait(self) -> None:
        """Wait for the callback to finish (mainly for tests)."""
        if self._task is not None:
            await self._task
