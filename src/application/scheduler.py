"""
Cancellable delayed tasks.

ScheduledTask wraps an asyncio.Task that sleeps, then awaits a callback.
TaskScheduler keys tasks so scheduling the same key again replaces (and
cancels) the pending one. Used for delayed re-validation of live entries.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Dict, Hashable, Optional, Set

from ..utils.logging_setup import get_logger


logger = get_logger(__name__)

AsyncCallback = Callable[[], Awaitable[None]]


class ScheduledTask:
    """A callback that runs once after `delay` seconds unless cancelled."""

    def __init__(self, delay: float, callback: AsyncCallback, name: Optional[str] = None):
        self.delay = max(0.0, delay)
        self.name = name or getattr(callback, "__name__", "scheduled")
        self._callback = callback
        self._task = asyncio.get_running_loop().create_task(self._run(), name=self.name)

    async def _run(self) -> None:
        await asyncio.sleep(self.delay)
        try:
            await self._callback()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Scheduled task {self.name} failed: {e}", exc_info=True)

    @property
    def done(self) -> bool:
        return self._task.done()

    @property
    def cancelled(self) -> bool:
        return self._task.cancelled()

    @property
    def is_current(self) -> bool:
        """True when called from inside this task's own callback."""
        return self._task is asyncio.current_task()

    def cancel(self) -> None:
        if not self._task.done():
            self._task.cancel()

    def add_done_callback(self, fn: Callable[["ScheduledTask"], None]) -> None:
        self._task.add_done_callback(lambda _: fn(self))

    async def wait(self) -> None:
        """Wait for completion; cancellation is not an error here."""
        try:
            await self._task
        except asyncio.CancelledError:
            if not self._task.cancelled():
                raise


class TaskScheduler:
    """Keyed ScheduledTask registry."""

    def __init__(self, name: str = "scheduler"):
        self.name = name
        self._tasks: Dict[Hashable, ScheduledTask] = {}

    @property
    def pending_keys(self) -> Set[Hashable]:
        return {key for key, task in self._tasks.items() if not task.done}

    def schedule(self, key: Hashable, delay: float, callback: AsyncCallback) -> ScheduledTask:
        """
        Run `callback` after `delay` seconds, replacing any pending task for `key`.

        A task may reschedule its own key from inside its callback (retry);
        in that case the running task is left to finish.
        """
        existing = self._tasks.get(key)
        if existing is not None and not existing.done and not existing.is_current:
            existing.cancel()
            logger.debug(f"[{self.name}] Replaced pending task for {key}")

        task = ScheduledTask(delay, callback, name=f"{self.name}:{key}")
        self._tasks[key] = task

        def _forget(finished: ScheduledTask) -> None:
            if self._tasks.get(key) is finished:
                del self._tasks[key]

        task.add_done_callback(_forget)
        return task

    def cancel(self, key: Hashable) -> bool:
        """Cancel the pending task for `key`. Returns True if one was pending."""
        task = self._tasks.get(key)
        if task is None or task.done or task.is_current:
            return False
        del self._tasks[key]
        task.cancel()
        return True

    def cancel_all(self) -> int:
        """Cancel every pending task. Returns how many were cancelled."""
        tasks = list(self._tasks.values())
        self._tasks.clear()
        count = 0
        for task in tasks:
            if not task.done and not task.is_current:
                task.cancel()
                count += 1
        if count:
            logger.debug(f"[{self.name}] Cancelled {count} pending tasks")
        return count

    async def join(self) -> None:
        """Wait until no task is pending, including ones scheduled meanwhile."""
        while True:
            pending = [task for task in self._tasks.values() if not task.done]
            if not pending:
                return
            for task in pending:
                await task.wait()
