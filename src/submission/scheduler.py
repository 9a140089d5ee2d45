"""Delayed-task schedulers for submission retries.

The retry engine never sleeps: it hands a callback and a delay to a
scheduler and returns. AsyncioRetryScheduler runs callbacks on the event
loop in real time; ManualRetryScheduler keeps a virtual clock that tests and
tools advance explicitly.
"""

import asyncio
import heapq
import itertools
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, List, Optional
from loguru import logger

from src.storage.models import utcnow

RetryCallback = Callable[[], Awaitable[None]]


@dataclass(order=True)
class ScheduledTask:
    due_at: datetime
    sequence: int
    task_id: str = field(compare=False)
    name: str = field(compare=False)
    callback: RetryCallback = field(compare=False, repr=False)


class RetryScheduler(ABC):
    """Owner of all delayed tasks in the process"""

    def __init__(self):
        self._sequence = itertools.count(1)

    def _next_task(self, delay_seconds: float, callback: RetryCallback, name: str) -> ScheduledTask:
        sequence = next(self._sequence)
        return ScheduledTask(
            due_at=self.now() + timedelta(seconds=max(0.0, delay_seconds)),
            sequence=sequence,
            task_id=f"{name}#{sequence}",
            name=name,
            callback=callback,
        )

    async def _invoke(self, task: ScheduledTask):
        try:
            await task.callback()
        except Exception as e:
            # Callbacks own their error handling; this only keeps the scheduler alive
            logger.exception(f"Scheduled task {task.task_id} raised: {e}")

    @abstractmethod
    def now(self) -> datetime:
        """Current time as seen by this scheduler"""

    @abstractmethod
    def schedule(self, delay_seconds: float, callback: RetryCallback, name: str = "task") -> ScheduledTask:
        """Arm callback to run after delay_seconds; returns immediately"""

    @abstractmethod
    def cancel(self, task_id: str) -> bool:
        pass

    @abstractmethod
    def pending(self) -> List[ScheduledTask]:
        pass


class AsyncioRetryScheduler(RetryScheduler):
    """Runs scheduled callbacks as independent tasks on the running event loop"""

    def __init__(self):
        super().__init__()
        self._tasks: Dict[str, asyncio.Task] = {}
        self._scheduled: Dict[str, ScheduledTask] = {}

    def now(self) -> datetime:
        return utcnow()

    def schedule(self, delay_seconds: float, callback: RetryCallback, name: str = "task") -> ScheduledTask:
        task = self._next_task(delay_seconds, callback, name)
        self._scheduled[task.task_id] = task
        self._tasks[task.task_id] = asyncio.get_running_loop().create_task(
            self._run_later(task, delay_seconds), name=task.task_id
        )
        logger.debug(f"Scheduled {task.task_id} in {delay_seconds:.1f}s")
        return task

    async def _run_later(self, task: ScheduledTask, delay_seconds: float):
        try:
            if delay_seconds > 0:
                await asyncio.sleep(delay_seconds)
            await self._invoke(task)
        finally:
            self._tasks.pop(task.task_id, None)
            self._scheduled.pop(task.task_id, None)

    def cancel(self, task_id: str) -> bool:
        task = self._tasks.pop(task_id, None)
        self._scheduled.pop(task_id, None)
        if task is None:
            return False
        task.cancel()
        return True

    def pending(self) -> List[ScheduledTask]:
        return sorted(self._scheduled.values())

    async def drain(self, timeout: Optional[float] = None, prefix: str = ''):
        """Wait until no task whose name starts with prefix is left, including tasks armed meanwhile"""
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while True:
            waiting = [
                task for task_id, task in self._tasks.items()
                if task_id in self._scheduled and self._scheduled[task_id].name.startswith(prefix)
            ]
            if not waiting:
                break
            remaining = None if deadline is None else max(0.0, deadline - loop.time())
            if remaining == 0.0:
                break
            await asyncio.wait(waiting, timeout=remaining)

    async def shutdown(self):
        """Cancel every pending task"""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        self._scheduled.clear()


class ManualRetryScheduler(RetryScheduler):
    """Virtual-time scheduler; callbacks run only when time is advanced"""

    def __init__(self, start: Optional[datetime] = None):
        super().__init__()
        self._now = start or utcnow()
        self._queue: List[ScheduledTask] = []
        self._cancelled: set = set()

    def now(self) -> datetime:
        return self._now

    def schedule(self, delay_seconds: float, callback: RetryCallback, name: str = "task") -> ScheduledTask:
        task = self._next_task(delay_seconds, callback, name)
        heapq.heappush(self._queue, task)
        return task

    def cancel(self, task_id: str) -> bool:
        if any(task.task_id == task_id for task in self._queue):
            self._cancelled.add(task_id)
            return True
        return False

    def pending(self) -> List[ScheduledTask]:
        return sorted(task for task in self._queue if task.task_id not in self._cancelled)

    async def run_due(self) -> int:
        """Run every task due at the current virtual time, in due order"""
        executed = 0
        while self._queue and self._queue[0].due_at <= self._now:
            task = heapq.heappop(self._queue)
            if task.task_id in self._cancelled:
                self._cancelled.discard(task.task_id)
                continue
            await self._invoke(task)
            executed += 1
        return executed

    async def advance(self, seconds: float) -> int:
        """Move the clock forward, firing tasks at their own due time"""
        target = self._now + timedelta(seconds=seconds)
        executed = 0
        while self._queue and self._queue[0].due_at <= target:
            self._now = max(self._now, self._queue[0].due_at)
            executed += await self.run_due()
        self._now = target
        return executed
