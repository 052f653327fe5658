"""
Injectable clocks and background task scheduling.

Every timer in the service (status lifecycle, auto injector, delayed
responses) sleeps through a clock object so tests can swap the system clock
for a VirtualClock and step time forward deterministically.
"""

import asyncio
import heapq
import itertools
import logging
from datetime import datetime, timedelta, timezone
from typing import Coroutine, Optional, Protocol

logger = logging.getLogger(__name__)


class Clock(Protocol):
    def now(self) -> datetime: ...

    async def sleep(self, seconds: float) -> None: ...


class SystemClock:
    """Wall-clock time on the running event loop."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


class VirtualClock:
    """
    Manually advanced clock for tests.

    `sleep()` parks the caller until `advance()` moves time past its deadline.
    Sleepers are released in deadline order (ties in call order) and the loop
    is allowed to settle after each release, so whatever the woken coroutine
    does next (publish, sleep again) happens before the next deadline fires.
    """

    SETTLE_ROUNDS = 20

    def __init__(self, start: Optional[datetime] = None):
        self._now = start or datetime(2025, 1, 15, 10, 0, tzinfo=timezone.utc)
        self._sleepers: list[tuple[datetime, int, asyncio.Future]] = []
        self._seq = itertools.count()

    def now(self) -> datetime:
        return self._now

    async def sleep(self, seconds: float) -> None:
        if seconds <= 0:
            await asyncio.sleep(0)
            return
        future = asyncio.get_running_loop().create_future()
        deadline = self._now + timedelta(seconds=seconds)
        heapq.heappush(self._sleepers, (deadline, next(self._seq), future))
        await future

    @property
    def pending(self) -> int:
        """Number of sleepers still waiting on a deadline."""
        return sum(1 for _, _, future in self._sleepers if not future.done())

    async def advance(self, seconds: float) -> None:
        """Move time forward by `seconds`, waking every sleeper that comes due."""
        target = self._now + timedelta(seconds=seconds)
        await self.settle()
        while self._sleepers and self._sleepers[0][0] <= target:
            deadline, _, future = heapq.heappop(self._sleepers)
            if future.done():
                # cancelled sleeper
                continue
            self._now = max(self._now, deadline)
            future.set_result(None)
            await self.settle()
        self._now = target
        await self.settle()

    async def settle(self) -> None:
        """Yield to the event loop until ready callbacks have run."""
        for _ in range(self.SETTLE_ROUNDS):
            await asyncio.sleep(0)


class ScheduledTask:
    """Handle to a background coroutine started by TaskScheduler."""

    def __init__(self, name: str, task: asyncio.Task):
        self.name = name
        self._task = task

    def cancel(self) -> bool:
        return self._task.cancel()

    def done(self) -> bool:
        return self._task.done()

    def cancelled(self) -> bool:
        return self._task.cancelled()

    async def wait(self) -> None:
        """Wait for the task to finish; cancellation is not re-raised."""
        try:
            await self._task
        except asyncio.CancelledError:
            if not self._task.cancelled():
                raise

    def __repr__(self) -> str:
        state = "done" if self.done() else "pending"
        return f"<ScheduledTask {self.name} {state}>"


class TaskScheduler:
    """
    Owns fire-and-forget background tasks.

    Tasks are held until they finish so they cannot be garbage collected
    mid-flight; failures are logged with their traceback. `shutdown()`
    cancels everything still running.
    """

    def __init__(self, clock: Clock):
        self.clock = clock
        self._tasks: set[asyncio.Task] = set()

    def spawn(self, coro: Coroutine, name: str) -> ScheduledTask:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        logger.debug(f"Scheduled task {name}")
        return ScheduledTask(name, task)

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.debug(f"Task {task.get_name()} cancelled")
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                f"Background task {task.get_name()} failed: {exc}",
                exc_info=(type(exc), exc, exc.__traceback__),
            )

    @property
    def active(self) -> int:
        return len(self._tasks)

    async def shutdown(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info(f"Scheduler shut down, cancelled {len(tasks)} task(s)")
