"""Recurring asyncio task with single in-flight execution."""

import asyncio
from typing import Awaitable, Callable, Optional

import structlog

logger = structlog.get_logger(__name__)


class RecurringTask:
    """Runs a coroutine function every interval seconds.

    At most one run is in flight at a time. A run requested while another
    is still awaiting I/O (a timer tick or an out-of-band trigger) is
    skipped. The interval starts counting after a run completes.
    """

    def __init__(self, name: str, interval_seconds: float, callback: Callable[[], Awaitable[None]]):
        self.name = name
        self.interval_seconds = interval_seconds
        self._callback = callback
        self._task: Optional[asyncio.Task] = None
        self._generation = 0
        self._in_flight = False
        self.skipped = 0

    @property
    def running(self) -> bool:
        return self._task is not None

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def start(self, immediate: bool = True) -> None:
        """Arm the timer. Does nothing if already armed."""
        if self._task is not None:
            return
        self._generation += 1
        self._task = asyncio.create_task(
            self._loop(self._generation, immediate), name=f"recurring-{self.name}"
        )
        logger.debug("scheduler.started", task=self.name, interval_s=self.interval_seconds)

    def cancel(self) -> None:
        """Disarm the timer synchronously.

        When called from inside the task's own run, the run finishes but no
        further run is scheduled.
        """
        task, self._task = self._task, None
        self._generation += 1
        if task is not None and task is not asyncio.current_task():
            task.cancel()
        logger.debug("scheduler.cancelled", task=self.name)

    async def trigger(self) -> bool:
        """Run now, out of band. Returns False if skipped."""
        return await self._run_once()

    async def _run_once(self) -> bool:
        if self._in_flight:
            self.skipped += 1
            logger.info("scheduler.run_skipped", task=self.name, skipped=self.skipped)
            return False
        self._in_flight = True
        try:
            await self._callback()
        finally:
            self._in_flight = False
        return True

    async def _loop(self, generation: int, immediate: bool) -> None:
        if not immediate:
            await asyncio.sleep(self.interval_seconds)
        while generation == self._generation:
            try:
                await self._run_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("scheduler.run_failed", task=self.name, error=str(e), exc_info=True)
            if generation != self._generation:
                break
            await asyncio.sleep(self.interval_seconds)
