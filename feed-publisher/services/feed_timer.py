"""
Wall-clock timer that drives the interval feed once per second.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

from domain.schema import FeedType


logger = logging.getLogger(__name__)

MAX_CATCH_UP_SECONDS = 60


class IntervalFeedTimer:
    """
    Runs the Interval feed cycle on every whole second.

    Topic gating is done against absolute Unix seconds, so every second must
    be offered to the scheduler exactly once. Seconds passed while a cycle
    overran are run late, in order, up to MAX_CATCH_UP_SECONDS of them. A
    second that was already run is never run again.
    """

    def __init__(
        self,
        scheduler,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        self.scheduler = scheduler
        self._clock = clock
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None
        self.last_tick: Optional[int] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info("Interval feed timer started", extra={"component": "feed_timer"})

    async def stop(self) -> None:
        if not self.running:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        logger.info("Interval feed timer stopped", extra={"component": "feed_timer"})

    async def tick(self) -> int:
        """
        Wait for the next second boundary and run every second not run yet.

        Returns:
            Number of interval cycles run
        """
        now = self._clock()
        await self._sleep(max(int(now) + 1 - now, 0.0))

        current = int(self._clock())
        if self.last_tick is None:
            first = current
        elif current <= self.last_tick:
            return 0
        else:
            first = max(self.last_tick + 1, current - MAX_CATCH_UP_SECONDS + 1)
            if first > self.last_tick + 1:
                logger.warning(
                    f"Interval feed fell behind, skipping {first - self.last_tick - 1} seconds",
                    extra={
                        "component": "feed_timer",
                        "last_tick": self.last_tick,
                        "resume_at": first
                    }
                )

        for second in range(first, current + 1):
            self.last_tick = second
            await self.scheduler.run_cycle(FeedType.INTERVAL, second)
        return current + 1 - first

    async def _run(self) -> None:
        while True:
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    f"Interval feed tick failed: {e}",
                    extra={"component": "feed_timer", "error": str(e)}
                )
