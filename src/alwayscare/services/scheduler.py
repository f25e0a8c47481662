import asyncio
import logging
import time
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class Scheduler:
    """
    Fires `job` every `interval` seconds on the running event loop.

    The job is synchronous (a dispatcher pass) and runs in a worker thread.
    Ticks never overlap: a tick that comes due while the previous one is
    still running is skipped, not queued. A failing tick is logged and the
    next one runs on schedule; there is no retry of its own.
    """

    def __init__(
        self,
        job: Callable[[], Any],
        interval: float,
        name: str = "dispatcher",
        clock: Callable[[], float] = time.monotonic,
    ):
        if interval <= 0:
            raise ValueError("interval must be > 0")
        self.job = job
        self.interval = interval
        self.name = name
        self.clock = clock

        self.ticks = 0
        self.skipped = 0
        self.failures = 0
        self._running = False
        self._stop: Optional[asyncio.Event] = None

    @property
    def is_running_tick(self) -> bool:
        return self._running

    async def tick(self) -> bool:
        """Runs one tick now. Returns False if skipped because one is already running."""
        if self._running:
            self.skipped += 1
            logger.warning("%s tick skipped: previous tick still running", self.name)
            return False

        self._running = True
        try:
            await asyncio.to_thread(self.job)
            self.ticks += 1
        except Exception:
            self.failures += 1
            logger.exception("%s tick failed", self.name)
        finally:
            self._running = False
        return True

    async def run(self, stop: Optional[asyncio.Event] = None) -> None:
        self._stop = stop or asyncio.Event()
        logger.info("%s scheduler started, interval=%.1fs", self.name, self.interval)

        next_due = self.clock()
        while not self._stop.is_set():
            await self.tick()

            next_due += self.interval
            now = self.clock()
            if now >= next_due:
                # the tick overran one or more periods; drop the missed slots
                missed = int((now - next_due) // self.interval) + 1
                self.skipped += missed
                next_due += missed * self.interval
                logger.warning("%s tick overran, skipped %d slot(s)", self.name, missed)

            try:
                await asyncio.wait_for(self._stop.wait(), timeout=max(0.0, next_due - now))
            except asyncio.TimeoutError:
                pass

        logger.info("%s scheduler stopped after %d tick(s)", self.name, self.ticks)

    def stop(self) -> None:
        if self._stop is not None:
            self._stop.set()
