"""
Timer that periodically asks the engine to look for remote changes.

The scheduler owns only the timer. The tick callback is synchronous and is
expected to hand real work off to its own task, so stopping the timer from
inside that work never cancels the work itself.
"""
import asyncio
import contextlib
import logging
from typing import Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_PERIOD = 300.0  # 5 minutes


class PeriodicUpdateScheduler:
    """Recurring update-check timer."""

    def __init__(self, on_tick: Callable[[], None], period: float = DEFAULT_PERIOD):
        """
        Args:
            on_tick: Called once per period while running
            period: Seconds between ticks
        """
        if period <= 0:
            raise ValueError("period must be positive")
        self.on_tick = on_tick
        self.period = period
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """(Re)start the timer; the first tick comes one full period from now."""
        self.stop()
        self._task = asyncio.get_running_loop().create_task(self._run(), name="marksync-update-checks")
        logger.debug(f"Update checks started (every {self.period:g}s)")

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None
            logger.debug("Update checks stopped")

    def trigger_now(self) -> None:
        """Run a check immediately, independent of the timer."""
        self._tick()

    async def aclose(self) -> None:
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.period)
            self._tick()

    def _tick(self) -> None:
        try:
            self.on_tick()
        except Exception as e:
            logger.error(f"Update check failed to start: {e}")
