"""Fixed-interval polling with explicit, cancellable handles."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Set

logger = logging.getLogger(__name__)

TickCallback = Callable[[], Awaitable[None]]


class PollHandle:
    """
    A running poll schedule.

    Each tick runs as its own task, so a slow tick never delays or blocks
    the next one. Stopping cancels the timer only; ticks already in flight
    are allowed to finish.
    """

    def __init__(self, interval_seconds: float, on_tick: TickCallback, name: str = "poll"):
        self.interval_seconds = interval_seconds
        self.name = name
        self._on_tick = on_tick
        self._stopped = False
        self._timer: Optional[asyncio.Task] = None
        self._in_flight: Set[asyncio.Task] = set()
        self.ticks_fired = 0

    @property
    def running(self) -> bool:
        return self._timer is not None and not self._stopped

    def _begin(self) -> None:
        self._fire()
        self._timer = asyncio.create_task(self._run_timer(), name=f"{self.name}-timer")

    async def _run_timer(self) -> None:
        while not self._stopped:
            await asyncio.sleep(self.interval_seconds)
            if self._stopped:
                break
            self._fire()

    def _fire(self) -> None:
        self.ticks_fired += 1
        task = asyncio.create_task(self._on_tick(), name=f"{self.name}-tick-{self.ticks_fired}")
        self._in_flight.add(task)
        task.add_done_callback(self._tick_done)

    def _tick_done(self, task: asyncio.Task) -> None:
        self._in_flight.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Poll tick {task.get_name()} failed: {error}", exc_info=error)

    def stop(self) -> None:
        """Stop the timer. No tick fires after this returns. Safe to call repeatedly."""
        if self._stopped:
            return
        self._stopped = True
        if self._timer is not None:
            self._timer.cancel()
        logger.debug(f"Poll schedule {self.name} stopped after {self.ticks_fired} tick(s)")

    async def wait_idle(self) -> None:
        """Wait for ticks that are still in flight."""
        if self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)


class PollScheduler:
    """Starts and stops poll schedules. Must be used from a running event loop."""

    def start(self, interval_seconds: float, on_tick: TickCallback, name: str = "poll") -> PollHandle:
        """
        Call on_tick now and then every interval_seconds until stopped.

        Raises:
            ValueError: If the interval is not positive.
        """
        if interval_seconds <= 0:
            raise ValueError(f"Poll interval must be positive, got {interval_seconds}")
        handle = PollHandle(interval_seconds, on_tick, name=name)
        handle._begin()
        logger.info(f"Started polling every {interval_seconds:g}s ({name})")
        return handle

    def stop(self, handle: Optional[PollHandle]) -> None:
        if handle is not None:
            handle.stop()
