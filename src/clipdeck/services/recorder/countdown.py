"""Pausable countdown for the recording time limit.

Remaining time is derived from a monotonic clock rather than counted
ticks, so time spent paused is excluded exactly and a resume continues
from the frozen remainder.
"""

import asyncio
import logging
import math
import time
from collections.abc import Callable

logger = logging.getLogger(__name__)


class Countdown:
    """Counts a fixed duration down while running and fires once at zero.

    Args:
        duration: Total budget in seconds.
        on_expire: Called on the event loop when the budget is used up.
        on_tick: Called every ``tick_interval`` with the whole seconds left.
        tick_interval: Seconds between ticks.
        clock: Monotonic time source (injectable for tests).
    """

    def __init__(
        self,
        duration: float,
        on_expire: Callable[[], None],
        on_tick: Callable[[int], None] | None = None,
        tick_interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if duration <= 0:
            raise ValueError(f"duration must be positive, got {duration}")
        self._duration = duration
        self._on_expire = on_expire
        self._on_tick = on_tick
        self._tick_interval = tick_interval
        self._clock = clock
        self._remaining = duration
        self._resumed_at: float | None = None  # None while frozen
        self._task: asyncio.Task | None = None

    @property
    def duration(self) -> float:
        return self._duration

    @property
    def running(self) -> bool:
        return self._resumed_at is not None

    @property
    def remaining(self) -> float:
        if self._resumed_at is None:
            return self._remaining
        return max(0.0, self._remaining - (self._clock() - self._resumed_at))

    @property
    def time_left(self) -> int:
        """Whole seconds left, rounded up; 0 only once the budget is spent."""
        return math.ceil(self.remaining)

    @property
    def elapsed(self) -> float:
        """Running time consumed so far, paused intervals excluded."""
        return self._duration - self.remaining

    def start(self) -> None:
        """Re-arm from the full duration and start running."""
        self.reset()
        self.resume()

    def resume(self) -> None:
        if self.running or self._remaining <= 0:
            return
        self._resumed_at = self._clock()
        self._task = asyncio.get_running_loop().create_task(self._run())

    def pause(self) -> bool:
        """Freeze the remainder.

        Returns:
            False when the budget is already spent; the pending expiry
            then wins and the countdown keeps running to fire it.
        """
        if not self.running:
            return False
        if self.remaining <= 0:
            return False
        self.freeze()
        return True

    def freeze(self) -> None:
        """Stop counting unconditionally, keeping whatever is left."""
        if self._resumed_at is not None:
            self._remaining = self.remaining
            self._resumed_at = None
        self._cancel_task()

    def reset(self) -> None:
        self._cancel_task()
        self._resumed_at = None
        self._remaining = self._duration

    def _cancel_task(self) -> None:
        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _run(self) -> None:
        while True:
            remaining = self.remaining
            if remaining <= 0:
                break
            await asyncio.sleep(min(self._tick_interval, remaining))
            if self.remaining > 0 and self._on_tick is not None:
                self._on_tick(self.time_left)

        self._task = None
        self._remaining = 0.0
        self._resumed_at = None
        logger.debug("Countdown of %ss expired", self._duration)
        self._on_expire()
