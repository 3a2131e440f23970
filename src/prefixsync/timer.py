"""Fixed-period interval timer that skips missed ticks."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable

logger = logging.getLogger(__name__)


class IntervalTimer:
    """Tick on a fixed schedule, dropping ticks the caller was too slow for.

    The first tick is due immediately. Each later tick is due one period
    after the previous deadline. If the caller comes back after one or more
    deadlines have already passed, a single tick fires and the schedule
    jumps to the next deadline still in the future, so late ticks are never
    queued up and fired in a burst.
    """

    def __init__(self, period: float, *, clock: Callable[[], float] = time.monotonic) -> None:
        if period <= 0:
            raise ValueError(f"Timer period must be positive: {period}")
        self._period = period
        self._clock = clock
        self._deadline: float | None = None
        self.skipped = 0

    @property
    def period(self) -> float:
        return self._period

    def time_until_next(self) -> float:
        """Seconds until the next tick is due (0 if it is already due)."""
        if self._deadline is None:
            return 0.0
        return max(0.0, self._deadline - self._clock())

    def advance(self) -> int:
        """Record that a tick fired and schedule the next one.

        Returns:
            Number of ticks skipped because their deadline already passed.
        """
        now = self._clock()
        if self._deadline is None:
            self._deadline = now + self._period
            return 0

        self._deadline += self._period
        missed = 0
        if self._deadline <= now:
            missed = int((now - self._deadline) // self._period) + 1
            self._deadline += missed * self._period
            self.skipped += missed
            logger.debug(
                "Skipped missed ticks",
                extra={"missed": missed, "period_seconds": self._period},
            )
        return missed

    async def tick(self) -> int:
        """Sleep until the next tick is due, then advance the schedule."""
        await asyncio.sleep(self.time_until_next())
        return self.advance()
