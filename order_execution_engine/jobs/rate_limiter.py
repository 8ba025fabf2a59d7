"""Rolling-window limiter for order start admissions."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Awaitable, Callable, Deque

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]


@dataclass
class RateLimitStats:
    """Rate limiter statistics for monitoring."""

    in_window: int
    max_events: int
    window_seconds: float
    admitted_total: int
    wait_time_s: float


class SlidingWindowRateLimiter:
    """Admits at most ``max_events`` acquisitions per rolling ``window_seconds``."""

    def __init__(
        self,
        max_events: int,
        window_seconds: float = 60.0,
        *,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if max_events < 1:
            raise ValueError(f'max_events must be positive: {max_events}')
        if window_seconds <= 0:
            raise ValueError(f'window_seconds must be positive: {window_seconds}')
        self.max_events = max_events
        self.window_seconds = window_seconds
        self._clock = clock
        self._sleep = sleep
        self._events: Deque[float] = deque()
        self._lock = asyncio.Lock()
        self._admitted_total = 0
        self._wait_time = 0.0

    def _prune(self, now: float) -> None:
        while self._events and self._events[0] <= now - self.window_seconds:
            self._events.popleft()

    async def acquire(self) -> float:
        """Wait until a slot is free in the window; returns the seconds spent waiting."""
        waited = 0.0
        while True:
            async with self._lock:
                now = self._clock()
                self._prune(now)
                if len(self._events) < self.max_events:
                    self._events.append(now)
                    self._admitted_total += 1
                    self._wait_time += waited
                    return waited
                wait_seconds = self._events[0] + self.window_seconds - now
            logger.debug('Rate limit reached (%d/%s s), waiting %.3fs', self.max_events, self.window_seconds, wait_seconds)
            await self._sleep(wait_seconds)
            waited += wait_seconds

    def get_stats(self) -> RateLimitStats:
        self._prune(self._clock())
        return RateLimitStats(
            in_window=len(self._events),
            max_events=self.max_events,
            window_seconds=self.window_seconds,
            admitted_total=self._admitted_total,
            wait_time_s=self._wait_time,
        )


__all__ = ['RateLimitStats', 'SlidingWindowRateLimiter']
