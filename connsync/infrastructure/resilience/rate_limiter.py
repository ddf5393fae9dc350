"""Sliding window rate limiter.

Bounds how many requests may start within a rolling time window. Used by
the request queue as an optional hard cap on top of its jittered spacing.
"""

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Awaitable, Callable, Deque, Optional

logger = logging.getLogger(__name__)

DEFAULT_MAX_REQUESTS = 30
DEFAULT_TIME_WINDOW_SECONDS = 60


@dataclass(frozen=True)
class LimitDecision:
    allowed: bool
    retry_after: Optional[float] = None  # seconds until a slot frees up


class RateLimiter:
    """Simple sliding window rate limiter."""

    def __init__(
        self,
        max_requests: int = DEFAULT_MAX_REQUESTS,
        time_window: float = DEFAULT_TIME_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initializes the rate limiter.

        Args:
            max_requests: Maximum number of requests allowed in the time window.
            time_window: The time window in seconds.
            clock: Monotonic time source, injectable for tests.
            sleep: Awaitable sleep used while waiting for a slot.
        """
        if max_requests <= 0 or time_window <= 0:
            raise ValueError("max_requests and time_window must be positive.")
        self.max_requests = max_requests
        self.time_window = time_window
        self._clock = clock
        self._sleep = sleep
        self.timestamps: Deque[float] = deque()
        self._lock = asyncio.Lock()
        logger.info(f"RateLimiter initialized: {max_requests} requests / {time_window} seconds")

    def _cleanup_timestamps(self, now: float) -> None:
        """Removes timestamps older than the time window."""
        while self.timestamps and now - self.timestamps[0] >= self.time_window:
            self.timestamps.popleft()

    def check_limit(self) -> LimitDecision:
        """Claims a slot if one is free.

        Returns:
            LimitDecision(allowed=True) after recording the request, or
            LimitDecision(allowed=False, retry_after=seconds) otherwise.
        """
        now = self._clock()
        self._cleanup_timestamps(now)
        if len(self.timestamps) >= self.max_requests:
            retry_after = self.time_window - (now - self.timestamps[0])
            return LimitDecision(allowed=False, retry_after=max(0.0, retry_after))
        self.timestamps.append(now)
        return LimitDecision(allowed=True)

    async def wait_for_permission(self) -> None:
        """Waits until a request is permitted according to the rate limit."""
        while True:
            async with self._lock:
                decision = self.check_limit()
            if decision.allowed:
                logger.debug("Rate limit permission granted.")
                return
            logger.debug(f"Rate limit reached. Waiting for {decision.retry_after:.2f} seconds.")
            await self._sleep(decision.retry_after)

    def remaining_requests(self) -> int:
        self._cleanup_timestamps(self._clock())
        return max(0, self.max_requests - len(self.timestamps))

    def reset_time(self) -> float:
        """Clock time at which the oldest recorded request leaves the window (0 if none)."""
        if not self.timestamps:
            return 0.0
        return self.timestamps[0] + self.time_window

    def reset(self) -> None:
        self.timestamps.clear()
