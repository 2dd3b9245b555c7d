"""
Process-wide request throttle for the Kite Connect API.

The upstream limit is account-wide, so a single RateLimiter instance is shared
by every request the process makes.
"""

import asyncio
import time
from collections import deque
from typing import Awaitable, Callable, Deque, Optional

from core.config.settings import RateLimitSettings
from core.logging import get_logger
from core.utils.exceptions import RateLimitExceeded

logger = get_logger(__name__, component="rate_limiter")

# Float slack for refill arithmetic after a sleep of exactly the computed wait
_EPSILON = 1e-9


class RateLimiter:
    """Continuous token bucket with a trailing-window cap.

    Tokens refill continuously at ``refill_per_second`` up to ``capacity``.
    The limiter also remembers the last ``capacity`` grant times and refuses a
    grant while all of them sit inside the trailing ``capacity / rate`` window,
    so no such window ever contains more than ``capacity`` requests.
    """

    def __init__(
        self,
        capacity: int = 3,
        refill_per_second: float = 3.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if capacity < 1:
            raise ValueError("capacity must be positive")
        if refill_per_second <= 0:
            raise ValueError("refill_per_second must be positive")

        self.capacity = capacity
        self.rate = float(refill_per_second)
        self.window = capacity / self.rate

        self._clock = clock
        self._sleep = sleep
        self._available = float(capacity)
        self._last_refill = clock()
        self._grants: Deque[float] = deque(maxlen=capacity)
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: RateLimitSettings, **kwargs) -> "RateLimiter":
        return cls(
            capacity=settings.capacity,
            refill_per_second=settings.refill_per_second,
            **kwargs,
        )

    @property
    def available(self) -> float:
        """Tokens in the bucket as of the last refill (no refill is applied)."""
        return self._available

    def _refill_and_take(self, now: float) -> float:
        """Refill from elapsed time and take a token if allowed.

        Returns 0.0 when a token was taken, otherwise the seconds to wait
        before trying again. Must run under ``self._lock``.
        """
        elapsed = now - self._last_refill
        if elapsed > 0:
            self._available = min(float(self.capacity), self._available + elapsed * self.rate)
            self._last_refill = now

        bucket_wait = 0.0
        if self._available < 1.0 - _EPSILON:
            bucket_wait = (1.0 - self._available) / self.rate

        window_wait = 0.0
        if len(self._grants) == self.capacity:
            window_wait = self._grants[0] + self.window - now

        wait = max(bucket_wait, window_wait)
        if wait > _EPSILON:
            return wait

        self._available = max(0.0, self._available - 1.0)
        self._grants.append(now)
        return 0.0

    async def acquire(self, timeout: Optional[float] = None) -> None:
        """Wait for a request slot.

        Args:
            timeout: Maximum seconds to wait; ``None`` waits indefinitely.

        Raises:
            RateLimitExceeded: no slot could be granted before the deadline.
            asyncio.CancelledError: the calling task was cancelled while waiting.
        """
        started = self._clock()
        deadline = started + timeout if timeout is not None else None

        while True:
            async with self._lock:
                now = self._clock()
                wait = self._refill_and_take(now)

            if wait <= 0.0:
                waited = now - started
                if waited > 0:
                    logger.debug("Rate limit slot acquired after wait", waited_seconds=round(waited, 4))
                return

            if deadline is not None and now + wait > deadline:
                waited = now - started
                logger.warning(
                    "Rate limit wait exceeded deadline",
                    timeout_seconds=timeout,
                    waited_seconds=round(waited, 4),
                    required_wait_seconds=round(wait, 4),
                )
                raise RateLimitExceeded(
                    f"Rate limit timeout: no request slot within {timeout}s",
                    waited_seconds=waited,
                )

            # Sleep outside the lock so other callers can refill/inspect
            await self._sleep(wait)
