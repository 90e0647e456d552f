"""Token bucket rate limiter — sustained requests/second with a burst allowance.

The bucket holds up to ``capacity`` tokens and refills continuously at
``rps`` tokens per second. ``take()`` waits until enough tokens are
available. Waits are sliced (10ms..2s) so a rate change made while a caller
is waiting takes effect on its next check.

Refill and decrement happen without an ``await`` in between, so the bucket is
consistent on a single event loop without a lock.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

MIN_RATE = 0.001
MIN_WAIT_SECONDS = 0.01
MAX_WAIT_SECONDS = 2.0


class TokenBucket:
    """Continuous-refill token bucket.

    Usage:
        bucket = TokenBucket(rps=1, burst=2)
        await bucket.take()      # returns once a token was consumed
        bucket.set_rate(5, 10)   # live update, tokens clamped to new capacity
    """

    def __init__(
        self,
        rps: float = 1.0,
        burst: float = 2,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._clock = clock
        self._sleep = sleep
        self.rps = MIN_RATE
        self.capacity = 1
        self.tokens: float | None = None
        self.set_rate(rps, burst)
        self.tokens = float(self.capacity)
        self.last_refill = self._clock()

    def set_rate(self, rps: float, burst: float) -> None:
        """Update throughput and burst; never invents tokens above the new capacity."""
        self.rps = max(MIN_RATE, float(rps))
        self.capacity = max(1, math.floor(burst))
        if self.tokens is not None:
            self.tokens = min(self.tokens, float(self.capacity))

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self.last_refill
        if elapsed > 0:
            self.tokens = min(float(self.capacity), max(0.0, self.tokens + elapsed * self.rps))
            self.last_refill = now

    def available(self) -> float:
        """Tokens available right now (after refill)."""
        self._refill()
        return self.tokens

    async def take(self, n: float = 1) -> None:
        """Wait until ``n`` tokens are available, then consume them.

        Raises ``ValueError`` for ``n <= 0`` or ``n`` above the current capacity.
        """
        if n <= 0:
            raise ValueError("token count must be positive")

        while True:
            if n > self.capacity:
                raise ValueError(f"cannot take {n} tokens from a bucket of capacity {self.capacity}")
            self._refill()
            if self.tokens >= n:
                self.tokens -= n
                return

            shortfall = n - self.tokens
            wait = shortfall / self.rps
            wait = min(max(wait, MIN_WAIT_SECONDS), MAX_WAIT_SECONDS)
            logger.debug("Rate limited: %.2f tokens short, sleeping %.3fs", shortfall, wait)
            await self._sleep(wait)

    def get_stats(self) -> dict:
        return {
            "rps": self.rps,
            "capacity": self.capacity,
            "tokens": round(self.available(), 3),
        }
