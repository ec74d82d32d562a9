"""Token-bucket rate limiting for first-party reporting API calls.

A single :class:`TokenBucketRateLimiter` instance is created by whoever wires
the connectors together and passed to each connector that should share the
budget. All holders of the same instance are throttled in aggregate.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable

logger = logging.getLogger(__name__)


class TokenBucketRateLimiter:
    """Async token bucket.

    Tokens refill continuously at ``max_tokens / refill_interval_seconds`` per
    second and never exceed ``max_tokens``. ``acquire`` only delays; it never
    raises.

    Parameters
    ----------
    max_tokens : int
        Bucket capacity, and the number of calls allowed per interval.
    refill_interval_seconds : float
        Interval over which a full bucket is refilled.
    clock : Callable[[], float], optional
        Monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        max_tokens: int,
        refill_interval_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_tokens < 1:
            raise ValueError("max_tokens must be >= 1")
        if refill_interval_seconds <= 0:
            raise ValueError("refill_interval_seconds must be > 0")
        self.max_tokens = max_tokens
        self.refill_interval_seconds = refill_interval_seconds
        self._rate = max_tokens / refill_interval_seconds
        self._clock = clock
        self._tokens = float(max_tokens)
        self._updated_at = clock()
        self._lock = asyncio.Lock()
        logger.info(
            "rate_limiter.init",
            extra={
                "max_tokens": max_tokens,
                "refill_interval_seconds": refill_interval_seconds,
            },
        )

    @property
    def available_tokens(self) -> float:
        """Tokens currently available, after accounting for elapsed refill."""
        self._refill()
        return self._tokens

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self._updated_at
        if elapsed > 0:
            self._tokens = min(float(self.max_tokens), self._tokens + elapsed * self._rate)
            self._updated_at = now

    async def acquire(self) -> None:
        """Wait until a token is available, then consume it.

        The lock is held only while inspecting and updating the bucket; the
        wait itself happens outside the lock so other tasks are not blocked
        behind a sleeping caller.
        """
        while True:
            async with self._lock:
                self._refill()
                if self._tokens >= 1.0:
                    self._tokens -= 1.0
                    return
                wait_seconds = (1.0 - self._tokens) / self._rate
            logger.debug(
                "rate_limiter.wait",
                extra={"wait_seconds": round(wait_seconds, 4)},
            )
            await asyncio.sleep(wait_seconds)
