"""Token-bucket rate limiting for upstream API calls"""

import asyncio
import logging
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class TokenBucket:
    """
    Token bucket that delays callers instead of rejecting them

    Holds up to ``burst`` tokens, refilled at ``rate_per_second``. Waiters are
    served in arrival order because the lock is held while sleeping.
    """

    def __init__(
        self,
        rate_per_second: float,
        burst: int = 1,
        clock: Optional[Callable[[], float]] = None,
    ):
        """
        Initialize token bucket

        Args:
            rate_per_second: Sustained requests per second
            burst: Maximum tokens accumulated while idle
            clock: Monotonic clock (defaults to the event loop clock)
        """
        if rate_per_second <= 0:
            raise ValueError("rate_per_second must be positive")
        if burst < 1:
            raise ValueError("burst must be at least 1")

        self.rate_per_second = rate_per_second
        self.burst = burst
        self._clock = clock or (lambda: asyncio.get_running_loop().time())
        self._tokens = float(burst)
        self._updated_at: Optional[float] = None
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        now = self._clock()
        if self._updated_at is not None:
            elapsed = now - self._updated_at
            self._tokens = min(float(self.burst), self._tokens + elapsed * self.rate_per_second)
        self._updated_at = now

    @property
    def available(self) -> float:
        """Tokens currently available (after refill)"""
        self._refill()
        return self._tokens

    async def acquire(self) -> float:
        """
        Take one token, waiting for a refill if the bucket is empty

        Returns:
            Seconds spent waiting
        """
        async with self._lock:
            self._refill()
            waited = 0.0
            if self._tokens < 1.0:
                waited = (1.0 - self._tokens) / self.rate_per_second
                await asyncio.sleep(waited)
                self._refill()
            self._tokens = max(self._tokens - 1.0, 0.0)
            return waited


class RateLimiterPool:
    """One token bucket per user account"""

    def __init__(self, rate_per_second: float = 1.0, burst: int = 5):
        self.rate_per_second = rate_per_second
        self.burst = burst
        self._buckets: dict[str, TokenBucket] = {}

    def bucket(self, user_id: str) -> TokenBucket:
        if user_id not in self._buckets:
            self._buckets[user_id] = TokenBucket(self.rate_per_second, self.burst)
        return self._buckets[user_id]

    async def acquire(self, user_id: str) -> None:
        """Wait until the user's quota allows another request"""
        waited = await self.bucket(user_id).acquire()
        if waited > 0:
            logger.debug(f"Rate limited {user_id}: waited {waited:.2f}s")

    def discard(self, user_id: str) -> None:
        self._buckets.pop(user_id, None)
