import asyncio
import time
from typing import Callable


class TokenBucketRateLimiter:
    """Token bucket shared by every worker of a run.

    Refills at ``rate`` tokens per second up to ``burst``. With the default
    burst of 1 the bucket is a strict pacer: the first caller passes at once
    and every later one waits its 1/rate slot, so the aggregate rate of the
    whole pool never exceeds ``rate``.

    Example:
        limiter = TokenBucketRateLimiter(rate=50)
        await limiter.acquire()
    """

    def __init__(self, rate: float, burst: int = 1, clock: Callable[[], float] = time.monotonic):
        if rate <= 0:
            raise ValueError("rate must be positive")
        self.rate = rate
        self.burst = max(1, burst)
        self._clock = clock
        self._tokens = float(self.burst)
        self._last_refill = clock()
        self._lock = asyncio.Lock()
        self.total_acquired = 0

    async def acquire(self) -> None:
        """Wait for one token. Waiters are served in arrival order."""
        async with self._lock:
            while True:
                self._refill()
                if self._tokens >= 1:
                    self._tokens -= 1
                    self.total_acquired += 1
                    return
                await asyncio.sleep((1 - self._tokens) / self.rate)

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self._last_refill
        self._tokens = min(self._tokens + elapsed * self.rate, float(self.burst))
        self._last_refill = now
