import asyncio
import time

import pytest

from oasbench.bench.cancel import CancelScope
from oasbench.bench.rate_limit import TokenBucketRateLimiter
from oasbench.exceptions import RunCancelled


def test_rate_must_be_positive():
    with pytest.raises(ValueError):
        TokenBucketRateLimiter(0)


async def test_first_token_is_immediate():
    limiter = TokenBucketRateLimiter(rate=1)
    started = time.monotonic()
    await limiter.acquire()
    assert time.monotonic() - started < 0.5
    assert limiter.total_acquired == 1


async def test_concurrent_callers_share_the_rate():
    limiter = TokenBucketRateLimiter(rate=20)
    started = time.monotonic()
    await asyncio.gather(*(limiter.acquire() for _ in range(6)))
    elapsed = time.monotonic() - started
    # first token is free, the remaining five wait 1/20s each
    assert elapsed >= 0.22
    assert limiter.total_acquired == 6


async def test_guard_returns_result():
    async def answer():
        return 42

    assert await CancelScope().guard(answer()) == 42


async def test_guard_refuses_after_cancel():
    scope = CancelScope()
    scope.cancel()
    coro = asyncio.sleep(0)
    with pytest.raises(RunCancelled):
        await scope.guard(coro)
    coro.close()
    with pytest.raises(RunCancelled):
        scope.check()


async def test_guard_aborts_inflight_work():
    scope = CancelScope()
    finished = []

    async def slow():
        await asyncio.sleep(5)
        finished.append(True)

    loop = asyncio.get_running_loop()
    loop.call_later(0.05, scope.cancel)
    started = time.monotonic()
    with pytest.raises(RunCancelled):
        await scope.guard(slow())
    assert time.monotonic() - started < 1
    assert scope.cancelled
    assert finished == []
