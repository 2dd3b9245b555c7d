import asyncio

import pytest

from core.config.settings import RateLimitSettings
from core.utils.exceptions import RateLimitExceeded
from services.api.rate_limiter import RateLimiter
from tests.mocks.mock_kite_api import FakeClock


def make_limiter(clock: FakeClock, capacity: int = 3, rate: float = 3.0) -> RateLimiter:
    return RateLimiter(capacity=capacity, refill_per_second=rate, clock=clock, sleep=clock.sleep)


@pytest.mark.asyncio
async def test_three_immediate_then_fourth_waits():
    clock = FakeClock()
    limiter = make_limiter(clock)

    for _ in range(3):
        await limiter.acquire()
    assert clock.now == 0.0
    assert clock.sleeps == []

    await limiter.acquire()
    assert 0.33 <= clock.now <= 1.0
    assert clock.now == pytest.approx(1.0)


@pytest.mark.asyncio
async def test_no_trailing_window_exceeds_capacity():
    clock = FakeClock()
    limiter = make_limiter(clock)
    grants = []

    for _ in range(10):
        await limiter.acquire()
        grants.append(clock.now)
        # interleave some idle time
        if len(grants) % 4 == 0:
            clock.now += 0.4

    for start in grants:
        in_window = [t for t in grants if start <= t < start + 1.0 - 1e-9]
        assert len(in_window) <= 3


@pytest.mark.asyncio
async def test_bucket_refills_after_idle():
    clock = FakeClock()
    limiter = make_limiter(clock)

    for _ in range(3):
        await limiter.acquire()
    clock.now += 5.0

    for _ in range(3):
        await limiter.acquire()
    assert clock.sleeps == []
    assert limiter.available == pytest.approx(0.0)


@pytest.mark.asyncio
async def test_timeout_raises_rate_limit_exceeded():
    clock = FakeClock()
    limiter = make_limiter(clock)
    for _ in range(3):
        await limiter.acquire()

    with pytest.raises(RateLimitExceeded) as exc_info:
        await limiter.acquire(timeout=0.5)

    assert exc_info.value.retryable
    assert clock.sleeps == []


@pytest.mark.asyncio
async def test_timeout_long_enough_succeeds():
    clock = FakeClock()
    limiter = make_limiter(clock)
    for _ in range(3):
        await limiter.acquire()

    await limiter.acquire(timeout=2.0)
    assert clock.now == pytest.approx(1.0)


@pytest.mark.asyncio
async def test_cancellation_aborts_wait_and_keeps_state():
    limiter = RateLimiter(capacity=1, refill_per_second=0.1)
    await limiter.acquire()

    task = asyncio.create_task(limiter.acquire())
    await asyncio.sleep(0.01)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task

    # The cancelled waiter took nothing; the lock is free for others
    assert limiter.available < 1.0
    with pytest.raises(RateLimitExceeded):
        await limiter.acquire(timeout=0.01)


@pytest.mark.asyncio
async def test_concurrent_callers_are_spread_over_windows():
    clock = FakeClock()
    limiter = make_limiter(clock)
    grant_times = []

    async def worker():
        await limiter.acquire()
        grant_times.append(clock.now)

    await asyncio.gather(*(worker() for _ in range(6)))

    assert len(grant_times) == 6
    assert sum(1 for t in grant_times if t == 0.0) == 3
    assert all(t >= 1.0 for t in grant_times if t != 0.0)


def test_from_settings_and_validation():
    limiter = RateLimiter.from_settings(RateLimitSettings(capacity=5, refill_per_second=10.0))
    assert limiter.capacity == 5
    assert limiter.window == pytest.approx(0.5)

    with pytest.raises(ValueError):
        RateLimiter(capacity=0)
    with pytest.raises(ValueError):
        RateLimiter(refill_per_second=0)
