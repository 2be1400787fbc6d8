"""Tests for the fixed-window request governor."""

import asyncio

from grocery_deals.scrapers.utils.rate_limiter import FixedWindowRateLimiter


class FakeClock:
    """Manual monotonic clock whose sleep advances time instantly."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def make_limiter(clock: FakeClock, max_requests: int = 3) -> FixedWindowRateLimiter:
    return FixedWindowRateLimiter(
        max_requests=max_requests,
        window_seconds=60.0,
        clock=clock,
        sleep=clock.sleep,
    )


class TestFixedWindowRateLimiter:

    async def test_admits_up_to_max_without_waiting(self):
        clock = FakeClock()
        limiter = make_limiter(clock)

        for _ in range(3):
            await limiter.acquire()

        assert limiter.request_count == 3
        assert clock.sleeps == []

    async def test_waits_for_window_reset_when_full(self):
        clock = FakeClock()
        limiter = make_limiter(clock)

        for _ in range(3):
            await limiter.acquire()
        clock.now = 20.0
        await limiter.acquire()

        assert clock.sleeps == [40.0]
        assert limiter.request_count == 1
        assert limiter.window_start == 60.0

    async def test_window_resets_after_elapsed(self):
        clock = FakeClock()
        limiter = make_limiter(clock)

        for _ in range(3):
            await limiter.acquire()
        clock.now = 61.0
        await limiter.acquire()

        assert clock.sleeps == []
        assert limiter.request_count == 1

    async def test_concurrent_callers_never_exceed_window(self):
        clock = FakeClock()
        limiter = make_limiter(clock, max_requests=5)

        await asyncio.gather(*(limiter.acquire() for _ in range(12)))

        # 12 calls through a 5-per-window governor need two resets
        assert len(clock.sleeps) == 2
        assert limiter.request_count == 2

    def test_status(self):
        limiter = FixedWindowRateLimiter(max_requests=100)
        status = limiter.status()

        assert status["request_count"] == 0
        assert status["max_requests"] == 100
        assert status["window_start"] is not None
