"""Tests for the per-key fixed-window rate limiter."""

import asyncio

import pytest

from ai_filter.services.rate_limiter import RateLimiter


class FakeClock:
    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestCheck:
    def test_first_request_allowed(self):
        result = RateLimiter(clock=FakeClock()).check("ai:shop", 10, 60)
        assert result.allowed is True
        assert result.remaining == 9

    def test_ten_allowed_eleventh_denied(self):
        limiter = RateLimiter(clock=FakeClock())
        results = [limiter.check("ai:shop", 10, 60) for _ in range(11)]
        assert all(r.allowed for r in results[:10])
        assert results[9].remaining == 0
        assert results[10].allowed is False
        assert results[10].remaining == 0

    def test_window_resets_after_duration(self):
        clock = FakeClock()
        limiter = RateLimiter(clock=clock)
        for _ in range(11):
            limiter.check("ai:shop", 10, 60)

        clock.now = 60.0
        result = limiter.check("ai:shop", 10, 60)
        assert result.allowed is True
        assert result.remaining == 9

    def test_still_denied_just_before_reset(self):
        clock = FakeClock()
        limiter = RateLimiter(clock=clock)
        for _ in range(10):
            limiter.check("ai:shop", 10, 60)
        clock.now = 59.9
        assert limiter.check("ai:shop", 10, 60).allowed is False

    def test_keys_are_independent(self):
        limiter = RateLimiter(clock=FakeClock())
        for _ in range(11):
            limiter.check("ai:one", 10, 60)
        assert limiter.check("ai:two", 10, 60).allowed is True


class TestSweep:
    def test_removes_idle_windows(self):
        clock = FakeClock()
        limiter = RateLimiter(clock=clock)
        limiter.check("ai:old", 10, 60)
        clock.now = 100.0
        limiter.check("ai:fresh", 10, 60)

        clock.now = 121.0
        assert limiter.sweep() == 1
        assert len(limiter) == 1

    def test_keeps_windows_within_twice_duration(self):
        clock = FakeClock()
        limiter = RateLimiter(clock=clock)
        limiter.check("ai:shop", 10, 60)
        clock.now = 120.0
        assert limiter.sweep() == 0

    @pytest.mark.asyncio
    async def test_background_sweep_runs(self):
        clock = FakeClock()
        limiter = RateLimiter(clock=clock, sweep_interval=0.01)
        limiter.check("ai:shop", 10, 60)
        clock.now = 500.0

        limiter.start()
        try:
            for _ in range(50):
                if len(limiter) == 0:
                    break
                await asyncio.sleep(0.01)
        finally:
            await limiter.stop()

        assert len(limiter) == 0

    @pytest.mark.asyncio
    async def test_stop_without_start(self):
        await RateLimiter().stop()
