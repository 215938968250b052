"""Tests for src/clients/ratelimit.py — sliding window limiter."""

import asyncio

import pytest

from src.clients.ratelimit import WINDOW_BUFFER_MS, SlidingWindowRateLimiter


@pytest.fixture
def make_limiter(fake_clock):
    def _make(**kwargs):
        return SlidingWindowRateLimiter(clock=fake_clock, sleep=fake_clock.sleep, **kwargs)
    return _make


class TestEnforceRateLimit:

    async def test_first_request_not_delayed(self, make_limiter, fake_clock):
        limiter = make_limiter(requests_per_window=5, window_ms=60000, min_delay_ms=1500)
        slot = await limiter.enforce_rate_limit()
        assert slot == fake_clock.now
        assert fake_clock.sleeps == []
        assert limiter.last_request_time == slot

    async def test_min_spacing_between_dispatches(self, make_limiter, fake_clock):
        limiter = make_limiter(requests_per_window=5, window_ms=60000, min_delay_ms=1500)
        first = await limiter.enforce_rate_limit()
        limiter.record_successful_request(first)
        second = await limiter.enforce_rate_limit()
        assert second - first == pytest.approx(1.5)
        assert fake_clock.sleeps == [pytest.approx(1.5)]

    async def test_no_spacing_wait_when_gap_already_elapsed(self, make_limiter, fake_clock):
        limiter = make_limiter(requests_per_window=5, window_ms=60000, min_delay_ms=1500)
        limiter.record_successful_request(await limiter.enforce_rate_limit())
        fake_clock.now += 2.0
        await limiter.enforce_rate_limit()
        assert fake_clock.sleeps == []

    async def test_waits_for_oldest_to_leave_window(self, make_limiter, fake_clock):
        limiter = make_limiter(requests_per_window=2, window_ms=10000, min_delay_ms=0)
        start = fake_clock.now
        for _ in range(2):
            limiter.record_successful_request(await limiter.enforce_rate_limit())

        slot = await limiter.enforce_rate_limit()

        assert fake_clock.sleeps == [pytest.approx(10 + WINDOW_BUFFER_MS / 1000)]
        assert slot - start >= 10
        # Both old entries aged out, only the new reservation is counted
        assert limiter.request_timestamps == []
        assert limiter.occupancy == 1

    async def test_window_expiry_without_wait(self, make_limiter, fake_clock):
        limiter = make_limiter(requests_per_window=1, window_ms=60000, min_delay_ms=0)
        limiter.record_successful_request(await limiter.enforce_rate_limit())
        fake_clock.now += 61
        await limiter.enforce_rate_limit()
        assert fake_clock.sleeps == []

    async def test_in_flight_reservation_counts_toward_window(self, make_limiter, fake_clock):
        limiter = make_limiter(requests_per_window=1, window_ms=5000, min_delay_ms=0)
        await limiter.enforce_rate_limit()  # never resolved
        await limiter.enforce_rate_limit()
        assert fake_clock.sleeps == [pytest.approx(5 + WINDOW_BUFFER_MS / 1000)]

    async def test_concurrent_callers_are_serialized(self, make_limiter, fake_clock):
        limiter = make_limiter(requests_per_window=1, window_ms=5000, min_delay_ms=1000)

        slots = await asyncio.gather(limiter.enforce_rate_limit(), limiter.enforce_rate_limit())

        assert abs(slots[1] - slots[0]) >= 5.0

    async def test_window_never_exceeded(self, make_limiter, fake_clock):
        limiter = make_limiter(requests_per_window=3, window_ms=10000, min_delay_ms=500)
        slots = []
        for _ in range(10):
            slot = await limiter.enforce_rate_limit()
            limiter.record_successful_request(slot)
            slots.append(slot)
            assert len(limiter.request_timestamps) <= 3

        for t in slots:
            in_window = [s for s in slots if t - 10 < s <= t]
            assert len(in_window) <= 3
        for earlier, later in zip(slots, slots[1:]):
            assert later - earlier >= 0.5 - 1e-9

    async def test_last_request_time_non_decreasing(self, make_limiter, fake_clock):
        limiter = make_limiter(requests_per_window=2, window_ms=3000, min_delay_ms=200)
        seen = []
        for _ in range(6):
            limiter.record_successful_request(await limiter.enforce_rate_limit())
            seen.append(limiter.last_request_time)
        assert seen == sorted(seen)


class TestRecordAndRelease:

    async def test_record_moves_reservation(self, make_limiter):
        limiter = make_limiter(requests_per_window=5)
        slot = await limiter.enforce_rate_limit()
        assert limiter.request_timestamps == []
        limiter.record_successful_request(slot)
        assert limiter.request_timestamps == [slot]
        assert limiter.occupancy == 1

    async def test_release_frees_window_slot(self, make_limiter):
        limiter = make_limiter(requests_per_window=5)
        slot = await limiter.enforce_rate_limit()
        limiter.release(slot)
        assert limiter.request_timestamps == []
        assert limiter.occupancy == 0

    async def test_release_keeps_spacing(self, make_limiter, fake_clock):
        """A failed dispatch still counts for the spacing floor."""
        limiter = make_limiter(requests_per_window=5, min_delay_ms=1000)
        limiter.release(await limiter.enforce_rate_limit())
        await limiter.enforce_rate_limit()
        assert fake_clock.sleeps == [pytest.approx(1.0)]

    async def test_release_of_aged_out_slot_does_not_raise(self, make_limiter, fake_clock):
        limiter = make_limiter(requests_per_window=1, window_ms=1000, min_delay_ms=0)
        slot = await limiter.enforce_rate_limit()
        fake_clock.now += 5
        await limiter.enforce_rate_limit()  # prunes the stale reservation
        limiter.release(slot)

    async def test_reset_clears_state(self, make_limiter):
        limiter = make_limiter(requests_per_window=5)
        limiter.record_successful_request(await limiter.enforce_rate_limit())
        limiter.reset()
        assert limiter.request_timestamps == []
        assert limiter.last_request_time is None
        assert limiter.occupancy == 0


class TestValidation:

    def test_rejects_zero_window_capacity(self):
        with pytest.raises(ValueError, match="requests_per_window"):
            SlidingWindowRateLimiter(requests_per_window=0)

    def test_rejects_non_positive_window(self):
        with pytest.raises(ValueError, match="window_ms"):
            SlidingWindowRateLimiter(window_ms=0)

    def test_rejects_negative_delay(self):
        with pytest.raises(ValueError, match="min_delay_ms"):
            SlidingWindowRateLimiter(min_delay_ms=-1)
