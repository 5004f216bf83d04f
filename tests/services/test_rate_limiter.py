"""
Tests for RateLimiter - rolling window decisions, no sleeping.
"""

import random
from concurrent.futures import ThreadPoolExecutor

import pytest

from craftus.services.rate_limiter import RateLimiter


class TestCanProceed:
    """can_proceed() counts calls in (now - window, now]."""

    def test_allows_until_limit(self):
        limiter = RateLimiter(max_calls_per_window=3, window_duration=60)
        for t in (0, 1, 2):
            assert limiter.can_proceed(t)
            limiter.record_call(t)
        assert not limiter.can_proceed(3)

    def test_call_leaves_window_exactly_at_boundary(self):
        limiter = RateLimiter(max_calls_per_window=1, window_duration=60)
        limiter.record_call(0)
        assert not limiter.can_proceed(59.999)
        assert limiter.can_proceed(60)

    def test_prunes_old_timestamps(self):
        limiter = RateLimiter(max_calls_per_window=2, window_duration=10)
        limiter.record_call(0)
        limiter.record_call(5)
        assert limiter.can_proceed(12)
        assert limiter.call_times == [5]

    def test_zero_limit_never_allows(self):
        limiter = RateLimiter(max_calls_per_window=0, window_duration=30)
        assert not limiter.can_proceed(0)
        assert not limiter.can_proceed(10_000)

    def test_matches_brute_force_count(self):
        """Randomised check against a direct count of the window."""
        rng = random.Random(42)
        window = 10.0
        limit = 4
        limiter = RateLimiter(max_calls_per_window=limit, window_duration=window)
        recorded = []
        t = 0.0
        for _ in range(300):
            t += rng.uniform(0, 4)
            in_window = [r for r in recorded if t - window < r <= t]
            assert limiter.can_proceed(t) == (len(in_window) < limit)
            if rng.random() < 0.7:
                limiter.record_call(t)
                recorded.append(t)


class TestTimeUntilNextSlot:
    """time_until_next_slot() reports how long until the oldest call expires."""

    def test_zero_when_slot_free(self):
        limiter = RateLimiter(max_calls_per_window=2, window_duration=60)
        limiter.record_call(0)
        assert limiter.time_until_next_slot(1) == 0

    def test_waits_for_oldest_call(self):
        limiter = RateLimiter(max_calls_per_window=2, window_duration=60)
        limiter.record_call(0)
        limiter.record_call(10)
        assert limiter.time_until_next_slot(30) == pytest.approx(30)

    def test_zero_limit_returns_window(self):
        limiter = RateLimiter(max_calls_per_window=0, window_duration=45)
        assert limiter.time_until_next_slot(0) == 45


class TestTryAcquire:
    """try_acquire() checks and records under one lock."""

    def test_records_when_accepted(self):
        limiter = RateLimiter(max_calls_per_window=1, window_duration=60)
        assert limiter.try_acquire(5) == 0.0
        assert limiter.call_times == [5]

    def test_returns_wait_when_full(self):
        limiter = RateLimiter(max_calls_per_window=1, window_duration=60)
        limiter.try_acquire(0)
        assert limiter.try_acquire(20) == pytest.approx(40)
        assert limiter.call_times == [0]

    def test_concurrent_callers_never_share_a_slot(self):
        limiter = RateLimiter(max_calls_per_window=5, window_duration=60)
        with ThreadPoolExecutor(max_workers=16) as pool:
            results = list(pool.map(lambda _: limiter.try_acquire(100.0), range(64)))

        assert results.count(0.0) == 5
        assert limiter.get_current_rate(100.0) == 5


class TestConstruction:

    def test_negative_limit_rejected(self):
        with pytest.raises(ValueError):
            RateLimiter(max_calls_per_window=-1, window_duration=60)

    def test_non_positive_window_rejected(self):
        with pytest.raises(ValueError):
            RateLimiter(max_calls_per_window=1, window_duration=0)
