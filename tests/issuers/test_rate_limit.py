"""Tests for the per-issuer token bucket."""

from __future__ import annotations

import threading

import pytest

from acmesync.core.errors import ACMERateLimited
from acmesync.issuers.rate_limit import WEEK_SECONDS, TokenBucket


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture()
def clock():
    return FakeClock()


class TestTokenBucket:
    def test_rejects_zero_capacity(self):
        with pytest.raises(ValueError, match="capacity"):
            TokenBucket(0)

    def test_starts_full(self, clock):
        bucket = TokenBucket(3, 30, clock=clock)
        assert bucket.available == 3
        assert bucket.seconds_until_available() == 0

    def test_acquire_until_empty(self, clock):
        bucket = TokenBucket(2, 20, clock=clock)
        bucket.acquire()
        bucket.acquire()
        with pytest.raises(ACMERateLimited) as exc_info:
            bucket.acquire()
        # one token per 10s
        assert exc_info.value.retry_after == pytest.approx(10)

    def test_refills_over_window(self, clock):
        bucket = TokenBucket(2, 20, clock=clock)
        bucket.acquire()
        bucket.acquire()
        clock.advance(5)
        assert bucket.seconds_until_available() == pytest.approx(5)
        clock.advance(5)
        assert bucket.try_acquire() is True

    def test_never_exceeds_capacity(self, clock):
        bucket = TokenBucket(2, 20, clock=clock)
        clock.advance(10_000)
        assert bucket.available == 2

    def test_try_acquire(self, clock):
        bucket = TokenBucket(1, 60, clock=clock)
        assert bucket.try_acquire() is True
        assert bucket.try_acquire() is False

    def test_penalize_blocks_despite_tokens(self, clock):
        bucket = TokenBucket(10, 100, clock=clock)
        bucket.penalize(300)
        assert bucket.try_acquire() is False
        with pytest.raises(ACMERateLimited) as exc_info:
            bucket.acquire()
        assert exc_info.value.retry_after == pytest.approx(300)
        clock.advance(300)
        bucket.acquire()

    def test_shorter_penalty_does_not_shorten_cooldown(self, clock):
        bucket = TokenBucket(10, 100, clock=clock)
        bucket.penalize(300)
        bucket.penalize(10)
        assert bucket.seconds_until_available() == pytest.approx(300)

    def test_default_window_is_a_week(self):
        bucket = TokenBucket(50)
        assert bucket.window_seconds == WEEK_SECONDS

    def test_concurrent_acquire_never_overdraws(self, clock):
        bucket = TokenBucket(25, WEEK_SECONDS, clock=clock)
        granted = []
        lock = threading.Lock()

        def worker():
            for _ in range(10):
                if bucket.try_acquire():
                    with lock:
                        granted.append(1)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(granted) == 25
