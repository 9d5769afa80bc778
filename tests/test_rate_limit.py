"""Tests for the build-start rate limiter."""

import time

from app.api.rate_limit import RateLimiter


def test_allows_within_limit():
    limiter = RateLimiter(max_requests=3, window_seconds=60)
    assert all(limiter.is_allowed("user1") for _ in range(3))


def test_blocks_over_limit():
    limiter = RateLimiter(max_requests=2, window_seconds=60)
    assert limiter.is_allowed("user1") is True
    assert limiter.is_allowed("user1") is True
    assert limiter.is_allowed("user1") is False


def test_separate_keys():
    limiter = RateLimiter(max_requests=1, window_seconds=60)
    assert limiter.is_allowed("user1") is True
    assert limiter.is_allowed("user2") is True
    assert limiter.is_allowed("user1") is False


def test_window_expiry():
    limiter = RateLimiter(max_requests=1, window_seconds=0.1)
    assert limiter.is_allowed("user1") is True
    assert limiter.is_allowed("user1") is False
    time.sleep(0.15)
    assert limiter.is_allowed("user1") is True


def test_reset():
    limiter = RateLimiter(max_requests=1, window_seconds=60)
    limiter.is_allowed("user1")
    limiter.reset()
    assert limiter.is_allowed("user1") is True
