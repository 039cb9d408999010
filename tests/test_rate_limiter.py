"""Tests for the chat rate limiter."""

from uuid import uuid4

import pytest
from fastapi import HTTPException

from tutor_engine.core.rate_limiter import RateLimiter, check_chat_rate_limit, get_chat_rate_limiter


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def test_burst_then_limited():
    limiter = RateLimiter(requests_per_minute=60, burst_size=2, clock=FakeClock())
    assert limiter.check_limit("k")
    assert limiter.check_limit("k")

    with pytest.raises(HTTPException) as exc_info:
        limiter.check_limit("k")

    assert exc_info.value.status_code == 429
    assert exc_info.value.headers["Retry-After"] == "2"


def test_refills_over_time():
    clock = FakeClock()
    limiter = RateLimiter(requests_per_minute=60, burst_size=1, clock=clock)
    limiter.check_limit("k")
    clock.now += 1.5
    assert limiter.check_limit("k")


def test_keys_are_independent():
    limiter = RateLimiter(requests_per_minute=60, burst_size=1, clock=FakeClock())
    limiter.check_limit("a")
    assert limiter.check_limit("b")
    assert limiter.get_stats("a")["total_requests"] == 1
    assert limiter.get_stats("a")["tokens_remaining"] == 0


def test_chat_limit_keyed_per_user():
    user_id = uuid4()
    check_chat_rate_limit(user_id)
    stats = get_chat_rate_limiter().get_stats(f"chat:{user_id}")
    assert stats["total_requests"] == 1
    assert stats["burst_size"] == 30
