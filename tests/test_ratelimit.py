"""Tests for the fixed-window rate limiter."""

import pytest
from starlette.requests import Request

from komic.ratelimit import (
    RateLimiter,
    check_dual,
    client_ip,
    rate_limit_headers,
    rate_limit_response,
)


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def make_request(ip: str = "10.0.0.1", headers: dict | None = None) -> Request:
    raw = [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()]
    return Request({"type": "http", "method": "GET", "path": "/", "headers": raw, "client": (ip, 1234)})


@pytest.fixture
def clock():
    return FakeClock()


def test_requests_under_the_limit_pass(clock):
    limiter = RateLimiter(3, 1, clock=clock)
    for expected_remaining in (3, 2, 1):
        result = limiter.check_key("k")
        assert not result.is_limited
        assert result.remaining == expected_remaining
        result.increment()

    assert limiter.check_key("k").is_limited


def test_window_resets_after_expiry(clock):
    limiter = RateLimiter(3, 1, clock=clock)
    for _ in range(3):
        limiter.check_key("k").increment()
    assert limiter.check_key("k").is_limited

    clock.now += 1.5
    result = limiter.check_key("k")
    assert not result.is_limited
    assert result.count == 0


def test_rejected_requests_are_not_counted(clock):
    limiter = RateLimiter(1, 60, clock=clock)
    limiter.check_key("k").increment()

    for _ in range(5):
        assert limiter.check_key("k").is_limited
    assert limiter.check_key("k").count == 1


def test_keys_are_independent(clock):
    limiter = RateLimiter(1, 60, clock=clock)
    limiter.check_key("a").increment()

    assert limiter.check_key("a").is_limited
    assert not limiter.check_key("b").is_limited


def test_sweep_drops_expired_windows(clock):
    limiter = RateLimiter(5, 10, clock=clock)
    limiter.check_key("a")
    limiter.check_key("b")
    assert len(limiter) == 2

    clock.now += 11
    assert limiter.sweep() == 2
    assert len(limiter) == 0


def test_user_key_is_scoped_by_ip_and_user(clock):
    limiter = RateLimiter(1, 60, clock=clock)
    request = make_request()
    limiter.check(request, user_id="alice").increment()

    assert limiter.check(request, user_id="alice").is_limited
    assert not limiter.check(request, user_id="bob").is_limited


def test_client_ip_prefers_proxy_headers():
    assert client_ip(make_request("10.0.0.1")) == "10.0.0.1"
    assert client_ip(make_request(headers={"X-Forwarded-For": "1.2.3.4, 5.6.7.8"})) == "1.2.3.4"
    assert client_ip(make_request(headers={"X-Real-IP": "9.9.9.9"})) == "9.9.9.9"
    assert client_ip(make_request(headers={"CF-Connecting-IP": "8.8.8.8", "X-Real-IP": "9.9.9.9"})) == "8.8.8.8"


def test_dual_limit_blocks_on_either(clock):
    per_user = RateLimiter(1, 60, clock=clock)
    per_ip = RateLimiter(5, 60, clock=clock)
    request = make_request()

    first = check_dual(request, per_user, per_ip, user_id="alice")
    assert not first.is_blocked
    first.increment()

    second = check_dual(request, per_user, per_ip, user_id="alice")
    assert second.is_blocked
    assert second.blocking is second.user_limit
    assert per_ip.check(request).count == 1


def test_limit_headers_and_response(clock):
    limiter = RateLimiter(1, 60, clock=clock)
    limiter.check_key("k").increment()
    result = limiter.check_key("k")

    headers = rate_limit_headers(result, now=clock.now)
    assert headers == {
        "X-RateLimit-Remaining": "0",
        "X-RateLimit-Reset": "1060",
        "Retry-After": "60",
    }

    response = rate_limit_response(result, now=clock.now)
    assert response.status_code == 429
    assert response.headers["Retry-After"] == "60"
