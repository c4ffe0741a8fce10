"""Tests for the in-memory rate limiter."""

import pytest

from ghost_gateway.limiter import ANONYMOUS_CLIENT, RateLimitExceeded, RateLimiter


def test_allows_requests_within_limit() -> None:
    """Requests under the limit should succeed."""
    limiter = RateLimiter(max_requests=3)
    for _ in range(3):
        assert limiter.admit("client-a").allowed


def test_rejects_over_limit() -> None:
    """Exceeding the request limit raises RateLimitExceeded."""
    limiter = RateLimiter(max_requests=2)
    limiter.check("client-a")
    limiter.check("client-a")

    with pytest.raises(RateLimitExceeded, match="Request rate exceeded") as exc_info:
        limiter.check("client-a")
    assert exc_info.value.retry_after_seconds is not None


def test_separate_clients_have_independent_limits() -> None:
    """Different client ids have independent counters."""
    limiter = RateLimiter(max_requests=1)
    limiter.check("client-a")
    limiter.check("client-b")  # Should not raise


def test_unknown_clients_share_a_bucket() -> None:
    """Missing client ids are counted against one shared bucket."""
    limiter = RateLimiter(max_requests=2)
    assert limiter.admit(None).allowed
    assert limiter.admit("").allowed

    result = limiter.admit(ANONYMOUS_CLIENT)
    assert not result.allowed


def test_boundary_and_window_reset(clock) -> None:
    """The (N+1)-th request in a window is rejected, and admitted after W."""
    limiter = RateLimiter(max_requests=3, window_seconds=60, clock=clock)
    for _ in range(3):
        assert limiter.admit("client-a").allowed

    clock.advance(15)
    rejected = limiter.admit("client-a")
    assert not rejected.allowed
    assert rejected.retry_after_seconds == 45
    assert 0 < rejected.retry_after_seconds <= 60

    # Advance past the 60-second window
    clock.advance(46)
    assert limiter.admit("client-a").allowed


def test_rejections_do_not_extend_the_window(clock) -> None:
    limiter = RateLimiter(max_requests=1, window_seconds=10, clock=clock)
    assert limiter.admit("client-a").allowed
    for _ in range(5):
        clock.advance(1)
        assert not limiter.admit("client-a").allowed

    clock.advance(5)
    assert limiter.admit("client-a").allowed


def test_retry_after_is_at_least_one_second(clock) -> None:
    limiter = RateLimiter(max_requests=1, window_seconds=60, clock=clock)
    limiter.admit("client-a")
    clock.advance(59.9)

    assert limiter.admit("client-a").retry_after_seconds == 1


def test_window_resets_with_wall_clock(monkeypatch: pytest.MonkeyPatch) -> None:
    """The default clock is time.time."""
    import time

    current_time = 1000.0

    def mock_time() -> float:
        return current_time

    monkeypatch.setattr(time, "time", mock_time)

    limiter = RateLimiter(max_requests=1, clock=lambda: time.time())
    limiter.check("client-a")

    with pytest.raises(RateLimitExceeded):
        limiter.check("client-a")

    current_time = 1061.0
    limiter.check("client-a")  # Should succeed after window reset


def test_sweep_drops_stale_buckets(clock) -> None:
    limiter = RateLimiter(max_requests=5, window_seconds=60, clock=clock)
    limiter.admit("client-a")
    clock.advance(30)
    limiter.admit("client-b")
    clock.advance(31)

    assert limiter.sweep() == 1
    assert len(limiter) == 1
