"""Tests for the per-client submission rate limiter."""

from __future__ import annotations

from emailqc.api.rate_limit import RateLimiter


class _Clock:
    def __init__(self) -> None:
        self.now = 1_000.0

    def __call__(self) -> float:
        return self.now


class TestRateLimiter:
    def test_allows_up_to_limit_then_refuses(self) -> None:
        limiter = RateLimiter(limit=3, window_seconds=60, clock=_Clock())
        decisions = [limiter.check("1.2.3.4") for _ in range(4)]
        assert [d.allowed for d in decisions] == [True, True, True, False]
        assert [d.remaining for d in decisions] == [2, 1, 0, 0]

    def test_clients_are_independent(self) -> None:
        limiter = RateLimiter(limit=1, window_seconds=60, clock=_Clock())
        assert limiter.check("a").allowed
        assert not limiter.check("a").allowed
        assert limiter.check("b").allowed

    def test_window_resets_after_expiry(self) -> None:
        clock = _Clock()
        limiter = RateLimiter(limit=1, window_seconds=60, clock=clock)
        first = limiter.check("a")
        assert not limiter.check("a").allowed
        clock.now = first.reset_at
        assert limiter.check("a").allowed

    def test_expired_entries_are_swept(self) -> None:
        clock = _Clock()
        limiter = RateLimiter(limit=5, window_seconds=10, clock=clock)
        for key in ("a", "b", "c"):
            limiter.check(key)
        clock.now += 11
        limiter.check("d")
        assert len(limiter) == 1

    def test_least_recently_seen_client_evicted(self) -> None:
        limiter = RateLimiter(limit=1, window_seconds=60, max_clients=2, clock=_Clock())
        limiter.check("a")
        limiter.check("b")
        limiter.check("a")  # refused, but refreshes recency
        limiter.check("c")  # evicts "b"
        assert len(limiter) == 2
        assert limiter.check("b").allowed
        assert not limiter.check("c").allowed
