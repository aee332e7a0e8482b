"""Unit tests for the token bucket."""

import pytest

from relay.infra.runtime.token_bucket import TokenBucket


class TestTokenBucket:

    def test_starts_full(self, clock):
        bucket = TokenBucket(capacity=3, refill_rate=1.0, clock=clock)
        assert [bucket.try_consume() for _ in range(4)] == [True, True, True, False]

    @pytest.mark.parametrize("attempts", [1, 5, 20, 50])
    def test_instant_burst_admits_min_of_attempts_and_capacity(self, clock, attempts):
        bucket = TokenBucket(capacity=20, refill_rate=10.0, clock=clock)
        admitted = sum(bucket.try_consume() for _ in range(attempts))
        assert admitted == min(attempts, 20)

    def test_refills_proportionally_to_elapsed_time(self, clock):
        bucket = TokenBucket(capacity=2, refill_rate=10.0, clock=clock)
        assert bucket.try_consume() and bucket.try_consume()
        assert bucket.try_consume() is False

        clock.advance(0.05)  # half a token
        assert bucket.try_consume() is False

        clock.advance(0.05)
        assert bucket.try_consume() is True
        assert bucket.try_consume() is False

    def test_never_exceeds_capacity(self, clock):
        bucket = TokenBucket(capacity=5, refill_rate=100.0, clock=clock)
        bucket.try_consume()
        clock.advance(3600)
        bucket.try_consume()
        assert bucket.tokens == pytest.approx(4.0)

    def test_time_until_next_token(self, clock):
        bucket = TokenBucket(capacity=1, refill_rate=4.0, clock=clock)
        assert bucket.time_until_next_token() == 0.0

        assert bucket.try_consume()
        assert bucket.time_until_next_token() == pytest.approx(0.25)

        clock.advance(0.1)
        assert bucket.try_consume() is False  # refills to 0.4
        assert bucket.time_until_next_token() == pytest.approx(0.15)

    def test_admissions_spaced_by_refill_interval(self, clock):
        bucket = TokenBucket(capacity=1, refill_rate=5.0, clock=clock)
        admitted_at = []
        for _ in range(200):
            if bucket.try_consume():
                admitted_at.append(clock.now)
            clock.advance(0.01)
        gaps = [b - a for a, b in zip(admitted_at, admitted_at[1:])]
        assert gaps
        assert all(gap >= 0.2 - 1e-9 for gap in gaps)

    def test_clock_going_backwards_does_not_add_tokens(self, clock):
        bucket = TokenBucket(capacity=1, refill_rate=1.0, clock=clock)
        assert bucket.try_consume()
        clock.advance(-10)
        assert bucket.try_consume() is False
        assert bucket.tokens == 0.0

    @pytest.mark.parametrize("capacity,rate", [(0, 1.0), (1, 0.0), (1, -2.0)])
    def test_rejects_invalid_configuration(self, capacity, rate):
        with pytest.raises(ValueError):
            TokenBucket(capacity=capacity, refill_rate=rate)

    def test_stats(self, clock):
        bucket = TokenBucket(capacity=2, refill_rate=3.0, clock=clock)
        bucket.try_consume()
        assert bucket.get_stats() == {"tokens": 1.0, "capacity": 2.0, "refill_rate": 3.0}
