"""Tests for retry delay policies."""

from __future__ import annotations

from datetime import timedelta

import pytest

from txoutbox.dispatch.backoff import BackoffPolicy, ExponentialBackoff, FixedBackoff


class TestExponentialBackoff:
    def test_curve(self):
        policy = ExponentialBackoff(base_delay=30, multiplier=2, max_delay=3600)
        assert [policy.delay(n).total_seconds() for n in range(1, 6)] == [30, 60, 120, 240, 480]

    def test_capped(self):
        policy = ExponentialBackoff(base_delay=30, multiplier=2, max_delay=100)
        assert policy.delay(10) == timedelta(seconds=100)

    def test_monotonic(self):
        policy = ExponentialBackoff()
        delays = [policy.delay(n) for n in range(0, 40)]
        assert delays == sorted(delays)

    def test_huge_attempt_count_does_not_overflow(self):
        policy = ExponentialBackoff(base_delay=1, multiplier=10, max_delay=60)
        assert policy.delay(10_000) == timedelta(seconds=60)

    def test_zero_attempts_uses_base(self):
        assert ExponentialBackoff(base_delay=5).delay(0) == timedelta(seconds=5)

    @pytest.mark.parametrize(
        "kwargs",
        [{"base_delay": -1}, {"max_delay": -1}, {"multiplier": 0.5}],
    )
    def test_validation(self, kwargs):
        with pytest.raises(ValueError):
            ExponentialBackoff(**kwargs)

    def test_frozen(self):
        policy = ExponentialBackoff()
        with pytest.raises(AttributeError):
            policy.base_delay = 1  # type: ignore[misc]


class TestFixedBackoff:
    def test_constant(self):
        policy = FixedBackoff(seconds=15)
        assert {policy.delay(n) for n in range(1, 10)} == {timedelta(seconds=15)}

    def test_is_policy(self):
        assert isinstance(FixedBackoff(), BackoffPolicy)

    def test_abstract_base(self):
        with pytest.raises(TypeError):
            BackoffPolicy()  # type: ignore[abstract]
