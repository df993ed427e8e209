"""
Unit tests for core.backoff module.

Tests:
- BackoffConfig defaults and validation
- FixedBackoff and ExponentialBackoff delays
- Jitter bounds
- build_backoff() strategy selection
"""

import pytest
from pydantic import ValidationError

from vtsgate.core.backoff import (
    BackoffConfig,
    ExponentialBackoff,
    FixedBackoff,
    build_backoff,
)


class TestBackoffConfig:
    def test_defaults(self):
        config = BackoffConfig()
        assert config.strategy == "fixed"
        assert config.initial_delay == 5.0
        assert config.max_delay == 60.0
        assert config.jitter == 0.0

    def test_max_below_initial_rejected(self):
        with pytest.raises(ValidationError, match="max_delay"):
            BackoffConfig(initial_delay=10.0, max_delay=5.0)

    @pytest.mark.parametrize("jitter", [-0.1, 1.5])
    def test_jitter_bounds(self, jitter):
        with pytest.raises(ValidationError):
            BackoffConfig(jitter=jitter)

    def test_unknown_strategy_rejected(self):
        with pytest.raises(ValidationError):
            BackoffConfig(strategy="linear")

    def test_frozen(self):
        config = BackoffConfig()
        with pytest.raises(ValidationError):
            config.initial_delay = 1.0


class TestFixedBackoff:
    def test_default_is_five_seconds(self):
        policy = FixedBackoff()
        assert [policy.delay(n) for n in range(5)] == [5.0] * 5

    def test_custom_delay(self):
        assert FixedBackoff(0.25).delay(100) == 0.25

    def test_negative_attempt_treated_as_first(self):
        assert FixedBackoff(2.0).delay(-3) == 2.0


class TestExponentialBackoff:
    def test_doubles_until_cap(self):
        policy = ExponentialBackoff(initial_delay=1.0, max_delay=10.0)
        assert [policy.delay(n) for n in range(6)] == [1.0, 2.0, 4.0, 8.0, 10.0, 10.0]

    def test_huge_attempt_stays_capped(self):
        policy = ExponentialBackoff(initial_delay=1.0, max_delay=30.0)
        assert policy.delay(10_000) == 30.0


class TestJitter:
    def test_delay_within_bounds(self):
        policy = FixedBackoff(10.0, jitter=0.2)
        for _ in range(200):
            assert 8.0 <= policy.delay(0) <= 12.0

    def test_zero_delay_stays_zero(self):
        assert FixedBackoff(0.0, jitter=0.5).delay(0) == 0.0


class TestBuildBackoff:
    def test_default_is_fixed(self):
        policy = build_backoff()
        assert isinstance(policy, FixedBackoff)
        assert policy.delay(0) == 5.0

    def test_exponential(self):
        policy = build_backoff(
            BackoffConfig(strategy="exponential", initial_delay=0.5, max_delay=4.0)
        )
        assert isinstance(policy, ExponentialBackoff)
        assert policy.delay(3) == 4.0
