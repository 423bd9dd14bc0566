"""Tests for job backoff and broker reconnect backoff."""

import pytest

from marketqueue_core.queue.registry import DEFAULT_POLICIES
from marketqueue_core.worker.retry import (
    BackoffStrategy,
    RetryConfig,
    RetryPolicy,
    job_backoff_delay_ms,
)


class TestJobBackoff:
    def test_first_retry_waits_twice_base_delay(self):
        assert job_backoff_delay_ms(1000, 1) == 2000

    def test_doubles_per_failure(self):
        assert [job_backoff_delay_ms(30000, n) for n in range(1, 5)] == [60000, 120000, 240000, 480000]

    @pytest.mark.parametrize("policy", list(DEFAULT_POLICIES.values()), ids=lambda p: p.name)
    def test_monotone_for_every_queue(self, policy):
        delays = [
            job_backoff_delay_ms(policy.backoff_delay_ms, n)
            for n in range(1, policy.max_attempts + 1)
        ]
        assert delays == sorted(delays)

    def test_no_delay_without_failures_or_base(self):
        assert job_backoff_delay_ms(1000, 0) == 0
        assert job_backoff_delay_ms(0, 3) == 0


class TestRetryPolicy:
    def test_exponential_without_jitter(self):
        policy = RetryPolicy(RetryConfig(initial_delay_ms=100, jitter=0.0))
        assert [policy.get_delay_ms(n) for n in (1, 2, 3)] == [100, 200, 400]

    def test_capped(self):
        policy = RetryPolicy(RetryConfig(initial_delay_ms=1000, max_delay_ms=5000, jitter=0.0))
        assert policy.get_delay_ms(10) == 5000

    def test_jitter_stays_in_range(self):
        policy = RetryPolicy(RetryConfig(initial_delay_ms=1000, jitter=0.1))
        for _ in range(50):
            assert 900 <= policy.get_delay_ms(1) <= 1100

    def test_linear_and_fixed(self):
        linear = RetryPolicy(RetryConfig(initial_delay_ms=100, jitter=0.0, strategy=BackoffStrategy.LINEAR))
        fixed = RetryPolicy(RetryConfig(initial_delay_ms=100, jitter=0.0, strategy=BackoffStrategy.FIXED))
        assert linear.get_delay_ms(3) == 300
        assert fixed.get_delay_ms(3) == 100
