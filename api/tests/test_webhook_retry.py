"""Tests for the retry planner."""

import asyncio
import random
from datetime import UTC, datetime, timedelta

import httpx
import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from trailhook.webhooks.models import DeliveryStatus
from trailhook.webhooks.retry import (
    RetryPlanner,
    RetryPolicy,
    classify_error,
    is_retryable,
)

NOW = datetime(2026, 5, 1, 12, 0, tzinfo=UTC)


class TestRetryPolicy:
    """Tests for backoff computation."""

    def test_default_schedule_is_one_two_four_minutes(self):
        policy = RetryPolicy(jitter_ratio=0)
        assert [policy.backoff(n) for n in (1, 2, 3)] == [60, 120, 240]

    def test_backoff_is_capped(self):
        policy = RetryPolicy(base_delay_seconds=60, max_delay_seconds=300)
        assert policy.backoff(10, jitter=0.99) == 300
        assert policy.backoff(10_000) == 300

    @settings(max_examples=200)
    @given(
        attempts=st.integers(min_value=1, max_value=40),
        jitter_a=st.floats(min_value=0, max_value=0.999),
        jitter_b=st.floats(min_value=0, max_value=0.999),
        base=st.floats(min_value=0.1, max_value=120),
        jitter_ratio=st.floats(min_value=0, max_value=0.99),
    )
    def test_backoff_never_decreases(
        self,
        attempts: int,
        jitter_a: float,
        jitter_b: float,
        base: float,
        jitter_ratio: float,
    ):
        """
        For any jitter draws, the delay after attempt n+1 SHALL be at least the
        delay after attempt n.
        """
        policy = RetryPolicy(
            base_delay_seconds=base,
            max_delay_seconds=3600,
            jitter_ratio=jitter_ratio,
        )
        assert policy.backoff(attempts + 1, jitter_b) >= policy.backoff(attempts, jitter_a)

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_attempts": 0},
            {"base_delay_seconds": -1},
            {"base_delay_seconds": 10, "max_delay_seconds": 5},
            {"jitter_ratio": 1.0},
            {"timeout_seconds": 0},
        ],
    )
    def test_invalid_policy_is_rejected(self, kwargs: dict):
        with pytest.raises(ValueError):
            RetryPolicy(**kwargs)


class TestRetryPlanner:
    """Tests for retry decisions."""

    @settings(max_examples=100)
    @given(status_code=st.sampled_from([None, 408, 429, 500, 502, 503, 504]))
    def test_transient_failure_is_retried_with_future_time(self, status_code):
        planner = RetryPlanner(RetryPolicy(), random.Random(1))
        decision = planner.plan(1, NOW, status_code)

        assert decision.status == DeliveryStatus.RETRYING
        assert decision.next_retry_at > NOW
        assert decision.completed_at is None
        assert not decision.terminal

    @settings(max_examples=50)
    @given(attempts=st.integers(min_value=3, max_value=50))
    def test_exhausted_attempts_fail_terminally(self, attempts: int):
        planner = RetryPlanner(RetryPolicy(max_attempts=3))
        decision = planner.plan(attempts, NOW, 500)

        assert decision.status == DeliveryStatus.FAILED
        assert decision.next_retry_at is None
        assert decision.completed_at == NOW
        assert decision.terminal

    @pytest.mark.parametrize("status_code", [400, 401, 403, 404, 410, 422])
    def test_client_errors_fail_terminally(self, status_code: int):
        decision = RetryPlanner(RetryPolicy()).plan(1, NOW, status_code)
        assert decision.status == DeliveryStatus.FAILED

    def test_zero_delay_is_still_in_the_future(self):
        planner = RetryPlanner(RetryPolicy(base_delay_seconds=0, max_delay_seconds=0))
        decision = planner.plan(1, NOW, 500)
        assert decision.next_retry_at > NOW

    def test_jitter_stays_within_ratio(self):
        planner = RetryPlanner(RetryPolicy(jitter_ratio=0.1), random.Random(7))
        for _ in range(50):
            decision = planner.plan(1, NOW, 503)
            delay = decision.next_retry_at - NOW
            assert timedelta(seconds=60) <= delay < timedelta(seconds=66)


class TestErrorClassification:
    def test_is_retryable(self):
        assert is_retryable(None)
        assert is_retryable(500)
        assert is_retryable(429)
        assert not is_retryable(404)

    def test_timeout(self):
        assert classify_error(asyncio.TimeoutError()) == "timeout"
        assert classify_error(httpx.ReadTimeout("slow")) == "timeout"

    def test_connection_error(self):
        error = classify_error(httpx.ConnectError("connection refused"))
        assert error == "connection error: connection refused"

    def test_http_status(self):
        assert classify_error(status_code=500) == "HTTP 500"
