"""Retry planning for failed webhook deliveries."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from datetime import datetime, timedelta

import httpx

from trailhook.webhooks.models import DeliveryStatus

logger = logging.getLogger(__name__)

# 4xx responses that still indicate a transient condition
RETRYABLE_CLIENT_STATUSES = frozenset({408, 429})


@dataclass(frozen=True)
class RetryPolicy:
    """Retry configuration shared by every delivery."""

    max_attempts: int = 3
    base_delay_seconds: float = 60.0
    max_delay_seconds: float = 3600.0
    jitter_ratio: float = 0.1
    timeout_seconds: float = 10.0
    lease_grace_seconds: float = 30.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay_seconds < 0:
            raise ValueError("base_delay_seconds must not be negative")
        if self.max_delay_seconds < self.base_delay_seconds:
            raise ValueError("max_delay_seconds must be >= base_delay_seconds")
        # Jitter below 1.0 keeps consecutive backoffs non-decreasing
        if not 0 <= self.jitter_ratio < 1:
            raise ValueError("jitter_ratio must be in [0, 1)")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        if self.lease_grace_seconds < 0:
            raise ValueError("lease_grace_seconds must not be negative")

    @property
    def lease_seconds(self) -> float:
        """How long a claim stays exclusive before another worker may take it."""
        return self.timeout_seconds + self.lease_grace_seconds

    def backoff(self, attempts: int, jitter: float = 0.0) -> float:
        """
        Delay in seconds before the retry that follows attempt number ``attempts``.

        Exponential: base, 2*base, 4*base, ... scaled by ``1 + jitter_ratio * jitter``
        and capped at ``max_delay_seconds``.

        Args:
            attempts: Attempts made so far (>= 1)
            jitter: Random fraction in [0, 1)
        """
        exponent = max(attempts - 1, 0)
        if self.base_delay_seconds == 0:
            return 0.0
        # Past this point the cap always wins; avoids computing huge powers
        if self.base_delay_seconds * (2 ** min(exponent, 64)) >= self.max_delay_seconds:
            return self.max_delay_seconds
        delay = self.base_delay_seconds * (2**exponent) * (1 + self.jitter_ratio * jitter)
        return min(delay, self.max_delay_seconds)


@dataclass(frozen=True)
class RetryDecision:
    """Outcome of planning after a failed attempt."""

    status: DeliveryStatus
    next_retry_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def terminal(self) -> bool:
        return self.status == DeliveryStatus.FAILED


def is_retryable(status_code: int | None) -> bool:
    """Transport errors, 5xx, 408 and 429 are transient; other 4xx are not."""
    if status_code is None:
        return True
    if status_code >= 500:
        return True
    return status_code in RETRYABLE_CLIENT_STATUSES


class RetryPlanner:
    """Decides whether a failed delivery is retried or terminally failed."""

    def __init__(self, policy: RetryPolicy, rng: random.Random | None = None):
        self.policy = policy
        self._rng = rng or random.Random()

    def plan(
        self,
        attempts: int,
        now: datetime,
        status_code: int | None = None,
    ) -> RetryDecision:
        """
        Plan the next step after a failed attempt.

        Args:
            attempts: Attempt count including the one that just failed
            now: Current time (timezone-aware)
            status_code: HTTP status of the failed attempt, None for transport errors

        Returns:
            RetryDecision with either a future next_retry_at or a terminal failure
        """
        if not is_retryable(status_code):
            logger.debug("Status %s is not retryable", status_code)
            return RetryDecision(status=DeliveryStatus.FAILED, completed_at=now)

        if attempts >= self.policy.max_attempts:
            return RetryDecision(status=DeliveryStatus.FAILED, completed_at=now)

        delay = self.policy.backoff(attempts, self._rng.random())
        # A retry is always strictly in the future
        next_retry_at = now + timedelta(seconds=max(delay, 0.001))
        return RetryDecision(status=DeliveryStatus.RETRYING, next_retry_at=next_retry_at)


def classify_error(exc: BaseException | None = None, status_code: int | None = None) -> str:
    """Error string stored on a delivery for a failed attempt."""
    if status_code is not None:
        return f"HTTP {status_code}"
    if isinstance(exc, (asyncio.TimeoutError, httpx.TimeoutException)):
        return "timeout"
    if isinstance(exc, httpx.RequestError):
        return f"connection error: {exc}"[:500]
    if exc is None:
        return "unknown error"
    return f"{type(exc).__name__}: {exc}"[:500]
