"""Retry policy with exponential backoff and jitter.

RetryPolicy is a pure decision function: it classifies an error as
retryable or fatal and computes the delay before the next attempt.
The retry_with_backoff decorator performs the suspension through an
injectable sleep primitive so callers and tests control time.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from functools import wraps
from typing import Any

from recording_ingest.utils.errors import (
    ClientContentError,
    InvalidRecordingError,
    RetriesExhaustedError,
)

logger = logging.getLogger(__name__)

# 4xx statuses that still indicate a transient condition
RETRYABLE_CLIENT_STATUSES = frozenset({408, 429})

SleepFn = Callable[[float], Awaitable[None]]


class RetryDecision(str, Enum):
    """Outcome of classifying a failed attempt."""

    RETRY = "retry"
    GIVE_UP = "give_up"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class RetryAttempt:
    """A scheduled retry: which attempt failed, the wait, and why."""

    attempt: int
    delay_seconds: float
    error: BaseException


def is_retryable_status(status_code: int) -> bool:
    """Return False for 4xx client errors other than 408 and 429."""
    if 400 <= status_code < 500:
        return status_code in RETRYABLE_CLIENT_STATUSES
    return True


class RetryPolicy:
    """Bounded retry policy with exponential backoff and additive jitter.

    Delay before attempt n+1 is ``base_delay * 2^(n-1) + U[0, jitter)``.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        jitter: float = 1.0,
        rng: random.Random | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.jitter = jitter
        self._rng = rng or random.Random()

    def is_retryable(self, error: BaseException) -> bool:
        """Classify an error as transient (retryable) or fatal.

        Args:
            error: The exception raised by the last attempt.

        Returns:
            True if another attempt may succeed.
        """
        if isinstance(error, (ClientContentError, InvalidRecordingError)):
            return False
        status_code = getattr(error, "status_code", None)
        if isinstance(status_code, int):
            return is_retryable_status(status_code)
        return True

    def backoff_delay(self, attempt: int) -> float:
        """Compute the wait in seconds after the given 1-based attempt failed."""
        return self.base_delay * (2 ** (attempt - 1)) + self._rng.random() * self.jitter

    def decide(self, error: BaseException, attempt: int) -> RetryDecision:
        """Decide what to do after ``attempt`` failed with ``error``."""
        if not self.is_retryable(error):
            return RetryDecision.GIVE_UP
        if attempt >= self.max_attempts:
            return RetryDecision.EXHAUSTED
        return RetryDecision.RETRY


def retry_with_backoff(
    policy: RetryPolicy,
    sleep: SleepFn | None = None,
    operation_name: str | None = None,
    on_retry: Callable[[RetryAttempt], None] | None = None,
) -> Callable:
    """Decorator for retrying async functions according to a RetryPolicy.

    Args:
        policy: Classification and backoff policy.
        sleep: Async suspend primitive. Defaults to asyncio.sleep.
        operation_name: Label used in logs and the exhaustion message.
            Defaults to the wrapped function's name.
        on_retry: Optional hook called with each scheduled RetryAttempt.

    Returns:
        Decorator that wraps an async function with retry logic.
        Fatal errors are re-raised immediately; exhausting the policy
        raises RetriesExhaustedError chained to the last error. The
        number of retries performed is attached as ``_retry_count``.
    """

    def decorator(func: Callable) -> Callable:
        name = operation_name or func.__name__

        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            attempt = 1
            while True:
                try:
                    return await func(*args, **kwargs)
                except Exception as exc:
                    decision = policy.decide(exc, attempt)
                    if decision is RetryDecision.GIVE_UP:
                        exc._retry_count = attempt - 1  # type: ignore[attr-defined]
                        raise
                    if decision is RetryDecision.EXHAUSTED:
                        logger.error(
                            "%s failed after %d attempts: %s",
                            name,
                            attempt,
                            exc,
                        )
                        exhausted = RetriesExhaustedError(
                            f"{name} failed after {attempt} attempts: {exc}",
                            attempts=attempt,
                            last_error=exc,
                        )
                        exhausted._retry_count = attempt - 1  # type: ignore[attr-defined]
                        raise exhausted from exc

                    retry = RetryAttempt(
                        attempt=attempt,
                        delay_seconds=policy.backoff_delay(attempt),
                        error=exc,
                    )
                    logger.warning(
                        "Retry %d/%d for %s after %.2fs: %s",
                        attempt,
                        policy.max_attempts - 1,
                        name,
                        retry.delay_seconds,
                        exc,
                        extra={
                            "attempt": attempt,
                            "delay_seconds": retry.delay_seconds,
                        },
                    )
                    if on_retry is not None:
                        on_retry(retry)
                    await (sleep or asyncio.sleep)(retry.delay_seconds)
                    attempt += 1

        return wrapper

    return decorator
