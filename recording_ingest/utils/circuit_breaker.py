"""Circuit breaker guarding a single remote dependency.

One CircuitBreaker instance is created per protected dependency and
passed to every call site. Mode, failure counter, and transition time
are shared by all concurrent callers. Admission and result recording
happen under an asyncio.Lock; releasing the slot of a cancelled probe is
a single assignment with no await, so it runs without the lock. The
wrapped operation itself runs outside the lock so healthy calls are not
serialized.

    closed --(failure threshold)--> open --(cooldown)--> half_open
    half_open --(probe ok)--> closed
    half_open --(probe failed)--> open
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, TypeVar

from recording_ingest.utils.errors import BreakerOpenError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Number of recent transitions kept for health reporting
TRANSITION_HISTORY = 10


class BreakerMode(str, Enum):
    """Circuit breaker operating mode."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerState:
    """Point-in-time view of a breaker, safe to serialize."""

    name: str
    mode: BreakerMode
    failure_count: int
    last_transition_at: float | None
    total_calls: int = 0
    total_failures: int = 0
    total_rejections: int = 0
    transitions: list[dict[str, str]] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "mode": self.mode.value,
            "failure_count": self.failure_count,
            "last_transition_at": self.last_transition_at,
            "total_calls": self.total_calls,
            "total_failures": self.total_failures,
            "total_rejections": self.total_rejections,
            "transitions": list(self.transitions),
        }


class CircuitBreaker:
    """Fail-fast wrapper around async operations against one dependency.

    Args:
        name: Dependency label used in logs and errors (e.g. "storage").
        failure_threshold: Consecutive failures in closed mode that open
            the breaker.
        cooldown_seconds: Time spent open before a probe is allowed.
        clock: Monotonic time source in seconds; injectable for tests.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        cooldown_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        self.name = name
        self.failure_threshold = failure_threshold
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._lock = asyncio.Lock()

        self._mode = BreakerMode.CLOSED
        self._failure_count = 0
        self._last_transition_at: float | None = None
        self._probe_in_flight = False

        self._total_calls = 0
        self._total_failures = 0
        self._total_rejections = 0
        self._transitions: deque[dict[str, str]] = deque(maxlen=TRANSITION_HISTORY)

    @property
    def mode(self) -> BreakerMode:
        return self._mode

    @property
    def failure_count(self) -> int:
        return self._failure_count

    async def call(
        self,
        operation: Callable[[], Awaitable[T]],
        on_open: Callable[[BreakerOpenError], Any] | None = None,
    ) -> T:
        """Run ``operation`` if the breaker admits it.

        Args:
            operation: Zero-argument coroutine function performing the
                remote call.
            on_open: Failure callback invoked with a BreakerOpenError when
                the call is rejected. Its result (awaited if needed) is
                returned. Without a callback the error is raised.

        Returns:
            The operation's result.

        Raises:
            BreakerOpenError: If rejected and no callback was supplied.
            Exception: Whatever the operation raised, after recording it.
        """
        async with self._lock:
            admitted, is_probe = self._admit()
            if not admitted:
                self._total_rejections += 1
                error = BreakerOpenError(
                    f"Circuit breaker '{self.name}' is {self._mode.value} "
                    "- request rejected",
                    breaker=self.name,
                    mode=self._mode.value,
                )
            else:
                self._total_calls += 1

        if not admitted:
            if on_open is None:
                raise error
            result = on_open(error)
            if inspect.isawaitable(result):
                result = await result
            return result

        try:
            result = await operation()
        except asyncio.CancelledError:
            # Cancellation frees the probe slot without recording a result
            if is_probe:
                self._probe_in_flight = False
            raise
        except Exception as exc:
            async with self._lock:
                self._record_failure(exc, is_probe)
            raise
        async with self._lock:
            self._record_success(is_probe)
        return result

    def snapshot(self) -> CircuitBreakerState:
        """Return the current state without taking the lock."""
        return CircuitBreakerState(
            name=self.name,
            mode=self._mode,
            failure_count=self._failure_count,
            last_transition_at=self._last_transition_at,
            total_calls=self._total_calls,
            total_failures=self._total_failures,
            total_rejections=self._total_rejections,
            transitions=list(self._transitions),
        )

    async def reset(self) -> None:
        """Force the breaker back to closed with a clean counter."""
        async with self._lock:
            logger.info("Circuit breaker '%s' reset", self.name, extra={"breaker": self.name})
            self._transition(BreakerMode.CLOSED)
            self._failure_count = 0
            self._probe_in_flight = False

    def _admit(self) -> tuple[bool, bool]:
        """Decide admission. Returns (admitted, is_probe). Lock must be held."""
        if self._mode is BreakerMode.CLOSED:
            return True, False

        if self._mode is BreakerMode.OPEN:
            opened_at = self._last_transition_at or 0.0
            if self._clock() - opened_at < self.cooldown_seconds:
                return False, False
            self._transition(BreakerMode.HALF_OPEN)

        # Half-open: exactly one probe at a time
        if self._probe_in_flight:
            return False, False
        self._probe_in_flight = True
        return True, True

    def _record_success(self, is_probe: bool) -> None:
        if is_probe:
            self._probe_in_flight = False
            self._failure_count = 0
            logger.info(
                "Circuit breaker '%s' probe succeeded - closing",
                self.name,
                extra={"breaker": self.name},
            )
            self._transition(BreakerMode.CLOSED)
        elif self._mode is BreakerMode.CLOSED:
            self._failure_count = 0

    def _record_failure(self, exc: Exception, is_probe: bool) -> None:
        self._total_failures += 1
        if is_probe:
            self._probe_in_flight = False
            logger.warning(
                "Circuit breaker '%s' probe failed - reopening: %s",
                self.name,
                exc,
                extra={"breaker": self.name, "error": str(exc)},
            )
            self._transition(BreakerMode.OPEN)
            return

        # Calls admitted while closed that finish after opening change nothing
        if self._mode is not BreakerMode.CLOSED:
            return

        self._failure_count += 1
        if self._failure_count >= self.failure_threshold:
            logger.warning(
                "Circuit breaker '%s' failure threshold reached (%d/%d) - opening: %s",
                self.name,
                self._failure_count,
                self.failure_threshold,
                exc,
                extra={"breaker": self.name, "error": str(exc)},
            )
            self._transition(BreakerMode.OPEN)

    def _transition(self, new_mode: BreakerMode) -> None:
        previous = self._mode
        self._mode = new_mode
        self._last_transition_at = self._clock()
        if previous is new_mode:
            return
        self._transitions.append(
            {
                "from": previous.value,
                "to": new_mode.value,
                "timestamp": datetime.now(UTC).isoformat(),
            }
        )
        logger.info(
            "Circuit breaker '%s' transition: %s -> %s",
            self.name,
            previous.value,
            new_mode.value,
            extra={"breaker": self.name},
        )
