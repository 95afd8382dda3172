"""Tests for recording_ingest.utils.circuit_breaker."""

import asyncio
import logging
from unittest.mock import AsyncMock

import pytest

from recording_ingest.utils.circuit_breaker import (
    BreakerMode,
    CircuitBreaker,
    CircuitBreakerState,
)
from recording_ingest.utils.errors import BreakerOpenError, TransientTransportError


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def _fail() -> None:
    raise TransientTransportError("storage down")


async def _ok() -> str:
    return "ok"


async def _trip(breaker: CircuitBreaker) -> None:
    for _ in range(breaker.failure_threshold):
        with pytest.raises(TransientTransportError):
            await breaker.call(_fail)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def breaker(clock: FakeClock) -> CircuitBreaker:
    return CircuitBreaker("storage", failure_threshold=3, cooldown_seconds=30.0, clock=clock)


class TestClosedMode:
    """Tests for normal operation."""

    async def test_success_passes_result_through(self, breaker) -> None:
        assert await breaker.call(_ok) == "ok"
        assert breaker.mode is BreakerMode.CLOSED

    async def test_failures_below_threshold_stay_closed(self, breaker) -> None:
        for _ in range(2):
            with pytest.raises(TransientTransportError):
                await breaker.call(_fail)
        assert breaker.mode is BreakerMode.CLOSED
        assert breaker.failure_count == 2

    async def test_success_resets_failure_count(self, breaker) -> None:
        with pytest.raises(TransientTransportError):
            await breaker.call(_fail)
        await breaker.call(_ok)
        assert breaker.failure_count == 0

    async def test_threshold_opens_breaker(self, breaker, clock) -> None:
        await _trip(breaker)
        assert breaker.mode is BreakerMode.OPEN
        assert breaker.snapshot().last_transition_at == clock.now

    def test_rejects_non_positive_threshold(self) -> None:
        with pytest.raises(ValueError):
            CircuitBreaker("storage", failure_threshold=0)


class TestOpenMode:
    """Tests for fail-fast behavior while open."""

    async def test_open_rejects_without_invoking_operation(self, breaker) -> None:
        await _trip(breaker)
        operation = AsyncMock(return_value="ok")

        with pytest.raises(BreakerOpenError) as exc_info:
            await breaker.call(operation)

        operation.assert_not_called()
        assert exc_info.value.breaker == "storage"
        assert exc_info.value.mode == "open"

    async def test_open_invokes_failure_callback(self, breaker) -> None:
        await _trip(breaker)
        seen: list[BreakerOpenError] = []

        def on_open(error: BreakerOpenError) -> str:
            seen.append(error)
            return "fallback"

        assert await breaker.call(_ok, on_open=on_open) == "fallback"
        assert len(seen) == 1
        assert "storage" in str(seen[0])

    async def test_async_failure_callback_is_awaited(self, breaker) -> None:
        await _trip(breaker)

        async def on_open(error: BreakerOpenError) -> str:
            return "async-fallback"

        assert await breaker.call(_ok, on_open=on_open) == "async-fallback"

    async def test_call_before_cooldown_fails_fast(self, breaker, clock) -> None:
        await _trip(breaker)
        clock.advance(29.9)
        operation = AsyncMock()

        with pytest.raises(BreakerOpenError):
            await breaker.call(operation)

        operation.assert_not_called()
        assert breaker.mode is BreakerMode.OPEN

    async def test_rejections_are_counted(self, breaker) -> None:
        await _trip(breaker)
        for _ in range(2):
            with pytest.raises(BreakerOpenError):
                await breaker.call(_ok)
        assert breaker.snapshot().total_rejections == 2


class TestHalfOpenMode:
    """Tests for the single-probe recovery cycle."""

    async def test_probe_success_closes(self, breaker, clock) -> None:
        await _trip(breaker)
        clock.advance(30.0)

        assert await breaker.call(_ok) == "ok"
        assert breaker.mode is BreakerMode.CLOSED
        assert breaker.failure_count == 0

    async def test_probe_failure_reopens_with_fresh_cooldown(
        self, breaker, clock
    ) -> None:
        await _trip(breaker)
        clock.advance(31.0)

        with pytest.raises(TransientTransportError):
            await breaker.call(_fail)

        assert breaker.mode is BreakerMode.OPEN
        reopened_at = breaker.snapshot().last_transition_at
        assert reopened_at == clock.now

        clock.advance(29.0)
        with pytest.raises(BreakerOpenError):
            await breaker.call(_ok)

    async def test_only_one_probe_admitted(self, breaker, clock) -> None:
        await _trip(breaker)
        clock.advance(30.0)

        release = asyncio.Event()
        probe_calls = 0

        async def slow_probe() -> str:
            nonlocal probe_calls
            probe_calls += 1
            await release.wait()
            return "probe"

        probe = asyncio.create_task(breaker.call(slow_probe))
        await asyncio.sleep(0)
        assert breaker.mode is BreakerMode.HALF_OPEN

        other = AsyncMock()
        with pytest.raises(BreakerOpenError) as exc_info:
            await breaker.call(other)
        other.assert_not_called()
        assert exc_info.value.mode == "half_open"

        release.set()
        assert await probe == "probe"
        assert probe_calls == 1
        assert breaker.mode is BreakerMode.CLOSED

    async def test_cancelled_probe_frees_slot(self, breaker, clock) -> None:
        await _trip(breaker)
        clock.advance(30.0)

        async def hang() -> None:
            await asyncio.sleep(3600)

        probe = asyncio.create_task(breaker.call(hang))
        await asyncio.sleep(0)
        probe.cancel()
        with pytest.raises(asyncio.CancelledError):
            await probe

        assert breaker.mode is BreakerMode.HALF_OPEN
        assert await breaker.call(_ok) == "ok"
        assert breaker.mode is BreakerMode.CLOSED

    async def test_cancelled_probe_records_no_result(self, breaker, clock) -> None:
        await _trip(breaker)
        clock.advance(30.0)
        failures_before = breaker.snapshot().total_failures

        async def hang() -> None:
            await asyncio.sleep(3600)

        probe = asyncio.create_task(breaker.call(hang))
        await asyncio.sleep(0)
        probe.cancel()
        with pytest.raises(asyncio.CancelledError):
            await probe

        state = breaker.snapshot()
        assert state.total_failures == failures_before
        assert state.mode is BreakerMode.HALF_OPEN
        assert not breaker._probe_in_flight
        assert not breaker._lock.locked()


class TestConcurrency:
    """Tests for shared state under concurrent callers."""

    async def test_concurrent_failures_open_exactly_once(self, clock) -> None:
        breaker = CircuitBreaker(
            "storage", failure_threshold=3, cooldown_seconds=30.0, clock=clock
        )

        async def fail_after_yield() -> None:
            await asyncio.sleep(0)
            raise TransientTransportError("storage down")

        results = await asyncio.gather(
            *(breaker.call(fail_after_yield) for _ in range(10)),
            return_exceptions=True,
        )

        assert all(isinstance(r, TransientTransportError) for r in results)
        snapshot = breaker.snapshot()
        assert snapshot.mode is BreakerMode.OPEN
        opened = [t for t in snapshot.transitions if t["to"] == "open"]
        assert len(opened) == 1

    async def test_late_success_does_not_close_open_breaker(self, clock) -> None:
        breaker = CircuitBreaker(
            "storage", failure_threshold=1, cooldown_seconds=30.0, clock=clock
        )
        release = asyncio.Event()

        async def slow_ok() -> str:
            await release.wait()
            return "late"

        slow = asyncio.create_task(breaker.call(slow_ok))
        await asyncio.sleep(0)
        with pytest.raises(TransientTransportError):
            await breaker.call(_fail)
        assert breaker.mode is BreakerMode.OPEN

        release.set()
        assert await slow == "late"
        assert breaker.mode is BreakerMode.OPEN


class TestSnapshotAndReset:
    """Tests for observability helpers."""

    async def test_snapshot_serializes(self, breaker) -> None:
        await _trip(breaker)
        snapshot = breaker.snapshot()

        assert isinstance(snapshot, CircuitBreakerState)
        data = snapshot.as_dict()
        assert data["name"] == "storage"
        assert data["mode"] == "open"
        assert data["failure_count"] == 3
        assert data["total_calls"] == 3
        assert data["total_failures"] == 3
        assert data["transitions"][-1]["from"] == "closed"
        assert data["transitions"][-1]["to"] == "open"

    async def test_reset_closes(self, breaker) -> None:
        await _trip(breaker)
        await breaker.reset()
        assert breaker.mode is BreakerMode.CLOSED
        assert breaker.failure_count == 0
        assert await breaker.call(_ok) == "ok"

    async def test_transition_logged(self, breaker, caplog) -> None:
        with caplog.at_level(
            logging.INFO, logger="recording_ingest.utils.circuit_breaker"
        ):
            await _trip(breaker)

        messages = [r.message for r in caplog.records]
        assert any("closed -> open" in m for m in messages)
