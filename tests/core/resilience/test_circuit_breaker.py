"""
Tests for circuit breaker implementation.

Verifies:
- State transitions (CLOSED → OPEN → HALF_OPEN → CLOSED)
- Consecutive failure counting and thresholds
- Rejection without invoking the operation while open
- Counters and stats snapshots
- Thread safety for concurrent access
"""

from concurrent.futures import ThreadPoolExecutor
from unittest.mock import AsyncMock, Mock

import pytest

from core.errors.exceptions import ConfigurationError
from core.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitOpenError,
    CircuitState,
)


# =============================================================================
# Test Fixtures and Helpers
# =============================================================================


class FakeClock:
    """Manually advanced clock in seconds."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def breaker(clock):
    config = CircuitBreakerConfig(failure_threshold=3, reset_timeout_ms=5000)
    return CircuitBreaker("test", config, clock=clock)


async def _fail(breaker: CircuitBreaker, times: int = 1) -> None:
    for _ in range(times):
        with pytest.raises(RuntimeError):
            await breaker.execute(AsyncMock(side_effect=RuntimeError("boom")))


# =============================================================================
# Configuration
# =============================================================================


class TestCircuitBreakerConfig:

    def test_defaults(self):
        config = CircuitBreakerConfig()
        assert config.failure_threshold == 5
        assert config.reset_timeout_ms == 300_000
        assert config.reset_timeout_seconds == 300.0

    def test_type_conversion_from_strings(self):
        config = CircuitBreakerConfig(failure_threshold="7", reset_timeout_ms="60000")
        assert config.failure_threshold == 7
        assert config.reset_timeout_ms == 60000

    def test_threshold_below_one_rejected(self):
        with pytest.raises(ConfigurationError):
            CircuitBreaker("x", CircuitBreakerConfig(failure_threshold=0))

    def test_reset_timeout_below_minimum_rejected(self):
        with pytest.raises(ConfigurationError):
            CircuitBreaker("x", CircuitBreakerConfig(reset_timeout_ms=999))


# =============================================================================
# State transitions
# =============================================================================


class TestStateTransitions:

    def test_starts_closed(self, breaker):
        assert breaker.state == CircuitState.CLOSED
        assert breaker.is_closed

    @pytest.mark.asyncio
    async def test_success_passes_result_through(self, breaker):
        assert await breaker.execute(AsyncMock(return_value=42)) == 42

    @pytest.mark.asyncio
    async def test_opens_after_threshold_failures(self, breaker):
        await _fail(breaker, 2)
        assert breaker.state == CircuitState.CLOSED
        await _fail(breaker)
        assert breaker.state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_success_resets_failure_count(self, breaker):
        await _fail(breaker, 2)
        await breaker.execute(AsyncMock(return_value="ok"))
        await _fail(breaker, 2)
        assert breaker.state == CircuitState.CLOSED
        assert breaker.get_stats().failure_count == 2

    @pytest.mark.asyncio
    async def test_open_rejects_without_invoking(self, breaker):
        await _fail(breaker, 3)
        operation = AsyncMock(return_value="ok")

        with pytest.raises(CircuitOpenError) as exc_info:
            await breaker.execute(operation)

        operation.assert_not_called()
        assert exc_info.value.circuit_name == "test"
        assert exc_info.value.retry_after == pytest.approx(5.0)

    @pytest.mark.asyncio
    async def test_half_open_after_reset_timeout(self, breaker, clock):
        await _fail(breaker, 3)
        clock.advance(5.0)
        assert breaker.is_allowing_requests()

        # State reads never transition on their own
        assert breaker.state == CircuitState.OPEN

        assert await breaker.execute(AsyncMock(return_value="ok")) == "ok"
        assert breaker.state == CircuitState.CLOSED
        assert breaker.get_stats().failure_count == 0

    @pytest.mark.asyncio
    async def test_half_open_failure_reopens(self, breaker, clock):
        await _fail(breaker, 3)
        clock.advance(5.0)
        await _fail(breaker)

        assert breaker.state == CircuitState.OPEN
        assert breaker.get_stats().next_retry_time == pytest.approx(clock.now + 5.0)

    @pytest.mark.asyncio
    async def test_still_rejects_before_timeout(self, breaker, clock):
        await _fail(breaker, 3)
        clock.advance(4.9)
        assert not breaker.is_allowing_requests()
        with pytest.raises(CircuitOpenError):
            await breaker.execute(AsyncMock())

    @pytest.mark.asyncio
    async def test_state_change_callback(self, clock):
        changes = []
        breaker = CircuitBreaker(
            "cb",
            CircuitBreakerConfig(failure_threshold=1, reset_timeout_ms=1000),
            on_state_change=lambda old, new: changes.append((old, new)),
            clock=clock,
        )
        await _fail(breaker)
        clock.advance(1.0)
        await breaker.execute(AsyncMock(return_value=None))

        assert changes == [
            (CircuitState.CLOSED, CircuitState.OPEN),
            (CircuitState.OPEN, CircuitState.HALF_OPEN),
            (CircuitState.HALF_OPEN, CircuitState.CLOSED),
        ]

    @pytest.mark.asyncio
    async def test_callback_error_does_not_break_transition(self, clock):
        breaker = CircuitBreaker(
            "cb",
            CircuitBreakerConfig(failure_threshold=1, reset_timeout_ms=1000),
            on_state_change=Mock(side_effect=RuntimeError("callback bug")),
            clock=clock,
        )
        await _fail(breaker)
        assert breaker.state == CircuitState.OPEN


# =============================================================================
# Stats and manual control
# =============================================================================


class TestStats:

    @pytest.mark.asyncio
    async def test_counters(self, breaker, clock):
        await breaker.execute(AsyncMock(return_value=1))
        await _fail(breaker, 3)
        with pytest.raises(CircuitOpenError):
            await breaker.execute(AsyncMock())

        stats = breaker.get_stats()
        assert stats.state == CircuitState.OPEN
        assert stats.total_requests == 4
        assert stats.total_failures == 3
        assert stats.rejected_requests == 1
        assert stats.last_failure_time == clock.now
        assert stats.next_retry_time == clock.now + 5.0

    def test_initial_stats(self, breaker):
        stats = breaker.get_stats()
        assert stats.failure_count == 0
        assert stats.last_failure_time is None
        assert stats.next_retry_time is None

    @pytest.mark.asyncio
    async def test_reset(self, breaker):
        await _fail(breaker, 3)
        breaker.reset()
        stats = breaker.get_stats()
        assert stats.state == CircuitState.CLOSED
        assert stats.failure_count == 0
        assert stats.next_retry_time is None
        assert stats.total_failures == 3

    @pytest.mark.asyncio
    async def test_force_open(self, breaker):
        breaker.force_open()
        assert breaker.is_open
        with pytest.raises(CircuitOpenError):
            await breaker.execute(AsyncMock())


class TestThreadSafety:

    def test_concurrent_failure_recording(self, clock):
        breaker = CircuitBreaker(
            "threads",
            CircuitBreakerConfig(failure_threshold=10_000, reset_timeout_ms=1000),
            clock=clock,
        )

        def record():
            for _ in range(100):
                with breaker._lock:
                    breaker._before_call()
                    breaker._record_failure(RuntimeError("x"))

        with ThreadPoolExecutor(max_workers=8) as pool:
            for _ in range(8):
                pool.submit(record)

        stats = breaker.get_stats()
        assert stats.total_requests == 800
        assert stats.total_failures == 800
        assert stats.failure_count == 800
