"""
Circuit breaker pattern for resilience against cascading failures.

Protects the log query service (and the callers scheduling against it) from
being hammered during an outage.

States:
- CLOSED: Normal operation, requests pass through
- OPEN: Failing, requests rejected immediately (fast-fail)
- HALF_OPEN: Testing recovery, the next call is let through as a probe

Usage:
    breaker = CircuitBreaker("log_analytics")
    result = await breaker.execute(lambda: run_query())
"""

import logging
import threading
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import TypeVar

from core.errors.exceptions import CircuitOpenError, ConfigurationError

logger = logging.getLogger(__name__)

T = TypeVar("T")

MIN_RESET_TIMEOUT_MS = 1000


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker behavior."""

    # Consecutive failures before opening circuit
    failure_threshold: int = 5

    # Milliseconds to stay open before letting a probe call through
    reset_timeout_ms: int = 300_000

    def __post_init__(self):
        self.failure_threshold = int(self.failure_threshold)
        self.reset_timeout_ms = int(self.reset_timeout_ms)

    def validate(self) -> None:
        if self.failure_threshold < 1:
            raise ConfigurationError(
                f"failure_threshold must be >= 1, got {self.failure_threshold}"
            )
        if self.reset_timeout_ms < MIN_RESET_TIMEOUT_MS:
            raise ConfigurationError(
                f"reset_timeout_ms must be >= {MIN_RESET_TIMEOUT_MS}, got {self.reset_timeout_ms}"
            )

    @property
    def reset_timeout_seconds(self) -> float:
        return self.reset_timeout_ms / 1000.0


@dataclass(frozen=True)
class CircuitStats:
    """Point-in-time snapshot of circuit breaker state and counters."""

    state: CircuitState
    failure_count: int
    last_failure_time: float | None
    next_retry_time: float | None
    total_requests: int
    total_failures: int
    rejected_requests: int


class CircuitBreaker:
    """
    Circuit breaker with consecutive-failure tracking. Thread-safe.

    Every exception raised by the wrapped operation counts as a failure.
    Rejected calls are counted separately and do not touch total_requests.
    """

    def __init__(
        self,
        name: str,
        config: CircuitBreakerConfig | None = None,
        on_state_change: Callable[[CircuitState, CircuitState], None] | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self.config.validate()
        self.on_state_change = on_state_change
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: float | None = None
        self._next_retry_time: float | None = None
        self._total_requests = 0
        self._total_failures = 0
        self._rejected_requests = 0

        self._lock = threading.RLock()

    @property
    def state(self) -> CircuitState:
        """Current circuit state. Reading it never triggers a transition."""
        with self._lock:
            return self._state

    @property
    def is_closed(self) -> bool:
        return self.state == CircuitState.CLOSED

    @property
    def is_open(self) -> bool:
        return self.state == CircuitState.OPEN

    def get_stats(self) -> CircuitStats:
        with self._lock:
            return CircuitStats(
                state=self._state,
                failure_count=self._failure_count,
                last_failure_time=self._last_failure_time,
                next_retry_time=self._next_retry_time,
                total_requests=self._total_requests,
                total_failures=self._total_failures,
                rejected_requests=self._rejected_requests,
            )

    def is_allowing_requests(self) -> bool:
        """True when the next call would be attempted rather than rejected."""
        with self._lock:
            if self._state != CircuitState.OPEN:
                return True
            return self._next_retry_time is not None and self._clock() >= self._next_retry_time

    def _transition_to(self, new_state: CircuitState) -> None:
        old_state = self._state
        if old_state == new_state:
            return

        self._state = new_state

        if new_state == CircuitState.CLOSED:
            self._failure_count = 0
            self._next_retry_time = None
            logger.info(
                "Circuit closed: circuit_name=%s, circuit_state=closed",
                self.name,
            )
        elif new_state == CircuitState.HALF_OPEN:
            self._failure_count = 0
            logger.info(
                "Circuit half-open: circuit_name=%s, circuit_state=half_open",
                self.name,
            )
        elif new_state == CircuitState.OPEN:
            self._next_retry_time = self._clock() + self.config.reset_timeout_seconds
            logger.warning(
                "Circuit open: circuit_name=%s, circuit_state=open, reset_timeout_seconds=%.2f",
                self.name,
                self.config.reset_timeout_seconds,
            )

        if self.on_state_change:
            try:
                self.on_state_change(old_state, new_state)
            except Exception as e:
                logger.warning(
                    "Error in circuit state change callback: circuit_name=%s, error=%s",
                    self.name,
                    str(e),
                    exc_info=False,
                )

    def _before_call(self) -> None:
        """Admit or reject a call. Must be called with the lock held."""
        if self._state == CircuitState.OPEN:
            now = self._clock()
            if self._next_retry_time is not None and now >= self._next_retry_time:
                logger.debug(
                    "Circuit breaker reset timeout elapsed, transitioning to half-open: "
                    "circuit_name=%s, reset_timeout_seconds=%.2f",
                    self.name,
                    self.config.reset_timeout_seconds,
                )
                self._transition_to(CircuitState.HALF_OPEN)
            else:
                self._rejected_requests += 1
                retry_after = max(0.0, (self._next_retry_time or now) - now)
                raise CircuitOpenError(self.name, retry_after)

        self._total_requests += 1

    def _record_success(self) -> None:
        if self._state == CircuitState.HALF_OPEN:
            self._transition_to(CircuitState.CLOSED)
        else:
            # Reset failure count on success (consecutive failure tracking)
            self._failure_count = 0

    def _record_failure(self, exc: Exception) -> None:
        self._total_failures += 1
        self._last_failure_time = self._clock()

        if self._state == CircuitState.HALF_OPEN:
            logger.debug(
                "Circuit breaker failure recorded (half-open): circuit_name=%s, "
                "error_type=%s, error_message=%s, action=transitioning to open",
                self.name,
                type(exc).__name__,
                str(exc)[:200],
            )
            self._transition_to(CircuitState.OPEN)
            return

        self._failure_count += 1
        logger.debug(
            "Circuit breaker failure recorded: circuit_name=%s, circuit_state=%s, "
            "error_type=%s, error_message=%s, failure_count=%d, failure_threshold=%d",
            self.name,
            self._state.value,
            type(exc).__name__,
            str(exc)[:200],
            self._failure_count,
            self.config.failure_threshold,
        )
        if self._state == CircuitState.CLOSED and self._failure_count >= self.config.failure_threshold:
            self._transition_to(CircuitState.OPEN)

    async def execute(self, func: Callable[[], Awaitable[T]]) -> T:
        """
        Run ``func`` under the breaker.

        Raises:
            CircuitOpenError: circuit is open and the reset timeout has not
                elapsed; ``func`` is not invoked
        """
        with self._lock:
            self._before_call()

        # Execute outside lock
        try:
            result = await func()
        except Exception as e:
            with self._lock:
                self._record_failure(e)
            raise
        with self._lock:
            self._record_success()
        return result

    def reset(self) -> None:
        """Force the circuit closed and clear the failure history."""
        with self._lock:
            self._transition_to(CircuitState.CLOSED)
            self._failure_count = 0
            self._last_failure_time = None
            self._next_retry_time = None
            logger.info(
                "Circuit manually reset: circuit_name=%s",
                self.name,
            )

    def force_open(self) -> None:
        """Open the circuit immediately, e.g. during a known outage."""
        with self._lock:
            if self._state == CircuitState.OPEN:
                self._next_retry_time = self._clock() + self.config.reset_timeout_seconds
            else:
                self._transition_to(CircuitState.OPEN)
            logger.info(
                "Circuit manually opened: circuit_name=%s",
                self.name,
            )


__all__ = [
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitOpenError",
    "CircuitState",
    "CircuitStats",
]
