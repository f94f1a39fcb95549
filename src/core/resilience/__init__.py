"""
Resilience patterns module.

Provides fault tolerance primitives for the log query pipeline.

Components:
    - CircuitBreaker: State machine (closed/open/half-open)
    - RetryConfig: Exponential backoff configuration
    - RetryExecutor: Rate-limit aware retry with jitter
    - @with_retry_async decorator: Retry an async function through an executor
"""

from .circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitOpenError,
    CircuitState,
    CircuitStats,
)
from .retry import (
    DEFAULT_RETRY,
    RetryConfig,
    RetryExecutor,
    with_retry_async,
)

__all__ = [
    # Circuit Breaker
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitOpenError",
    "CircuitState",
    "CircuitStats",
    # Retry
    "RetryConfig",
    "RetryExecutor",
    "with_retry_async",
    "DEFAULT_RETRY",
]
