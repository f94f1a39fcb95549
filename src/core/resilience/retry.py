"""
Rate-limit aware retry with exponential backoff.

Failures are classified in order:
- Rate limited (429): count consecutive hits, honour Retry-After, retry
- Transient network/server errors: retry with exponential backoff
- Anything else: fail immediately (no retry)

Retryable failures that outlast the retry budget surface as
RetryExhaustedError wrapping the last classified error.
"""

import asyncio
import logging
import random
import threading
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from functools import wraps
from typing import TypeVar

from core.errors.classifiers import LogQueryErrorClassifier
from core.errors.exceptions import ConfigurationError, RetryExhaustedError
from core.types import RetryClassifier

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_RETRIES_LIMIT = 10
RATE_LIMIT_ALERT_THRESHOLD = 3
JITTER_FACTOR = 0.2


@dataclass
class RetryConfig:
    """Configuration for retry behavior. Delays are in milliseconds."""

    max_retries: int = 3
    initial_delay_ms: float = 1000
    max_delay_ms: float = 30000
    backoff_multiplier: float = 2.0

    def __post_init__(self):
        """Ensure proper types from YAML/env vars."""
        self.max_retries = int(self.max_retries)
        self.initial_delay_ms = float(self.initial_delay_ms)
        self.max_delay_ms = float(self.max_delay_ms)
        self.backoff_multiplier = float(self.backoff_multiplier)

    def validate(self) -> None:
        if not 0 <= self.max_retries <= MAX_RETRIES_LIMIT:
            raise ConfigurationError(
                f"max_retries must be between 0 and {MAX_RETRIES_LIMIT}, got {self.max_retries}"
            )
        if self.initial_delay_ms < 0:
            raise ConfigurationError(
                f"initial_delay_ms must be >= 0, got {self.initial_delay_ms}"
            )
        if self.max_delay_ms < self.initial_delay_ms:
            raise ConfigurationError(
                f"max_delay_ms ({self.max_delay_ms}) must be >= initial_delay_ms "
                f"({self.initial_delay_ms})"
            )
        if self.backoff_multiplier < 1:
            raise ConfigurationError(
                f"backoff_multiplier must be >= 1, got {self.backoff_multiplier}"
            )

    def get_delay_ms(self, attempt: int, server_retry_after_ms: float | None = None) -> float:
        """
        Calculate delay before the next attempt.

        Args:
            attempt: 0-indexed number of the attempt that just failed
            server_retry_after_ms: Delay requested by a throttling response

        Returns:
            Delay in milliseconds, never above max_delay_ms
        """
        if server_retry_after_ms is not None:
            return min(float(server_retry_after_ms), self.max_delay_ms)

        base_delay = self.initial_delay_ms * (self.backoff_multiplier**attempt)

        # uniform jitter in [-10%, +10%) of the base delay
        jitter = base_delay * JITTER_FACTOR * (random.random() - 0.5)

        return max(0.0, min(base_delay + jitter, self.max_delay_ms))


DEFAULT_RETRY = RetryConfig()


def _safe_invoke(callback: Callable, *args, operation: str) -> None:
    """Call an observability hook, logging any errors it raises."""
    try:
        callback(*args)
    except Exception as cb_err:
        logger.warning(
            "Error in retry callback for %s: %s",
            operation,
            str(cb_err)[:100],
            extra={
                "operation": operation,
                "callback_error": str(cb_err)[:100],
            },
        )


class RetryExecutor:
    """
    Runs an async operation with classified retries.

    The consecutive rate-limit counter lives on the executor so that it
    spans calls; any success resets it.
    """

    def __init__(
        self,
        config: RetryConfig | None = None,
        classifier: RetryClassifier | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        on_rate_limit_alert: Callable[[int], None] | None = None,
        on_retry: Callable[[Exception, int, float], None] | None = None,
        rate_limit_alert_threshold: int = RATE_LIMIT_ALERT_THRESHOLD,
    ):
        self.config = config or RetryConfig()
        self.config.validate()
        self.classifier = classifier or LogQueryErrorClassifier()
        self._sleep = sleep
        self.on_rate_limit_alert = on_rate_limit_alert
        self.on_retry = on_retry
        self.rate_limit_alert_threshold = rate_limit_alert_threshold

        self._consecutive_rate_limits = 0
        self._lock = threading.Lock()

    @property
    def consecutive_rate_limits(self) -> int:
        with self._lock:
            return self._consecutive_rate_limits

    def reset_rate_limit_count(self) -> None:
        with self._lock:
            self._consecutive_rate_limits = 0

    def get_delay_ms(self, attempt: int, error: BaseException | None = None) -> float:
        """Delay after ``attempt`` failed with ``error``, using the server's delay when throttled."""
        server_retry_after_ms = None
        if error is not None and self.classifier.is_rate_limited(error):
            server_retry_after_ms = self.classifier.extract_retry_after_ms(error)
        return self.config.get_delay_ms(attempt, server_retry_after_ms)

    def _record_rate_limit(self, operation: str) -> None:
        with self._lock:
            self._consecutive_rate_limits += 1
            count = self._consecutive_rate_limits

        if count >= self.rate_limit_alert_threshold:
            logger.warning(
                "Consecutive rate limits for %s reached %d",
                operation,
                count,
                extra={
                    "operation": operation,
                    "consecutive_rate_limits": count,
                    "alert_threshold": self.rate_limit_alert_threshold,
                },
            )
            if self.on_rate_limit_alert:
                _safe_invoke(self.on_rate_limit_alert, count, operation=operation)

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        operation_name: str = "operation",
    ) -> T:
        """
        Invoke ``operation`` until it succeeds or retries run out.

        Raises:
            RetryExhaustedError: retryable failures outlasted max_retries
            Exception: any non-retryable error, unchanged, after one attempt
        """
        max_attempts = self.config.max_retries + 1

        for attempt in range(max_attempts):
            try:
                result = await operation()
            except Exception as e:
                server_retry_after_ms = None
                if self.classifier.is_rate_limited(e):
                    error_category = "rate_limited"
                    self._record_rate_limit(operation_name)
                    server_retry_after_ms = self.classifier.extract_retry_after_ms(e)
                elif self.classifier.is_transient(e):
                    error_category = "transient"
                else:
                    logger.warning(
                        "Non-retryable error for %s, not retrying: %s",
                        operation_name,
                        str(e)[:200],
                        extra={
                            "operation": operation_name,
                            "error_type": type(e).__name__,
                            "error_category": "permanent",
                            "error_message": str(e)[:200],
                        },
                    )
                    raise

                if attempt + 1 >= max_attempts:
                    logger.error(
                        "Max retries exhausted for %s: %s",
                        operation_name,
                        str(e)[:200],
                        extra={
                            "operation": operation_name,
                            "error_type": type(e).__name__,
                            "error_category": error_category,
                            "max_attempts": max_attempts,
                            "error_message": str(e)[:200],
                        },
                    )
                    raise RetryExhaustedError(
                        f"{operation_name} failed after {max_attempts} attempts",
                        attempts=max_attempts,
                        last_error=self.classifier.wrap(e),
                    ) from e

                delay_ms = self.config.get_delay_ms(attempt, server_retry_after_ms)
                log_extras: dict[str, object] = {
                    "operation": operation_name,
                    "attempt": attempt + 1,
                    "max_attempts": max_attempts,
                    "error_category": error_category,
                    "delay_seconds": round(delay_ms / 1000.0, 3),
                    "error_message": str(e)[:200],
                }
                if server_retry_after_ms is not None:
                    log_extras["server_retry_after"] = server_retry_after_ms / 1000.0
                    log_extras["delay_source"] = "server"
                    log_message = "Rate limited on %s, will retry (using server-provided delay)"
                else:
                    log_extras["delay_source"] = "exponential_backoff"
                    log_message = "Retryable error for %s, will retry"
                logger.warning(log_message, operation_name, extra=log_extras)

                if self.on_retry:
                    _safe_invoke(
                        self.on_retry, e, attempt, delay_ms, operation=operation_name
                    )

                await self._sleep(delay_ms / 1000.0)
                continue

            self.reset_rate_limit_count()
            if attempt > 0:
                logger.info(
                    "Retry succeeded for %s after %d attempts",
                    operation_name,
                    attempt + 1,
                    extra={
                        "operation": operation_name,
                        "attempt": attempt + 1,
                        "max_attempts": max_attempts,
                    },
                )
            return result

        # range(max_attempts) is never empty, the loop always returns or raises
        raise AssertionError("unreachable")


def with_retry_async(
    config: RetryConfig | None = None,
    classifier: RetryClassifier | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
):
    """
    Decorator for retrying async functions through a RetryExecutor.

    Each decorated function gets its own executor, so rate-limit counting
    is per function. The executor is exposed as ``wrapper.retry_executor``.

    Usage:
        @with_retry_async(RetryConfig(max_retries=5))
        async def fetch_token():
            ...
    """
    def decorator(func: Callable):
        executor = RetryExecutor(config or DEFAULT_RETRY, classifier=classifier, sleep=sleep)

        @wraps(func)
        async def wrapper(*args, **kwargs):
            return await executor.execute_with_retry(
                lambda: func(*args, **kwargs),
                operation_name=func.__name__,
            )

        wrapper.retry_executor = executor
        return wrapper

    return decorator


__all__ = [
    "RetryConfig",
    "RetryExecutor",
    "with_retry_async",
    "DEFAULT_RETRY",
    "RATE_LIMIT_ALERT_THRESHOLD",
]
