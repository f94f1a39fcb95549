"""
Core types and protocols used across modules.

This module provides base types, enums, and protocol definitions that are
shared across the core library to ensure consistency and type safety.
"""

from enum import Enum
from typing import Optional, Protocol


class ErrorCategory(Enum):
    """
    Classification of error types for handling decisions.

    Categories:
        TRANSIENT: Temporary failures that should retry with backoff
                   (e.g., network timeouts, 429/503 errors)
        AUTH: Authentication failures requiring credential refresh
              (e.g., 401 errors, expired tokens)
        PERMANENT: Non-retriable failures that won't succeed on retry
                   (e.g., bad query, validation errors, configuration issues)
        CIRCUIT_OPEN: Circuit breaker is open, rejecting fast without attempting
        UNKNOWN: Unclassified errors
    """

    TRANSIENT = "transient"
    AUTH = "auth"
    PERMANENT = "permanent"
    CIRCUIT_OPEN = "circuit_open"
    UNKNOWN = "unknown"


class ErrorClassifier(Protocol):
    """
    Protocol for error classification implementations.

    Classifies domain-specific errors into standard categories.
    """

    def classify_error(self, error: BaseException) -> ErrorCategory:
        ...

    def is_transient(self, error: BaseException) -> bool:
        ...


class RetryClassifier(ErrorClassifier, Protocol):
    """
    Classifier used by the retry executor.

    Adds rate-limit detection and server-requested delay extraction on top
    of ErrorClassifier.
    """

    def is_rate_limited(self, error: BaseException) -> bool:
        ...

    def extract_retry_after_ms(self, error: BaseException) -> Optional[int]:
        """Delay requested by the server in milliseconds, or None."""
        ...

    def wrap(self, error: BaseException, context: Optional[dict] = None) -> Exception:
        """Wrap a raw exception in a typed pipeline error."""
        ...


__all__ = [
    "ErrorCategory",
    "ErrorClassifier",
    "RetryClassifier",
]
