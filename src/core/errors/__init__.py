"""
Error classification and exception hierarchy.

Provides:
- PipelineError hierarchy for typed exceptions
- Classification utilities for retry and timeout decisions
- Log Analytics error classifier
"""

from core.errors.classifiers import (
    LogQueryErrorClassifier,
    extract_retry_after_ms,
    is_rate_limited,
    is_timeout_error,
    is_transient_network_error,
)
from core.errors.exceptions import (
    AuthenticationError,
    AuthError,
    CircuitOpenError,
    ConfigurationError,
    ErrorCategory,
    InvalidTimeRangeError,
    NotInitializedError,
    ParseError,
    PermanentError,
    PipelineError,
    QueryExecutionError,
    RateLimitError,
    RetryExhaustedError,
    ThrottlingError,
    TransientError,
    TransientNetworkError,
    classify_http_status,
    is_auth_error,
    iter_causes,
)

__all__ = [
    # Enums
    "ErrorCategory",
    # Base classes
    "PipelineError",
    "AuthError",
    "TransientError",
    "PermanentError",
    "CircuitOpenError",
    # Concrete errors
    "AuthenticationError",
    "ConfigurationError",
    "InvalidTimeRangeError",
    "NotInitializedError",
    "ParseError",
    "QueryExecutionError",
    "RateLimitError",
    "RetryExhaustedError",
    "ThrottlingError",
    "TransientNetworkError",
    # Classification utilities
    "is_auth_error",
    "classify_http_status",
    "iter_causes",
    "LogQueryErrorClassifier",
    "extract_retry_after_ms",
    "is_rate_limited",
    "is_timeout_error",
    "is_transient_network_error",
]
