"""
Unified exception hierarchy for the log retrieval pipeline.

Provides typed exceptions with retry classification so that the retry
executor, circuit breaker and fetch orchestrator can make handling decisions
without string matching on raw SDK errors.
"""

# Import ErrorCategory from canonical source to avoid duplicate enum issues
# (comparing enums from different classes always returns False)
from core.types import ErrorCategory


class PipelineError(Exception):
    """
    Base exception for all pipeline errors.

    Attributes:
        message: Human-readable error description
        category: Error classification for retry decisions
        cause: Original exception if wrapping
        context: Additional context dict for debugging
    """

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(
        self,
        message: str,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        self.message = message
        self.cause = cause
        self.context = context or {}
        super().__init__(message)

    @property
    def should_refresh_auth(self) -> bool:
        return self.category == ErrorCategory.AUTH

    def __str__(self) -> str:
        parts = [self.message]
        if self.cause:
            parts.append(f"Caused by: {self.cause}")
        return " | ".join(parts)


# =============================================================================
# Authentication Errors
# =============================================================================


class AuthError(PipelineError):
    """Base class for authentication errors."""

    category = ErrorCategory.AUTH


class AuthenticationError(AuthError):
    """Credential acquisition failed after exhausting all attempts."""

    def __init__(
        self,
        message: str,
        attempts: int,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        ctx = {"attempts": attempts}
        if context:
            ctx.update(context)
        super().__init__(message, cause, ctx)
        self.attempts = attempts


# =============================================================================
# Network/Connection Errors (Transient)
# =============================================================================


class TransientError(PipelineError):
    """Base class for transient/retriable errors."""

    category = ErrorCategory.TRANSIENT


class ThrottlingError(TransientError):
    """Rate limited (429) - should back off."""

    def __init__(
        self,
        message: str,
        retry_after: float | None = None,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        super().__init__(message, cause, context)
        self.retry_after = retry_after  # Seconds to wait if provided


class RateLimitError(ThrottlingError):
    """Log query service answered 429 Too Many Requests."""

    def __init__(
        self,
        message: str,
        retry_after_ms: int | None = None,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        retry_after = retry_after_ms / 1000.0 if retry_after_ms is not None else None
        super().__init__(message, retry_after, cause, context)
        self.retry_after_ms = retry_after_ms


class TransientNetworkError(TransientError):
    """Connection reset/refused, DNS failure, timeout or retryable 5xx."""

    pass


class RetryExhaustedError(TransientError):
    """Retryable operation kept failing until the retry budget ran out."""

    def __init__(
        self,
        message: str,
        attempts: int,
        last_error: Exception,
        context: dict | None = None,
    ):
        ctx = {"attempts": attempts}
        if context:
            ctx.update(context)
        super().__init__(message, last_error, ctx)
        self.attempts = attempts
        self.last_error = last_error


# =============================================================================
# Permanent Errors (Don't Retry)
# =============================================================================


class PermanentError(PipelineError):
    """Base class for permanent/non-retriable errors."""

    category = ErrorCategory.PERMANENT


class ConfigurationError(PermanentError):
    """Invalid configuration value; raised before any network call."""

    pass


class InvalidTimeRangeError(PermanentError):
    """Time range is missing, inverted, or wider than the allowed span."""

    pass


class QueryExecutionError(PermanentError):
    """
    Log query service reported a non-success status.

    For partial failures ``partial_result`` carries whatever rows could be
    parsed from the partial data.
    """

    def __init__(
        self,
        message: str,
        partial_result=None,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        super().__init__(message, cause, context)
        self.partial_result = partial_result


class NotInitializedError(PermanentError):
    """Fetcher used before initialize() completed."""

    pass


class ParseError(PermanentError):
    """A single result row could not be converted into a log entry."""

    def __init__(
        self,
        message: str,
        row=None,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        super().__init__(message, cause, context)
        self.row = row


# =============================================================================
# Circuit Breaker Errors
# =============================================================================


class CircuitOpenError(PipelineError):
    """Circuit breaker is open, rejecting requests."""

    category = ErrorCategory.CIRCUIT_OPEN

    def __init__(
        self,
        circuit_name: str,
        retry_after: float,
        cause: Exception | None = None,
    ):
        message = f"Circuit '{circuit_name}' is open"
        super().__init__(message, cause, {"circuit_name": circuit_name})
        self.circuit_name = circuit_name
        self.retry_after = retry_after


# =============================================================================
# Error Classification Utilities
# =============================================================================

AUTH_ERROR_MARKERS = frozenset(
    {
        "401",
        "unauthorized",
        "authentication",
        "token expired",
        "invalid token",
        "aadsts700082",
        "aadsts70043",  # Azure AD token expiry codes
    }
)


def _http_status(exc: BaseException) -> int | None:
    status = getattr(exc, "status_code", None)
    if status is None:
        status = getattr(getattr(exc, "response", None), "status_code", None)
    return status if isinstance(status, int) and not isinstance(status, bool) else None


def is_auth_error(exc: BaseException) -> bool:
    """
    Check if an exception, or anything in its cause chain, means the
    credential should be dropped and re-acquired.

    The first pipeline error in the chain decides through should_refresh_auth.
    Raw errors count when they carry a 401 status or mention an auth failure.
    """
    for err in iter_causes(exc):
        if isinstance(err, PipelineError):
            return err.should_refresh_auth
        status = _http_status(err)
        if status is not None and classify_http_status(status) == ErrorCategory.AUTH:
            return True
        error_str = str(err).lower()
        if any(marker in error_str for marker in AUTH_ERROR_MARKERS):
            return True
    return False


def classify_http_status(status_code: int) -> ErrorCategory:
    """Classify HTTP status code into error category."""
    if 200 <= status_code < 300:
        return ErrorCategory.UNKNOWN  # Not an error

    if status_code == 401:
        return ErrorCategory.AUTH

    if status_code in (408, 429):
        return ErrorCategory.TRANSIENT

    if 400 <= status_code < 500:
        return ErrorCategory.PERMANENT

    if status_code in (500, 502, 503, 504):
        return ErrorCategory.TRANSIENT

    # 501, 505+ are not expected to recover by themselves
    if status_code >= 500:
        return ErrorCategory.PERMANENT

    return ErrorCategory.UNKNOWN


def iter_causes(exc: BaseException | None, max_depth: int = 10):
    """
    Yield the exception and its causes, outermost first.

    Follows ``cause`` and ``last_error`` on pipeline errors and the implicit
    ``__cause__`` chain on everything else.
    """
    seen: set[int] = set()
    depth = 0
    while exc is not None and id(exc) not in seen and depth < max_depth:
        seen.add(id(exc))
        depth += 1
        yield exc
        nxt = getattr(exc, "cause", None) or getattr(exc, "last_error", None)
        if not isinstance(nxt, BaseException):
            nxt = exc.__cause__
        exc = nxt


__all__ = [
    "PipelineError",
    "AuthError",
    "AuthenticationError",
    "TransientError",
    "ThrottlingError",
    "RateLimitError",
    "TransientNetworkError",
    "RetryExhaustedError",
    "PermanentError",
    "ConfigurationError",
    "InvalidTimeRangeError",
    "QueryExecutionError",
    "NotInitializedError",
    "ParseError",
    "CircuitOpenError",
    "ErrorCategory",
    "is_auth_error",
    "classify_http_status",
    "iter_causes",
]
