"""
Error classification for log query operations.

Turns raw exceptions from the Azure Monitor Query SDK, azure-core transports,
aiohttp and the OS socket layer into retry decisions and typed
PipelineError subclasses.
"""

import errno
import logging
import socket
from typing import Optional

import aiohttp
from azure.core.exceptions import ServiceRequestError, ServiceResponseError

from core.errors.exceptions import (
    AuthError,
    CircuitOpenError,
    PermanentError,
    PipelineError,
    RateLimitError,
    TransientNetworkError,
    classify_http_status,
    iter_causes,
)
from core.types import ErrorCategory

logger = logging.getLogger(__name__)

RATE_LIMIT_STATUS = 429
RATE_LIMIT_CODES = frozenset({"TooManyRequests", "429"})

RETRYABLE_STATUS_CODES = frozenset({408, 500, 502, 503, 504})
RETRYABLE_ERROR_CODES = frozenset(
    {
        "ETIMEDOUT",
        "ECONNRESET",
        "ECONNREFUSED",
        "ENOTFOUND",
        "ENETUNREACH",
        "NETWORK_ERROR",
    }
)
TIMEOUT_ERROR_CODES = frozenset({"ETIMEDOUT", "TIMEOUT", "GatewayTimeout"})
TIMEOUT_MARKERS = ("timeout", "timed out")
RATE_LIMIT_MARKERS = ("too many requests", "throttl")

# Azure Monitor uses x-ms-retry-after-ms, the standard header is in seconds
RETRY_AFTER_MS_HEADER = "x-ms-retry-after-ms"
RETRY_AFTER_HEADER = "retry-after"

NETWORK_EXCEPTION_TYPES = (
    ConnectionError,
    TimeoutError,
    socket.gaierror,
    ServiceRequestError,
    ServiceResponseError,
    aiohttp.ClientConnectionError,
)


def _get_status_code(error: BaseException) -> Optional[int]:
    status = getattr(error, "status_code", None)
    if status is None:
        response = getattr(error, "response", None)
        status = getattr(response, "status_code", None) if response is not None else None
    if status is None and isinstance(error, aiohttp.ClientResponseError):
        status = error.status
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None


def _get_error_codes(error: BaseException) -> set[str]:
    """Collect every error code the exception exposes."""
    codes: set[str] = set()
    for attr in ("code", "error_code"):
        value = getattr(error, attr, None)
        if isinstance(value, (str, int)) and not isinstance(value, bool):
            codes.add(str(value))
    # azure-core HttpResponseError keeps the OData error under .error
    odata = getattr(error, "error", None)
    odata_code = getattr(odata, "code", None) if odata is not None else None
    if isinstance(odata_code, str):
        codes.add(odata_code)
    if isinstance(error, OSError) and error.errno in errno.errorcode:
        codes.add(errno.errorcode[error.errno])
    return codes


def _get_headers(error: BaseException) -> dict:
    response = getattr(error, "response", None)
    headers = getattr(response, "headers", None) if response is not None else None
    if headers is None:
        headers = getattr(error, "headers", None)
    if not headers:
        return {}
    try:
        return {str(k).lower(): v for k, v in headers.items()}
    except AttributeError:
        return {}


def _message_of(error: BaseException) -> str:
    if isinstance(error, PipelineError):
        return error.message.lower()
    return str(error).lower()


def extract_retry_after_ms(error: BaseException) -> Optional[int]:
    """
    Read the server-requested delay from a throttling response.

    The millisecond header wins over the seconds header. Returns None when
    neither is present or parseable.
    """
    if isinstance(error, RateLimitError) and error.retry_after_ms is not None:
        return error.retry_after_ms

    headers = _get_headers(error)
    if RETRY_AFTER_MS_HEADER in headers:
        try:
            value = int(float(headers[RETRY_AFTER_MS_HEADER]))
            if value >= 0:
                return value
        except (TypeError, ValueError):
            logger.debug(
                "Unparseable retry-after-ms header",
                extra={"server_retry_after": headers[RETRY_AFTER_MS_HEADER]},
            )
    if RETRY_AFTER_HEADER in headers:
        try:
            value = int(float(headers[RETRY_AFTER_HEADER]) * 1000)
            if value >= 0:
                return value
        except (TypeError, ValueError):
            logger.debug(
                "Unparseable retry-after header",
                extra={"server_retry_after": headers[RETRY_AFTER_HEADER]},
            )
    return None


def is_rate_limited(error: BaseException) -> bool:
    """HTTP 429 or an equivalent service error code."""
    if isinstance(error, RateLimitError):
        return True
    if isinstance(error, PipelineError) and error.category != ErrorCategory.TRANSIENT:
        return False
    if _get_status_code(error) == RATE_LIMIT_STATUS:
        return True
    if _get_error_codes(error) & RATE_LIMIT_CODES:
        return True
    message = _message_of(error)
    return any(marker in message for marker in RATE_LIMIT_MARKERS)


def is_transient_network_error(error: BaseException) -> bool:
    """
    Connection-level failure or retryable server status.

    Permanent and circuit-open pipeline errors are never transient, even when
    their message mentions a timeout.
    """
    if isinstance(error, (PermanentError, CircuitOpenError, AuthError)):
        return False
    if isinstance(error, TransientNetworkError):
        return True
    if isinstance(error, NETWORK_EXCEPTION_TYPES):
        return True
    status = _get_status_code(error)
    if status is not None and status in RETRYABLE_STATUS_CODES:
        return True
    if _get_error_codes(error) & RETRYABLE_ERROR_CODES:
        return True
    message = _message_of(error)
    return any(marker in message for marker in TIMEOUT_MARKERS)


def is_timeout(error: BaseException) -> bool:
    """Check a single exception (not its causes) for timeout semantics."""
    if isinstance(error, CircuitOpenError):
        return False
    if isinstance(error, TimeoutError):
        return True
    if _get_error_codes(error) & TIMEOUT_ERROR_CODES:
        return True
    message = _message_of(error)
    return any(marker in message for marker in TIMEOUT_MARKERS)


def is_timeout_error(error: BaseException) -> bool:
    """
    Check an exception and its cause chain for timeout semantics.

    Used by the fetcher to decide whether to narrow the query window. A
    circuit-open rejection is never a timeout.
    """
    if isinstance(error, CircuitOpenError):
        return False
    return any(is_timeout(exc) for exc in iter_causes(error))


class LogQueryErrorClassifier:
    """
    Error classifier for Log Analytics queries.

    Implements the ErrorClassifier protocol and adds the rate-limit helpers
    the retry executor needs.
    """

    def is_rate_limited(self, error: BaseException) -> bool:
        return is_rate_limited(error)

    def is_transient(self, error: BaseException) -> bool:
        return is_transient_network_error(error)

    def is_timeout(self, error: BaseException) -> bool:
        return is_timeout_error(error)

    def extract_retry_after_ms(self, error: BaseException) -> Optional[int]:
        return extract_retry_after_ms(error)

    def classify_error(self, error: BaseException) -> ErrorCategory:
        if isinstance(error, PipelineError):
            return error.category
        if self.is_rate_limited(error) or self.is_transient(error):
            return ErrorCategory.TRANSIENT
        status = _get_status_code(error)
        if status is not None:
            return classify_http_status(status)
        return ErrorCategory.UNKNOWN

    def wrap(self, error: BaseException, context: Optional[dict] = None) -> PipelineError:
        """
        Wrap a raw exception in the matching PipelineError subclass.

        Pipeline errors pass through with the extra context merged in.
        """
        if isinstance(error, PipelineError):
            if context:
                error.context.update(context)
            return error

        ctx = {"service": "log_analytics"}
        if context:
            ctx.update(context)
        status = _get_status_code(error)
        if status is not None:
            ctx["status_code"] = status

        if self.is_rate_limited(error):
            retry_after_ms = self.extract_retry_after_ms(error)
            if retry_after_ms is not None:
                ctx["retry_after_ms"] = retry_after_ms
            return RateLimitError(
                f"Log query throttled: {error}",
                retry_after_ms=retry_after_ms,
                cause=error,
                context=ctx,
            )
        if self.is_transient(error):
            if is_timeout(error):
                ctx["error_type"] = "timeout"
            return TransientNetworkError(
                f"Log query transient failure: {error}",
                cause=error,
                context=ctx,
            )

        category = self.classify_error(error)
        if category == ErrorCategory.AUTH:
            return AuthError(f"Log query authentication failed: {error}", cause=error, context=ctx)
        if category == ErrorCategory.PERMANENT:
            return PermanentError(f"Log query failed: {error}", cause=error, context=ctx)
        return PipelineError(f"Log query error: {error}", cause=error, context=ctx)


__all__ = [
    "LogQueryErrorClassifier",
    "extract_retry_after_ms",
    "is_rate_limited",
    "is_transient_network_error",
    "is_timeout",
    "is_timeout_error",
]
