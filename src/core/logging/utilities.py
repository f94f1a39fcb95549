"""Helpers for logging with structured ``extra`` fields."""

import logging
from typing import Any

from core.errors.exceptions import PipelineError

MAX_ERROR_MESSAGE_LENGTH = 500

# Attributes every LogRecord already carries; logging refuses them in extra
_RESERVED_LOG_KEYS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


def _extra(fields: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in fields.items() if key not in _RESERVED_LOG_KEYS}


def log_with_context(
    logger: logging.Logger,
    level: int,
    msg: str,
    **fields: Any,
) -> None:
    """
    Log ``msg`` with ``fields`` attached to the record.

    ``exc_info`` goes to the logger itself. Fields that clash with LogRecord
    attributes are dropped.

    Example:
        log_with_context(
            logger, logging.INFO, "Fetch complete",
            duration_ms=elapsed,
            entries_count=len(entries),
        )
    """
    exc_info = fields.pop("exc_info", None)
    logger.log(level, msg, exc_info=exc_info, extra=_extra(fields))


def error_fields(exc: BaseException) -> dict[str, Any]:
    """
    Structured description of an exception.

    Pipeline errors add their category and the scalar values from their
    context (status_code, retry_after_ms, circuit_name, ...).
    """
    message = str(exc)
    if len(message) > MAX_ERROR_MESSAGE_LENGTH:
        message = message[:MAX_ERROR_MESSAGE_LENGTH] + "..."

    fields: dict[str, Any] = {
        "error_type": type(exc).__name__,
        "error_message": message,
    }
    if isinstance(exc, PipelineError):
        fields["error_category"] = exc.category.value
        for key, value in exc.context.items():
            if isinstance(value, (str, int, float, bool)):
                fields.setdefault(key, value)
    return fields


def log_exception(
    logger: logging.Logger,
    exc: BaseException,
    msg: str,
    level: int = logging.ERROR,
    include_traceback: bool = True,
    **fields: Any,
) -> None:
    """
    Log an exception with its error fields merged under ``fields``.

    Explicit ``fields`` win over values derived from the exception.

    Example:
        try:
            await fetcher.fetch_logs()
        except PipelineError as e:
            log_exception(logger, e, "Fetch failed", workspace_id=workspace_id)
    """
    merged = {**error_fields(exc), **fields}
    logger.log(
        level,
        msg,
        exc_info=exc if include_traceback else None,
        extra=_extra(merged),
    )
