"""Context managers for scoped log context and timed operations."""

import logging
import time
from typing import Any, Optional

from core.logging.context import reset_log_context, set_log_context
from core.logging.utilities import log_exception, log_with_context


class LogContext:
    """
    Scope log context fields to a block.

    Usage:
        with LogContext(stage="fetch", fetch_id=fetch_id):
            await run_query()
    """

    def __init__(self, **fields: Optional[str]):
        self.fields = fields
        self._tokens: dict = {}

    def __enter__(self) -> "LogContext":
        self._tokens = set_log_context(**self.fields)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        reset_log_context(self._tokens)
        self._tokens = {}
        return False


class OperationContext:
    """
    Time a block and emit one log line when it ends.

    Success logs ``Completed: <operation>`` at ``level``, raised to INFO when
    the block outlasts ``slow_threshold_ms``. Failure logs
    ``Failed: <operation>`` without a traceback; the exception still
    propagates.
    """

    def __init__(
        self,
        logger: logging.Logger,
        operation: str,
        level: int | str = logging.DEBUG,
        slow_threshold_ms: Optional[float] = 1000.0,
        **context: Any,
    ):
        self.logger = logger
        self.operation = operation
        self.level = logging.getLevelName(level.upper()) if isinstance(level, str) else level
        self.slow_threshold_ms = slow_threshold_ms
        self.context = dict(context)
        self.duration_ms: Optional[float] = None
        self._started = 0.0

    def __enter__(self) -> "OperationContext":
        self._started = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration_ms = round((time.perf_counter() - self._started) * 1000, 2)
        fields = {"operation": self.operation, "duration_ms": self.duration_ms, **self.context}

        if exc_val is not None:
            log_exception(
                self.logger,
                exc_val,
                f"Failed: {self.operation}",
                include_traceback=False,
                **fields,
            )
            return False

        level = self.level
        if self.slow_threshold_ms is not None and self.duration_ms > self.slow_threshold_ms:
            level = max(level, logging.INFO)
        log_with_context(self.logger, level, f"Completed: {self.operation}", **fields)
        return False

    def add_context(self, **fields: Any) -> None:
        """Attach fields discovered mid-operation (entry counts, windows)."""
        self.context.update(fields)
