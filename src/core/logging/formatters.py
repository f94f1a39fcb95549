"""Log formatters: one JSON object per line for files, readable text for consoles."""

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any, Callable, Optional

from core.logging.context import get_log_context
from core.utils.json_serializers import json_serializer

# Record attributes copied into JSON output. A type means the value is
# coerced to it (None when coercion fails) so columns stay numeric.
FIELD_TYPES: dict[str, Optional[Callable[[Any], Any]]] = {
    # timing
    "duration_ms": float,
    # errors
    "error_type": None,
    "error_category": None,
    "error_message": None,
    "error_code": None,
    "status_code": int,
    "callback_error": None,
    # retry and rate limiting
    "attempt": int,
    "attempts": int,
    "max_attempts": int,
    "delay_seconds": float,
    "delay_source": None,
    "server_retry_after": float,
    "retry_after_ms": int,
    "consecutive_rate_limits": int,
    "alert_threshold": int,
    # circuit breaker
    "circuit_name": None,
    "circuit_state": None,
    # auth
    "auth_mode": None,
    # query and fetch
    "operation": None,
    "workspace_id": None,
    "query_length": int,
    "batch_size": int,
    "window_start": None,
    "window_end": None,
    "window_seconds": float,
    "narrowing": int,
    "entries_count": int,
    "rows_total": int,
    "rows_failed": int,
    "has_more": None,
    "log_count": int,
}

# Levels that also get file:line in JSON output
_SOURCE_LEVELS = frozenset({logging.DEBUG, logging.ERROR, logging.CRITICAL})


def _timestamp(record: logging.LogRecord) -> str:
    created = datetime.fromtimestamp(record.created, UTC)
    return created.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _coerce(field: str, value: Any) -> Any:
    convert = FIELD_TYPES.get(field)
    if convert is None or value is None:
        return value
    try:
        return convert(value)
    except (TypeError, ValueError):
        return None


class JSONFormatter(logging.Formatter):
    """
    JSON lines formatter.

    Output keys: ts, level, logger, message, any non-empty log context
    field, file (DEBUG/ERROR/CRITICAL only), whitelisted record fields, and
    an ``exception`` object when exc_info is set.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": _timestamp(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update({k: v for k, v in get_log_context().items() if v})

        if record.levelno in _SOURCE_LEVELS:
            entry["file"] = f"{record.filename}:{record.lineno}"

        for field in FIELD_TYPES:
            value = getattr(record, field, None)
            if value is not None:
                entry[field] = _coerce(field, value)

        if record.exc_info:
            exc_type, exc_value, _ = record.exc_info
            entry["exception"] = {
                "type": exc_type.__name__ if exc_type else None,
                "message": str(exc_value) if exc_value else None,
                "stacktrace": self.formatException(record.exc_info),
            }

        return json.dumps(entry, default=json_serializer, ensure_ascii=False)


class ConsoleFormatter(logging.Formatter):
    """
    ``2024-01-01 12:00:00 - WARNING - [fetch] - [fetch:1a2b3c4d] message``

    Level names are coloured when stdout is a TTY.
    """

    COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._use_colors = sys.stdout.isatty()

    def _level(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelno) if self._use_colors else None
        return f"{color}{record.levelname}{self.RESET}" if color else record.levelname

    def format(self, record: logging.LogRecord) -> str:
        context = get_log_context()
        parts = [datetime.now().strftime("%Y-%m-%d %H:%M:%S"), self._level(record)]
        if context["stage"]:
            parts.append(f"[{context['stage']}]")

        tags = []
        fetch_id = getattr(record, "fetch_id", None) or context["fetch_id"]
        if fetch_id:
            tags.append(f"[fetch:{fetch_id[:8]}]")
        circuit_state = getattr(record, "circuit_state", None)
        if circuit_state:
            tags.append(f"[circuit:{circuit_state}]")

        message = record.getMessage()
        if tags:
            message = f"{' '.join(tags)} {message}"
        return f"{' - '.join(parts)} - {message}"
