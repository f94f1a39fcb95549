"""
Conversion of raw Log Analytics rows into LogEntry objects.

Each row is parsed independently; a bad row is counted and recorded in the
ParseResult without aborting the batch.
"""

import json
import logging
import math
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from typing import Any, Optional

from core.errors.exceptions import ParseError
from log_fetcher.models import (
    UNKNOWN_SEVERITY,
    LogEntry,
    ParseFailure,
    ParseResult,
    Severity,
    ensure_utc,
    severity_level,
)

logger = logging.getLogger(__name__)

NESTED_DIMENSIONS = "customDimensions"
NESTED_MEASUREMENTS = "customMeasurements"


def parse_timestamp(value: Any) -> datetime:
    """
    Accept a datetime, an ISO 8601 string, or epoch milliseconds.

    Raises:
        ParseError: any other type, or a value that is not a valid instant
    """
    if isinstance(value, datetime):
        return ensure_utc(value)

    if isinstance(value, str):
        text = value.strip()
        if not text:
            raise ParseError("Timestamp is empty")
        try:
            return ensure_utc(datetime.fromisoformat(text.replace("Z", "+00:00")))
        except ValueError as e:
            raise ParseError(f"Invalid timestamp '{value}'", cause=e) from e

    # bool is an int subclass but never an instant
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        if isinstance(value, float) and not math.isfinite(value):
            raise ParseError(f"Invalid timestamp {value}")
        try:
            return datetime.fromtimestamp(value / 1000, tz=UTC)
        except (OverflowError, OSError, ValueError) as e:
            raise ParseError(f"Timestamp {value} is out of range", cause=e) from e

    if value is None:
        raise ParseError("Timestamp is missing")
    raise ParseError(f"Unsupported timestamp type {type(value).__name__}")


def parse_severity(value: Any) -> str:
    """
    Numeric ordinal -> scale name, ``Level{N}`` when off the scale.

    Strings pass through unchanged; non-finite numbers and other types are
    Unknown.
    """
    if isinstance(value, bool):
        return UNKNOWN_SEVERITY
    if isinstance(value, int):
        return Severity.label_for(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            return UNKNOWN_SEVERITY
        if value.is_integer():
            return Severity.label_for(int(value))
        return f"Level{value}"
    if isinstance(value, str):
        return value
    return UNKNOWN_SEVERITY


def parse_message(value: Any) -> str:
    if value is None:
        raise ParseError("Message is missing")
    if isinstance(value, str):
        stripped = value.strip()
        return stripped if stripped else value
    return str(value)


def parse_nested(value: Any) -> Optional[dict]:
    """Nested bag as a dict; JSON strings are decoded, anything unusable is None."""
    if value is None:
        return None
    if isinstance(value, Mapping):
        return dict(value)
    if isinstance(value, str):
        try:
            decoded = json.loads(value)
        except (json.JSONDecodeError, ValueError):
            return None
        return decoded if isinstance(decoded, dict) else None
    return None


def _optional_string(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return str(value)


class LogEntryParser:
    """Parses result rows (column name -> value mappings) into LogEntry objects."""

    def parse_row(self, row: Any) -> LogEntry:
        """
        Parse a single row.

        Optional fields come from a dedicated column first, then from the same
        key inside ``customDimensions``.

        Raises:
            ParseError: row is not a mapping, or timestamp/message is invalid
        """
        if not isinstance(row, Mapping):
            raise ParseError(f"Row must be a mapping, got {type(row).__name__}", row=row)

        try:
            timestamp = parse_timestamp(row.get("timestamp"))
            message = parse_message(row.get("message"))
        except ParseError as e:
            e.row = row
            raise

        dimensions = parse_nested(row.get(NESTED_DIMENSIONS))
        measurements = parse_nested(row.get(NESTED_MEASUREMENTS))

        def field_value(column: str) -> Optional[str]:
            value = _optional_string(row.get(column))
            if value is None and dimensions:
                value = _optional_string(dimensions.get(column))
            return value

        metadata = {
            "item_type": row.get("itemType"),
            "operation_name": row.get("operation_Name"),
            "operation_id": row.get("operation_Id"),
            "custom_dimensions": dimensions,
            "custom_measurements": measurements,
        }

        return LogEntry(
            timestamp=timestamp,
            message=message,
            severity=parse_severity(row.get("severityLevel")),
            error_code=field_value("errorCode"),
            stack_trace=field_value("stackTrace"),
            source_location=field_value("sourceLocation"),
            metadata=metadata,
            raw=dict(row),
        )

    def parse_rows(self, rows: Iterable[Any]) -> ParseResult:
        result = ParseResult()
        for row in rows:
            result.total_count += 1
            try:
                result.entries.append(self.parse_row(row))
            except ParseError as e:
                result.failed_count += 1
                result.errors.append(ParseFailure(row=row, error=e))

        if result.failed_count:
            logger.warning(
                "Failed to parse %d of %d rows",
                result.failed_count,
                result.total_count,
                extra={
                    "rows_total": result.total_count,
                    "rows_failed": result.failed_count,
                    "error_message": result.errors[0].error.message[:200],
                },
            )
        return result

    @staticmethod
    def get_severity_level(severity: Optional[str]) -> int:
        return severity_level(severity)

    @staticmethod
    def is_error_or_critical(entry: LogEntry) -> bool:
        return entry.severity_level >= Severity.ERROR

    @staticmethod
    def is_warning_or_higher(entry: LogEntry) -> bool:
        return entry.severity_level >= Severity.WARNING


__all__ = [
    "LogEntryParser",
    "parse_timestamp",
    "parse_severity",
    "parse_message",
    "parse_nested",
]
