"""
KQL query construction for Application Insights tables in Log Analytics.

Queries are normalized (lines stripped, blank lines dropped) so the same
inputs always produce byte-identical text.
"""

import logging
from collections.abc import Iterable
from datetime import datetime
from typing import Optional

from core.errors.exceptions import ConfigurationError, InvalidTimeRangeError
from log_fetcher.models import Severity, TimeRange, ensure_utc

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 1000
MAX_BATCH_SIZE = 10000
DEFAULT_SEVERITY_LEVELS = ("Error", "Warning")
DEFAULT_SOURCE_TABLES = ("traces", "exceptions", "requests")

PROJECTED_COLUMNS = (
    "timestamp",
    "severityLevel",
    "message",
    "itemType",
    "operation_Name",
    "operation_Id",
    "customDimensions",
    "customMeasurements",
)

# Pulled out of the customDimensions bag into top-level columns
EXTRACTED_DIMENSIONS = ("errorCode", "stackTrace", "sourceLocation")


def format_kql_datetime(value: datetime) -> str:
    """ISO 8601 with millisecond precision and a ``Z`` suffix."""
    value = ensure_utc(value)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def normalize_query(query: str) -> str:
    return "\n".join(line.strip() for line in query.splitlines() if line.strip())


class KqlQueryBuilder:
    """
    Builds time-bounded, severity-filtered, row-limited KQL queries.

    The severity filter uses the lowest configured ordinal, since the query
    expresses "at least this severity".
    """

    def __init__(
        self,
        batch_size: int = DEFAULT_BATCH_SIZE,
        severity_levels: Iterable[str] = DEFAULT_SEVERITY_LEVELS,
        source_tables: Iterable[str] = DEFAULT_SOURCE_TABLES,
    ):
        if not 1 <= int(batch_size) <= MAX_BATCH_SIZE:
            raise ConfigurationError(
                f"batch_size must be between 1 and {MAX_BATCH_SIZE}, got {batch_size}"
            )
        self.batch_size = int(batch_size)
        self.severity_levels = tuple(Severity.from_name(name) for name in severity_levels)
        self.source_tables = tuple(t.strip() for t in source_tables if t and t.strip())
        if not self.source_tables:
            raise ConfigurationError("At least one source table is required")

    @property
    def min_severity(self) -> int:
        if not self.severity_levels:
            return Severity.VERBOSE.value
        return min(self.severity_levels).value

    @staticmethod
    def _validate(time_range: Optional[TimeRange]) -> TimeRange:
        if time_range is None:
            raise InvalidTimeRangeError("Time range is required")
        return time_range.validate()

    def _filters(self, time_range: TimeRange) -> list[str]:
        return [
            f"union {', '.join(self.source_tables)}",
            f"| where timestamp >= datetime({format_kql_datetime(time_range.start_time)})",
            f"| where timestamp <= datetime({format_kql_datetime(time_range.end_time)})",
            f"| where severityLevel >= {self.min_severity}",
        ]

    def build_log_query(
        self,
        time_range: Optional[TimeRange],
        continuation_token: Optional[str] = None,
    ) -> str:
        """
        Query for up to ``batch_size`` entries, newest first.

        ``continuation_token`` is accepted for interface compatibility; the
        service has no server-side cursor so it does not change the query.

        Raises:
            InvalidTimeRangeError: missing, inverted or over-long range
        """
        time_range = self._validate(time_range)
        if continuation_token:
            logger.debug("Ignoring continuation token, pagination is not supported")

        projection = list(PROJECTED_COLUMNS) + [
            f"{name} = tostring(customDimensions.{name})" for name in EXTRACTED_DIMENSIONS
        ]
        lines = self._filters(time_range) + [
            "| project",
            ",\n".join(projection),
            "| order by timestamp desc",
            f"| take {self.batch_size}",
        ]
        return normalize_query("\n".join(lines))

    def build_count_query(self, time_range: Optional[TimeRange]) -> str:
        """Same filters as build_log_query, returning only ``count_``."""
        time_range = self._validate(time_range)
        lines = self._filters(time_range) + ["| summarize count()"]
        return normalize_query("\n".join(lines))

    def build_reduced_time_range_query(
        self,
        time_range: Optional[TimeRange],
        reduction_factor: float = 2,
    ) -> str:
        """Query for ``[start, start + span / reduction_factor]``."""
        time_range = self._validate(time_range)
        return self.build_log_query(time_range.narrow(reduction_factor))


__all__ = [
    "DEFAULT_BATCH_SIZE",
    "DEFAULT_SEVERITY_LEVELS",
    "DEFAULT_SOURCE_TABLES",
    "MAX_BATCH_SIZE",
    "KqlQueryBuilder",
    "format_kql_datetime",
    "normalize_query",
]
