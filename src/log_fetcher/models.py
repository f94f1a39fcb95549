"""
Data models for the log retrieval pipeline.

All instants are timezone-aware UTC datetimes. Naive datetimes handed to
TimeRange are treated as UTC.
"""

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta
from enum import IntEnum
from typing import Any, Optional

from core.errors.exceptions import ConfigurationError, InvalidTimeRangeError, ParseError

MAX_TIME_RANGE = timedelta(days=30)
UNKNOWN_SEVERITY = "Unknown"


class Severity(IntEnum):
    """Application Insights severity scale."""

    VERBOSE = 0
    INFORMATION = 1
    WARNING = 2
    ERROR = 3
    CRITICAL = 4

    @property
    def label(self) -> str:
        """Display name as stored by Application Insights, e.g. ``Warning``."""
        return self.name.capitalize()

    @classmethod
    def from_name(cls, name: str) -> "Severity":
        try:
            return cls[str(name).strip().upper()]
        except KeyError:
            valid = ", ".join(s.label for s in cls)
            raise ConfigurationError(
                f"Unknown severity level '{name}', expected one of: {valid}"
            ) from None

    @classmethod
    def label_for(cls, level: int) -> str:
        """Name for an ordinal, ``Level{N}`` outside the fixed scale."""
        try:
            return cls(level).label
        except ValueError:
            return f"Level{level}"


def severity_level(name: Optional[str]) -> int:
    """Ordinal for a severity name, -1 when unknown."""
    if not isinstance(name, str):
        return -1
    try:
        return Severity[name.strip().upper()].value
    except KeyError:
        return -1


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


@dataclass(frozen=True)
class TimeRange:
    """
    Inclusive query window.

    Construction does not validate; call validate() (the query builder does)
    to enforce start < end and a span of at most 30 days.
    """

    start_time: datetime
    end_time: datetime

    def __post_init__(self):
        if isinstance(self.start_time, datetime):
            object.__setattr__(self, "start_time", ensure_utc(self.start_time))
        if isinstance(self.end_time, datetime):
            object.__setattr__(self, "end_time", ensure_utc(self.end_time))

    @classmethod
    def last(cls, minutes: int, now: Optional[datetime] = None) -> "TimeRange":
        """Window ending at ``now`` (default: current time) spanning ``minutes``."""
        end = ensure_utc(now) if now is not None else datetime.now(UTC)
        return cls(start_time=end - timedelta(minutes=minutes), end_time=end)

    @property
    def duration(self) -> timedelta:
        return self.end_time - self.start_time

    def validate(self) -> "TimeRange":
        if not isinstance(self.start_time, datetime) or not isinstance(self.end_time, datetime):
            raise InvalidTimeRangeError(
                "Time range requires start_time and end_time datetimes",
                context={"start_time": repr(self.start_time), "end_time": repr(self.end_time)},
            )
        if self.start_time >= self.end_time:
            raise InvalidTimeRangeError(
                f"start_time {self.start_time.isoformat()} must be before "
                f"end_time {self.end_time.isoformat()}"
            )
        if self.duration > MAX_TIME_RANGE:
            raise InvalidTimeRangeError(
                f"Time range spans {self.duration}, maximum is {MAX_TIME_RANGE.days} days"
            )
        return self

    def narrow(self, factor: float = 2) -> "TimeRange":
        """Keep the start, shrink the span to ``duration / factor``."""
        if factor < 1:
            raise ValueError(f"reduction factor must be >= 1, got {factor}")
        return replace(self, end_time=self.start_time + self.duration / factor)

    def __str__(self) -> str:
        return f"[{self.start_time.isoformat()}, {self.end_time.isoformat()}]"


@dataclass(frozen=True)
class LogEntry:
    """One parsed log record. ``raw`` keeps the source row for auditing."""

    timestamp: datetime
    message: str
    severity: str = UNKNOWN_SEVERITY
    error_code: Optional[str] = None
    stack_trace: Optional[str] = None
    source_location: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def severity_level(self) -> int:
        return severity_level(self.severity)


@dataclass
class QueryResult:
    """
    Outcome of one fetch.

    ``has_more`` is a batch-fullness heuristic (entries >= batch size); the
    service offers no continuation token, so ``continuation_token`` is
    always None.

    ``request_id`` is the fetch id generated for the call and bound to the
    log context as ``fetch_id``. The async LogsQueryResult carries no
    service request id, so this is the key for correlating a result with
    its log lines.
    """

    entries: list[LogEntry] = field(default_factory=list)
    total_count: int = 0
    has_more: bool = False
    duration_ms: float = 0.0
    request_id: Optional[str] = None
    continuation_token: Optional[str] = None
    failed_count: int = 0
    time_range: Optional[TimeRange] = None


@dataclass(frozen=True)
class ParseFailure:
    row: Any
    error: ParseError


@dataclass
class ParseResult:
    entries: list[LogEntry] = field(default_factory=list)
    failed_count: int = 0
    total_count: int = 0
    errors: list[ParseFailure] = field(default_factory=list)


__all__ = [
    "MAX_TIME_RANGE",
    "UNKNOWN_SEVERITY",
    "Severity",
    "severity_level",
    "ensure_utc",
    "TimeRange",
    "LogEntry",
    "QueryResult",
    "ParseFailure",
    "ParseResult",
]
