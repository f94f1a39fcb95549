"""
Log fetcher: resilient retrieval of error and warning logs from Azure Monitor
Log Analytics.

Components:
    - LogFetcher: orchestrates auth, circuit breaker, retry and parsing
    - LogFetcherConfig: YAML + environment configuration
    - KqlQueryBuilder: time-bounded, severity-filtered KQL
    - LogEntryParser: row to LogEntry conversion with per-row failure isolation
"""

from log_fetcher.config import LogFetcherConfig
from log_fetcher.fetcher import LogFetcher
from log_fetcher.models import (
    LogEntry,
    ParseResult,
    QueryResult,
    Severity,
    TimeRange,
)
from log_fetcher.parser import LogEntryParser
from log_fetcher.query_builder import KqlQueryBuilder

__all__ = [
    "LogFetcher",
    "LogFetcherConfig",
    "KqlQueryBuilder",
    "LogEntryParser",
    "LogEntry",
    "ParseResult",
    "QueryResult",
    "Severity",
    "TimeRange",
]
