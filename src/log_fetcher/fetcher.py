"""
Fetch orchestrator for Log Analytics.

Composes the credential provider, query builder, circuit breaker, retry
executor and parser into fetch_logs():

    circuit_breaker.execute(
        retry_executor.execute_with_retry(run_query(window))
    )

When the attempt fails with a timeout the window is halved and the whole
stack is tried again, up to max_timeout_narrowings times and never below
min_window_seconds. An auth failure (401, expired token) drops the cached
credential and retries once with a fresh one.

Example:
    config = LogFetcherConfig.load_config()
    async with LogFetcher(config) as fetcher:
        result = await fetcher.fetch_logs()
        for entry in result.entries:
            ...
"""

import logging
import secrets
import time
from collections.abc import Callable, Iterable
from datetime import timedelta
from functools import partial
from typing import Any, Optional

from azure.monitor.query import LogsQueryStatus
from azure.monitor.query.aio import LogsQueryClient

from core.auth.credentials import LogAnalyticsCredentialProvider
from core.errors.classifiers import is_timeout_error
from core.errors.exceptions import (
    CircuitOpenError,
    ConfigurationError,
    NotInitializedError,
    QueryExecutionError,
    is_auth_error,
)
from core.logging.context_managers import LogContext, OperationContext
from core.resilience.circuit_breaker import CircuitBreaker, CircuitStats
from core.resilience.retry import RetryExecutor
from log_fetcher.config import LogFetcherConfig
from log_fetcher.models import ParseResult, QueryResult, TimeRange
from log_fetcher.parser import LogEntryParser
from log_fetcher.query_builder import KqlQueryBuilder

logger = logging.getLogger(__name__)

NARROWING_FACTOR = 2


def rows_from_tables(tables: Optional[Iterable[Any]]) -> list[dict[str, Any]]:
    """
    Zip each table row with its column names.

    Columns without a usable name are keyed ``column{i}``.
    """
    rows: list[dict[str, Any]] = []
    for table in tables or []:
        names = []
        for i, column in enumerate(getattr(table, "columns", None) or []):
            name = column if isinstance(column, str) else getattr(column, "name", None)
            names.append(name or f"column{i}")
        for row in getattr(table, "rows", None) or []:
            values = list(row)
            rows.append(
                {
                    (names[i] if i < len(names) else f"column{i}"): value
                    for i, value in enumerate(values)
                }
            )
    return rows


class LogFetcher:
    """
    Resilient log retrieval against one Log Analytics workspace.

    Components can be injected for testing; anything not supplied is built
    from the config. One instance is meant to serve one caller at a time.
    """

    def __init__(
        self,
        config: LogFetcherConfig,
        *,
        credential_provider: Optional[LogAnalyticsCredentialProvider] = None,
        query_builder: Optional[KqlQueryBuilder] = None,
        retry_executor: Optional[RetryExecutor] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        parser: Optional[LogEntryParser] = None,
        client_factory: Optional[Callable[[Any], Any]] = None,
    ):
        if config is None:
            raise ConfigurationError("LogFetcher requires a configuration")
        self.config = config.validate()

        self.credential_provider = credential_provider or LogAnalyticsCredentialProvider(
            config.workspace_id,
            max_attempts=config.auth_max_attempts,
        )
        self.query_builder = query_builder or KqlQueryBuilder(
            batch_size=config.batch_size,
            severity_levels=config.severity_levels,
            source_tables=config.source_tables,
        )
        self.retry_executor = retry_executor or RetryExecutor(config.retry)
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            f"log_analytics:{config.workspace_id}",
            config.circuit_breaker,
        )
        self.parser = parser or LogEntryParser()
        self._client_factory = client_factory or LogsQueryClient
        self._client = None

    async def __aenter__(self) -> "LogFetcher":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @property
    def is_initialized(self) -> bool:
        return self._client is not None

    async def initialize(self) -> None:
        """Authenticate and create the query client. Safe to call twice."""
        if self._client is not None:
            return

        credential = await self.credential_provider.authenticate()
        self._client = self._client_factory(credential)
        logger.info(
            "Log fetcher initialized",
            extra={
                "operation": "initialize",
                "workspace_id": self.config.workspace_id,
                "batch_size": self.config.batch_size,
            },
        )

    async def _close_client(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            try:
                await client.close()
            except Exception as e:
                logger.warning("Error closing Log Analytics client: %s", str(e)[:100])

    async def close(self) -> None:
        """Close the query client and the credential."""
        await self._close_client()
        await self.credential_provider.close()
        logger.debug("Log fetcher closed")

    def _ensure_initialized(self) -> None:
        if self._client is None:
            raise NotInitializedError(
                "LogFetcher.initialize() must be called before fetching logs"
            )

    async def _refresh_credentials(self, error: Exception) -> None:
        """Drop the client and cached credential, then authenticate again."""
        logger.info(
            "Auth error detected, refreshing credentials",
            extra={
                "operation": "fetch_logs",
                "error_type": type(error).__name__,
                "error_message": str(error)[:200],
            },
        )
        await self._close_client()
        await self.credential_provider.close()
        self.credential_provider.reset()
        await self.initialize()

    def _resolve_window(self, time_range: Optional[TimeRange]) -> TimeRange:
        window = time_range or TimeRange.last(self.config.lookback_minutes)
        return window.validate()

    def _can_narrow(self, error: Exception, window: TimeRange, narrowings: int) -> bool:
        if isinstance(error, CircuitOpenError) or not is_timeout_error(error):
            return False
        if narrowings >= self.config.max_timeout_narrowings:
            logger.warning(
                "Query timed out, narrowing limit reached",
                extra={
                    "operation": "fetch_logs",
                    "narrowing": narrowings,
                    "window_seconds": window.duration.total_seconds(),
                },
            )
            return False
        narrowed = window.duration / NARROWING_FACTOR
        if narrowed < timedelta(seconds=self.config.min_window_seconds):
            logger.warning(
                "Query timed out, window already at minimum size",
                extra={
                    "operation": "fetch_logs",
                    "narrowing": narrowings,
                    "window_seconds": window.duration.total_seconds(),
                },
            )
            return False
        return True

    async def _execute(self, operation: Callable, operation_name: str):
        return await self.circuit_breaker.execute(
            lambda: self.retry_executor.execute_with_retry(
                operation, operation_name=operation_name
            )
        )

    async def fetch_logs(self, time_range: Optional[TimeRange] = None) -> QueryResult:
        """
        Fetch log entries for ``time_range`` (default: the configured lookback).

        Raises:
            NotInitializedError: initialize() has not been called
            InvalidTimeRangeError: window is inverted or wider than 30 days
            CircuitOpenError: circuit is open, nothing was attempted
            RetryExhaustedError: retryable failures outlasted the retry budget
            QueryExecutionError: service reported a failed or partial query
            AuthenticationError: re-authentication after an auth failure failed
        """
        self._ensure_initialized()
        window = self._resolve_window(time_range)
        fetch_id = secrets.token_hex(6)
        started = time.perf_counter()

        with LogContext(stage="fetch", workspace_id=self.config.workspace_id, fetch_id=fetch_id):
            with OperationContext(logger, "fetch_logs", level=logging.INFO) as op:
                narrowings = 0
                auth_refreshed = False
                while True:
                    try:
                        result = await self._execute(
                            partial(self._run_query, window), "run_query"
                        )
                        break
                    except Exception as e:
                        if not auth_refreshed and is_auth_error(e):
                            auth_refreshed = True
                            await self._refresh_credentials(e)
                            continue
                        if not self._can_narrow(e, window, narrowings):
                            raise
                        narrowed = window.narrow(NARROWING_FACTOR)
                        narrowings += 1
                        logger.warning(
                            "Query timed out, retrying with narrower time window",
                            extra={
                                "operation": "fetch_logs",
                                "narrowing": narrowings,
                                "window_start": narrowed.start_time.isoformat(),
                                "window_end": narrowed.end_time.isoformat(),
                                "window_seconds": narrowed.duration.total_seconds(),
                            },
                        )
                        window = narrowed

                result.duration_ms = round((time.perf_counter() - started) * 1000, 2)
                result.request_id = fetch_id
                op.add_context(
                    entries_count=len(result.entries),
                    rows_failed=result.failed_count,
                    has_more=result.has_more,
                    narrowing=narrowings,
                    window_start=window.start_time.isoformat(),
                    window_end=window.end_time.isoformat(),
                )
        return result

    def _build_result(self, parsed: ParseResult, window: TimeRange, started: float) -> QueryResult:
        return QueryResult(
            entries=parsed.entries,
            total_count=len(parsed.entries),
            has_more=len(parsed.entries) >= self.config.batch_size,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
            failed_count=parsed.failed_count,
            time_range=window,
        )

    async def _query(self, query: str, window: TimeRange):
        self._ensure_initialized()
        logger.debug(
            "Executing Log Analytics query",
            extra={
                "operation": "query_workspace",
                "query_length": len(query),
                "window_start": window.start_time.isoformat(),
                "window_end": window.end_time.isoformat(),
            },
        )
        return await self._client.query_workspace(
            self.config.workspace_id,
            query,
            timespan=(window.start_time, window.end_time),
            server_timeout=self.config.query_timeout_seconds,
        )

    async def _run_query(self, window: TimeRange) -> QueryResult:
        """
        Run one log query and parse the rows.

        A partial response is still parsed; the parsed rows ride along on the
        raised QueryExecutionError as ``partial_result``.
        """
        query = self.query_builder.build_log_query(window)
        started = time.perf_counter()
        response = await self._query(query, window)
        status = getattr(response, "status", None)

        if status == LogsQueryStatus.SUCCESS:
            parsed = self.parser.parse_rows(rows_from_tables(response.tables))
            return self._build_result(parsed, window, started)

        if status == LogsQueryStatus.PARTIAL:
            parsed = self.parser.parse_rows(rows_from_tables(response.partial_data))
            partial_error = getattr(response, "partial_error", None)
            detail = getattr(partial_error, "message", None) or "unknown error"
            raise QueryExecutionError(
                f"Query returned partial results: {detail}",
                partial_result=self._build_result(parsed, window, started),
                context={
                    "status": str(status),
                    "error_code": getattr(partial_error, "code", None),
                    "entries_count": len(parsed.entries),
                },
            )

        raise QueryExecutionError("Query failed", context={"status": str(status)})

    async def count_logs(self, time_range: Optional[TimeRange] = None) -> int:
        """Count matching entries without fetching them."""
        self._ensure_initialized()
        window = self._resolve_window(time_range)
        query = self.query_builder.build_count_query(window)

        async def run_count() -> int:
            response = await self._query(query, window)
            if getattr(response, "status", None) != LogsQueryStatus.SUCCESS:
                raise QueryExecutionError(
                    "Count query failed",
                    context={"status": str(getattr(response, "status", None))},
                )
            rows = rows_from_tables(response.tables)
            if not rows:
                return 0
            return int(next(iter(rows[0].values())) or 0)

        count = await self._execute(run_count, "count_logs")
        logger.debug(
            "Counted log entries",
            extra={"operation": "count_logs", "log_count": count},
        )
        return count

    def get_circuit_breaker_stats(self) -> CircuitStats:
        return self.circuit_breaker.get_stats()

    def get_consecutive_rate_limits(self) -> int:
        return self.retry_executor.consecutive_rate_limits

    def is_authenticated(self) -> bool:
        return self.credential_provider.is_authenticated()


__all__ = ["LogFetcher", "rows_from_tables"]
