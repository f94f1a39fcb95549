"""Tests for logging context variables and context managers."""

import asyncio
import logging
from unittest.mock import MagicMock

import pytest

from core.errors.exceptions import TransientNetworkError
from core.logging.context import (
    clear_log_context,
    get_log_context,
    reset_log_context,
    set_log_context,
)
from core.logging.context_managers import LogContext, OperationContext


@pytest.fixture
def logger():
    """Create a mock logger for testing."""
    return MagicMock(spec=logging.Logger)


class TestContextVars:

    def test_defaults_empty(self):
        assert get_log_context() == {
            "cycle_id": "",
            "stage": "",
            "workspace_id": "",
            "fetch_id": "",
        }

    def test_set_only_given_fields(self):
        set_log_context(stage="fetch")
        set_log_context(fetch_id="abc")
        ctx = get_log_context()
        assert ctx["stage"] == "fetch"
        assert ctx["fetch_id"] == "abc"

    def test_unknown_field_rejected(self):
        with pytest.raises(TypeError):
            set_log_context(domain="claims")

    def test_reset_restores_previous_value(self):
        set_log_context(stage="outer")
        tokens = set_log_context(stage="inner")
        reset_log_context(tokens)
        assert get_log_context()["stage"] == "outer"

    def test_clear(self):
        set_log_context(cycle_id="c-1", workspace_id="ws")
        clear_log_context()
        assert get_log_context()["cycle_id"] == ""

    @pytest.mark.asyncio
    async def test_isolated_between_tasks(self):
        async def worker(fetch_id):
            set_log_context(fetch_id=fetch_id)
            await asyncio.sleep(0)
            return get_log_context()["fetch_id"]

        results = await asyncio.gather(worker("a"), worker("b"))
        assert results == ["a", "b"]


class TestLogContext:

    def test_sets_context_on_enter(self):
        with LogContext(stage="fetch", fetch_id="f-1"):
            ctx = get_log_context()
            assert ctx["stage"] == "fetch"
            assert ctx["fetch_id"] == "f-1"

    def test_restores_context_on_exit(self):
        set_log_context(stage="outer", fetch_id="f-0")
        with LogContext(stage="inner", fetch_id="f-1"):
            pass
        ctx = get_log_context()
        assert ctx["stage"] == "outer"
        assert ctx["fetch_id"] == "f-0"

    def test_restores_on_exception(self):
        with pytest.raises(ValueError):
            with LogContext(workspace_id="ws"):
                raise ValueError("boom")
        assert get_log_context()["workspace_id"] == ""

    def test_nested_contexts(self):
        with LogContext(stage="fetch", fetch_id="outer"):
            with LogContext(fetch_id="inner"):
                assert get_log_context()["fetch_id"] == "inner"
                assert get_log_context()["stage"] == "fetch"
            assert get_log_context()["fetch_id"] == "outer"
        assert get_log_context()["fetch_id"] == ""


class TestOperationContext:

    def test_logs_completion(self, logger):
        with OperationContext(logger, "count_logs", level=logging.INFO) as op:
            op.add_context(log_count=5)

        level, msg = logger.log.call_args.args[:2]
        extra = logger.log.call_args.kwargs["extra"]
        assert level == logging.INFO
        assert msg == "Completed: count_logs"
        assert extra["log_count"] == 5
        assert extra["operation"] == "count_logs"
        assert op.duration_ms is not None

    def test_logs_failure_without_traceback(self, logger):
        with pytest.raises(TransientNetworkError):
            with OperationContext(logger, "fetch_logs"):
                raise TransientNetworkError("connection reset")

        level, msg = logger.log.call_args.args[:2]
        extra = logger.log.call_args.kwargs["extra"]
        assert level == logging.ERROR
        assert msg == "Failed: fetch_logs"
        assert extra["error_category"] == "transient"
        assert extra["error_type"] == "TransientNetworkError"
        assert logger.log.call_args.kwargs["exc_info"] is None

    def test_string_level(self, logger):
        assert OperationContext(logger, "op", level="warning").level == logging.WARNING
