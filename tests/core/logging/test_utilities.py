"""Tests for logging utility functions."""

import logging
from unittest.mock import MagicMock

import pytest

from core.errors.exceptions import RateLimitError
from core.logging.utilities import error_fields, log_exception, log_with_context


@pytest.fixture
def logger():
    return MagicMock(spec=logging.Logger)


class TestLogWithContext:

    def test_passes_extra(self, logger):
        log_with_context(logger, logging.INFO, "done", entries_count=3)
        logger.log.assert_called_once_with(
            logging.INFO, "done", exc_info=None, extra={"entries_count": 3}
        )

    def test_filters_reserved_keys(self, logger):
        log_with_context(logger, logging.INFO, "done", message="clash", module="clash", ok=1)
        assert logger.log.call_args.kwargs["extra"] == {"ok": 1}

    def test_exc_info_not_in_extra(self, logger):
        log_with_context(logger, logging.ERROR, "failed", exc_info=True)
        assert logger.log.call_args.kwargs["exc_info"] is True
        assert "exc_info" not in logger.log.call_args.kwargs["extra"]


class TestLogException:

    def test_extracts_category(self, logger):
        log_exception(logger, RateLimitError("throttled"), "Query throttled")
        extra = logger.log.call_args.kwargs["extra"]
        assert extra["error_category"] == "transient"
        assert extra["error_type"] == "RateLimitError"
        assert extra["error_message"] == "throttled"

    def test_truncates_long_messages(self, logger):
        log_exception(logger, ValueError("x" * 600), "failed")
        message = logger.log.call_args.kwargs["extra"]["error_message"]
        assert len(message) == 503
        assert message.endswith("...")

    def test_includes_traceback_by_default(self, logger):
        err = ValueError("boom")
        log_exception(logger, err, "failed")
        assert logger.log.call_args.kwargs["exc_info"] is err

    def test_without_traceback(self, logger):
        log_exception(logger, ValueError("boom"), "failed", include_traceback=False)
        assert logger.log.call_args.kwargs["exc_info"] is None

    def test_custom_level(self, logger):
        log_exception(logger, ValueError("boom"), "failed", level=logging.WARNING)
        assert logger.log.call_args.args[0] == logging.WARNING


class TestErrorFields:

    def test_plain_exception(self):
        assert error_fields(ValueError("bad")) == {
            "error_type": "ValueError",
            "error_message": "bad",
        }

    def test_pipeline_error_context(self):
        err = RateLimitError(
            "throttled",
            retry_after_ms=1500,
            context={"status_code": 429, "retry_after_ms": 1500, "details": {"nested": 1}},
        )
        fields = error_fields(err)
        assert fields["error_category"] == "transient"
        assert fields["status_code"] == 429
        assert fields["retry_after_ms"] == 1500
        assert "details" not in fields

    def test_explicit_fields_win(self, logger):
        err = RateLimitError("throttled", context={"status_code": 429})
        log_exception(logger, err, "throttled", status_code=503, include_traceback=False)
        assert logger.log.call_args.kwargs["extra"]["status_code"] == 503
