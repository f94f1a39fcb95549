"""Tests for JSON and console log formatters."""

import json
import logging
from datetime import UTC, datetime

from core.logging.context import set_log_context
from core.logging.formatters import ConsoleFormatter, JSONFormatter


def _make_record(
    msg="test message",
    level=logging.INFO,
    name="test.logger",
    exc_info=None,
    **extras,
):
    record = logging.LogRecord(
        name=name,
        level=level,
        pathname="test.py",
        lineno=42,
        msg=msg,
        args=(),
        exc_info=exc_info,
    )
    for key, value in extras.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:

    def test_formats_basic_json_with_required_fields(self):
        output = json.loads(JSONFormatter().format(_make_record()))

        assert output["level"] == "INFO"
        assert output["logger"] == "test.logger"
        assert output["message"] == "test message"
        assert output["ts"].endswith("Z")

    def test_includes_log_context(self):
        set_log_context(stage="fetch", workspace_id="ws-1", fetch_id="f-123")
        output = json.loads(JSONFormatter().format(_make_record()))

        assert output["stage"] == "fetch"
        assert output["workspace_id"] == "ws-1"
        assert output["fetch_id"] == "f-123"

    def test_omits_empty_context(self):
        output = json.loads(JSONFormatter().format(_make_record()))
        assert "fetch_id" not in output
        assert "stage" not in output

    def test_includes_whitelisted_extras(self):
        record = _make_record(
            operation="run_query",
            attempt=2,
            delay_source="server",
            circuit_state="open",
            not_whitelisted="dropped",
        )
        output = json.loads(JSONFormatter().format(record))

        assert output["operation"] == "run_query"
        assert output["attempt"] == 2
        assert output["delay_source"] == "server"
        assert output["circuit_state"] == "open"
        assert "not_whitelisted" not in output

    def test_coerces_numeric_fields(self):
        record = _make_record(duration_ms="12.5", entries_count="7", rows_failed="oops")
        output = json.loads(JSONFormatter().format(record))

        assert output["duration_ms"] == 12.5
        assert output["entries_count"] == 7
        assert output["rows_failed"] is None

    def test_serializes_datetime_extras(self):
        record = _make_record(window_start=datetime(2024, 1, 1, tzinfo=UTC))
        output = json.loads(JSONFormatter().format(record))
        assert output["window_start"] == "2024-01-01T00:00:00+00:00"

    def test_source_location_for_errors_only(self):
        assert "file" in json.loads(JSONFormatter().format(_make_record(level=logging.ERROR)))
        assert "file" not in json.loads(JSONFormatter().format(_make_record()))

    def test_includes_exception(self):
        try:
            raise ValueError("bad row")
        except ValueError:
            import sys

            record = _make_record(level=logging.ERROR, exc_info=sys.exc_info())

        output = json.loads(JSONFormatter().format(record))
        assert output["exception"]["type"] == "ValueError"
        assert output["exception"]["message"] == "bad row"
        assert "Traceback" in output["exception"]["stacktrace"]


class TestConsoleFormatter:

    def _formatter(self):
        formatter = ConsoleFormatter()
        formatter._use_colors = False
        return formatter

    def test_plain_message(self):
        output = self._formatter().format(_make_record())
        assert output.endswith(" - INFO - test message")

    def test_stage_prefix(self):
        set_log_context(stage="fetch")
        assert "[fetch]" in self._formatter().format(_make_record())

    def test_fetch_and_circuit_tags(self):
        set_log_context(fetch_id="abcdef123456")
        output = self._formatter().format(_make_record(circuit_state="open"))
        assert "[fetch:abcdef12]" in output
        assert "[circuit:open]" in output

    def test_colors_when_enabled(self):
        formatter = ConsoleFormatter()
        formatter._use_colors = True
        output = formatter.format(_make_record(level=logging.WARNING))
        assert "\033[33mWARNING\033[0m" in output
