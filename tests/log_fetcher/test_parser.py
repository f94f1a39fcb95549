"""Tests for row to LogEntry parsing."""

import json
from datetime import UTC, datetime

import pytest

from core.errors.exceptions import ParseError
from log_fetcher.models import LogEntry
from log_fetcher.parser import (
    LogEntryParser,
    parse_message,
    parse_nested,
    parse_severity,
    parse_timestamp,
)

TS = datetime(2024, 1, 1, 12, tzinfo=UTC)


def _row(**overrides):
    row = {
        "timestamp": "2024-01-01T12:00:00Z",
        "severityLevel": 3,
        "message": "Payment failed",
        "itemType": "trace",
        "operation_Name": "POST /pay",
        "operation_Id": "op-1",
        "customDimensions": None,
        "customMeasurements": None,
    }
    row.update(overrides)
    return row


class TestParseTimestamp:

    def test_iso_string_with_z(self):
        assert parse_timestamp("2024-01-01T12:00:00Z") == TS

    def test_iso_string_with_offset(self):
        assert parse_timestamp("2024-01-01T14:00:00+02:00") == TS

    def test_datetime(self):
        assert parse_timestamp(datetime(2024, 1, 1, 12)) == TS

    def test_epoch_millis(self):
        assert parse_timestamp(1704110400000) == TS

    @pytest.mark.parametrize("value", [None, "", "not a date", True, float("nan"), 10**20, [1]])
    def test_invalid(self, value):
        with pytest.raises(ParseError):
            parse_timestamp(value)


class TestParseSeverity:

    @pytest.mark.parametrize(
        "value,expected",
        [
            (0, "Verbose"),
            (2, "Warning"),
            (4, "Critical"),
            (3.0, "Error"),
            (9, "Level9"),
            ("Error", "Error"),
            (" Custom ", " Custom "),
            ("", ""),
            (None, "Unknown"),
            (True, "Unknown"),
            (2.5, "Level2.5"),
            (-1, "Level-1"),
            (float("nan"), "Unknown"),
            (float("inf"), "Unknown"),
        ],
    )
    def test_mapping(self, value, expected):
        assert parse_severity(value) == expected


class TestParseMessage:

    def test_strips(self):
        assert parse_message("  boom \n") == "boom"

    def test_blank_kept(self):
        assert parse_message("   ") == "   "

    def test_non_string(self):
        assert parse_message(42) == "42"

    def test_missing(self):
        with pytest.raises(ParseError):
            parse_message(None)


class TestParseNested:

    def test_mapping(self):
        assert parse_nested({"a": 1}) == {"a": 1}

    def test_json_string(self):
        assert parse_nested('{"errorCode": "E42"}') == {"errorCode": "E42"}

    @pytest.mark.parametrize("value", ["{not json", "[1, 2]", 42, None])
    def test_unusable(self, value):
        assert parse_nested(value) is None


class TestParseRow:

    @pytest.fixture
    def parser(self):
        return LogEntryParser()

    def test_full_row(self, parser):
        entry = parser.parse_row(
            _row(
                customDimensions=json.dumps(
                    {"errorCode": "E42", "stackTrace": "at pay()", "sourceLocation": "pay.py:10"}
                ),
                customMeasurements={"latency": 12.5},
            )
        )

        assert entry.timestamp == TS
        assert entry.message == "Payment failed"
        assert entry.severity == "Error"
        assert entry.error_code == "E42"
        assert entry.stack_trace == "at pay()"
        assert entry.source_location == "pay.py:10"
        assert entry.metadata["item_type"] == "trace"
        assert entry.metadata["operation_name"] == "POST /pay"
        assert entry.metadata["operation_id"] == "op-1"
        assert entry.metadata["custom_dimensions"]["errorCode"] == "E42"
        assert entry.metadata["custom_measurements"] == {"latency": 12.5}
        assert entry.raw["operation_Id"] == "op-1"

    def test_column_wins_over_dimensions(self, parser):
        entry = parser.parse_row(_row(errorCode="COL", customDimensions={"errorCode": "DIM"}))
        assert entry.error_code == "COL"

    def test_blank_column_falls_back_to_dimensions(self, parser):
        entry = parser.parse_row(_row(errorCode="", customDimensions={"errorCode": "DIM"}))
        assert entry.error_code == "DIM"

    def test_malformed_dimensions(self, parser):
        entry = parser.parse_row(_row(customDimensions="{broken"))
        assert entry.metadata["custom_dimensions"] is None
        assert entry.error_code is None

    def test_missing_message(self, parser):
        row = _row(message=None)
        with pytest.raises(ParseError) as exc_info:
            parser.parse_row(row)
        assert exc_info.value.row is row

    def test_not_a_mapping(self, parser):
        with pytest.raises(ParseError):
            parser.parse_row(["2024-01-01", "msg"])


class TestParseRows:

    def test_isolates_bad_rows(self):
        rows = [
            _row(),
            _row(timestamp="garbage"),
            _row(message="second"),
            _row(message=None),
            "not a row",
        ]
        result = LogEntryParser().parse_rows(rows)

        assert result.total_count == 5
        assert result.failed_count == 3
        assert [e.message for e in result.entries] == ["Payment failed", "second"]
        assert len(result.errors) == 3
        assert result.errors[0].row is rows[1]

    def test_empty(self):
        result = LogEntryParser().parse_rows([])
        assert result.entries == []
        assert result.failed_count == 0


class TestSeverityHelpers:

    def test_get_severity_level(self):
        assert LogEntryParser.get_severity_level("Critical") == 4
        assert LogEntryParser.get_severity_level("Level9") == -1

    def test_is_error_or_critical(self):
        assert LogEntryParser.is_error_or_critical(LogEntry(TS, "x", severity="Error"))
        assert LogEntryParser.is_error_or_critical(LogEntry(TS, "x", severity="Critical"))
        assert not LogEntryParser.is_error_or_critical(LogEntry(TS, "x", severity="Warning"))

    def test_is_warning_or_higher(self):
        assert LogEntryParser.is_warning_or_higher(LogEntry(TS, "x", severity="Warning"))
        assert not LogEntryParser.is_warning_or_higher(LogEntry(TS, "x", severity="Information"))
        assert not LogEntryParser.is_warning_or_higher(LogEntry(TS, "x"))
