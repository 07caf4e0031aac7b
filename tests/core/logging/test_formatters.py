"""Tests for JSON and console log formatters."""

import json
import logging
import sys

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

    def test_includes_context(self):
        set_log_context(app_name="demo", namespace="apps", resource_class="secrets", cycle_id="c-1")
        output = json.loads(JSONFormatter().format(_make_record()))

        assert output["app_name"] == "demo"
        assert output["namespace"] == "apps"
        assert output["resource_class"] == "secrets"
        assert output["cycle_id"] == "c-1"

    def test_omits_empty_context(self):
        output = json.loads(JSONFormatter().format(_make_record()))
        assert "cycle_id" not in output
        assert "app_name" not in output

    def test_whitelisted_extra_fields(self):
        record = _make_record(source="ConfigMap/apps/demo", strategy="refresh", unknown_field="x")
        output = json.loads(JSONFormatter().format(record))

        assert output["source"] == "ConfigMap/apps/demo"
        assert output["strategy"] == "refresh"
        assert "unknown_field" not in output

    def test_numeric_fields_coerced(self):
        record = _make_record(property_count="12", duration_ms="3.5", port="8000")
        output = json.loads(JSONFormatter().format(record))

        assert output["property_count"] == 12
        assert output["duration_ms"] == 3.5
        assert output["port"] == 8000

    def test_unconvertible_numeric_becomes_null(self):
        output = json.loads(JSONFormatter().format(_make_record(attempt="many")))
        assert output["attempt"] is None

    def test_lists_serialized(self):
        record = _make_record(changed_keys=["a.b", "c"], prefixes=("a",))
        output = json.loads(JSONFormatter().format(record))

        assert output["changed_keys"] == ["a.b", "c"]
        assert output["prefixes"] == ["a"]

    def test_source_location_for_errors_only(self):
        info = json.loads(JSONFormatter().format(_make_record(level=logging.INFO)))
        error = json.loads(JSONFormatter().format(_make_record(level=logging.ERROR)))

        assert "file" not in info
        assert error["file"] == "test.py:42"

    def test_exception_included(self):
        try:
            raise ValueError("bad value")
        except ValueError:
            exc_info = sys.exc_info()

        output = json.loads(JSONFormatter().format(_make_record(exc_info=exc_info)))
        assert output["exception"]["type"] == "ValueError"
        assert output["exception"]["message"] == "bad value"
        assert "Traceback" in output["exception"]["stacktrace"]


class TestConsoleFormatter:
    def test_includes_level_and_message(self):
        output = ConsoleFormatter().format(_make_record())
        assert "INFO" in output
        assert "test message" in output

    def test_includes_context_prefix(self):
        set_log_context(app_name="demo", resource_class="config_maps")
        output = ConsoleFormatter().format(_make_record())

        assert "[demo]" in output
        assert "[config_maps]" in output

    def test_appends_traceback(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            exc_info = sys.exc_info()

        output = ConsoleFormatter().format(_make_record(exc_info=exc_info))
        assert "RuntimeError: boom" in output
