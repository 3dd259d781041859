"""Tests for the structured and human log formatters and trace context."""

import json
import logging
import sys

import pytest

from kiln.observability import (
    HumanReadableFormatter,
    StructuredFormatter,
    clear_trace_context,
    configure_logging,
    get_trace_context,
    set_trace_context,
)


def make_record(message: str = "Resolved node 'greeting'", level: int = logging.INFO, **extra):
    record = logging.LogRecord(
        name="kiln.runtime.resolver",
        level=level,
        pathname=__file__,
        lineno=1,
        msg=message,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestTraceContext:
    def test_set_merges_fields(self):
        set_trace_context(context_id="abc")
        set_trace_context(request_id="r-1")

        assert get_trace_context() == {"context_id": "abc", "request_id": "r-1"}

    def test_get_returns_copy(self):
        set_trace_context(context_id="abc")
        get_trace_context()["context_id"] = "changed"

        assert get_trace_context()["context_id"] == "abc"

    def test_clear(self):
        set_trace_context(context_id="abc")
        clear_trace_context()

        assert get_trace_context() == {}


class TestStructuredFormatter:
    def test_json_line_with_context_and_extras(self):
        set_trace_context(context_id="kiln-1")
        record = make_record(event="node_resolved", node_id="greeting", latency_ms=3)

        entry = json.loads(StructuredFormatter().format(record))

        assert entry["level"] == "info"
        assert entry["logger"] == "kiln.runtime.resolver"
        assert entry["message"] == "Resolved node 'greeting'"
        assert entry["context_id"] == "kiln-1"
        assert entry["event"] == "node_resolved"
        assert entry["node_id"] == "greeting"
        assert entry["latency_ms"] == 3
        assert "timestamp" in entry

    def test_missing_extras_omitted(self):
        entry = json.loads(StructuredFormatter().format(make_record()))

        assert "event" not in entry
        assert "node_id" not in entry
        assert "context_id" not in entry

    def test_ansi_codes_stripped(self):
        entry = json.loads(StructuredFormatter().format(make_record("\x1b[31mred\x1b[0m")))

        assert entry["message"] == "red"

    def test_exception_included(self):
        try:
            raise ValueError("bad")
        except ValueError:
            record = make_record(level=logging.ERROR)
            record.exc_info = sys.exc_info()

        entry = json.loads(StructuredFormatter().format(record))

        assert "ValueError: bad" in entry["exception"]


class TestHumanReadableFormatter:
    def test_prefix_with_kiln_and_node(self):
        set_trace_context(context_id="0123456789abcdef")
        record = make_record(node_id="greeting", event="node_resolved")

        line = HumanReadableFormatter().format(record)

        assert "[kiln:01234567 | node:greeting]" in line
        assert "Resolved node 'greeting'" in line
        assert line.endswith("[node_resolved]")

    def test_no_prefix_without_context(self):
        line = HumanReadableFormatter().format(make_record())

        assert "[kiln:" not in line
        assert "Resolved node 'greeting'" in line


class TestConfigureLogging:
    def test_json_format(self, restore_root_logger):
        configure_logging(level="debug", format="json")

        assert restore_root_logger.level == logging.DEBUG
        assert len(restore_root_logger.handlers) == 1
        assert isinstance(restore_root_logger.handlers[0].formatter, StructuredFormatter)

    def test_defaults_from_environment(self, restore_root_logger, monkeypatch):
        monkeypatch.setenv("KILN_LOG_LEVEL", "warning")
        monkeypatch.setenv("KILN_LOG_FORMAT", "human")

        configure_logging()

        assert restore_root_logger.level == logging.WARNING
        assert isinstance(restore_root_logger.handlers[0].formatter, HumanReadableFormatter)

    @pytest.mark.parametrize(
        "env, expected",
        [
            ({"ENV": "production"}, StructuredFormatter),
            ({"LOG_FORMAT": "json"}, StructuredFormatter),
            ({"ENV": "development"}, HumanReadableFormatter),
        ],
    )
    def test_auto_format(self, restore_root_logger, monkeypatch, env, expected):
        monkeypatch.delenv("ENV", raising=False)
        monkeypatch.delenv("LOG_FORMAT", raising=False)
        for key, value in env.items():
            monkeypatch.setenv(key, value)

        configure_logging(level="INFO", format="auto")

        assert isinstance(restore_root_logger.handlers[0].formatter, expected)
