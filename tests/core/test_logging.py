"""Tests for structured logging module."""

from __future__ import annotations

import json
import logging

import pytest
import structlog

from google_calendar_mcp.core.logging import (
    _NOISE_LOGGERS,
    _tool_context,
    add_tool_context,
    configure_logging,
    get_tool_context,
    tool_context,
)

pytestmark = pytest.mark.unit


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_logging():
    """Reset logging and tool context between tests."""
    token = _tool_context.set(None)
    yield
    _tool_context.reset(token)
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(logging.WARNING)
    for name in _NOISE_LOGGERS:
        logging.getLogger(name).setLevel(logging.NOTSET)


# ---------------------------------------------------------------------------
# ContextVar accessors
# ---------------------------------------------------------------------------


class TestToolContext:
    def test_set_within_block(self):
        with tool_context("list_events"):
            assert get_tool_context() == "list_events"
        assert get_tool_context() is None

    def test_nested_blocks_restore_outer(self):
        with tool_context("outer"):
            with tool_context("inner"):
                assert get_tool_context() == "inner"
            assert get_tool_context() == "outer"

    def test_reset_on_exception(self):
        with pytest.raises(RuntimeError):
            with tool_context("get_event"):
                raise RuntimeError("boom")
        assert get_tool_context() is None


class TestAddToolContext:
    def test_injects_tool_name(self):
        with tool_context("get_freebusy"):
            result = add_tool_context(None, "info", {"event": "test"})
        assert result["tool"] == "get_freebusy"

    def test_unset_context_adds_nothing(self):
        result = add_tool_context(None, "info", {"event": "test"})
        assert "tool" not in result


# ---------------------------------------------------------------------------
# configure_logging()
# ---------------------------------------------------------------------------


class TestConfigureLogging:
    def test_text_format_installs_console_renderer(self):
        configure_logging(fmt="text")
        handler = logging.getLogger().handlers[0]
        formatter = handler.formatter
        assert isinstance(formatter, structlog.stdlib.ProcessorFormatter)
        assert isinstance(formatter.processors[-1], structlog.dev.ConsoleRenderer)

    def test_json_format_installs_json_renderer(self):
        configure_logging(fmt="json")
        formatter = logging.getLogger().handlers[0].formatter
        assert isinstance(formatter.processors[-1], structlog.processors.JSONRenderer)

    def test_reconfiguring_does_not_duplicate_handlers(self):
        configure_logging()
        configure_logging()
        assert len(logging.getLogger().handlers) == 1

    def test_level_is_applied(self):
        configure_logging(level="debug")
        assert logging.getLogger().level == logging.DEBUG

    def test_unknown_level_falls_back_to_info(self):
        configure_logging(level="chatty")
        assert logging.getLogger().level == logging.INFO

    def test_noise_loggers_are_quieted(self):
        configure_logging(level="DEBUG")
        for name in _NOISE_LOGGERS:
            assert logging.getLogger(name).level == logging.WARNING

    def test_json_lines_go_to_stderr_with_tool(self, capsys):
        configure_logging(fmt="json")

        with tool_context("update_recurring_event"):
            logging.getLogger("google_calendar_mcp.scopes").warning("split %s", "partial")

        captured = capsys.readouterr()
        assert captured.out == ""
        record = json.loads(captured.err.strip().splitlines()[-1])
        assert record["event"] == "split partial"
        assert record["level"] == "warning"
        assert record["logger"] == "google_calendar_mcp.scopes"
        assert record["tool"] == "update_recurring_event"
        assert "timestamp" in record
