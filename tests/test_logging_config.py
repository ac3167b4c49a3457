# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for refsnap.logging_config — structlog + stdlib bridge."""

from __future__ import annotations

import json
import logging
import sys

import pytest
import structlog

from refsnap.logging_config import bind_tool_call, configure


@pytest.fixture(autouse=True)
def _reset_logging():
    """Ensure clean logging state before/after each test."""
    root = logging.getLogger()
    old_handlers = root.handlers[:]
    old_level = root.level
    yield
    root.handlers = old_handlers
    root.setLevel(old_level)
    structlog.contextvars.clear_contextvars()
    structlog.reset_defaults()


class TestConsoleRenderer:
    def test_single_stderr_handler(self):
        configure(json_output=False)
        root = logging.getLogger()
        assert len(root.handlers) == 1
        assert root.handlers[0].stream is sys.stderr

    def test_output_is_human_readable(self, capsys):
        configure(json_output=False)
        logging.getLogger("test.console").warning("hello world")
        captured = capsys.readouterr()
        assert "hello world" in captured.err
        assert "warn" in captured.err.lower()
        assert not captured.err.strip().startswith("{")
        assert captured.out == ""


class TestJSONRenderer:
    def test_stdlib_records_become_json(self, capsys):
        configure(json_output=True)
        logging.getLogger("refsnap.fast_actions").info("json test")
        parsed = json.loads(capsys.readouterr().err.strip())
        assert parsed["event"] == "json test"
        assert parsed["logger"] == "refsnap.fast_actions"
        assert parsed["level"] == "info"
        assert "timestamp" in parsed


class TestToolCallContext:
    def test_bound_fields_in_output(self, capsys):
        configure(json_output=True)
        request_id = bind_tool_call("browser_click", "checkout")
        structlog.get_logger("test.ctx").info("ctx test")
        parsed = json.loads(capsys.readouterr().err.strip())
        assert parsed["request_id"] == request_id
        assert parsed["tool"] == "browser_click"
        assert parsed["page"] == "checkout"

    def test_each_call_gets_fresh_context(self):
        first = bind_tool_call("browser_snapshot", "default")
        structlog.contextvars.bind_contextvars(extra="x")
        second = bind_tool_call("browser_snapshot", "default")
        assert first != second
        assert "extra" not in structlog.contextvars.get_contextvars()


class TestLogLevel:
    @pytest.mark.parametrize(
        ("level", "expected"),
        [("INFO", logging.INFO), ("debug", logging.DEBUG), ("NONEXISTENT", logging.INFO)],
    )
    def test_level(self, level, expected):
        configure(level=level)
        assert logging.getLogger().level == expected

    def test_noisy_loggers_quieted(self):
        configure(level="DEBUG")
        assert logging.getLogger("asyncio").level == logging.WARNING

    def test_no_handler_stacking(self):
        configure(json_output=False)
        configure(json_output=True)
        configure(json_output=False)
        assert len(logging.getLogger().handlers) == 1
