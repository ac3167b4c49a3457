# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for refsnap.errors — hierarchy and message cleanup."""

from __future__ import annotations

import pytest
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from refsnap.errors import (
    MAX_ERROR_LENGTH,
    ActionTimeoutError,
    BrowserError,
    ExtractionError,
    InvalidStepArgsError,
    RefsnapError,
    TargetNotFoundError,
    clean_error,
)


@pytest.mark.parametrize(
    "cls",
    [BrowserError, TargetNotFoundError, ActionTimeoutError, ExtractionError, InvalidStepArgsError],
)
def test_hierarchy(cls):
    assert issubclass(cls, RefsnapError)


def test_target_is_kept():
    err = TargetNotFoundError("gone", target="e4")
    assert err.target == "e4"
    assert str(err) == "gone"


class TestCleanError:
    def test_call_log_removed(self):
        exc = PlaywrightTimeoutError(
            "Timeout 5000ms exceeded.\nCall log:\n  - waiting for locator('#go')\n  -   locator resolved"
        )
        assert clean_error(exc) == "Timeout 5000ms exceeded."

    def test_logs_banner_removed(self):
        text = "Target closed\n=========================== logs ===========================\nnavigating..."
        assert clean_error(text) == "Target closed"

    def test_ansi_and_whitespace(self):
        assert clean_error("\x1b[31mElement\x1b[0m   is\n\tdetached") == "Element is detached"

    def test_truncated(self):
        cleaned = clean_error("x" * 500)
        assert len(cleaned) == MAX_ERROR_LENGTH
        assert cleaned.endswith("...")

    def test_empty_message_uses_type(self):
        assert clean_error(ValueError()) == "ValueError"
        assert clean_error("   ") == "Unknown error"
