# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Shared test configuration and fixtures."""

try:
    import refsnap  # noqa: F401
except ImportError:
    raise ImportError("refsnap is not installed. Run: pip install -e '.[dev]'") from None

import pytest


@pytest.fixture(autouse=True)
def _reset_cdp_sessions():
    """CDP sessions are cached per page id; never leak them between tests."""
    from refsnap import fast_actions

    fast_actions._cdp_sessions.clear()
    yield
    fast_actions._cdp_sessions.clear()


@pytest.fixture(autouse=True)
def _block_real_browser(monkeypatch):
    """Safety net: unit tests must never launch Chromium.

    Tests that need a session patch ``refsnap.server._state`` or build a
    BrowserSession around mocks.
    """

    async def _no_real_start(self):
        raise RuntimeError("Test tried to start a real browser session. Use the page mocks in _page_helpers.")

    monkeypatch.setattr("refsnap.browser_session.BrowserSession.start", _no_real_start)


@pytest.fixture
def page():
    from _page_helpers import make_page

    return make_page()
