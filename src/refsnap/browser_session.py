# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Playwright browser session with named pages.

One Chromium instance and one BrowserContext per session.  Pages are
addressed by name ("default" exists from the start); each page carries its
own PageContext so refs and diff baselines never leak between pages.  The
extraction cache is shared, keyed by page.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from contextlib import suppress
from dataclasses import dataclass

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright

from .context import PageContext
from .errors import BrowserError
from .fast_actions import drop_cdp_session
from .mutation_cache import MutationCache

logger = logging.getLogger(__name__)

DEFAULT_PAGE = "default"
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)


@dataclass
class BrowserConfig:
    """Browser launch configuration."""

    headless: bool = True
    viewport_width: int = 1280
    viewport_height: int = 720
    user_agent: str = DEFAULT_USER_AGENT
    locale: str = "en-US"


# ── Chromium auto-install ─────────────────────────────────────────

_chromium_install_attempted = False
_AUTO_INSTALL_TIMEOUT = 300  # seconds


async def _auto_install_chromium() -> bool:
    """Run ``playwright install chromium`` once per process.

    Output is captured so nothing reaches the MCP stdio stream.
    """
    global _chromium_install_attempted  # noqa: PLW0603
    if _chromium_install_attempted:
        return False
    _chromium_install_attempted = True

    logger.info("Chromium not found, running 'playwright install chromium'")
    try:
        proc = await asyncio.create_subprocess_exec(
            sys.executable,
            "-m",
            "playwright",
            "install",
            "chromium",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        _stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=_AUTO_INSTALL_TIMEOUT)
    except TimeoutError:
        logger.warning("Chromium install timed out after %ds", _AUTO_INSTALL_TIMEOUT)
        return False
    except OSError:
        logger.warning("Chromium auto-install failed", exc_info=True)
        return False
    if proc.returncode != 0:
        logger.warning(
            "playwright install chromium failed (rc=%d): %s",
            proc.returncode,
            stderr.decode(errors="replace")[:500],
        )
        return False
    logger.info("Chromium installed successfully")
    return True


class BrowserSession:
    """Chromium lifecycle plus a registry of named pages."""

    def __init__(self, config: BrowserConfig | None = None):
        self.config = config or BrowserConfig()
        self.cache = MutationCache()
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None
        self._pages: dict[str, Page] = {}
        self._contexts: dict[str, PageContext] = {}
        self._current = DEFAULT_PAGE

    # -- Lifecycle --

    async def _launch_browser(self) -> Browser:
        try:
            return await self._playwright.chromium.launch(headless=self.config.headless)
        except Exception as exc:
            if "executable doesn't exist" not in str(exc).lower():
                raise BrowserError(f"Browser launch failed: {exc}") from exc
            if not await _auto_install_chromium():
                raise BrowserError(
                    "Chromium is not installed and auto-install failed. Please run: playwright install chromium"
                ) from exc
            return await self._playwright.chromium.launch(headless=self.config.headless)

    async def start(self) -> None:
        """Launch the browser and open the default page."""
        self._playwright = await async_playwright().start()
        self._browser = await self._launch_browser()
        self._context = await self._browser.new_context(
            viewport={"width": self.config.viewport_width, "height": self.config.viewport_height},
            user_agent=self.config.user_agent,
            locale=self.config.locale,
        )
        await self._open(DEFAULT_PAGE)
        self._current = DEFAULT_PAGE
        logger.info("Browser session started (headless=%s)", self.config.headless)

    async def stop(self) -> None:
        """Close every page, the context and the browser. Safe on a crashed browser."""
        for page in list(self._pages.values()):
            if not page.is_closed():
                with suppress(Exception):
                    await page.close()
        self._pages.clear()
        self._contexts.clear()
        if self._context:
            with suppress(Exception):
                await self._context.close()
            self._context = None
        if self._browser:
            with suppress(Exception):
                await self._browser.close()
            self._browser = None
        if self._playwright:
            with suppress(Exception):
                await self._playwright.stop()
            self._playwright = None
        self._current = DEFAULT_PAGE
        logger.info("Browser session stopped")

    def is_connected(self) -> bool:
        return self._browser is not None and self._browser.is_connected()

    async def __aenter__(self) -> BrowserSession:
        await self.start()
        return self

    async def __aexit__(self, *args) -> None:
        await self.stop()

    # -- Pages --

    @property
    def current_name(self) -> str:
        return self._current

    @property
    def page(self) -> Page:
        page = self._pages.get(self._current)
        if page is None or page.is_closed():
            raise BrowserError(f"Page '{self._current}' is not open")
        return page

    @property
    def ctx(self) -> PageContext:
        return self.context_for(self._current)

    def context_for(self, name: str) -> PageContext:
        ctx = self._contexts.get(name)
        if ctx is None:
            raise BrowserError(f"Page '{name}' not found")
        return ctx

    async def _open(self, name: str) -> Page:
        if self._context is None:
            raise BrowserError("Browser session not started")
        page = await self._context.new_page()
        self._pages[name] = page
        self._contexts[name] = PageContext(name=name)
        page.on("close", lambda _page: self._forget(name, page))
        logger.debug("Opened page %s", name)
        return page

    def _forget(self, name: str, page: Page) -> None:
        if self._pages.get(name) is page:
            del self._pages[name]
            self._contexts.pop(name, None)
        drop_cdp_session(page)

    def list_pages(self) -> list[str]:
        return [name for name, page in self._pages.items() if not page.is_closed()]

    def has_page(self, name: str) -> bool:
        page = self._pages.get(name)
        return page is not None and not page.is_closed()

    async def create_page(self, name: str) -> Page:
        """Open ``name`` (or reuse it when already open) and make it current.

        Either way the page starts a fresh ref epoch.
        """
        page = self._pages.get(name) if self.has_page(name) else await self._open(name)
        self._activate(name, page)
        return page

    async def switch_page(self, name: str) -> Page:
        if not self.has_page(name):
            raise BrowserError(f"Page '{name}' not found")
        page = self._pages[name]
        self._activate(name, page)
        return page

    def _activate(self, name: str, page: Page) -> None:
        self._current = name
        self._contexts[name].new_epoch()
        self.cache.invalidate(page)
        logger.info("Current page: %s", name)

    async def close_page(self, name: str) -> bool:
        """Close ``name``. Returns False when no such page is open.

        Closing the current page moves to the first remaining page, or opens
        a fresh default page when none is left.
        """
        page = self._pages.get(name)
        if page is None or page.is_closed():
            return False
        await page.close()
        self._forget(name, page)

        if self._current == name:
            remaining = self.list_pages()
            if remaining:
                self._current = remaining[0]
            else:
                await self._open(DEFAULT_PAGE)
                self._current = DEFAULT_PAGE
        return True

