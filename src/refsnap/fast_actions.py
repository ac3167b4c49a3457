# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Fast action dispatch over raw CDP input events.

When a ref has a cached position from the last extraction, clicks and
typing are sent straight to ``Input.*`` on a per-page CDP session, skipping
Playwright's actionability checks.  Otherwise the dispatcher falls back to
a locator, which waits for visibility and actionability itself.

A stale position can hit the wrong element; callers re-snapshot when the
layout may have moved.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import Awaitable, Callable
from typing import Literal

from playwright.async_api import CDPSession, Locator, Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from . import Position
from .context import PageContext
from .errors import ActionTimeoutError, TargetNotFoundError, clean_error
from .refs import is_ref_id

logger = logging.getLogger(__name__)

MouseButton = Literal["left", "right", "middle"]
DispatchPath = Literal["fast", "locator"]

ACTION_TIMEOUT_MS = 30_000
_SCROLL_SETTLE_S = 0.05
_DEFAULT_VIEWPORT = {"width": 1280, "height": 720}

_BUTTON_CODES = {"left": 0, "middle": 1, "right": 2}

# CDP modifier bits: Alt=1, Ctrl=2, Meta=4, Shift=8
_SELECT_ALL_MODIFIER = 4 if sys.platform == "darwin" else 2

_KEY_CODES: dict[str, tuple[str, int]] = {
    "Enter": ("Enter", 13),
    "Tab": ("Tab", 9),
    "Escape": ("Escape", 27),
    "Backspace": ("Backspace", 8),
    "Delete": ("Delete", 46),
    "ArrowUp": ("ArrowUp", 38),
    "ArrowDown": ("ArrowDown", 40),
    "ArrowLeft": ("ArrowLeft", 37),
    "ArrowRight": ("ArrowRight", 39),
}


# ── CDP session arena ────────────────────────────────────────────────

_cdp_sessions: dict[int, CDPSession] = {}


async def get_cdp_session(page: Page) -> CDPSession:
    """Get or create the CDP session for ``page``; dropped when the page closes."""
    key = id(page)
    session = _cdp_sessions.get(key)
    if session is None:
        session = await page.context.new_cdp_session(page)
        _cdp_sessions[key] = session
        page.on("close", lambda _page: _cdp_sessions.pop(key, None))
    return session


def drop_cdp_session(page: Page) -> None:
    _cdp_sessions.pop(id(page), None)


# ── Primitives ───────────────────────────────────────────────────────


async def fast_click(
    page: Page,
    x: float,
    y: float,
    button: MouseButton = "left",
    click_count: int = 1,
) -> None:
    """Press/release pairs at (x, y); the i-th pair carries clickCount i+1."""
    cdp = await get_cdp_session(page)
    for i in range(click_count):
        await cdp.send(
            "Input.dispatchMouseEvent",
            {
                "type": "mousePressed",
                "x": x,
                "y": y,
                "button": button,
                "clickCount": i + 1,
                "buttons": 1 << _BUTTON_CODES[button],
            },
        )
        await cdp.send(
            "Input.dispatchMouseEvent",
            {"type": "mouseReleased", "x": x, "y": y, "button": button, "clickCount": i + 1},
        )


async def fast_focus(page: Page, x: float, y: float) -> None:
    await fast_click(page, x, y)


async def fast_key_press(page: Page, key: str, modifiers: int = 0) -> None:
    code, key_code = _KEY_CODES.get(key, (f"Key{key.upper()}", ord(key[0].upper()) if key else 0))
    cdp = await get_cdp_session(page)
    for event_type in ("keyDown", "keyUp"):
        params = {"type": event_type, "key": key, "code": code, "windowsVirtualKeyCode": key_code}
        if modifiers:
            params["modifiers"] = modifiers
        await cdp.send("Input.dispatchKeyEvent", params)


async def fast_type(page: Page, text: str, clear: bool = True) -> None:
    """Insert ``text`` into the focused element, optionally replacing its content.

    Clearing is select-all (Ctrl+A, or Meta+A on macOS) followed by Delete.
    """
    if clear:
        await fast_key_press(page, "a", modifiers=_SELECT_ALL_MODIFIER)
        await fast_key_press(page, "Delete")
    cdp = await get_cdp_session(page)
    await cdp.send("Input.insertText", {"text": text})


async def fast_scroll(
    page: Page,
    delta_x: float,
    delta_y: float,
    x: float | None = None,
    y: float | None = None,
) -> None:
    """Mouse-wheel event, at the viewport centre unless a point is given."""
    viewport = page.viewport_size or _DEFAULT_VIEWPORT
    cdp = await get_cdp_session(page)
    await cdp.send(
        "Input.dispatchMouseEvent",
        {
            "type": "mouseWheel",
            "x": viewport["width"] / 2 if x is None else x,
            "y": viewport["height"] / 2 if y is None else y,
            "deltaX": delta_x,
            "deltaY": delta_y,
        },
    )
    await asyncio.sleep(_SCROLL_SETTLE_S)


# ── Dispatcher ───────────────────────────────────────────────────────


class ActionDispatcher:
    """Route element actions to the fast CDP path or the locator fallback.

    Every method returns the path taken (``"fast"`` or ``"locator"``).
    """

    def __init__(self, page: Page, ctx: PageContext, timeout_ms: int = ACTION_TIMEOUT_MS) -> None:
        self.page = page
        self.ctx = ctx
        self.timeout_ms = timeout_ms

    def cached_position(self, target: str) -> Position | None:
        if not is_ref_id(target):
            return None
        return self.ctx.refs.position(target)

    async def _fast(self, target: str, action: Awaitable[None], timeout_ms: int) -> DispatchPath:
        try:
            async with asyncio.timeout(timeout_ms / 1000):
                await action
        except TimeoutError as exc:
            raise ActionTimeoutError(f"Input dispatch to {target} timed out after {timeout_ms}ms") from exc
        return "fast"

    async def _with_locator(
        self,
        target: str,
        action: Callable[[Locator], Awaitable[object]],
    ) -> DispatchPath:
        locator = self.ctx.refs.locator(self.page, target)
        matches = await locator.count()
        if matches > 1:
            logger.warning("Ambiguous target %s matched %d elements, using first", target, matches)
        try:
            await action(locator.first)
        except PlaywrightTimeoutError as exc:
            if matches == 0 and await locator.count() == 0:
                raise TargetNotFoundError(f"No element matches {target}", target=target) from exc
            raise ActionTimeoutError(clean_error(exc)) from exc
        return "locator"

    async def click(
        self,
        target: str,
        button: MouseButton = "left",
        click_count: int = 1,
        timeout_ms: int | None = None,
    ) -> DispatchPath:
        timeout_ms = timeout_ms or self.timeout_ms
        pos = self.cached_position(target)
        if pos is not None:
            return await self._fast(target, fast_click(self.page, pos.x, pos.y, button, click_count), timeout_ms)
        return await self._with_locator(
            target,
            lambda loc: loc.click(button=button, click_count=click_count, timeout=timeout_ms),
        )

    async def type(
        self,
        target: str,
        text: str,
        clear: bool = True,
        press_enter: bool = False,
        delay_ms: int = 0,
        timeout_ms: int | None = None,
    ) -> DispatchPath:
        """Enter ``text`` into ``target``.

        A keystroke delay needs real key events, so it always goes through
        the locator.
        """
        timeout_ms = timeout_ms or self.timeout_ms
        pos = None if delay_ms else self.cached_position(target)
        if pos is not None:

            async def _type_fast() -> None:
                await fast_focus(self.page, pos.x, pos.y)
                await fast_type(self.page, text, clear=clear)
                if press_enter:
                    await fast_key_press(self.page, "Enter")

            return await self._fast(target, _type_fast(), timeout_ms)

        async def _type_locator(loc: Locator) -> None:
            if delay_ms:
                if clear:
                    await loc.fill("", timeout=timeout_ms)
                await loc.press_sequentially(text, delay=delay_ms, timeout=timeout_ms)
            elif clear:
                await loc.fill(text, timeout=timeout_ms)
            else:
                await loc.press_sequentially(text, timeout=timeout_ms)
            if press_enter:
                await loc.press("Enter", timeout=timeout_ms)

        return await self._with_locator(target, _type_locator)

    async def focus(self, target: str, timeout_ms: int | None = None) -> DispatchPath:
        timeout_ms = timeout_ms or self.timeout_ms
        pos = self.cached_position(target)
        if pos is not None:
            return await self._fast(target, fast_focus(self.page, pos.x, pos.y), timeout_ms)
        return await self._with_locator(target, lambda loc: loc.focus(timeout=timeout_ms))

    async def select_option(
        self,
        target: str,
        *,
        value: str | None = None,
        label: str | None = None,
        index: int | None = None,
        timeout_ms: int | None = None,
    ) -> DispatchPath:
        """Choose an option by value, label or index. Always uses the locator."""
        timeout_ms = timeout_ms or self.timeout_ms
        if value is not None:
            option: dict[str, str | int] = {"value": value}
        elif label is not None:
            option = {"label": label}
        elif index is not None:
            option = {"index": index}
        else:
            raise ValueError("select_option needs one of value, label or index")
        return await self._with_locator(target, lambda loc: loc.select_option(**option, timeout=timeout_ms))

    async def scroll_to(self, target: str, timeout_ms: int | None = None) -> DispatchPath:
        """Bring ``target`` into view.

        Each axis on which the cached position lies outside the viewport
        gets a wheel delta that centres it there. A position already inside
        the viewport needs nothing.
        """
        timeout_ms = timeout_ms or self.timeout_ms
        pos = self.cached_position(target)
        if pos is not None:
            viewport = self.page.viewport_size or _DEFAULT_VIEWPORT
            width, height = viewport["width"], viewport["height"]
            delta_x = 0 if 0 <= pos.x <= width else pos.x - width / 2
            delta_y = 0 if 0 <= pos.y <= height else pos.y - height / 2
            if not delta_x and not delta_y:
                return "fast"
            return await self._fast(target, fast_scroll(self.page, delta_x, delta_y), timeout_ms)
        return await self._with_locator(target, lambda loc: loc.scroll_into_view_if_needed(timeout=timeout_ms))
