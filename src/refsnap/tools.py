# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Single-step tool operations and their input/response models.

The ``run_*`` helpers perform one action against a page and raise on
failure; the batch executor composes them.  The public tool functions
(``navigate``, ``click``, ...) wrap a helper for one request: they never
raise, converting every failure into ``ToolResponse(ok=False, error=...)``.
"""

from __future__ import annotations

import logging
from typing import Literal, TypeVar

from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from pydantic.alias_generators import to_camel

from .browser_session import BrowserSession
from .context import PageContext
from .errors import ActionTimeoutError, InvalidStepArgsError, clean_error
from .fast_actions import ACTION_TIMEOUT_MS, ActionDispatcher, fast_scroll
from .formatter import SnapshotFormat
from .mutation_cache import MutationCache
from .snapshot import take_snapshot

logger = logging.getLogger(__name__)

NAVIGATION_TIMEOUT_MS = 30_000
DEFAULT_SCROLL_AMOUNT = 300

WaitUntil = Literal["load", "domcontentloaded", "networkidle", "commit"]
ScrollDirection = Literal["up", "down", "left", "right"]

_SCROLL_TO_JS = "(bottom) => window.scrollTo({top: bottom ? document.body.scrollHeight : 0, behavior: 'instant'})"

ModelT = TypeVar("ModelT", bound=BaseModel)


# ── Input models ─────────────────────────────────────────────────────


class ArgsModel(BaseModel):
    """Base for tool arguments: camelCase on the wire, unknown keys rejected."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class SnapshotRequest(ArgsModel):
    include: bool = False
    scope: str | None = None
    format: SnapshotFormat = "compact"
    collapse: bool = False


class TargetArgs(ArgsModel):
    """Arguments naming one element, by ref id or CSS selector."""

    ref: str | None = Field(None, min_length=1, description='Element ref (e.g. "e1") from a previous snapshot')
    selector: str | None = Field(None, min_length=1, description="CSS selector if ref not provided")

    @model_validator(mode="after")
    def check_one_target(self):
        if (self.ref is None) == (self.selector is None):
            raise ValueError("exactly one of 'ref' or 'selector' is required")
        return self

    @property
    def target(self) -> str:
        return self.ref if self.ref is not None else self.selector


class NavigateArgs(ArgsModel):
    url: str = Field(min_length=1)
    wait_until: WaitUntil = "domcontentloaded"
    timeout: int | None = Field(None, gt=0, description="Timeout in ms")


class ClickArgs(TargetArgs):
    button: Literal["left", "right", "middle"] = "left"
    click_count: int = Field(1, ge=1, le=3)
    timeout: int | None = Field(None, gt=0)


class TypeArgs(TargetArgs):
    text: str
    clear: bool = True
    press_enter: bool = False
    delay: int = Field(0, ge=0, le=1000, description="Delay between keystrokes in ms")
    timeout: int | None = Field(None, gt=0)


class SelectArgs(TargetArgs):
    value: str | None = None
    label: str | None = None
    index: int | None = Field(None, ge=0)
    timeout: int | None = Field(None, gt=0)

    @model_validator(mode="after")
    def check_one_option(self):
        given = [v for v in (self.value, self.label, self.index) if v is not None]
        if len(given) != 1:
            raise ValueError("exactly one of 'value', 'label' or 'index' is required")
        return self


class ScrollArgs(ArgsModel):
    direction: ScrollDirection = "down"
    amount: int = Field(DEFAULT_SCROLL_AMOUNT, ge=0)
    to_top: bool = False
    to_bottom: bool = False
    ref: str | None = Field(None, min_length=1)
    selector: str | None = Field(None, min_length=1)
    timeout: int | None = Field(None, gt=0)

    @model_validator(mode="after")
    def check_at_most_one_target(self):
        if self.ref is not None and self.selector is not None:
            raise ValueError("give 'ref' or 'selector', not both")
        return self

    @property
    def target(self) -> str | None:
        return self.ref if self.ref is not None else self.selector


class NavigateInput(NavigateArgs):
    snapshot: SnapshotRequest | None = None


class SnapshotInput(ArgsModel):
    scope: str | None = None
    format: SnapshotFormat = "compact"
    max_elements: int | None = Field(None, ge=1)
    collapse: bool = False


class ClickInput(ClickArgs):
    snapshot: SnapshotRequest | None = None


class TypeInput(TypeArgs):
    snapshot: SnapshotRequest | None = None


class SelectInput(SelectArgs):
    snapshot: SnapshotRequest | None = None


class ScrollInput(ScrollArgs):
    snapshot: SnapshotRequest | None = None


class PagesInput(ArgsModel):
    action: Literal["list", "create", "switch", "close"]
    name: str | None = Field(None, min_length=1)
    snapshot: SnapshotRequest | None = None

    @model_validator(mode="after")
    def check_name_required(self):
        if self.action != "list" and self.name is None:
            raise ValueError(f"'name' is required for {self.action}")
        return self


def validate_args(model: type[ModelT], data: dict) -> ModelT:
    """Parse ``data`` into ``model``; failures become InvalidStepArgsError."""
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        problems = []
        for err in exc.errors():
            loc = ".".join(str(p) for p in err["loc"])
            problems.append(f"{loc}: {err['msg']}" if loc else err["msg"])
        raise InvalidStepArgsError("; ".join(problems)) from exc


# ── Responses ────────────────────────────────────────────────────────


class ToolResponse(BaseModel):
    ok: bool
    snapshot: str | None = None
    error: str | None = None
    url: str | None = None
    title: str | None = None

    def to_json(self) -> str:
        return self.model_dump_json(exclude_none=True)


class PagesResponse(BaseModel):
    ok: bool
    action: str
    pages: list[str] | None = None
    current: str | None = None
    error: str | None = None
    snapshot: str | None = None

    def to_json(self) -> str:
        return self.model_dump_json(exclude_none=True)


# ── Step operations ──────────────────────────────────────────────────


async def run_navigate(
    page: Page,
    ctx: PageContext,
    cache: MutationCache,
    args: NavigateArgs,
    timeout_ms: int = NAVIGATION_TIMEOUT_MS,
) -> None:
    """Navigate and start a new ref epoch for the page."""
    ctx.new_epoch()
    cache.invalidate(page)
    timeout = args.timeout or timeout_ms
    try:
        await page.goto(args.url, wait_until=args.wait_until, timeout=timeout)
    except PlaywrightTimeoutError as exc:
        raise ActionTimeoutError(clean_error(exc)) from exc


async def run_click(page: Page, ctx: PageContext, args: ClickArgs, timeout_ms: int = ACTION_TIMEOUT_MS) -> str:
    dispatcher = ActionDispatcher(page, ctx, args.timeout or timeout_ms)
    return await dispatcher.click(args.target, button=args.button, click_count=args.click_count)


async def run_type(page: Page, ctx: PageContext, args: TypeArgs, timeout_ms: int = ACTION_TIMEOUT_MS) -> str:
    dispatcher = ActionDispatcher(page, ctx, args.timeout or timeout_ms)
    return await dispatcher.type(
        args.target, args.text, clear=args.clear, press_enter=args.press_enter, delay_ms=args.delay
    )


async def run_select(page: Page, ctx: PageContext, args: SelectArgs, timeout_ms: int = ACTION_TIMEOUT_MS) -> str:
    dispatcher = ActionDispatcher(page, ctx, args.timeout or timeout_ms)
    return await dispatcher.select_option(args.target, value=args.value, label=args.label, index=args.index)


async def run_scroll(
    page: Page,
    ctx: PageContext,
    cache: MutationCache,
    args: ScrollArgs,
    timeout_ms: int = ACTION_TIMEOUT_MS,
) -> None:
    """Scroll to an edge, to an element, or by a wheel delta.

    Scrolling moves every element, so cached positions and the cached
    extraction are discarded afterwards.
    """
    if args.to_top or args.to_bottom:
        await page.evaluate(_SCROLL_TO_JS, args.to_bottom)
    elif args.target is not None:
        await ActionDispatcher(page, ctx, args.timeout or timeout_ms).scroll_to(args.target)
    else:
        delta_x, delta_y = {
            "up": (0, -args.amount),
            "down": (0, args.amount),
            "left": (-args.amount, 0),
            "right": (args.amount, 0),
        }[args.direction]
        await fast_scroll(page, delta_x, delta_y)
    ctx.refs.clear_positions()
    cache.invalidate(page)


async def _maybe_snapshot(session: BrowserSession, request: SnapshotRequest | None) -> str | None:
    if request is None or not request.include:
        return None
    return await take_snapshot(
        session.page,
        session.ctx,
        session.cache,
        scope=request.scope,
        fmt=request.format,
        collapse=request.collapse,
    )


def _failure(tool: str, exc: Exception) -> ToolResponse:
    logger.warning("%s failed: %s", tool, exc)
    return ToolResponse(ok=False, error=clean_error(exc))


# ── Tools ────────────────────────────────────────────────────────────


async def navigate(session: BrowserSession, args: NavigateInput) -> ToolResponse:
    try:
        page = session.page
        await run_navigate(page, session.ctx, session.cache, args)
        return ToolResponse(
            ok=True,
            url=page.url,
            title=await page.title(),
            snapshot=await _maybe_snapshot(session, args.snapshot),
        )
    except Exception as e:
        return _failure("navigate", e)


async def snapshot(session: BrowserSession, args: SnapshotInput) -> ToolResponse:
    try:
        page = session.page
        text = await take_snapshot(
            page,
            session.ctx,
            session.cache,
            scope=args.scope,
            fmt=args.format,
            max_elements=args.max_elements,
            collapse=args.collapse,
        )
        return ToolResponse(ok=True, snapshot=text, url=page.url, title=await page.title())
    except Exception as e:
        return _failure("snapshot", e)


async def click(session: BrowserSession, args: ClickInput) -> ToolResponse:
    try:
        path = await run_click(session.page, session.ctx, args)
        logger.debug("click %s via %s", args.target, path)
        return ToolResponse(ok=True, snapshot=await _maybe_snapshot(session, args.snapshot))
    except Exception as e:
        return _failure("click", e)


async def type_text(session: BrowserSession, args: TypeInput) -> ToolResponse:
    try:
        path = await run_type(session.page, session.ctx, args)
        logger.debug("type %s via %s", args.target, path)
        return ToolResponse(ok=True, snapshot=await _maybe_snapshot(session, args.snapshot))
    except Exception as e:
        return _failure("type", e)


async def select(session: BrowserSession, args: SelectInput) -> ToolResponse:
    try:
        await run_select(session.page, session.ctx, args)
        return ToolResponse(ok=True, snapshot=await _maybe_snapshot(session, args.snapshot))
    except Exception as e:
        return _failure("select", e)


async def scroll(session: BrowserSession, args: ScrollInput) -> ToolResponse:
    try:
        await run_scroll(session.page, session.ctx, session.cache, args)
        return ToolResponse(ok=True, snapshot=await _maybe_snapshot(session, args.snapshot))
    except Exception as e:
        return _failure("scroll", e)


async def pages(session: BrowserSession, args: PagesInput) -> PagesResponse:
    """List, create, switch or close named pages."""
    try:
        match args.action:
            case "list":
                return PagesResponse(ok=True, action="list", pages=session.list_pages(), current=session.current_name)
            case "create":
                await session.create_page(args.name)
            case "switch":
                await session.switch_page(args.name)
            case "close":
                if not await session.close_page(args.name):
                    return PagesResponse(ok=False, action="close", error=f"Page '{args.name}' not found")
                return PagesResponse(ok=True, action="close", pages=session.list_pages(), current=session.current_name)
        return PagesResponse(
            ok=True,
            action=args.action,
            current=session.current_name,
            snapshot=await _maybe_snapshot(session, args.snapshot),
        )
    except Exception as e:
        logger.warning("pages %s failed: %s", args.action, e)
        return PagesResponse(ok=False, action=args.action, error=clean_error(e))
