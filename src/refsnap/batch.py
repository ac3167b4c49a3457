# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Batch executor: run a sequence of steps against one page.

Steps arrive as ``{"tool": ..., "args": {...}}`` and are parsed one at a
time into a discriminated union, so a malformed step fails at its own index
after the earlier steps have run.  The result is deliberately terse::

    {"ok": false, "n": 1, "at": 1, "err": "..."}

``n`` (completed steps) and ``at`` (failing index) appear only on failure;
``snap`` only when the snapshot policy produced one.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Annotated, Any, Literal, assert_never

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page
from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from .context import PageContext
from .errors import ActionTimeoutError, ExtractionError, InvalidStepArgsError, clean_error
from .mutation_cache import MutationCache
from .pruner import to_refs
from .refs import is_ref_id
from .snapshot import take_snapshot
from .tools import (
    ArgsModel,
    ClickArgs,
    NavigateArgs,
    ScrollArgs,
    SelectArgs,
    TypeArgs,
    run_click,
    run_navigate,
    run_scroll,
    run_select,
    run_type,
)

logger = logging.getLogger(__name__)

BATCH_ACTION_TIMEOUT_MS = 5_000
BATCH_NAVIGATION_TIMEOUT_MS = 10_000
MAX_WAIT_MS = 60_000
BATCH_OVERALL_TIMEOUT_S = 120.0


# ── Step union ───────────────────────────────────────────────────────


class WaitArgs(ArgsModel):
    ms: int = Field(1000, ge=0, le=MAX_WAIT_MS)


class NavigateStep(BaseModel):
    tool: Literal["navigate"]
    args: NavigateArgs


class ClickStep(BaseModel):
    tool: Literal["click"]
    args: ClickArgs


class TypeStep(BaseModel):
    tool: Literal["type"]
    args: TypeArgs


class SelectStep(BaseModel):
    tool: Literal["select"]
    args: SelectArgs


class ScrollStep(BaseModel):
    tool: Literal["scroll"]
    args: ScrollArgs = Field(default_factory=ScrollArgs)


class WaitStep(BaseModel):
    tool: Literal["wait"]
    args: WaitArgs = Field(default_factory=WaitArgs)


BatchStep = Annotated[
    NavigateStep | ClickStep | TypeStep | SelectStep | ScrollStep | WaitStep,
    Field(discriminator="tool"),
]

_step_adapter: TypeAdapter[BatchStep] = TypeAdapter(BatchStep)


def parse_step(raw: object) -> BatchStep:
    """Validate one raw step; raises InvalidStepArgsError."""
    if isinstance(raw, BaseModel):
        return raw
    try:
        return _step_adapter.validate_python(raw)
    except ValidationError as exc:
        problems = []
        for err in exc.errors():
            loc = ".".join(str(p) for p in err["loc"])
            problems.append(f"{loc}: {err['msg']}" if loc else err["msg"])
        raise InvalidStepArgsError("; ".join(problems)) from exc


class BatchSnapshotOptions(ArgsModel):
    when: Literal["never", "final", "each", "on-error"] = "never"
    scope: str | None = None
    format: Literal["compact", "full", "diff"] = "compact"


class BatchInput(ArgsModel):
    """Top-level batch arguments; steps are parsed one at a time later."""

    steps: list[Any]
    snapshot: BatchSnapshotOptions = Field(default_factory=BatchSnapshotOptions)
    stop_on_error: bool = True


class BatchResult(BaseModel):
    ok: bool = True
    n: int | None = None
    err: str | None = None
    at: int | None = None
    snap: str | None = None

    def to_json(self) -> str:
        return self.model_dump_json(exclude_none=True)


# ── Executor ─────────────────────────────────────────────────────────


def _needs_position(step: BatchStep) -> bool:
    return isinstance(step, (ClickStep, TypeStep)) and step.args.ref is not None and is_ref_id(step.args.ref)


async def prime_positions(page: Page, ctx: PageContext, cache: MutationCache) -> None:
    """Extract once so ref-targeted steps can take the fast path.

    Failure is not fatal: the steps fall back to locators.
    """
    try:
        elements = await cache.get(page)
    except (ExtractionError, PlaywrightError) as e:
        logger.warning("Position priming failed, using locator fallback: %s", e)
        return
    to_refs(elements, ctx.refs)


async def _run_step(page: Page, ctx: PageContext, cache: MutationCache, step: BatchStep) -> None:
    match step:
        case NavigateStep(args=args):
            await run_navigate(page, ctx, cache, args, BATCH_NAVIGATION_TIMEOUT_MS)
        case ClickStep(args=args):
            await run_click(page, ctx, args, BATCH_ACTION_TIMEOUT_MS)
        case TypeStep(args=args):
            await run_type(page, ctx, args, BATCH_ACTION_TIMEOUT_MS)
        case SelectStep(args=args):
            await run_select(page, ctx, args, BATCH_ACTION_TIMEOUT_MS)
        case ScrollStep(args=args):
            await run_scroll(page, ctx, cache, args, BATCH_ACTION_TIMEOUT_MS)
        case WaitStep(args=args):
            await asyncio.sleep(args.ms / 1000)
        case _:
            assert_never(step)


async def execute_batch(
    page: Page,
    ctx: PageContext,
    cache: MutationCache,
    steps: list,
    snapshot: BatchSnapshotOptions | None = None,
    stop_on_error: bool = True,
    overall_timeout: float = BATCH_OVERALL_TIMEOUT_S,
) -> BatchResult:
    """Run ``steps`` in order and report a minimal result.

    Snapshot policy (``snapshot.when``):
        never    no snapshot (default)
        final    after the last step, unless the batch stopped on an error
        each     after every successful step, keeping the latest
        on-error at the failure point only

    The whole batch shares one deadline of ``overall_timeout`` seconds.  The
    step running when it passes fails with an ActionTimeoutError and the
    batch stops there, whatever ``stop_on_error`` says.
    """
    opts = snapshot or BatchSnapshotOptions()
    result = BatchResult()
    completed = 0
    timed_out = False
    loop = asyncio.get_running_loop()
    deadline = loop.time() + overall_timeout

    async def _snap() -> str | None:
        try:
            return await take_snapshot(page, ctx, cache, scope=opts.scope, fmt=opts.format)
        except Exception as e:
            logger.warning("Batch snapshot failed: %s", e)
            return None

    for index, raw in enumerate(steps):
        guard = asyncio.timeout_at(deadline)
        try:
            if loop.time() >= deadline:
                raise TimeoutError
            async with guard:
                step = parse_step(raw)
                if _needs_position(step) and not ctx.refs.has_positions:
                    await prime_positions(page, ctx, cache)
                await _run_step(page, ctx, cache, step)
        except Exception as e:
            error: Exception = e
            if guard.expired() or loop.time() >= deadline:
                timed_out = True
                error = ActionTimeoutError(f"Batch exceeded overall timeout of {overall_timeout:g}s")
            logger.info("Batch step %d failed: %s", index, error)
            result.ok = False
            result.err = clean_error(error)
            result.at = index
            result.n = completed
            if opts.when == "on-error":
                result.snap = await _snap()
            if stop_on_error or timed_out:
                break
            continue

        completed += 1
        if opts.when == "each":
            result.snap = await _snap()

    if opts.when == "final" and not timed_out and (result.ok or not stop_on_error):
        result.snap = await _snap()
    if not result.ok:
        result.n = completed
    logger.debug("Batch finished: %d/%d steps, ok=%s", completed, len(steps), result.ok)
    return result
