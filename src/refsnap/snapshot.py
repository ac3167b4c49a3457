# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Snapshot pipeline: Extractor → Mutation Cache → Refs → Formatter."""

from __future__ import annotations

import logging
import time

from playwright.async_api import Page

from .context import PageContext
from .formatter import SNAPSHOT_FORMATS, render_snapshot
from .mutation_cache import MutationCache
from .pruner import collapse_repetitive, to_refs

logger = logging.getLogger(__name__)


async def take_snapshot(
    page: Page,
    ctx: PageContext,
    cache: MutationCache,
    *,
    scope: str | None = None,
    fmt: str = "compact",
    max_elements: int | None = None,
    skip_cache: bool | None = None,
    collapse: bool = False,
) -> str:
    """Extract (or reuse) the page's interactive elements and render them.

    Diff snapshots always re-extract so the comparison reflects the live
    page.  Refs are registered before collapsing so collapsed elements keep
    their ids for later actions.
    """
    if fmt not in SNAPSHOT_FORMATS:
        raise ValueError(f"Unknown snapshot format: {fmt!r}. Use one of: {', '.join(SNAPSHOT_FORMATS)}")
    if skip_cache is None:
        skip_cache = fmt == "diff"

    t0 = time.monotonic()
    elements = await cache.get(page, scope=scope, max_elements=max_elements, skip_cache=skip_cache)
    refs = to_refs(elements, ctx.refs, max_elements)
    if collapse:
        refs = collapse_repetitive(refs)

    title = await page.title()
    text = render_snapshot(refs, page.url, title, fmt, ctx)
    logger.debug(
        "Snapshot %s: %d refs, format=%s, %.0fms",
        ctx.name,
        len(refs),
        fmt,
        (time.monotonic() - t0) * 1000,
    )
    return text
