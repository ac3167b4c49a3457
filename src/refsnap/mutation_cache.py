# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Per-page extraction cache driven by the in-page mutation counter.

An explicit arena: page id → CacheEntry.  Entries are dropped when the page
emits ``close`` and invalidated on navigation.  A cached extraction is
served while the page's mutation counter is unchanged and the entry is
younger than the staleness window.

NOTE: Not thread-safe. All access happens on the event loop thread.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

from playwright.async_api import Page

from . import ExtractedElement
from .extractor import DEFAULT_MAX_ELEMENTS, extract_elements, read_mutation_count

logger = logging.getLogger(__name__)

STALE_AFTER_SECONDS = 5.0


@dataclass
class CacheEntry:
    """Last extraction for one page."""

    elements: list[ExtractedElement]
    hash: int
    mutation_count: int
    timestamp: float  # time.monotonic()
    scope: str | None = None
    max_elements: int = DEFAULT_MAX_ELEMENTS

    def is_stale(self, now: float | None = None) -> bool:
        now = time.monotonic() if now is None else now
        return (now - self.timestamp) >= STALE_AFTER_SECONDS


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    invalidations: int = 0
    evictions: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0


class MutationCache:
    """Page-id keyed extraction cache."""

    def __init__(self) -> None:
        self._entries: dict[int, CacheEntry] = {}
        self._tracked: set[int] = set()
        self.stats = CacheStats()

    def _track(self, page: Page) -> int:
        key = id(page)
        if key not in self._tracked:
            self._tracked.add(key)
            page.on("close", lambda _page: self.drop(key))
        return key

    def entry(self, page: Page) -> CacheEntry | None:
        return self._entries.get(id(page))

    async def get(
        self,
        page: Page,
        scope: str | None = None,
        max_elements: int | None = None,
        skip_cache: bool = False,
    ) -> list[ExtractedElement]:
        """Return the page's interactive elements, re-extracting only when needed."""
        key = self._track(page)
        limit = max_elements or DEFAULT_MAX_ELEMENTS

        cached = self._entries.get(key)
        if not skip_cache and cached is not None and cached.scope == scope and cached.max_elements == limit:
            count = await read_mutation_count(page)
            if count == cached.mutation_count and not cached.is_stale():
                self.stats.hits += 1
                logger.debug("Extraction cache hit (mutations=%d)", count)
                return cached.elements

        self.stats.misses += 1
        elements, content_hash = await extract_elements(page, scope, limit)
        count = await read_mutation_count(page)
        self._entries[key] = CacheEntry(
            elements=elements,
            hash=content_hash,
            mutation_count=count,
            timestamp=time.monotonic(),
            scope=scope,
            max_elements=limit,
        )
        return elements

    def invalidate(self, page: Page) -> None:
        """Forget the page's last extraction (navigation, page switch)."""
        if self._entries.pop(id(page), None) is not None:
            self.stats.invalidations += 1
            logger.debug("Extraction cache invalidated for page %x", id(page))

    def drop(self, key: int) -> None:
        """Remove a closed page from the arena."""
        self._tracked.discard(key)
        if self._entries.pop(key, None) is not None:
            self.stats.evictions += 1
        logger.debug("Extraction cache dropped closed page %x", key)

    def __len__(self) -> int:
        return len(self._entries)
