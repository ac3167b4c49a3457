# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""PageContext — per-page ref epoch and diff baseline.

Leaf module with minimal dependencies.  One PageContext exists per named
page, so two pages never share ref numbering or a diff baseline.
"""

from __future__ import annotations

import dataclasses
import logging

from . import PrunedSnapshot
from .refs import RefManager

logger = logging.getLogger(__name__)


@dataclasses.dataclass(slots=True)
class PageContext:
    """State carried between tool calls against one page."""

    name: str
    refs: RefManager = dataclasses.field(default_factory=RefManager)
    baseline: PrunedSnapshot | None = None
    epoch: int = 0

    def new_epoch(self) -> None:
        """Invalidate every ref and the diff baseline (navigation / page switch)."""
        self.refs.clear()
        self.baseline = None
        self.epoch += 1
        logger.debug("Page %s entered epoch %d", self.name, self.epoch)
