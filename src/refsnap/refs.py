# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Element reference manager: stable short ids for extracted selectors.

Identity is selector-based.  The same selector always maps to the same id
within a navigation epoch; two different nodes producing one selector share
a ref (last write wins on the descriptive fields).  ``clear()`` starts a new
epoch and is called on navigation and page switch.

Positions live in their own id → Position map, refreshed from every
extraction, so fast dispatch never depends on extraction order.
"""

from __future__ import annotations

import logging
import re

from playwright.async_api import Locator, Page

from . import ElementRef, Position
from .errors import TargetNotFoundError

logger = logging.getLogger(__name__)

REF_ID_RE = re.compile(r"^e\d+$")


def is_ref_id(value: str) -> bool:
    return bool(REF_ID_RE.match(value))


class RefManager:
    """Ref allocation and resolution for one page context."""

    def __init__(self) -> None:
        self._refs: dict[str, ElementRef] = {}
        self._selector_to_id: dict[str, str] = {}
        self._positions: dict[str, Position] = {}
        self._counter = 0

    def get_or_create(
        self,
        selector: str,
        role: str,
        name: str,
        tag: str,
        attributes: dict[str, str] | None = None,
    ) -> str:
        """Return the id for ``selector``, allocating ``e<n>`` on first sight."""
        existing = self._selector_to_id.get(selector)
        if existing is not None:
            ref = self._refs[existing]
            ref.role = role
            ref.name = name
            ref.tag = tag
            ref.attributes = dict(attributes or {})
            return existing

        self._counter += 1
        ref_id = f"e{self._counter}"
        self._refs[ref_id] = ElementRef(
            id=ref_id,
            selector=selector,
            role=role,
            name=name,
            tag=tag,
            attributes=dict(attributes or {}),
        )
        self._selector_to_id[selector] = ref_id
        return ref_id

    def resolve(self, ref_id: str) -> ElementRef | None:
        return self._refs.get(ref_id)

    # -- Positions --

    def set_position(self, ref_id: str, position: Position | None) -> None:
        if position is None:
            self._positions.pop(ref_id, None)
        else:
            self._positions[ref_id] = position

    def position(self, ref_id: str) -> Position | None:
        return self._positions.get(ref_id)

    def clear_positions(self) -> None:
        self._positions.clear()

    @property
    def has_positions(self) -> bool:
        return bool(self._positions)

    # -- Locators --

    def selector_for(self, target: str) -> str:
        """Map a ref id to its selector; anything else is already a selector."""
        if is_ref_id(target):
            ref = self.resolve(target)
            if ref is None:
                raise TargetNotFoundError(
                    f"Unknown element ref: {target}. Take a new snapshot to refresh refs.",
                    target=target,
                )
            return ref.selector
        return target

    def locator(self, page: Page, target: str) -> Locator:
        return page.locator(self.selector_for(target))

    # -- Bulk --

    def all(self) -> list[ElementRef]:
        return list(self._refs.values())

    def remove(self, ids: list[str]) -> None:
        for ref_id in ids:
            ref = self._refs.pop(ref_id, None)
            if ref is not None:
                self._selector_to_id.pop(ref.selector, None)
            self._positions.pop(ref_id, None)

    def count(self) -> int:
        return len(self._refs)

    def clear(self) -> None:
        """Start a new epoch: forget every ref and restart numbering at e1."""
        self._refs.clear()
        self._selector_to_id.clear()
        self._positions.clear()
        self._counter = 0
        logger.debug("Refs cleared")
