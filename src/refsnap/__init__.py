# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""refsnap: snapshot, ref and fast-action core for browser automation tools.

Turns a live page's interactive surface into short, stable refs (e1, e2, ...)
rendered in a token-efficient text format:
- elements: interactive candidates extracted in one in-page pass
- refs: selector-keyed identities that survive repeated extraction
- positions: cached centre coordinates used for direct input dispatch
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True, slots=True)
class Position:
    """Viewport-centre coordinates of an element."""

    x: int
    y: int


@dataclass
class ExtractedElement:
    """A single interactive candidate produced by the extractor."""

    selector: str
    role: str
    name: str
    tag: str
    attributes: dict[str, str] = field(default_factory=dict)
    x: int | None = None  # lifted from the private _x attribute
    y: int | None = None

    @property
    def position(self) -> Position | None:
        if self.x is None or self.y is None:
            return None
        return Position(self.x, self.y)

    @classmethod
    def from_raw(cls, raw: dict) -> ExtractedElement:
        """Build from the in-page script's JSON shape (private ``_x``/``_y`` attrs)."""
        attrs: dict[str, str] = {}
        x = y = None
        for key, value in (raw.get("attributes") or {}).items():
            if value is None:
                continue
            if key == "_x":
                x = _to_int(value)
            elif key == "_y":
                y = _to_int(value)
            elif not key.startswith("_"):
                attrs[key] = str(value)
        return cls(
            selector=str(raw.get("selector", "")),
            role=str(raw.get("role", "")),
            name=str(raw.get("name", "")),
            tag=str(raw.get("tag", "")),
            attributes=attrs,
            x=x,
            y=y,
        )


@dataclass
class ElementRef:
    """An element identified by a short ref id (``e`` + counter)."""

    id: str
    selector: str
    role: str
    name: str
    tag: str
    attributes: dict[str, str] = field(default_factory=dict)


@dataclass
class PrunedSnapshot:
    """A rendered snapshot kept as the baseline for diffing."""

    url: str
    title: str
    elements: list[ElementRef]
    hash: str
    timestamp: float


@dataclass(frozen=True, slots=True)
class ModifiedRef:
    id: str
    changes: str


@dataclass
class SnapshotDiff:
    """Difference between a baseline snapshot and the current refs."""

    added: list[ElementRef] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)  # ids only
    modified: list[ModifiedRef] = field(default_factory=list)
    unchanged: int = 0

    @property
    def is_degenerate(self) -> bool:
        """True when nothing was carried over from the baseline."""
        return self.unchanged == 0 and not self.modified and not self.removed

    @property
    def total(self) -> int:
        return len(self.added) + len(self.modified) + self.unchanged + len(self.removed)


def _to_int(value) -> int | None:
    try:
        return int(round(float(value)))
    except (TypeError, ValueError):
        return None
