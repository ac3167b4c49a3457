# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Turn extracted elements into refs.

Assigns ref ids through the RefManager, records each ref's position for
fast dispatch, and strips private attributes.  Also provides the optional
collapse of long runs of same-kind elements.
"""

from __future__ import annotations

from collections import OrderedDict

from . import ElementRef, ExtractedElement
from .extractor import DEFAULT_MAX_ELEMENTS
from .refs import RefManager

COLLAPSE_THRESHOLD = 5
COLLAPSE_KEEP = 3


def to_refs(
    elements: list[ExtractedElement],
    refs: RefManager,
    max_elements: int | None = None,
) -> list[ElementRef]:
    """Register ``elements`` with ``refs`` and return one ElementRef per id.

    Positions are replaced wholesale: refs absent from this extraction lose
    their cached position.  Two elements sharing a selector share an id; the
    later one wins and the ref keeps its first slot in document order.
    """
    limit = max_elements or DEFAULT_MAX_ELEMENTS
    refs.clear_positions()
    by_id: OrderedDict[str, ElementRef] = OrderedDict()

    for el in elements[:limit]:
        attrs = {k: str(v) for k, v in el.attributes.items() if not k.startswith("_") and v is not None}
        ref_id = refs.get_or_create(el.selector, el.role, el.name, el.tag, attrs)
        refs.set_position(ref_id, el.position)
        by_id[ref_id] = ElementRef(
            id=ref_id,
            selector=el.selector,
            role=el.role,
            name=el.name,
            tag=el.tag,
            attributes=attrs,
        )
    return list(by_id.values())


def collapse_repetitive(
    elements: list[ElementRef],
    threshold: int = COLLAPSE_THRESHOLD,
) -> list[ElementRef]:
    """Collapse groups of more than ``threshold`` same tag+role refs.

    The first ``COLLAPSE_KEEP`` members of such a group stay in place,
    followed by a synthetic ``note`` entry summarising the rest.
    """
    groups: dict[str, list[ElementRef]] = {}
    for el in elements:
        groups.setdefault(f"{el.tag}:{el.role}", []).append(el)

    result: list[ElementRef] = []
    emitted: set[str] = set()
    for el in elements:
        key = f"{el.tag}:{el.role}"
        group = groups[key]
        if len(group) <= threshold:
            result.append(el)
            continue
        if key in emitted:
            continue
        emitted.add(key)
        result.extend(group[:COLLAPSE_KEEP])
        result.append(
            ElementRef(
                id=f"{key}-summary",
                selector="",
                role="note",
                name=f"... and {len(group) - COLLAPSE_KEEP} more {el.tag} elements",
                tag="span",
            )
        )
    return result
