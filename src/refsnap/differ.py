# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Snapshot diffing keyed by ref id.

Pure functions, no browser dependencies.  Every id in the union of the
baseline and the current refs lands in exactly one bucket: added, removed,
modified or unchanged.
"""

from __future__ import annotations

import hashlib

from . import ElementRef, ModifiedRef, PrunedSnapshot, SnapshotDiff


def compute_snapshot_hash(elements: list[ElementRef]) -> str:
    """Short md5 over id/role/name/selector, for quick equality checks."""
    content = "|".join(f"{e.id}:{e.role}:{e.name}:{e.selector}" for e in elements)
    return hashlib.md5(content.encode("utf-8"), usedforsecurity=False).hexdigest()[:8]


def _changes(prev: ElementRef, cur: ElementRef) -> str:
    parts: list[str] = []
    if prev.name != cur.name:
        parts.append(f'name: "{cur.name}"')
    if prev.role != cur.role:
        parts.append(f"role: {cur.role}")
    return ", ".join(parts)


def compute_diff(previous: PrunedSnapshot | None, current: list[ElementRef]) -> SnapshotDiff:
    """Diff ``current`` against the ``previous`` baseline.

    No baseline → everything is added.
    """
    if previous is None:
        return SnapshotDiff(added=list(current))

    prev_by_id = {el.id: el for el in previous.elements}
    cur_ids: set[str] = set()
    diff = SnapshotDiff()

    for el in current:
        if el.id in cur_ids:
            continue
        cur_ids.add(el.id)
        prev = prev_by_id.get(el.id)
        if prev is None:
            diff.added.append(el)
            continue
        changes = _changes(prev, el)
        if changes:
            diff.modified.append(ModifiedRef(id=el.id, changes=changes))
        else:
            diff.unchanged += 1

    seen_removed: set[str] = set()
    for el in previous.elements:
        if el.id not in cur_ids and el.id not in seen_removed:
            seen_removed.add(el.id)
            diff.removed.append(el.id)
    return diff
