# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for refsnap.pruner — extraction to refs, positions, collapse."""

from __future__ import annotations

from refsnap import ElementRef, ExtractedElement, Position
from refsnap.pruner import COLLAPSE_KEEP, collapse_repetitive, to_refs
from refsnap.refs import RefManager


def _extracted(selector, name="x", *, x=None, y=None, **attrs) -> ExtractedElement:
    return ExtractedElement(selector=selector, role="button", name=name, tag="button", attributes=attrs, x=x, y=y)


class TestToRefs:
    def test_assigns_ids_and_positions(self):
        refs = RefManager()
        out = to_refs([_extracted("#a", x=10, y=20), _extracted("#b")], refs)
        assert [r.id for r in out] == ["e1", "e2"]
        assert refs.position("e1") == Position(10, 20)
        assert refs.position("e2") is None

    def test_private_attributes_dropped(self):
        out = to_refs([_extracted("#a", _hidden="1", type="submit")], RefManager())
        assert out[0].attributes == {"type": "submit"}

    def test_positions_replaced_wholesale(self):
        refs = RefManager()
        to_refs([_extracted("#a", x=1, y=1), _extracted("#b", x=2, y=2)], refs)
        to_refs([_extracted("#b", x=5, y=5)], refs)
        assert refs.position("e1") is None
        assert refs.position("e2") == Position(5, 5)

    def test_repeated_extraction_is_stable(self):
        refs = RefManager()
        first = to_refs([_extracted("#a"), _extracted("#b")], refs)
        second = to_refs([_extracted("#b"), _extracted("#a")], refs)
        assert {r.selector: r.id for r in first} == {r.selector: r.id for r in second}

    def test_duplicate_selector_later_wins(self):
        refs = RefManager()
        out = to_refs([_extracted("#dup", "first"), _extracted("#other"), _extracted("#dup", "second")], refs)
        assert [(r.id, r.name) for r in out] == [("e1", "second"), ("e2", "x")]

    def test_limit(self):
        out = to_refs([_extracted(f"#b{i}") for i in range(10)], RefManager(), max_elements=3)
        assert len(out) == 3


def _ref(i: int, tag: str = "a", role: str = "link") -> ElementRef:
    return ElementRef(id=f"e{i}", selector=f"#r{i}", role=role, name=f"item {i}", tag=tag)


class TestCollapse:
    def test_small_groups_untouched(self):
        elements = [_ref(i) for i in range(1, 6)]
        assert collapse_repetitive(elements) == elements

    def test_large_group_summarised(self):
        links = [_ref(i) for i in range(1, 9)]
        button = _ref(9, "button", "button")
        out = collapse_repetitive([*links, button])
        assert [e.id for e in out[:COLLAPSE_KEEP]] == ["e1", "e2", "e3"]
        summary = out[COLLAPSE_KEEP]
        assert summary.id == "a:link-summary"
        assert summary.role == "note"
        assert summary.tag == "span"
        assert summary.name == "... and 5 more a elements"
        assert out[-1] is button
        assert len(out) == COLLAPSE_KEEP + 2

    def test_custom_threshold(self):
        elements = [_ref(i) for i in range(1, 5)]
        assert len(collapse_repetitive(elements, threshold=3)) == COLLAPSE_KEEP + 1
