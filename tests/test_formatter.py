# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for refsnap.formatter — compact grammar, full/minimal output, diff rendering."""

from __future__ import annotations

import pytest

from refsnap import ElementRef
from refsnap.context import PageContext
from refsnap.formatter import (
    compact_token,
    format_compact,
    format_full,
    format_minimal,
    render_snapshot,
)


def _ref(ref_id="e1", tag="button", role="button", name="", **attrs) -> ElementRef:
    return ElementRef(id=ref_id, selector=f"#{ref_id}", role=role, name=name, tag=tag, attributes=attrs)


class TestCompactToken:
    def test_button(self):
        assert compact_token(_ref(name="Go")) == 'btn#e1"Go"'

    def test_email_input(self):
        el = _ref(tag="input", role="textbox", name="Email", type="email", placeholder="Email", required="true")
        assert compact_token(el) == 'inp#e1@e~"Email"!r'

    def test_link_path(self):
        el = _ref("e3", "a", "link", "Sign in", href="/login")
        assert compact_token(el) == 'a#e3/login"Sign in"'

    def test_absolute_url_reduced_to_path(self):
        el = _ref("e4", "a", "link", "Docs", href="https://example.com/docs/intro?lang=en")
        assert compact_token(el) == 'a#e4/docs/intro?lang=en"Docs"'

    @pytest.mark.parametrize("href", ["#top", "javascript:void(0)", "/"])
    def test_unhelpful_paths_omitted(self, href):
        assert compact_token(_ref("e2", "a", "link", "Top", href=href)) == 'a#e2"Top"'

    def test_type_only_for_inputs_and_buttons(self):
        assert compact_token(_ref(tag="button", name="Ok", type="submit")) == 'btn#e1@sb"Ok"'
        assert compact_token(_ref(tag="a", role="link", name="x", type="submit")) == 'a#e1"x"'

    def test_unknown_type_and_tag_verbatim(self):
        el = _ref(tag="input", role="slider", type="range")
        assert compact_token(el) == "inp#e1@range"
        assert compact_token(_ref(tag="div", role="tab", name="Tab")) == 'div#e1"Tab"'

    def test_name_equal_to_placeholder_omitted(self):
        el = _ref(tag="textarea", role="textbox", name="Notes", placeholder="Notes")
        assert compact_token(el) == 'txt#e1~"Notes"'

    def test_quotes_replaced(self):
        assert compact_token(_ref(name='Say "hi"')) == "btn#e1\"Say 'hi'\""

    def test_truncation(self):
        token = compact_token(_ref(name="x" * 40))
        assert token == 'btn#e1"' + "x" * 29 + '…"'
        placeholder = compact_token(_ref(tag="input", role="textbox", placeholder="p" * 25))
        assert placeholder == 'inp#e1~"' + "p" * 19 + '…"'

    def test_flags_order(self):
        el = _ref(tag="input", role="checkbox", type="checkbox", disabled="true", checked="true", required="true")
        assert compact_token(el) == "inp#e1@c!d!c!r"

    def test_format_compact_is_deterministic(self):
        elements = [_ref("e1", name="A"), _ref("e2", name="B")]
        assert format_compact(elements) == 'btn#e1"A"\nbtn#e2"B"'
        assert format_compact(elements) == format_compact(list(elements))


class TestFullAndMinimal:
    def test_full(self):
        elements = [
            _ref("e1", name="Save & close"),
            _ref("e2", "input", "textbox", "", type="text", placeholder="Name"),
            _ref("e3", "div", "tab", "Details"),
        ]
        out = format_full(elements, "https://example.com/", "Form")
        assert out.splitlines() == [
            "Page: Form",
            "URL: https://example.com/",
            "---",
            '<button id="e1">Save &amp; close</button>',
            '<input id="e2" type="text" placeholder="Name">',
            '<div id="e3" role="tab">Details</div>',
        ]

    def test_full_empty(self):
        assert format_full([], "u", "t") == "Page: t\nURL: u\n---"

    def test_minimal_counts(self):
        elements = [
            _ref("e1"),
            _ref("e2", "a", "link"),
            _ref("e3", "a", "link"),
            _ref("e4", "input", "textbox"),
            _ref("e5", "input", "checkbox"),
        ]
        assert format_minimal(elements, "Home") == "Page: Home\nElements: 5 (1 buttons, 2 links, 2 inputs)"


class TestRenderSnapshot:
    def test_compact_sets_baseline(self):
        ctx = PageContext("p")
        render_snapshot([_ref(name="A")], "u", "t", "compact", ctx)
        assert ctx.baseline is not None
        assert [e.id for e in ctx.baseline.elements] == ["e1"]

    def test_minimal_leaves_baseline(self):
        ctx = PageContext("p")
        render_snapshot([_ref()], "u", "t", "minimal", ctx)
        assert ctx.baseline is None

    def test_diff_without_baseline_falls_back_to_compact(self):
        ctx = PageContext("p")
        out = render_snapshot([_ref(name="A")], "u", "t", "diff", ctx)
        assert out == 'btn#e1"A"'
        assert ctx.baseline is not None

    def test_diff_against_baseline(self):
        ctx = PageContext("p")
        render_snapshot([_ref("e1", name="A"), _ref("e2", name="B"), _ref("e3", name="C")], "u", "t", "full", ctx)
        out = render_snapshot(
            [_ref("e1", name="A"), _ref("e2", name="B2"), _ref("e4", name="D")],
            "u",
            "t",
            "diff",
            ctx,
        )
        assert out.splitlines() == [
            "+ Added 1 elements:",
            'btn#e4"D"',
            "- Removed: e3",
            "~ Modified 1 elements:",
            '  e2: name: "B2"',
            "= 1 elements unchanged",
        ]
        # the diff itself becomes the next baseline
        assert render_snapshot([_ref("e1", name="A")], "u", "t", "diff", ctx).splitlines() == [
            "- Removed: e2, e4",
            "= 1 elements unchanged",
        ]

    def test_new_epoch_resets_diff(self):
        ctx = PageContext("p")
        render_snapshot([_ref(name="A")], "u", "t", "compact", ctx)
        ctx.new_epoch()
        assert render_snapshot([_ref(name="A")], "u", "t", "diff", ctx) == 'btn#e1"A"'

    def test_unknown_format(self):
        with pytest.raises(ValueError, match="Unknown snapshot format"):
            render_snapshot([], "u", "t", "yaml", PageContext("p"))
