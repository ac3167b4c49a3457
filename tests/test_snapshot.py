# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for refsnap.snapshot — the extract → cache → refs → format pipeline."""

from __future__ import annotations

import pytest
from _page_helpers import login_form, make_page, raw_element

from refsnap.context import PageContext
from refsnap.mutation_cache import MutationCache
from refsnap.snapshot import take_snapshot

LOGIN_COMPACT = "\n".join(
    [
        'a#e1"Home"',
        'inp#e2@e~"Email"!r',
        'inp#e3@p"Password"',
        'inp#e4@c"Remember me"',
        'btn#e5@sb"Sign in"',
    ]
)


class TestTakeSnapshot:
    async def test_compact(self):
        page = make_page(login_form())
        out = await take_snapshot(page, PageContext("default"), MutationCache())
        assert out == LOGIN_COMPACT

    async def test_consecutive_snapshots_are_identical(self):
        page = make_page(login_form())
        ctx, cache = PageContext("default"), MutationCache()
        first = await take_snapshot(page, ctx, cache)
        second = await take_snapshot(page, ctx, cache)
        assert first == second
        assert page.state.extract_calls == 1

    async def test_refs_survive_reextraction(self):
        page = make_page(login_form())
        ctx, cache = PageContext("default"), MutationCache()
        await take_snapshot(page, ctx, cache)
        page.state.elements.insert(0, raw_element("#banner", "button", "Dismiss", "button", x=5, y=5))
        page.state.mutations += 1
        out = await take_snapshot(page, ctx, cache)
        assert out.splitlines()[0] == 'btn#e6"Dismiss"'
        assert 'btn#e5@sb"Sign in"' in out

    async def test_positions_recorded(self):
        page = make_page(login_form())
        ctx = PageContext("default")
        await take_snapshot(page, ctx, MutationCache())
        assert ctx.refs.position("e5").x == 300

    async def test_diff_always_reextracts(self):
        page = make_page(login_form())
        ctx, cache = PageContext("default"), MutationCache()
        await take_snapshot(page, ctx, cache)
        page.state.elements[4]["name"] = "Log in"
        out = await take_snapshot(page, ctx, cache, fmt="diff")
        assert page.state.extract_calls == 2
        assert out.splitlines() == ["~ Modified 1 elements:", '  e5: name: "Log in"', "= 4 elements unchanged"]

    async def test_full_header(self):
        page = make_page(login_form(), url="https://example.com/login", title="Sign in")
        out = await take_snapshot(page, PageContext("default"), MutationCache(), fmt="full")
        assert out.startswith("Page: Sign in\nURL: https://example.com/login\n---\n")

    async def test_collapse_keeps_ids(self):
        links = [raw_element(f"#l{i}", "link", f"Item {i}", "a", href=f"/p/{i}") for i in range(8)]
        page = make_page(links)
        ctx = PageContext("default")
        out = await take_snapshot(page, ctx, MutationCache(), collapse=True)
        assert out.splitlines()[-1] == 'span#a:link-summary"... and 5 more a elements"'
        assert ctx.refs.count() == 8

    async def test_unknown_format(self):
        with pytest.raises(ValueError, match="Unknown snapshot format"):
            await take_snapshot(make_page(), PageContext("default"), MutationCache(), fmt="yaml")
