# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for refsnap.extractor — injection, reinjection retry, env config."""

from __future__ import annotations

import pytest
from _page_helpers import login_form, make_page

from refsnap import extractor
from refsnap.errors import ExtractionError
from refsnap.extractor import (
    _CALL_JS,
    EXTRACTION_SCRIPT,
    ensure_injected,
    extract_elements,
    read_mutation_count,
)


def _scripts(page) -> list[str]:
    return [c.args[0] for c in page.evaluate.call_args_list]


class TestPayload:
    def test_payload_installs_functions_and_observer(self):
        assert "window.__refsnapExtract = function(scopeSel, maxElements)" in EXTRACTION_SCRIPT
        assert "window.__refsnapMutations" in EXTRACTION_SCRIPT
        assert "MutationObserver" in EXTRACTION_SCRIPT
        assert "visibleEls.length < max" in EXTRACTION_SCRIPT

    def test_payload_is_static(self):
        assert "{scope" not in EXTRACTION_SCRIPT
        assert "%s" not in EXTRACTION_SCRIPT


class TestInjection:
    async def test_injects_when_missing(self):
        page = make_page()
        page.state.injected = False
        await ensure_injected(page)
        assert EXTRACTION_SCRIPT in _scripts(page)

    async def test_skips_when_present(self):
        page = make_page()
        await ensure_injected(page)
        assert EXTRACTION_SCRIPT not in _scripts(page)

    async def test_mutation_count(self):
        assert await read_mutation_count(make_page(mutations=7)) == 7


class TestExtractElements:
    async def test_returns_elements_and_hash(self):
        page = make_page(login_form())
        elements, content_hash = await extract_elements(page)
        assert [e.selector for e in elements][:2] == ["#home", 'input[type="email"]']
        assert content_hash == 5

    async def test_scope_and_limit_forwarded(self):
        page = make_page(login_form())
        elements, _ = await extract_elements(page, "form", 2)
        assert len(elements) == 2
        call = next(c for c in page.evaluate.call_args_list if c.args[0] == _CALL_JS)
        assert call.args[1] == ["form", 2]

    async def test_reinjects_once(self):
        page = make_page(login_form())
        page.state.fail_next = 1
        elements, _ = await extract_elements(page)
        assert len(elements) == 5
        assert page.state.extract_calls == 2
        assert EXTRACTION_SCRIPT in _scripts(page)

    async def test_second_failure_raises(self):
        page = make_page(login_form())
        page.state.fail_next = 2
        with pytest.raises(ExtractionError, match="after reinjection"):
            await extract_elements(page)

    async def test_non_object_result_raises(self):
        page = make_page()

        async def evaluate(script, arg=None):
            return "oops" if script == _CALL_JS else True

        page.evaluate.side_effect = evaluate
        with pytest.raises(ExtractionError, match="expected object"):
            await extract_elements(page)


class TestMaxElementsEnv:
    @pytest.mark.parametrize(("raw", "expected"), [("", 100), ("25", 25), ("abc", 100), ("0", 100), ("-3", 100)])
    def test_env_override(self, monkeypatch, raw, expected):
        monkeypatch.setenv("REFSNAP_MAX_ELEMENTS", raw)
        assert extractor._max_elements_from_env() == expected

