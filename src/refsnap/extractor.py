# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""In-page interactive element extraction.

The extraction logic ships as a data-only script payload, installed once per
document as ``window.__refsnapExtract`` and called many times afterwards.
The same rules are mirrored in ``dom_rules.py`` for offline use and tests.

One ``querySelectorAll`` feeds two passes: the first collects visible
elements and their bounding rectangles (stopping at ``maxElements``), the
second derives selector, name, role and attributes without touching layout.
"""

from __future__ import annotations

import logging
import os

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page

from . import ExtractedElement
from .errors import ExtractionError

logger = logging.getLogger(__name__)


def _max_elements_from_env() -> int:
    raw = os.environ.get("REFSNAP_MAX_ELEMENTS", "").strip()
    if not raw:
        return 100
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Ignoring invalid REFSNAP_MAX_ELEMENTS=%r", raw)
        return 100
    return value if value > 0 else 100


DEFAULT_MAX_ELEMENTS = _max_elements_from_env()

# ── Script payload (static, no interpolation) ──────────────────────

EXTRACTION_SCRIPT = r"""(() => {
window.__refsnapExtract = function(scopeSel, maxElements) {
  const results = [];
  const scopeEl = document.querySelector(scopeSel || 'body');
  if (!scopeEl) return { elements: results, hash: 0 };

  const INTERACTIVE = 'a[href],button,input,select,textarea,' +
    '[role="button"],[role="link"],[role="textbox"],[role="checkbox"],' +
    '[role="radio"],[role="combobox"],[role="tab"],[role="menuitem"],' +
    '[onclick],[tabindex]:not([tabindex="-1"])';
  const els = scopeEl.querySelectorAll(INTERACTIVE);
  const max = maxElements || 100;

  const visibleEls = [];
  const rects = [];
  for (let i = 0; i < els.length && visibleEls.length < max; i++) {
    const el = els[i];
    if (el.getAttribute('aria-hidden') === 'true') continue;
    const rect = el.getBoundingClientRect();
    if (rect.width > 0 && rect.height > 0) {
      visibleEls.push(el);
      rects.push(rect);
    }
  }

  const selectorCounts = new Map();
  let hash = 0;
  for (let i = 0; i < visibleEls.length; i++) {
    const el = visibleEls[i];
    const rect = rects[i];
    const tag = el.tagName.toLowerCase();
    const type = el.getAttribute('type');

    let selector;
    if (el.id) {
      selector = '#' + CSS.escape(el.id);
    } else if (el.getAttribute('data-testid')) {
      selector = '[data-testid="' + CSS.escape(el.getAttribute('data-testid')) + '"]';
    } else if (el.getAttribute('name') && (tag === 'input' || tag === 'select' || tag === 'textarea')) {
      selector = tag + '[name="' + CSS.escape(el.getAttribute('name')) + '"]';
    } else {
      selector = type ? tag + '[type="' + type + '"]' : tag;
      const count = (selectorCounts.get(selector) || 0) + 1;
      selectorCounts.set(selector, count);
      if (count > 1) selector = selector + ':nth-of-type(' + count + ')';
    }

    let name = el.getAttribute('aria-label') || el.getAttribute('title') ||
               el.getAttribute('placeholder') || '';
    if (!name) {
      const text = (el.textContent || '').trim();
      name = text.length > 50 ? text.substring(0, 47) + '...' : text;
    }

    const attrs = {};
    const href = el.getAttribute('href');
    const placeholder = el.getAttribute('placeholder');
    if (type) attrs.type = type;
    if (href) attrs.href = href;
    if (placeholder) attrs.placeholder = placeholder;
    if (el.hasAttribute('disabled')) attrs.disabled = 'true';
    if (el.hasAttribute('checked')) attrs.checked = 'true';
    if (el.hasAttribute('required')) attrs.required = 'true';
    attrs._x = Math.round(rect.left + rect.width / 2);
    attrs._y = Math.round(rect.top + rect.height / 2);

    hash = ((hash << 5) - hash + selector.length + name.length) | 0;

    const implicitRole = tag === 'a' ? 'link' :
      tag === 'button' ? 'button' :
      tag === 'select' ? 'combobox' :
      tag === 'textarea' ? 'textbox' :
      tag === 'input' ? (type === 'checkbox' ? 'checkbox' :
                         type === 'radio' ? 'radio' :
                         (type === 'submit' || type === 'button' || type === 'reset') ? 'button' :
                         'textbox') : '';

    results.push({
      selector: selector,
      role: el.getAttribute('role') || implicitRole,
      name: name,
      tag: tag,
      attributes: attrs
    });
  }
  return { elements: results, hash: hash };
};

if (typeof window.__refsnapMutations !== 'number') window.__refsnapMutations = 0;
if (!window.__refsnapObserver || window.__refsnapObservedRoot !== document.documentElement) {
  if (window.__refsnapObserver) window.__refsnapObserver.disconnect();
  window.__refsnapObserver = new MutationObserver(() => { window.__refsnapMutations++; });
  window.__refsnapObserver.observe(document.documentElement, {
    childList: true,
    subtree: true,
    attributes: true,
    attributeFilter: ['disabled', 'checked', 'value', 'aria-hidden', 'hidden']
  });
  window.__refsnapObservedRoot = document.documentElement;
}
return true;
})()"""

_HAS_SCRIPT_JS = "() => typeof window.__refsnapExtract === 'function'"
_CALL_JS = "([scope, max]) => window.__refsnapExtract(scope, max)"
_MUTATION_COUNT_JS = "() => (typeof window.__refsnapMutations === 'number' ? window.__refsnapMutations : -1)"


async def inject(page: Page) -> None:
    """Install the payload and mutation observer (idempotent)."""
    await page.evaluate(EXTRACTION_SCRIPT)


async def ensure_injected(page: Page) -> None:
    """Install the payload unless the current document already has it.

    A navigation or reload replaces ``window``, so presence is checked
    in-page rather than remembered per page object.
    """
    try:
        present = await page.evaluate(_HAS_SCRIPT_JS)
    except PlaywrightError:
        logger.debug("Injection probe failed, injecting anyway", exc_info=True)
        present = False
    if not present:
        await inject(page)


async def read_mutation_count(page: Page) -> int:
    """Current value of the page-resident mutation counter (-1 if not installed)."""
    value = await page.evaluate(_MUTATION_COUNT_JS)
    try:
        return int(value)
    except (TypeError, ValueError):
        return -1


async def extract_elements(
    page: Page,
    scope: str | None = None,
    max_elements: int | None = None,
) -> tuple[list[ExtractedElement], int]:
    """Run the in-page extraction and return ``(elements, hash)``.

    A failing call (payload missing after a navigation race, or threw) is
    retried once after reinjecting; a second failure raises ExtractionError.
    """
    limit = max_elements or DEFAULT_MAX_ELEMENTS
    args = [scope or "body", limit]

    await ensure_injected(page)
    try:
        raw = await page.evaluate(_CALL_JS, args)
    except PlaywrightError as first:
        logger.info("Extraction failed (%s), reinjecting once", first)
        try:
            await inject(page)
            raw = await page.evaluate(_CALL_JS, args)
        except PlaywrightError as second:
            raise ExtractionError(f"Element extraction failed after reinjection: {second}") from second

    if not isinstance(raw, dict):
        raise ExtractionError(f"Element extraction returned {type(raw).__name__}, expected object")

    elements = [ExtractedElement.from_raw(item) for item in raw.get("elements") or []]
    content_hash = int(raw.get("hash") or 0)
    logger.debug("Extracted %d elements (scope=%s cap=%d hash=%d)", len(elements), scope or "body", limit, content_hash)
    return elements, content_hash
