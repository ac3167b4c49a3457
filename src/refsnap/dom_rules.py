# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Interactive-element rules evaluated in Python over lxml documents.

Mirrors the in-page extraction payload in ``extractor.py`` rule for rule:
interactive predicate, selector priority, accessible name, implicit role,
key attributes and rolling hash.  Used for offline HTML snapshots and as
the unit-testable definition of those rules.

Offline documents have no layout, so the bounding-box test is replaced by
static visibility checks (aria-hidden, ``hidden``, inline display/visibility,
``input[type=hidden]``).
"""

from __future__ import annotations

import logging
import re

import lxml.html

from . import ExtractedElement

logger = logging.getLogger(__name__)

NAME_MAX_LENGTH = 50

FORM_CONTROL_TAGS = frozenset({"input", "select", "textarea"})

INTERACTIVE_ROLES = frozenset({"button", "link", "textbox", "checkbox", "radio", "combobox", "tab", "menuitem"})

_DISPLAY_NONE_RE = re.compile(r"display\s*:\s*none", re.IGNORECASE)
_VISIBILITY_HIDDEN_RE = re.compile(r"visibility\s*:\s*hidden", re.IGNORECASE)
_SIMPLE_SCOPE_RE = re.compile(r"^(?P<tag>[a-zA-Z][\w-]*)?(?:(?P<kind>[#.])(?P<value>[\w-]+))?$")


def _tag(el) -> str:
    return el.tag.lower() if isinstance(el.tag, str) else ""


def is_interactive(el: lxml.html.HtmlElement) -> bool:
    """Interactive predicate: native controls, ARIA widget roles, click/tab handlers."""
    tag = _tag(el)
    if tag == "a":
        if el.get("href") is not None:
            return True
    elif tag in ("button", "input", "select", "textarea"):
        return True
    if el.get("role") in INTERACTIVE_ROLES:
        return True
    if el.get("onclick") is not None:
        return True
    tabindex = el.get("tabindex")
    return tabindex is not None and tabindex.strip() != "-1"


def is_hidden(el: lxml.html.HtmlElement) -> bool:
    """Static visibility test standing in for the zero-size bounding box check."""
    if el.get("aria-hidden") == "true":
        return True
    if _tag(el) == "input" and (el.get("type") or "").lower() == "hidden":
        return True
    node = el
    while node is not None:
        if not isinstance(node.tag, str):
            node = node.getparent()
            continue
        if _tag(node) in ("head", "template", "script", "style"):
            return True
        if node.get("hidden") is not None:
            return True
        style = node.get("style") or ""
        if _DISPLAY_NONE_RE.search(style) or _VISIBILITY_HIDDEN_RE.search(style):
            return True
        node = node.getparent()
    return False


def css_escape(value: str) -> str:
    """Python port of ``CSS.escape`` (CSSOM serialize-an-identifier)."""
    out: list[str] = []
    length = len(value)
    for i, ch in enumerate(value):
        code = ord(ch)
        if code == 0:
            out.append("�")
        elif (
            0x01 <= code <= 0x1F
            or code == 0x7F
            or (i == 0 and ch.isdigit() and ch.isascii())
            or (i == 1 and ch.isdigit() and ch.isascii() and value[0] == "-")
        ):
            out.append(f"\\{code:x} ")
        elif i == 0 and ch == "-" and length == 1:
            out.append("\\-")
        elif code >= 0x80 or ch in "-_" or (ch.isascii() and ch.isalnum()):
            out.append(ch)
        else:
            out.append("\\" + ch)
    return "".join(out)


def build_selector(el: lxml.html.HtmlElement, occurrences: dict[str, int]) -> str:
    """Selector by priority: id, data-testid, form-control name, tag+type with counter.

    ``occurrences`` is shared across one extraction pass; it counts the
    fallback selectors so the second and later matches get ``:nth-of-type(n)``.
    """
    tag = _tag(el)
    el_id = el.get("id")
    if el_id:
        return "#" + css_escape(el_id)
    test_id = el.get("data-testid")
    if test_id:
        return f'[data-testid="{css_escape(test_id)}"]'
    name = el.get("name")
    if name and tag in FORM_CONTROL_TAGS:
        return f'{tag}[name="{css_escape(name)}"]'
    el_type = el.get("type")
    selector = f'{tag}[type="{el_type}"]' if el_type else tag
    count = occurrences.get(selector, 0) + 1
    occurrences[selector] = count
    if count > 1:
        selector = f"{selector}:nth-of-type({count})"
    return selector


def accessible_name(el: lxml.html.HtmlElement) -> str:
    """aria-label → title → placeholder → trimmed text content (ellipsized)."""
    name = el.get("aria-label") or el.get("title") or el.get("placeholder") or ""
    if name:
        return name
    text = el.text_content().strip()
    if len(text) > NAME_MAX_LENGTH:
        return text[: NAME_MAX_LENGTH - 3] + "..."
    return text


def implicit_role(tag: str, el_type: str | None) -> str:
    if tag == "a":
        return "link"
    if tag == "button":
        return "button"
    if tag == "select":
        return "combobox"
    if tag == "textarea":
        return "textbox"
    if tag == "input":
        if el_type == "checkbox":
            return "checkbox"
        if el_type == "radio":
            return "radio"
        if el_type in ("submit", "button", "reset"):
            return "button"
        return "textbox"
    return ""


def key_attributes(el: lxml.html.HtmlElement) -> dict[str, str]:
    attrs: dict[str, str] = {}
    for key in ("type", "href", "placeholder"):
        value = el.get(key)
        if value:
            attrs[key] = value
    for flag in ("disabled", "checked", "required"):
        if el.get(flag) is not None:
            attrs[flag] = "true"
    return attrs


def rolling_hash(current: int, selector: str, name: str) -> int:
    """``((h << 5) - h + len(selector) + len(name)) | 0`` with int32 wraparound."""
    value = (current * 31 + len(selector) + len(name)) & 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def _scope_root(doc: lxml.html.HtmlElement, scope: str | None):
    """Resolve a simple scope selector (``tag``, ``#id``, ``.class``, ``tag#id``)."""
    if not scope or scope == "body":
        body = doc.find(".//body")
        return body if body is not None else doc
    m = _SIMPLE_SCOPE_RE.match(scope.strip())
    if m is None or not (m.group("tag") or m.group("kind")):
        raise ValueError(f"Unsupported offline scope selector: {scope!r}")
    tag = m.group("tag") or "*"
    xpath = f".//{tag.lower() if tag != '*' else tag}"
    if m.group("kind") == "#":
        xpath += f'[@id="{m.group("value")}"]'
    elif m.group("kind") == ".":
        xpath += f'[contains(concat(" ", normalize-space(@class), " "), " {m.group("value")} ")]'
    found = doc.xpath(xpath)
    return found[0] if found else None


def extract_from_html(
    html: str,
    scope: str | None = None,
    max_elements: int = 100,
) -> tuple[list[ExtractedElement], int]:
    """Extract interactive elements from an HTML string in document order.

    Returns ``(elements, rolling_hash)``.  Stops scanning once
    ``max_elements`` visible candidates are collected.
    """
    doc = lxml.html.document_fromstring(html or "<html></html>")
    root = _scope_root(doc, scope)
    if root is None:
        return [], 0

    visible: list = []
    for el in root.iter():
        if len(visible) >= max_elements:
            break
        if el is root or not isinstance(el.tag, str):
            continue
        if is_interactive(el) and not is_hidden(el):
            visible.append(el)

    occurrences: dict[str, int] = {}
    elements: list[ExtractedElement] = []
    h = 0
    for el in visible:
        tag = _tag(el)
        selector = build_selector(el, occurrences)
        name = accessible_name(el)
        h = rolling_hash(h, selector, name)
        elements.append(
            ExtractedElement(
                selector=selector,
                role=el.get("role") or implicit_role(tag, el.get("type")),
                name=name,
                tag=tag,
                attributes=key_attributes(el),
            )
        )
    logger.debug("Offline extraction: %d elements (cap=%d)", len(elements), max_elements)
    return elements, h
