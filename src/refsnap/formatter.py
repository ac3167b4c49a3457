# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Snapshot text encodings: compact, full, minimal and diff.

Compact token grammar (one element per line)::

    {tag}#{id}[@{type}][~"{placeholder}"][/{path}]["{text}"][!d][!c][!r]

    btn#e1"Submit"        <button>Submit</button>
    inp#e2@e~"Email"!r    <input type="email" placeholder="Email" required>
    a#e3/login"Sign in"   <a href="/login">Sign in</a>

Everything here is a pure function of its inputs, except that
``render_snapshot`` records what it rendered as the page's diff baseline.
"""

from __future__ import annotations

import html
import re
import time
from typing import Literal
from urllib.parse import urlsplit

from . import ElementRef, PrunedSnapshot, SnapshotDiff
from .context import PageContext
from .differ import compute_diff, compute_snapshot_hash

SnapshotFormat = Literal["compact", "full", "minimal", "diff"]
SNAPSHOT_FORMATS: tuple[str, ...] = ("compact", "full", "minimal", "diff")

PLACEHOLDER_MAX = 20
TEXT_MAX = 30
FULL_TEXT_MAX = 50

TAG_ABBREVIATIONS = {
    "button": "btn",
    "input": "inp",
    "select": "sel",
    "textarea": "txt",
    "a": "a",
}

TYPE_ABBREVIATIONS = {
    "email": "e",
    "password": "p",
    "text": "t",
    "number": "n",
    "checkbox": "c",
    "radio": "r",
    "search": "s",
    "submit": "sb",
    "tel": "tel",
    "url": "u",
    "date": "d",
    "file": "f",
    "button": "b",
    "reset": "rs",
    "hidden": "h",
}

# implied roles are omitted from the full format
_IMPLIED_ROLES = {
    "button": "button",
    "a": "link",
    "input": "textbox",
    "select": "combobox",
    "textarea": "textbox",
    "img": "img",
    "nav": "navigation",
}

_FULL_ATTRS = ("type", "href", "placeholder", "disabled", "checked", "required")
_SELF_CLOSING = frozenset({"input", "img", "br", "hr"})
_WS_RE = re.compile(r"\s+")

_INPUT_ROLES = frozenset({"textbox", "combobox", "checkbox", "radio", "searchbox", "spinbutton", "slider"})


def _clip(text: str, limit: int) -> str:
    text = _WS_RE.sub(" ", text).strip()
    if len(text) <= limit:
        return text
    return text[: limit - 1] + "…"


def _quoted(text: str, limit: int) -> str:
    return '"' + _clip(text, limit).replace('"', "'") + '"'


def _href_path(href: str) -> str:
    """Path (+ query) of an href, without the leading slash; '' when not useful."""
    if not href or href.startswith(("#", "javascript:", "mailto:", "tel:")):
        return ""
    parts = urlsplit(href)
    path = parts.path or "/"
    if parts.query:
        path = f"{path}?{parts.query}"
    return path.lstrip("/") if path != "/" else ""


# ── Compact ──────────────────────────────────────────────────────────


def compact_token(el: ElementRef) -> str:
    attrs = el.attributes or {}
    parts = [f"{TAG_ABBREVIATIONS.get(el.tag, el.tag)}#{el.id}"]

    el_type = attrs.get("type", "")
    if el_type and el.tag in ("input", "button"):
        parts.append("@" + TYPE_ABBREVIATIONS.get(el_type.lower(), el_type.lower()))

    placeholder = attrs.get("placeholder", "")
    if placeholder:
        parts.append("~" + _quoted(placeholder, PLACEHOLDER_MAX))

    href = attrs.get("href", "")
    if href:
        path = _href_path(href)
        if path:
            parts.append("/" + path)

    if el.name and el.name != placeholder:
        parts.append(_quoted(el.name, TEXT_MAX))

    if attrs.get("disabled"):
        parts.append("!d")
    if attrs.get("checked"):
        parts.append("!c")
    if attrs.get("required"):
        parts.append("!r")
    return "".join(parts)


def format_compact(elements: list[ElementRef]) -> str:
    return "\n".join(compact_token(el) for el in elements)


# ── Full (HTML-like) ─────────────────────────────────────────────────


def full_line(el: ElementRef) -> str:
    attrs = [f'id="{el.id}"']
    if el.role and _IMPLIED_ROLES.get(el.tag) != el.role:
        attrs.append(f'role="{el.role}"')
    for key in _FULL_ATTRS:
        value = (el.attributes or {}).get(key)
        if value:
            attrs.append(f'{key}="{html.escape(value, quote=True)}"')
    attr_str = " ".join(attrs)
    content = html.escape(_clip(el.name, FULL_TEXT_MAX), quote=True) if el.name else ""
    if el.tag in _SELF_CLOSING:
        return f"<{el.tag} {attr_str}>"
    if not content and el.tag in ("div", "span"):
        return f"<{el.tag} {attr_str}/>"
    return f"<{el.tag} {attr_str}>{content}</{el.tag}>"


def format_full(elements: list[ElementRef], url: str, title: str) -> str:
    header = f"Page: {title}\nURL: {url}\n---"
    body = "\n".join(full_line(el) for el in elements)
    return f"{header}\n{body}" if body else header


# ── Minimal ──────────────────────────────────────────────────────────


def format_minimal(elements: list[ElementRef], title: str) -> str:
    buttons = sum(1 for e in elements if e.role == "button")
    links = sum(1 for e in elements if e.role == "link")
    inputs = sum(1 for e in elements if e.role in _INPUT_ROLES)
    return f"Page: {title}\nElements: {len(elements)} ({buttons} buttons, {links} links, {inputs} inputs)"


# ── Diff ─────────────────────────────────────────────────────────────


def format_diff(diff: SnapshotDiff) -> str:
    lines: list[str] = []
    if diff.added:
        lines.append(f"+ Added {len(diff.added)} elements:")
        lines.extend(compact_token(el) for el in diff.added)
    if diff.removed:
        lines.append(f"- Removed: {', '.join(diff.removed)}")
    if diff.modified:
        lines.append(f"~ Modified {len(diff.modified)} elements:")
        lines.extend(f"  {mod.id}: {mod.changes}" for mod in diff.modified)
    if diff.unchanged:
        lines.append(f"= {diff.unchanged} elements unchanged")
    return "\n".join(lines)


# ── Entry point ──────────────────────────────────────────────────────


def make_snapshot(elements: list[ElementRef], url: str, title: str) -> PrunedSnapshot:
    return PrunedSnapshot(
        url=url,
        title=title,
        elements=list(elements),
        hash=compute_snapshot_hash(elements),
        timestamp=time.time(),
    )


def render_snapshot(
    elements: list[ElementRef],
    url: str,
    title: str,
    fmt: str,
    ctx: PageContext,
) -> str:
    """Render ``elements`` in ``fmt``; compact/full/diff become the new baseline."""
    if fmt == "minimal":
        return format_minimal(elements, title)
    if fmt == "full":
        ctx.baseline = make_snapshot(elements, url, title)
        return format_full(elements, url, title)
    if fmt == "diff":
        diff = compute_diff(ctx.baseline, elements)
        ctx.baseline = make_snapshot(elements, url, title)
        if diff.is_degenerate:
            return format_compact(elements)
        return format_diff(diff)
    if fmt == "compact":
        ctx.baseline = make_snapshot(elements, url, title)
        return format_compact(elements)
    raise ValueError(f"Unknown snapshot format: {fmt!r}. Use one of: {', '.join(SNAPSHOT_FORMATS)}")
