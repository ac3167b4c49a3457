# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""refsnap CLI: serve, snapshot commands.

Usage:
    refsnap serve [--headed] [--viewport 1280x720] [--log-level DEBUG] [--log-json]
    refsnap snapshot FILE [--format compact|full|minimal] [--scope SEL] [--max-elements N] [--collapse]

``snapshot`` works offline on a saved HTML file; it applies the same
selector, name and role rules as live extraction but has no layout, so no
element positions or bounding-box visibility.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from .context import PageContext
from .errors import RefsnapError, clean_error
from .extractor import DEFAULT_MAX_ELEMENTS

logger = logging.getLogger(__name__)


def _page_title(html: str) -> str:
    import lxml.html

    doc = lxml.html.document_fromstring(html or "<html></html>")
    title = doc.find(".//title")
    return (title.text_content() or "").strip() if title is not None else ""


def render_file(
    path: Path,
    *,
    fmt: str = "compact",
    scope: str | None = None,
    max_elements: int = DEFAULT_MAX_ELEMENTS,
    collapse: bool = False,
) -> str:
    """Snapshot a saved HTML document."""
    from .dom_rules import extract_from_html
    from .formatter import render_snapshot
    from .pruner import collapse_repetitive, to_refs

    html = path.read_text(encoding="utf-8", errors="replace")
    try:
        elements, _ = extract_from_html(html, scope=scope, max_elements=max_elements)
    except ValueError as e:
        raise RefsnapError(str(e)) from e

    ctx = PageContext(name="offline")
    refs = to_refs(elements, ctx.refs, max_elements)
    if collapse:
        refs = collapse_repetitive(refs)
    return render_snapshot(refs, path.resolve().as_uri(), _page_title(html), fmt, ctx)


def cmd_serve(args: argparse.Namespace) -> None:
    """Start MCP server, forwarding any extra args to the server."""
    from .server import main

    main(argv=getattr(args, "_server_argv", []))


def cmd_snapshot(args: argparse.Namespace) -> None:
    path = Path(args.file)
    if not path.is_file():
        raise RefsnapError(f"No such file: {path}")
    print(
        render_file(
            path,
            fmt=args.format,
            scope=args.scope,
            max_elements=args.max_elements,
            collapse=args.collapse,
        )
    )


def _positive_int(value: str) -> int:
    try:
        n = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an integer: {value!r}") from None
    if n <= 0:
        raise argparse.ArgumentTypeError(f"must be positive: {n}")
    return n


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="refsnap CLI", prog="refsnap")
    parser.add_argument("-v", "--verbose", action="store_true")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("serve", help="Start MCP server (extra args forwarded to server)")

    p_snapshot = subparsers.add_parser("snapshot", help="Snapshot a saved HTML file offline")
    p_snapshot.add_argument("file", metavar="FILE", help="HTML file")
    p_snapshot.add_argument("--format", choices=["compact", "full", "minimal"], default="compact")
    p_snapshot.add_argument("--scope", type=str, default=None, help="Scope: tag, #id, .class or tag#id")
    p_snapshot.add_argument("--max-elements", type=_positive_int, default=DEFAULT_MAX_ELEMENTS)
    p_snapshot.add_argument("--collapse", action="store_true", help="Summarise long runs of same-kind elements")

    commands = {"serve": cmd_serve, "snapshot": cmd_snapshot}

    args, remaining = parser.parse_known_args(argv)

    # Forward remaining args to server when using 'serve' command
    if args.command == "serve":
        args._server_argv = remaining
    else:
        if remaining:
            parser.error(f"unrecognized arguments: {' '.join(remaining)}")
        from .logging_config import configure

        configure(level="DEBUG" if args.verbose else "WARNING")

    try:
        commands[args.command](args)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(130)
    except (RefsnapError, OSError) as e:
        print(f"Error: {clean_error(e)}", file=sys.stderr)
        if args.verbose:
            import traceback

            traceback.print_exc(file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
