# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""refsnap exception hierarchy.

All refsnap-specific errors inherit from RefsnapError, allowing callers
to catch the base class for any failure or specific subclasses for
targeted handling.  Tool and batch boundaries convert these into the
``error`` / ``err`` field of their responses via ``clean_error``.
"""

from __future__ import annotations

import re


class RefsnapError(Exception):
    """Base exception for all refsnap errors."""


class BrowserError(RefsnapError):
    """Browser launch or page management failure."""


class TargetNotFoundError(RefsnapError):
    """A ref could not be resolved or a selector matched zero elements."""

    def __init__(self, message: str, *, target: str = "") -> None:
        super().__init__(message)
        self.target = target


class ActionTimeoutError(RefsnapError):
    """An input dispatch, wait or navigation exceeded its time budget."""


class ExtractionError(RefsnapError):
    """The in-page extraction script failed, even after reinjection."""


class InvalidStepArgsError(RefsnapError):
    """A tool or batch step is missing a required field or has an invalid one."""


# ── Message cleanup ──────────────────────────────────────────────────

MAX_ERROR_LENGTH = 200

_ANSI_RE = re.compile(r"\x1b\[[0-9;]*m")
_CALL_LOG_RE = re.compile(r"\n?\s*=+\s*logs\s*=+.*|\n?\s*Call log:.*", re.DOTALL | re.IGNORECASE)
_WS_RE = re.compile(r"\s+")


def clean_error(exc: BaseException | str) -> str:
    """Return a short, single-line message for a tool response.

    Strips Playwright call logs and ANSI colour codes, collapses whitespace
    and truncates to ``MAX_ERROR_LENGTH`` characters.
    """
    text = exc if isinstance(exc, str) else (str(exc) or type(exc).__name__)
    text = _ANSI_RE.sub("", text)
    text = _CALL_LOG_RE.sub("", text)
    text = _WS_RE.sub(" ", text).strip()
    if len(text) > MAX_ERROR_LENGTH:
        text = text[: MAX_ERROR_LENGTH - 3] + "..."
    return text or "Unknown error"
