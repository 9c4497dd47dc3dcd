# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Text cleanup for metadata scraped from untrusted pages and APIs.

Titles, descriptions and author names end up in detection results that
downstream clippers use as seeds, so every string taken from a page goes
through sanitize_text() before it lands in a PlatformMetadata record.
"""

from __future__ import annotations

import html
import re

# Zero-width chars, bidi overrides, C0/C1 controls (newline and tab handled separately)
_CONTROL_CHAR_RE = re.compile(
    r"[\u200B-\u200F\u202A-\u202E\u2060-\u2069\uFEFF\uFFF9-\uFFFB"
    r"\u0000-\u0008\u000B\u000C\u000E-\u001F\u007F-\u009F]"
)

_ANSI_ESCAPE_RE = re.compile(r"\x1b\[[0-9;]*[a-zA-Z]")

_TAG_RE = re.compile(r"<[^>]{0,500}>")

_WHITESPACE_RE = re.compile(r"\s+")

DEFAULT_MAX_LEN = 512
DESCRIPTION_MAX_LEN = 2000


def sanitize_text(text: str | None, max_len: int = DEFAULT_MAX_LEN) -> str | None:
    """Clean a short metadata field.

    - Decodes HTML entities (``&amp;`` etc., twice-encoded values included)
    - Strips stray markup, ANSI escapes and Unicode control characters
    - Collapses all whitespace runs into single spaces
    - Truncates to max_len

    Returns None for empty or whitespace-only input, so callers can assign the
    result straight into an optional field.
    """
    if text is None:
        return None
    if not isinstance(text, str):
        text = str(text)

    text = html.unescape(html.unescape(text))
    text = _ANSI_ESCAPE_RE.sub("", text)
    text = _TAG_RE.sub(" ", text)
    text = _CONTROL_CHAR_RE.sub("", text)
    text = _WHITESPACE_RE.sub(" ", text).strip()

    if not text:
        return None
    if len(text) > max_len:
        text = text[:max_len].rstrip()
    return text


def sanitize_tags(values: object, max_tags: int = 30, max_len: int = 64) -> tuple[str, ...] | None:
    """Normalize a keyword list (list or comma-separated string) into a tag tuple."""
    if values is None:
        return None
    if isinstance(values, str):
        items = values.split(",")
    elif isinstance(values, (list, tuple)):
        items = [v for v in values if isinstance(v, (str, int, float))]
    else:
        return None

    tags: list[str] = []
    seen: set[str] = set()
    for item in items:
        tag = sanitize_text(str(item), max_len=max_len)
        if not tag or tag.lower() in seen:
            continue
        seen.add(tag.lower())
        tags.append(tag)
        if len(tags) >= max_tags:
            break
    return tuple(tags) or None
