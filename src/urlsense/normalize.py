# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""URL canonicalization for cache keys and rule matching.

Lowercases scheme and host, strips the fragment and tracking parameters.
Everything else (path case, trailing slash, remaining query order and raw
encoding) is preserved, so two URLs share an identity only when they are the
same logical resource.
"""

from __future__ import annotations

from urllib.parse import urlsplit, urlunsplit

TRACKING_PARAMS: frozenset[str] = frozenset(
    {
        "fbclid",
        "gclid",
        "dclid",
        "msclkid",
        "yclid",
        "igshid",
        "mc_cid",
        "mc_eid",
        "_ga",
    }
)

TRACKING_PREFIXES: tuple[str, ...] = ("utm_",)


def is_tracking_param(name: str) -> bool:
    lowered = name.lower()
    return lowered in TRACKING_PARAMS or lowered.startswith(TRACKING_PREFIXES)


def _strip_tracking(query: str) -> str:
    """Drop tracking params, keeping the others in order with their raw encoding."""
    if not query:
        return ""
    kept = []
    for part in query.split("&"):
        if not part:
            continue
        name = part.split("=", 1)[0]
        if is_tracking_param(name):
            continue
        kept.append(part)
    return "&".join(kept)


def normalize_url(url: str) -> str:
    """Canonicalize *url*.

    Input that does not parse as an absolute URL with a host falls back to a
    trimmed, lowercased copy instead of failing. Idempotent:
    ``normalize_url(normalize_url(u)) == normalize_url(u)``.
    """
    raw = url.strip()
    try:
        parts = urlsplit(raw)
        host = parts.hostname
        _ = parts.port  # raises ValueError on a malformed port
    except ValueError:
        return raw.lower()

    if not parts.scheme or not host:
        return raw.lower()

    netloc = parts.netloc
    userinfo, _, hostport = netloc.rpartition("@")
    netloc = f"{userinfo}@{hostport.lower()}" if userinfo else hostport.lower()

    return urlunsplit(
        (
            parts.scheme.lower(),
            netloc,
            parts.path,
            _strip_tracking(parts.query),
            "",
        )
    )


def is_http_url(url: str) -> bool:
    """True when *url* is an absolute http(s) URL with a host."""
    try:
        parts = urlsplit(url.strip())
        _ = parts.port
    except ValueError:
        return False
    return parts.scheme.lower() in ("http", "https") and bool(parts.hostname)
