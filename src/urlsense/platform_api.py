# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Official platform APIs used as the first metadata step.

Each client turns a platform id (from the rule matcher) into a raw record
with ``fetch_by_id()`` and maps it onto PlatformMetadata with
``to_metadata()``.  A client without the credentials it needs reports
``configured = False`` and the extraction chain skips it silently.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Any, Protocol, runtime_checkable

import httpx

from . import PlatformMetadata
from .errors import PlatformApiError
from .sanitizer import DESCRIPTION_MAX_LEN, sanitize_tags, sanitize_text

logger = logging.getLogger(__name__)

YOUTUBE_API_URL = "https://www.googleapis.com/youtube/v3/videos"
GITHUB_API_URL = "https://api.github.com/repos"
BILIBILI_API_URL = "https://api.bilibili.com/x/web-interface/view"
BILIBILI_REFERER = "https://www.bilibili.com"

_ISO_DURATION_RE = re.compile(
    r"^P(?:(?P<days>\d+(?:\.\d+)?)D)?"
    r"(?:T(?:(?P<hours>\d+(?:\.\d+)?)H)?(?:(?P<minutes>\d+(?:\.\d+)?)M)?(?:(?P<seconds>\d+(?:\.\d+)?)S)?)?$",
    re.IGNORECASE,
)


def parse_iso_duration(value: str | None) -> float | None:
    """``PT1H2M3S`` → 3723.0; ``P1DT1S`` → 86401.0.  None if unparseable."""
    if not value or not isinstance(value, str):
        return None
    m = _ISO_DURATION_RE.match(value.strip())
    if not m or value.strip().upper() in ("P", "PT"):
        return None
    parts = {k: float(v) for k, v in m.groupdict().items() if v}
    return (
        parts.get("days", 0.0) * 86400
        + parts.get("hours", 0.0) * 3600
        + parts.get("minutes", 0.0) * 60
        + parts.get("seconds", 0.0)
    )


def _to_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return None


@runtime_checkable
class PlatformApiClient(Protocol):
    """Fetches a platform record by id."""

    platform: str

    @property
    def configured(self) -> bool: ...

    async def fetch_by_id(self, platform_id: str) -> dict | None: ...

    def to_metadata(self, record: dict) -> PlatformMetadata: ...


# ---------------------------------------------------------------------------
# YouTube Data API v3
# ---------------------------------------------------------------------------


class YouTubeApiClient:
    platform = "youtube"

    def __init__(self, client: httpx.AsyncClient, api_key: str | None) -> None:
        self._client = client
        self._api_key = api_key

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    async def fetch_by_id(self, platform_id: str) -> dict | None:
        params = {
            "part": "snippet,contentDetails,statistics",
            "id": platform_id,
            "key": self._api_key or "",
        }
        try:
            response = await self._client.get(YOUTUBE_API_URL, params=params)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise PlatformApiError(f"{type(e).__name__}: {e}", source="platform-api") from e
        if response.status_code != 200:
            raise PlatformApiError(
                f"YouTube API HTTP {response.status_code}",
                source="platform-api",
                status_code=response.status_code,
            )
        try:
            items = response.json().get("items") or []
        except (ValueError, AttributeError) as e:
            raise PlatformApiError("YouTube API returned malformed JSON", source="platform-api") from e
        if not items:
            logger.debug("YouTube API has no video %s", platform_id)
            return None
        return items[0] if isinstance(items[0], dict) else None

    def to_metadata(self, record: dict) -> PlatformMetadata:
        snippet = record.get("snippet") or {}
        details = record.get("contentDetails") or {}
        stats = record.get("statistics") or {}
        thumbs = snippet.get("thumbnails") or {}
        thumbnail = next(
            (thumbs[k]["url"] for k in ("maxres", "standard", "high", "medium", "default") if (thumbs.get(k) or {}).get("url")),
            None,
        )
        live = snippet.get("liveBroadcastContent")
        return PlatformMetadata(
            platform_id=record.get("id"),
            title=sanitize_text(snippet.get("title")),
            description=sanitize_text(snippet.get("description"), max_len=DESCRIPTION_MAX_LEN),
            thumbnail=thumbnail,
            duration=parse_iso_duration(details.get("duration")),
            author=sanitize_text(snippet.get("channelTitle")),
            published_at=snippet.get("publishedAt"),
            view_count=_to_int(stats.get("viewCount")),
            like_count=_to_int(stats.get("likeCount")),
            comment_count=_to_int(stats.get("commentCount")),
            tags=sanitize_tags(snippet.get("tags")),
            language=snippet.get("defaultAudioLanguage") or snippet.get("defaultLanguage"),
            is_live=None if live is None else live in ("live", "upcoming"),
        )


# ---------------------------------------------------------------------------
# GitHub REST API
# ---------------------------------------------------------------------------


class GitHubApiClient:
    """Repository lookup; works anonymously (rate limited) or with a token."""

    platform = "github"

    def __init__(self, client: httpx.AsyncClient, token: str | None = None) -> None:
        self._client = client
        self._token = token

    @property
    def configured(self) -> bool:
        return True

    async def fetch_by_id(self, platform_id: str) -> dict | None:
        if "/" not in platform_id:
            return None
        headers = {"Accept": "application/vnd.github+json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        try:
            response = await self._client.get(f"{GITHUB_API_URL}/{platform_id}", headers=headers)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise PlatformApiError(f"{type(e).__name__}: {e}", source="platform-api") from e
        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise PlatformApiError(
                f"GitHub API HTTP {response.status_code}",
                source="platform-api",
                status_code=response.status_code,
            )
        try:
            data = response.json()
        except ValueError as e:
            raise PlatformApiError("GitHub API returned malformed JSON", source="platform-api") from e
        return data if isinstance(data, dict) else None

    def to_metadata(self, record: dict) -> PlatformMetadata:
        owner = record.get("owner") or {}
        return PlatformMetadata(
            platform_id=record.get("full_name"),
            title=sanitize_text(record.get("full_name")),
            description=sanitize_text(record.get("description"), max_len=DESCRIPTION_MAX_LEN),
            thumbnail=owner.get("avatar_url"),
            author=sanitize_text(owner.get("login")),
            published_at=record.get("created_at"),
            view_count=_to_int(record.get("watchers_count")),
            like_count=_to_int(record.get("stargazers_count")),
            comment_count=_to_int(record.get("open_issues_count")),
            tags=sanitize_tags(record.get("topics")),
            language=None,
            is_premium=bool(record.get("private")) if "private" in record else None,
        )


# ---------------------------------------------------------------------------
# Bilibili web-interface API (public, keyless)
# ---------------------------------------------------------------------------

_BVID_RE = re.compile(r"^bv[0-9a-z]{10}$", re.IGNORECASE)
_AID_RE = re.compile(r"^av(\d+)$", re.IGNORECASE)


def _bilibili_query(platform_id: str) -> dict[str, str] | None:
    """``BV1xx411c7mD`` → ``{"bvid": ...}``; ``av170001`` → ``{"aid": "170001"}``."""
    if _BVID_RE.match(platform_id):
        return {"bvid": "BV" + platform_id[2:]}
    m = _AID_RE.match(platform_id)
    if m:
        return {"aid": m.group(1)}
    return None


def _unix_to_iso(value: Any) -> str | None:
    seconds = _to_int(value)
    if seconds is None or seconds <= 0:
        return None
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc).isoformat()
    except (OverflowError, OSError, ValueError):
        return None


class BilibiliApiClient:
    """Video lookup by BV or av id.  Bangumi, column and short-link ids have no record here."""

    platform = "bilibili"

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    @property
    def configured(self) -> bool:
        return True

    async def fetch_by_id(self, platform_id: str) -> dict | None:
        params = _bilibili_query(platform_id)
        if params is None:
            return None
        try:
            response = await self._client.get(BILIBILI_API_URL, params=params, headers={"Referer": BILIBILI_REFERER})
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise PlatformApiError(f"{type(e).__name__}: {e}", source="platform-api") from e
        if response.status_code != 200:
            raise PlatformApiError(
                f"Bilibili API HTTP {response.status_code}",
                source="platform-api",
                status_code=response.status_code,
            )
        try:
            payload = response.json()
        except ValueError as e:
            raise PlatformApiError("Bilibili API returned malformed JSON", source="platform-api") from e
        if not isinstance(payload, dict):
            return None
        data = payload.get("data")
        if payload.get("code") != 0 or not isinstance(data, dict):
            logger.debug("Bilibili API code %s for %s: %s", payload.get("code"), platform_id, payload.get("message"))
            return None
        return data

    def to_metadata(self, record: dict) -> PlatformMetadata:
        owner = record.get("owner") or {}
        stat = record.get("stat") or {}
        aid = _to_int(record.get("aid"))
        duration = _to_int(record.get("duration"))
        return PlatformMetadata(
            platform_id=record.get("bvid") or (f"av{aid}" if aid else None),
            title=sanitize_text(record.get("title")),
            description=sanitize_text(record.get("desc"), max_len=DESCRIPTION_MAX_LEN),
            thumbnail=record.get("pic") or None,
            duration=float(duration) if duration is not None else None,
            author=sanitize_text(owner.get("name")),
            published_at=_unix_to_iso(record.get("pubdate")),
            view_count=_to_int(stat.get("view")),
            like_count=_to_int(stat.get("like")),
            comment_count=_to_int(stat.get("reply")),
            tags=sanitize_tags([record["tname"]] if record.get("tname") else None),
        )
