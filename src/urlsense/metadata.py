# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Platform metadata extraction with a per-platform fallback chain.

Chain priority (per platform, see PLATFORM_CHAINS):
  platform-api > JSON-LD > OpenGraph/meta > URL-derived title

Each step either yields a record with a title (success, chain stops) or
fails; failures and timeouts are recorded as ``"<source>: <reason>"`` in the
provenance and the next step runs.  The page is fetched at most once per
extraction and shared by the JSON-LD and OpenGraph steps.  Uses lxml for
meta/JSON-LD parsing.
"""

from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
import math
import re
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from urllib.parse import unquote, urljoin, urlsplit

import lxml.html
from lxml import etree

from . import Platform, PlatformMetadata
from .errors import ExtractionError, ExtractionTimeout
from .http import FetchedPage, PageFetcher
from .platform_api import PlatformApiClient, parse_iso_duration
from .rules import extract_platform_id
from .sanitizer import DESCRIPTION_MAX_LEN, sanitize_tags, sanitize_text

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0
WORDS_PER_MINUTE = 200

# --- Helpers ---


def _to_int(v: Any) -> int | None:
    if v is None or isinstance(v, bool):
        return None
    try:
        number = float(str(v).strip().replace(",", ""))
    except (ValueError, TypeError):
        return None
    return round(number) if math.isfinite(number) else None


def _is_valid_url(url: Any) -> str | None:
    """Validate URL: must be string, <=2048 chars, http(s) or protocol-relative."""
    if not isinstance(url, str) or len(url) > 2048:
        return None
    url = url.strip()
    return url if url.startswith(("http://", "https://", "//")) else None


def _absolute_url(url: Any, base: str) -> str | None:
    if not isinstance(url, str) or not url.strip() or len(url) > 2048:
        return None
    return _is_valid_url(urljoin(base, url.strip()))


def _extract_image_url(data: dict) -> str | None:
    """Extract and validate image URL from JSON-LD data."""
    img = data.get("image") or data.get("thumbnailUrl")
    if isinstance(img, list):
        img = img[0] if img else None
    if isinstance(img, dict):
        u = img.get("url")
        return _is_valid_url(u if u is not None else img.get("contentUrl"))
    return _is_valid_url(img)


def _extract_person_or_org_name(val: Any, max_len: int = 200) -> str | None:
    """Extract name from a Person/Organization object (or list of them) or plain string."""
    if isinstance(val, list):
        val = val[0] if val else None
    if isinstance(val, dict):
        name = val.get("name")
        if name:
            return sanitize_text(str(name).strip(), max_len=max_len)
    elif isinstance(val, str) and val.strip() and not _is_valid_url(val):
        return sanitize_text(val.strip(), max_len=max_len)
    return None


_CJK_RE = re.compile(r"[\u3040-\u30ff\u3400-\u4dbf\u4e00-\u9fff\uac00-\ud7af]")


def count_words(text: str) -> int:
    """Whitespace-delimited words plus one per CJK character."""
    cjk = len(_CJK_RE.findall(text))
    return cjk + len(_CJK_RE.sub(" ", text).split())


# --- JSON-LD ---


def _find_type_in_jsonld(data: Any, type_names: tuple[str, ...], max_depth: int = 5) -> dict | None:
    """Find first object with matching @type in JSON-LD data (handles @graph, arrays, list types)."""
    if max_depth <= 0:
        return None
    if isinstance(data, list):
        for item in data:
            found = _find_type_in_jsonld(item, type_names, max_depth - 1)
            if found:
                return found
        return None
    if not isinstance(data, dict):
        return None
    if "@graph" in data:
        return _find_type_in_jsonld(data["@graph"], type_names, max_depth - 1)
    schema_type = data.get("@type", "")
    if isinstance(schema_type, list):
        if any(t in type_names for t in schema_type):
            return data
    elif schema_type in type_names:
        return data
    return None


_CONTENT_TYPES = (
    "VideoObject",
    "Article",
    "NewsArticle",
    "ReportageNewsArticle",
    "BlogPosting",
    "TechArticle",
    "ScholarlyArticle",
    "SocialMediaPosting",
    "DiscussionForumPosting",
    "QAPage",
    "SoftwareSourceCode",
    "ImageGallery",
)

_INTERACTION_TYPE_MAP: dict[str, str] = {
    "WatchAction": "view_count",
    "LikeAction": "like_count",
    "CommentAction": "comment_count",
}


def _parse_interaction_statistics(stats: Any) -> dict[str, int]:
    """Parse an interactionStatistic value (object or array)."""
    result: dict[str, int] = {}
    if not isinstance(stats, list):
        stats = [stats] if isinstance(stats, dict) else []
    for stat in stats:
        if not isinstance(stat, dict):
            continue
        interaction_type = stat.get("interactionType")
        if isinstance(interaction_type, dict):
            interaction_type = interaction_type.get("@type", "")
        elif isinstance(interaction_type, str):
            # Strip schema.org URL prefix if present
            interaction_type = interaction_type.rsplit("/", 1)[-1]
        else:
            continue
        name = _INTERACTION_TYPE_MAP.get(interaction_type)
        if name:
            count = _to_int(stat.get("userInteractionCount"))
            if count is not None:
                result[name] = count
    return result


def _jsonld_to_fields(node: dict) -> dict[str, Any]:
    """Map a schema.org content node onto PlatformMetadata field names."""
    if node.get("@type") == "QAPage" and isinstance(node.get("mainEntity"), dict):
        question = node["mainEntity"]
        node = {**question, **{k: v for k, v in node.items() if k != "mainEntity" and k not in question}}

    out: dict[str, Any] = {}

    title = node.get("headline") or node.get("name")
    if title:
        out["title"] = sanitize_text(str(title).strip())

    description = node.get("description") or node.get("abstract") or node.get("text")
    if description:
        out["description"] = sanitize_text(str(description), max_len=DESCRIPTION_MAX_LEN)

    thumb = _extract_image_url(node)
    if thumb:
        out["thumbnail"] = thumb

    author = _extract_person_or_org_name(node.get("author")) or _extract_person_or_org_name(node.get("creator"))
    if author:
        out["author"] = author

    published = node.get("datePublished") or node.get("uploadDate") or node.get("dateCreated")
    if published:
        out["published_at"] = sanitize_text(str(published), max_len=64)

    if node.get("duration"):
        out["duration"] = parse_iso_duration(str(node["duration"]))

    out.update(_parse_interaction_statistics(node.get("interactionStatistic")))
    if "comment_count" not in out and node.get("commentCount") is not None:
        out["comment_count"] = _to_int(node.get("commentCount"))

    word_count = _to_int(node.get("wordCount"))
    if word_count:
        out["word_count"] = word_count

    tags = sanitize_tags(node.get("keywords"))
    if tags:
        out["tags"] = tags

    language = node.get("inLanguage")
    if isinstance(language, dict):
        language = language.get("alternateName") or language.get("name")
    if isinstance(language, str) and language.strip():
        out["language"] = language.strip().lower()

    publication = node.get("publication")
    if isinstance(publication, dict):
        live = publication.get("isLiveBroadcast")
        if isinstance(live, bool):
            out["is_live"] = live

    free = node.get("isAccessibleForFree")
    if isinstance(free, str):
        free = free.strip().lower() != "false"
    if isinstance(free, bool):
        out["is_premium"] = not free

    return {k: v for k, v in out.items() if v is not None}


# --- Page parsing (lxml) ---


@dataclass
class ParsedPage:
    """Head metadata and body statistics of a fetched page."""

    url: str
    jsonld: list[Any] = field(default_factory=list)
    meta: dict[str, list[str]] = field(default_factory=dict)
    title: str | None = None
    lang: str | None = None
    word_count: int | None = None

    def first(self, *names: str) -> str | None:
        for name in names:
            for value in self.meta.get(name, ()):
                if value and value.strip():
                    return value.strip()
        return None

    @classmethod
    def parse(cls, page: FetchedPage) -> ParsedPage:
        parsed = cls(url=page.url)
        if not page.text or not page.text.strip():
            return parsed
        try:
            parser = lxml.html.HTMLParser(recover=True, encoding="utf-8")
            doc = lxml.html.document_fromstring(page.text.encode("utf-8"), parser=parser)
        except (etree.ParserError, ValueError) as e:
            raise ExtractionError(f"unparseable HTML: {e}", source="fetch") from e

        for script in doc.xpath('//script[@type="application/ld+json"]'):
            try:
                parsed.jsonld.append(json.loads(script.text_content()))
            except (json.JSONDecodeError, TypeError):
                continue

        for tag in doc.xpath("//meta[@content]"):
            key = (tag.get("property") or tag.get("name") or tag.get("itemprop") or "").strip().lower()
            if key:
                parsed.meta.setdefault(key, []).append(tag.get("content", ""))

        titles = doc.xpath("//title")
        if titles:
            parsed.title = titles[0].text_content()

        lang = doc.get("lang")
        if lang and lang.strip():
            parsed.lang = lang.strip().lower()

        for bad in doc.xpath("//script|//style|//noscript"):
            bad.drop_tree()
        body = doc.xpath("//article") or doc.xpath("//main")
        if body:
            text = " ".join(el.text_content() for el in body)
        else:
            text = " ".join(p.text_content() for p in doc.xpath("//p"))
        words = count_words(text)
        parsed.word_count = words or None
        return parsed


def _og_fields(page: ParsedPage) -> dict[str, Any]:
    """OpenGraph / Twitter card / plain meta tags mapped onto metadata fields."""
    out: dict[str, Any] = {
        "title": sanitize_text(page.first("og:title", "twitter:title") or page.title),
        "description": sanitize_text(
            page.first("og:description", "twitter:description", "description"),
            max_len=DESCRIPTION_MAX_LEN,
        ),
        "thumbnail": _absolute_url(
            page.first("og:image:secure_url", "og:image", "og:image:url", "twitter:image", "thumbnailurl"),
            page.url,
        ),
        "author": _extract_person_or_org_name(page.first("article:author", "author", "twitter:creator")),
        "published_at": sanitize_text(
            page.first("article:published_time", "og:published_time", "datepublished", "date"),
            max_len=64,
        ),
    }

    duration = page.first("video:duration", "og:video:duration")
    if duration:
        seconds = _to_int(duration)
        out["duration"] = float(seconds) if seconds is not None else parse_iso_duration(duration)
    elif page.first("duration"):
        out["duration"] = parse_iso_duration(page.first("duration"))

    tags = page.meta.get("article:tag") or page.meta.get("video:tag")
    out["tags"] = sanitize_tags(tags) if tags else sanitize_tags(page.first("keywords"))

    locale = page.first("og:locale")
    out["language"] = page.lang or (locale.replace("_", "-").lower() if locale else None)
    out["word_count"] = page.word_count
    return {k: v for k, v in out.items() if v is not None}


def _with_reading_time(fields: dict[str, Any]) -> dict[str, Any]:
    words = fields.get("word_count")
    if words and "reading_time" not in fields:
        fields["reading_time"] = max(1, math.ceil(words / WORDS_PER_MINUTE))
    return fields


# --- Extraction context ---


class ExtractionContext:
    """Per-call state shared by the steps of one chain run."""

    def __init__(
        self,
        url: str,
        platform: str,
        *,
        platform_id: str | None,
        fetcher: PageFetcher,
        api_client: PlatformApiClient | None = None,
    ) -> None:
        self.url = url
        self.platform = platform
        self.platform_id = platform_id
        self.api_client = api_client
        self._fetcher = fetcher
        self._page: ParsedPage | None = None
        self._page_error: ExtractionError | None = None
        self.fetch_count = 0

    async def page(self) -> ParsedPage:
        """Fetch and parse the page once; a failure is remembered and re-raised."""
        if self._page_error is not None:
            raise self._page_error
        if self._page is None:
            self.fetch_count += 1
            try:
                fetched = await self._fetcher.fetch(self.url)
                self._page = ParsedPage.parse(fetched)
            except ExtractionError as e:
                self._page_error = e
                raise
            except asyncio.CancelledError:
                self._page_error = ExtractionTimeout("page fetch timed out", source="fetch")
                raise
        return self._page


# --- Steps ---


class MetadataStep:
    """One link of a fallback chain."""

    source = ""
    network = True

    def __init__(self, confidence: float) -> None:
        self.confidence = confidence

    async def run(self, url: str, ctx: ExtractionContext) -> PlatformMetadata | None:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.confidence})"


class PlatformApiStep(MetadataStep):
    source = "platform-api"

    def __init__(self, confidence: float = 0.95) -> None:
        super().__init__(confidence)

    async def run(self, url: str, ctx: ExtractionContext) -> PlatformMetadata | None:
        client = ctx.api_client
        if client is None or not client.configured or not ctx.platform_id:
            return None
        record = await client.fetch_by_id(ctx.platform_id)
        if not record:
            return None
        return client.to_metadata(record)


class JsonLdStep(MetadataStep):
    source = "jsonld"

    async def run(self, url: str, ctx: ExtractionContext) -> PlatformMetadata | None:
        page = await ctx.page()
        for data in page.jsonld:
            node = _find_type_in_jsonld(data, _CONTENT_TYPES)
            if node is None:
                continue
            fields = _jsonld_to_fields(node)
            if not fields.get("title"):
                continue
            # Head meta of the same page fills the gaps, never the title
            og = _og_fields(page)
            borrowed = sorted(key for key in og if key not in fields)
            for key in borrowed:
                fields[key] = og[key]
            metadata = PlatformMetadata(**_with_reading_time(fields))
            if borrowed:
                metadata.provenance["filled_from_og"] = borrowed
            return metadata
        return None


class OpenGraphStep(MetadataStep):
    source = "og"

    async def run(self, url: str, ctx: ExtractionContext) -> PlatformMetadata | None:
        page = await ctx.page()
        fields = _og_fields(page)
        if not fields:
            return None
        return PlatformMetadata(**_with_reading_time(fields))


class UrlFallbackStep(MetadataStep):
    """Title from the URL itself.  Always succeeds, never touches the network."""

    source = "url"
    network = False

    async def run(self, url: str, ctx: ExtractionContext) -> PlatformMetadata | None:
        return url_fallback_metadata(url, ctx.platform, ctx.platform_id)


def url_fallback_metadata(url: str, platform: str, platform_id: str | None = None) -> PlatformMetadata:
    thumbnail = None
    if platform == Platform.YOUTUBE and platform_id:
        title = f"YouTube video {platform_id}"
        thumbnail = f"https://img.youtube.com/vi/{platform_id}/hqdefault.jpg"
    elif platform == Platform.BILIBILI and platform_id:
        title = f"Bilibili video {platform_id}"
    elif platform == Platform.GITHUB and platform_id:
        title = platform_id
    else:
        title = _title_from_path(url)
    return PlatformMetadata(platform_id=platform_id, title=title, thumbnail=thumbnail)


def _title_from_path(url: str) -> str:
    try:
        parts = urlsplit(url)
        host = parts.hostname or ""
    except ValueError:
        return sanitize_text(url, max_len=200) or url
    segments = [s for s in parts.path.split("/") if s]
    if segments:
        last = unquote(segments[-1])
        last = re.sub(r"\.(?:html?|php|aspx?)$", "", last, flags=re.I)
        text = sanitize_text(re.sub(r"[-_]+", " ", last), max_len=200)
        if text:
            return text
    return host or url


# --- Chains ---

_DEFAULT_CHAIN: tuple[MetadataStep, ...] = (JsonLdStep(0.7), OpenGraphStep(0.6), UrlFallbackStep(0.2))

PLATFORM_CHAINS: dict[str, tuple[MetadataStep, ...]] = {
    Platform.YOUTUBE: (PlatformApiStep(0.95), JsonLdStep(0.85), OpenGraphStep(0.8), UrlFallbackStep(0.3)),
    Platform.BILIBILI: (PlatformApiStep(0.95), OpenGraphStep(0.85), UrlFallbackStep(0.4)),
    Platform.TWITTER: (OpenGraphStep(0.85), UrlFallbackStep(0.3)),
    Platform.MEDIUM: (JsonLdStep(0.9), OpenGraphStep(0.8), UrlFallbackStep(0.4)),
    Platform.ZHIHU: (OpenGraphStep(0.85), UrlFallbackStep(0.4)),
    Platform.GITHUB: (PlatformApiStep(0.95), OpenGraphStep(0.8), UrlFallbackStep(0.4)),
    Platform.WEIBO: (OpenGraphStep(0.8), UrlFallbackStep(0.3)),
    Platform.DEVTO: (JsonLdStep(0.85), OpenGraphStep(0.8), UrlFallbackStep(0.3)),
}


def chain_for(platform: str) -> tuple[MetadataStep, ...]:
    return PLATFORM_CHAINS.get(platform, _DEFAULT_CHAIN)


@dataclass(frozen=True, slots=True)
class ExtractionOutcome:
    """Metadata plus how it was obtained."""

    metadata: PlatformMetadata
    source: str
    confidence: float
    elapsed_ms: float
    errors: tuple[str, ...] = ()


# --- Extractor ---


class MetadataExtractor:
    """Runs the fallback chain for a platform.  Never raises."""

    def __init__(
        self,
        fetcher: PageFetcher,
        *,
        api_clients: Mapping[str, PlatformApiClient] | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        chains: Mapping[str, tuple[MetadataStep, ...]] | None = None,
    ) -> None:
        self._fetcher = fetcher
        self._api_clients = dict(api_clients or {})
        self._timeout = timeout
        self._chains = dict(PLATFORM_CHAINS if chains is None else chains)

    def chain(self, platform: str) -> tuple[MetadataStep, ...]:
        return self._chains.get(platform, _DEFAULT_CHAIN)

    async def extract(
        self,
        url: str,
        platform: str,
        *,
        platform_id: str | None = None,
        timeout: float | None = None,
    ) -> PlatformMetadata:
        outcome = await self.extract_with_details(url, platform, platform_id=platform_id, timeout=timeout)
        return outcome.metadata

    async def extract_with_details(
        self,
        url: str,
        platform: str,
        *,
        platform_id: str | None = None,
        timeout: float | None = None,
    ) -> ExtractionOutcome:
        start = time.perf_counter()
        budget = self._timeout if timeout is None else timeout
        if platform_id is None:
            platform_id = extract_platform_id(platform, url)

        ctx = ExtractionContext(
            url,
            platform,
            platform_id=platform_id,
            fetcher=self._fetcher,
            api_client=self._api_clients.get(platform),
        )

        errors: list[str] = []
        metadata: PlatformMetadata | None = None
        winner: MetadataStep | None = None

        for step in self.chain(platform):
            try:
                if step.network:
                    candidate = await asyncio.wait_for(step.run(url, ctx), timeout=budget)
                else:
                    candidate = await step.run(url, ctx)
            except TimeoutError:
                errors.append(f"{step.source}: timed out after {budget:g}s")
                continue
            except ExtractionError as e:
                errors.append(f"{step.source}: {e}")
                continue
            except Exception as e:
                logger.warning("Metadata step %s failed for %s", step.source, url, exc_info=True)
                errors.append(f"{step.source}: {type(e).__name__}: {e}")
                continue

            if candidate is not None and candidate.title:
                metadata, winner = candidate, step
                break
            if candidate is not None:
                errors.append(f"{step.source}: no title")

        if metadata is None or winner is None:
            winner = UrlFallbackStep(0.2)
            metadata = url_fallback_metadata(url, platform, platform_id)

        elapsed_ms = round((time.perf_counter() - start) * 1000, 2)
        provenance: dict[str, Any] = {
            **metadata.provenance,
            "source": winner.source,
            "confidence": winner.confidence,
            "elapsed_ms": elapsed_ms,
            "extracted_at": datetime.now(timezone.utc).isoformat(),
            "url": url,
            "errors": list(errors),
        }
        if winner.source == "url" and errors:
            provenance["error"] = "all metadata sources failed"

        metadata = dataclasses.replace(
            metadata,
            platform_id=metadata.platform_id or platform_id,
            provenance=provenance,
        )
        if errors:
            logger.debug("Metadata for %s from %s after errors: %s", url, winner.source, errors)

        return ExtractionOutcome(
            metadata=metadata,
            source=winner.source,
            confidence=winner.confidence,
            elapsed_ms=elapsed_ms,
            errors=tuple(errors),
        )
