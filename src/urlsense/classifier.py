# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Content-type classifier: platform rules, then heuristics, then generic.

Tiers:
  1. Platform rules  – URL patterns, or title/description patterns scored by
                       the fraction of metadata fields that matched
  2. Heuristics      – fixed-order checks on metadata and URL shape; the
                       first one at or above the threshold decides
  3. Fallback        – ``generic`` at 0.3

Stateless per call.  Rule and heuristic tables are copy-on-write tuples.
"""

from __future__ import annotations

import logging
import re
import threading
from collections.abc import Callable
from dataclasses import dataclass
from urllib.parse import urlsplit

from . import ContentType, Platform, PlatformMetadata
from .rules import compile_pattern

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 0.6
DEFAULT_ARTICLE_WORDS = 500
PLATFORM_DEFAULT_CONFIDENCE = 0.75
FALLBACK_CONFIDENCE = 0.3
UNMATCHED_RULE_FACTOR = 0.8
MIN_METADATA_MATCH_RATIO = 0.5

# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ClassificationRule:
    """Platform-specific content type rule."""

    platform: str
    content_type: str
    confidence: float
    priority: int = 0
    url_patterns: tuple[str, ...] = ()
    title_patterns: tuple[str, ...] = ()
    description_patterns: tuple[str, ...] = ()
    name: str | None = None


@dataclass(frozen=True, slots=True)
class Heuristic:
    """Platform-agnostic check on metadata and URL."""

    name: str
    content_type: str
    confidence: float
    test: Callable[[PlatformMetadata, str], bool]


@dataclass(frozen=True, slots=True)
class Classification:
    """Result of content classification."""

    content_type: str
    confidence: float  # 0.0–1.0
    source: str  # "platform-rule" | "platform-default" | "heuristic" | "fallback"
    rule: str | None = None  # name of the deciding rule or heuristic


# ---------------------------------------------------------------------------
# Default platform rules
# ---------------------------------------------------------------------------


def _rule(platform, content_type, confidence, priority, *patterns, name=None):
    return ClassificationRule(
        platform=platform,
        content_type=content_type,
        confidence=confidence,
        priority=priority,
        url_patterns=patterns,
        name=name or f"{platform}:{content_type}",
    )


DEFAULT_RULES: tuple[ClassificationRule, ...] = (
    _rule(Platform.YOUTUBE, ContentType.VIDEO, 0.95, 100, r"youtube\.com/watch", r"youtu\.be/", r"youtube\.com/(?:shorts|live)/"),
    _rule(Platform.YOUTUBE, ContentType.VIDEO, 0.9, 90, r"youtube\.com/playlist", name="youtube:playlist"),
    _rule(Platform.BILIBILI, ContentType.VIDEO, 0.95, 100, r"bilibili\.com/(?:video|bangumi)", r"b23\.tv/"),
    _rule(Platform.BILIBILI, ContentType.ARTICLE, 0.9, 90, r"bilibili\.com/read"),
    _rule(Platform.TWITTER, ContentType.TWEET, 0.95, 100, r"twitter\.com/.*/status", r"x\.com/.*/status"),
    _rule(Platform.MEDIUM, ContentType.ARTICLE, 0.9, 100, r"medium\.com"),
    _rule(Platform.ZHIHU, ContentType.DISCUSSION, 0.9, 100, r"zhihu\.com/(?:question|answer)"),
    _rule(Platform.ZHIHU, ContentType.ARTICLE, 0.9, 90, r"zhuanlan\.zhihu\.com"),
    _rule(Platform.ZHIHU, ContentType.VIDEO, 0.9, 80, r"zhihu\.com/zvideo"),
    _rule(Platform.GITHUB, ContentType.DISCUSSION, 0.92, 110, r"github\.com/[^/]+/[^/]+/(?:issues|pull|discussions)/", name="github:issue"),
    _rule(Platform.GITHUB, ContentType.CODE_REPOSITORY, 0.9, 100, r"github\.com/[^/]+/[^/]+"),
    _rule(Platform.WEIBO, ContentType.TWEET, 0.9, 100, r"weibo\.(?:com|cn)"),
    _rule(Platform.TIKTOK, ContentType.VIDEO, 0.95, 100, r"tiktok\.com/.*/video", r"(?:vt|vm)\.tiktok\.com/"),
    _rule(Platform.REDDIT, ContentType.DISCUSSION, 0.9, 100, r"reddit\.com/r/.*/comments", r"redd\.it/"),
    _rule(Platform.STACKOVERFLOW, ContentType.DISCUSSION, 0.95, 100, r"stackoverflow\.com/(?:questions|q|a)/"),
    _rule(Platform.DEVTO, ContentType.ARTICLE, 0.9, 100, r"dev\.to"),
    _rule(Platform.HACKERNEWS, ContentType.DISCUSSION, 0.9, 100, r"news\.ycombinator\.com"),
)


# ---------------------------------------------------------------------------
# Default heuristics
# ---------------------------------------------------------------------------


def _title_has(*words: str) -> Callable[[PlatformMetadata, str], bool]:
    pattern = re.compile(r"\b(?:" + "|".join(words) + ")", re.IGNORECASE)
    return lambda md, url: bool(md.title and pattern.search(md.title))


def _description_has(*words: str) -> Callable[[PlatformMetadata, str], bool]:
    pattern = re.compile(r"\b(?:" + "|".join(words) + ")", re.IGNORECASE)
    return lambda md, url: bool(md.description and pattern.search(md.description))


def _path_matches(pattern: str) -> Callable[[PlatformMetadata, str], bool]:
    compiled = re.compile(pattern, re.IGNORECASE)

    def check(md: PlatformMetadata, url: str) -> bool:
        if not url:
            return False
        try:
            path = urlsplit(url).path
        except ValueError:
            return False
        return bool(compiled.search(path))

    return check


_ARTICLE_PATH = r"/(?:blog|articles?|posts?|entry|news)(?:/|$)"
_DOCS_PATH = r"/(?:docs|documentation|guides?|tutorials?)(?:/|$)"

_PDF_EXT = re.compile(r"\.pdf$", re.IGNORECASE)
_IMAGE_EXT = re.compile(r"\.(?:jpe?g|png|gif|webp|svg|avif|bmp)$", re.IGNORECASE)
_VIDEO_EXT = re.compile(r"\.(?:mp4|webm|mov|mkv|m4v|avi)$", re.IGNORECASE)


def _extension_type(url: str) -> str | None:
    try:
        path = urlsplit(url).path
    except ValueError:
        return None
    if _PDF_EXT.search(path):
        return ContentType.DOCUMENTATION
    if _IMAGE_EXT.search(path):
        return ContentType.IMAGE_GALLERY
    if _VIDEO_EXT.search(path):
        return ContentType.VIDEO
    return None


def default_heuristics(article_word_threshold: int = DEFAULT_ARTICLE_WORDS) -> tuple[Heuristic, ...]:
    """Built-in heuristics in evaluation order."""

    def long_text(md: PlatformMetadata, url: str) -> bool:
        return md.word_count is not None and md.word_count > article_word_threshold

    return (
        Heuristic("duration", ContentType.VIDEO, 0.9, lambda md, url: md.duration is not None),
        Heuristic("title-video", ContentType.VIDEO, 0.7, _title_has("video", "watch")),
        Heuristic("word-count", ContentType.ARTICLE, 0.8, long_text),
        Heuristic("title-article", ContentType.ARTICLE, 0.7, _title_has("blog", "article", "post")),
        Heuristic("path-article", ContentType.ARTICLE, 0.75, _path_matches(_ARTICLE_PATH)),
        Heuristic("path-docs", ContentType.DOCUMENTATION, 0.75, _path_matches(_DOCS_PATH)),
        Heuristic("title-code", ContentType.CODE_REPOSITORY, 0.8, _title_has("github", "repo", "code")),
        Heuristic("description-docs", ContentType.DOCUMENTATION, 0.7, _description_has("api", "documentation")),
        Heuristic("title-discussion", ContentType.DISCUSSION, 0.7, _title_has("discussion", "question", "answer")),
        Heuristic("title-gallery", ContentType.IMAGE_GALLERY, 0.7, _title_has("gallery", "photo", "image")),
        Heuristic("pdf-extension", ContentType.DOCUMENTATION, 0.7, lambda md, url: _extension_type(url) == ContentType.DOCUMENTATION),
        Heuristic("image-extension", ContentType.IMAGE_GALLERY, 0.7, lambda md, url: _extension_type(url) == ContentType.IMAGE_GALLERY),
        Heuristic("video-extension", ContentType.VIDEO, 0.7, lambda md, url: _extension_type(url) == ContentType.VIDEO),
    )


# ---------------------------------------------------------------------------
# Classifier
# ---------------------------------------------------------------------------


def _any_match(patterns: tuple[str, ...], text: str) -> bool:
    for pattern in patterns:
        compiled = compile_pattern(pattern)
        if compiled is not None and compiled.search(text):
            return True
    return False


def _sorted(rules) -> tuple[ClassificationRule, ...]:
    return tuple(sorted(rules, key=lambda r: -r.priority))


class ContentClassifier:
    def __init__(
        self,
        *,
        threshold: float = DEFAULT_THRESHOLD,
        article_word_threshold: int = DEFAULT_ARTICLE_WORDS,
        enable_heuristics: bool = True,
    ) -> None:
        self.threshold = threshold
        self._article_words = article_word_threshold
        self._enable_heuristics = enable_heuristics
        self._lock = threading.Lock()
        self._rules: tuple[ClassificationRule, ...] = _sorted(DEFAULT_RULES)
        self._heuristics: tuple[Heuristic, ...] = default_heuristics(article_word_threshold)

    # -- Classification --

    def classify(
        self,
        platform: str,
        metadata: PlatformMetadata | None,
        url: str | None = None,
        default_content_type: str | None = None,
    ) -> str:
        return self.classify_with_details(platform, metadata, url, default_content_type).content_type

    def classify_with_details(
        self,
        platform: str,
        metadata: PlatformMetadata | None,
        url: str | None = None,
        default_content_type: str | None = None,
    ) -> Classification:
        md = metadata or PlatformMetadata()
        if url is None:
            url = md.provenance.get("url") or ""

        result = self._apply_platform_rules(platform, md, url, default_content_type)
        if result is not None and result.confidence >= self.threshold:
            return result

        if self._enable_heuristics:
            for heuristic in self._heuristics:
                if heuristic.confidence < self.threshold:
                    continue
                if heuristic.test(md, url):
                    return Classification(heuristic.content_type, heuristic.confidence, "heuristic", heuristic.name)

        return Classification(ContentType.GENERIC, FALLBACK_CONFIDENCE, "fallback")

    def _apply_platform_rules(
        self,
        platform: str,
        md: PlatformMetadata,
        url: str,
        default_content_type: str | None,
    ) -> Classification | None:
        rules = [r for r in self._rules if r.platform == platform]
        if not rules:
            if platform != Platform.GENERIC and default_content_type and default_content_type != ContentType.GENERIC:
                return Classification(default_content_type, PLATFORM_DEFAULT_CONFIDENCE, "platform-default")
            return None

        best: Classification | None = None
        for rule in rules:  # descending priority: strict > keeps the higher-priority rule on ties
            confidence = self._score(rule, md, url)
            if confidence is not None and (best is None or confidence > best.confidence):
                best = Classification(rule.content_type, confidence, "platform-rule", rule.name)

        if best is None:
            top = rules[0]
            best = Classification(top.content_type, top.confidence * UNMATCHED_RULE_FACTOR, "platform-rule", top.name)
        return best

    @staticmethod
    def _score(rule: ClassificationRule, md: PlatformMetadata, url: str) -> float | None:
        if url and _any_match(rule.url_patterns, url):
            return rule.confidence

        total = matched = 0
        if rule.title_patterns and md.title:
            total += 1
            matched += _any_match(rule.title_patterns, md.title)
        if rule.description_patterns and md.description:
            total += 1
            matched += _any_match(rule.description_patterns, md.description)
        if total and matched / total >= MIN_METADATA_MATCH_RATIO:
            return rule.confidence * (matched / total)
        return None

    # -- Registration (copy-on-write) --

    def add_rule(self, rule: ClassificationRule) -> None:
        with self._lock:
            self._rules = _sorted([*self._rules, rule])
        logger.debug("Classification rule added: %s", rule.name or rule.platform)

    def add_heuristic(self, heuristic: Heuristic, *, index: int | None = None) -> None:
        """Insert *heuristic* at *index* in evaluation order (appended by default)."""
        with self._lock:
            items = list(self._heuristics)
            items.insert(len(items) if index is None else index, heuristic)
            self._heuristics = tuple(items)

    def reset_rules(self) -> None:
        with self._lock:
            self._rules = _sorted(DEFAULT_RULES)
            self._heuristics = default_heuristics(self._article_words)

    def rules(self) -> tuple[ClassificationRule, ...]:
        return self._rules

    def heuristics(self) -> tuple[Heuristic, ...]:
        return self._heuristics
