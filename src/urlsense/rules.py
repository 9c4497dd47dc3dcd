# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Priority-ordered platform rule matcher.

Each PlatformRule carries a list of regex patterns matched case-insensitively
against the normalized URL.  The active index is a tuple sorted by descending
priority (stable, so equal priorities keep registration order); the first
enabled rule whose pattern matches decides the platform.

Registration is copy-on-write: writers build a new sorted tuple under a lock
and swap it in, readers iterate whatever snapshot they grabbed.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import re
import threading
from collections.abc import Iterable
from dataclasses import dataclass
from functools import lru_cache
from urllib.parse import parse_qs, unquote, urlsplit

from . import ContentType, Platform

logger = logging.getLogger(__name__)

MATCH_CONFIDENCE = 0.9
NO_MATCH_CONFIDENCE = 0.1


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class PlatformRule:
    """URL patterns that identify one platform."""

    platform: str
    patterns: tuple[str, ...]
    content_type: str = ContentType.GENERIC
    priority: int = 0
    enabled: bool = True
    description: str | None = None

    def to_dict(self) -> dict:
        out = {
            "platform": str(self.platform),
            "patterns": list(self.patterns),
            "content_type": str(self.content_type),
            "priority": self.priority,
            "enabled": self.enabled,
        }
        if self.description:
            out["description"] = self.description
        return out


@dataclass(frozen=True, slots=True)
class RuleMatch:
    """Outcome of matching a URL against the rule index."""

    platform: str
    confidence: float
    matched_pattern: str | None = None
    extracted_id: str | None = None
    content_type: str | None = None  # default content type of the matched rule

    @property
    def is_generic(self) -> bool:
        return self.platform == Platform.GENERIC


# ---------------------------------------------------------------------------
# Built-in rules
# ---------------------------------------------------------------------------

_SCHEME = r"^https?://"

BUILTIN_RULES: tuple[PlatformRule, ...] = (
    PlatformRule(
        platform=Platform.YOUTUBE,
        patterns=(
            _SCHEME + r"(?:www\.|m\.)?youtube\.com/watch\?(?:[^#]*&)?v=[\w-]{11}",
            _SCHEME + r"youtu\.be/[\w-]{11}",
            _SCHEME + r"(?:www\.|m\.)?youtube\.com/shorts/[\w-]+",
            _SCHEME + r"(?:www\.|m\.)?youtube\.com/live/[\w-]+",
            _SCHEME + r"(?:www\.|m\.)?youtube\.com/playlist\?(?:[^#]*&)?list=[\w-]+",
        ),
        content_type=ContentType.VIDEO,
        priority=100,
        description="YouTube videos, shorts and playlists",
    ),
    PlatformRule(
        platform=Platform.BILIBILI,
        patterns=(
            _SCHEME + r"(?:www\.|m\.)?bilibili\.com/video/[a-z0-9]+",
            _SCHEME + r"(?:www\.|m\.)?bilibili\.com/bangumi/play/[a-z0-9]+",
            _SCHEME + r"b23\.tv/[a-z0-9]+",
            _SCHEME + r"(?:www\.)?bilibili\.com/read/[a-z0-9]+",
        ),
        content_type=ContentType.VIDEO,
        priority=95,
        description="Bilibili videos, bangumi and columns",
    ),
    PlatformRule(
        platform=Platform.TWITTER,
        patterns=(
            _SCHEME + r"(?:www\.|mobile\.)?(?:twitter\.com|x\.com)/\w+/status/\d+",
            _SCHEME + r"(?:www\.|mobile\.)?(?:twitter\.com|x\.com)/\w+",
        ),
        content_type=ContentType.TWEET,
        priority=90,
        description="Twitter / X posts and profiles",
    ),
    PlatformRule(
        platform=Platform.MEDIUM,
        patterns=(
            _SCHEME + r"(?:www\.)?medium\.com/@[\w.-]+/[\w-]+",
            _SCHEME + r"(?:www\.)?medium\.com/[\w-]+/[\w-]+",
            _SCHEME + r"[\w-]+\.medium\.com/[\w-]+",
        ),
        content_type=ContentType.ARTICLE,
        priority=85,
        description="Medium stories",
    ),
    PlatformRule(
        platform=Platform.ZHIHU,
        patterns=(
            _SCHEME + r"(?:www\.)?zhihu\.com/question/\d+",
            _SCHEME + r"zhuanlan\.zhihu\.com/p/\d+",
            _SCHEME + r"(?:www\.)?zhihu\.com/answer/\d+",
            _SCHEME + r"(?:www\.)?zhihu\.com/zvideo/\d+",
        ),
        content_type=ContentType.ARTICLE,
        priority=80,
        description="Zhihu questions, answers and columns",
    ),
    PlatformRule(
        platform=Platform.GITHUB,
        patterns=(
            _SCHEME + r"(?:www\.)?github\.com/[\w.-]+/[\w.-]+/issues/\d+",
            _SCHEME + r"(?:www\.)?github\.com/[\w.-]+/[\w.-]+/pull/\d+",
            _SCHEME + r"(?:www\.)?github\.com/[\w.-]+/[\w.-]+/(?:blob|tree)/",
            _SCHEME + r"(?:www\.)?github\.com/[\w.-]+/[\w.-]+",
        ),
        content_type=ContentType.CODE_REPOSITORY,
        priority=75,
        description="GitHub repositories, issues and pull requests",
    ),
    PlatformRule(
        platform=Platform.WEIBO,
        patterns=(
            _SCHEME + r"(?:www\.)?weibo\.com/\d+/[a-z0-9]+",
            _SCHEME + r"m\.weibo\.cn/(?:status|detail)/\d+",
        ),
        content_type=ContentType.TWEET,
        priority=70,
        description="Weibo posts",
    ),
    PlatformRule(
        platform=Platform.TIKTOK,
        patterns=(
            _SCHEME + r"(?:www\.|m\.)?tiktok\.com/@[\w.-]+/video/\d+",
            _SCHEME + r"(?:vt|vm)\.tiktok\.com/[a-z0-9]+",
        ),
        content_type=ContentType.VIDEO,
        priority=65,
        description="TikTok videos",
    ),
    PlatformRule(
        platform=Platform.REDDIT,
        patterns=(
            _SCHEME + r"(?:www\.|old\.|new\.)?reddit\.com/r/\w+/comments/\w+",
            _SCHEME + r"redd\.it/\w+",
        ),
        content_type=ContentType.DISCUSSION,
        priority=60,
        description="Reddit threads",
    ),
    PlatformRule(
        platform=Platform.STACKOVERFLOW,
        patterns=(
            _SCHEME + r"(?:www\.)?stackoverflow\.com/questions/\d+",
            _SCHEME + r"(?:www\.)?stackoverflow\.com/[aq]/\d+",
        ),
        content_type=ContentType.DISCUSSION,
        priority=55,
        description="Stack Overflow questions and answers",
    ),
    PlatformRule(
        platform=Platform.DEVTO,
        patterns=(_SCHEME + r"(?:www\.)?dev\.to/[\w.-]+/[\w-]+",),
        content_type=ContentType.ARTICLE,
        priority=50,
        description="dev.to articles",
    ),
    PlatformRule(
        platform=Platform.HACKERNEWS,
        patterns=(_SCHEME + r"news\.ycombinator\.com/item\?(?:[^#]*&)?id=\d+",),
        content_type=ContentType.DISCUSSION,
        priority=45,
        description="Hacker News items",
    ),
)


# ---------------------------------------------------------------------------
# Pattern compilation
# ---------------------------------------------------------------------------


@lru_cache(maxsize=1024)
def compile_pattern(pattern: str) -> re.Pattern[str] | None:
    """Compile *pattern* case-insensitively; None (and a warning) if invalid."""
    try:
        return re.compile(pattern, re.IGNORECASE)
    except re.error as e:
        logger.warning("Skipping invalid rule pattern %r: %s", pattern, e)
        return None


# ---------------------------------------------------------------------------
# Platform id extraction
# ---------------------------------------------------------------------------

_ID_PATTERNS: dict[str, tuple[re.Pattern[str], ...]] = {
    Platform.YOUTUBE: (
        re.compile(r"youtu\.be/([\w-]{11})", re.I),
        re.compile(r"youtube\.com/(?:shorts|live|embed)/([\w-]+)", re.I),
    ),
    Platform.BILIBILI: (
        re.compile(r"bilibili\.com/video/([a-z0-9]+)", re.I),
        re.compile(r"bilibili\.com/bangumi/play/([a-z0-9]+)", re.I),
        re.compile(r"b23\.tv/([a-z0-9]+)", re.I),
        re.compile(r"bilibili\.com/read/([a-z0-9]+)", re.I),
    ),
    Platform.TWITTER: (
        re.compile(r"(?:twitter\.com|x\.com)/\w+/status/(\d+)", re.I),
        re.compile(r"(?:twitter\.com|x\.com)/(\w+)", re.I),
    ),
    Platform.ZHIHU: (
        re.compile(r"zhihu\.com/question/\d+/answer/(\d+)", re.I),
        re.compile(r"zhihu\.com/(?:question|answer|zvideo)/(\d+)", re.I),
        re.compile(r"zhuanlan\.zhihu\.com/p/(\d+)", re.I),
    ),
    Platform.WEIBO: (
        re.compile(r"weibo\.com/\d+/([a-z0-9]+)", re.I),
        re.compile(r"m\.weibo\.cn/(?:status|detail)/(\d+)", re.I),
    ),
    Platform.TIKTOK: (
        re.compile(r"tiktok\.com/@[\w.-]+/video/(\d+)", re.I),
        re.compile(r"(?:vt|vm)\.tiktok\.com/([a-z0-9]+)", re.I),
    ),
    Platform.REDDIT: (
        re.compile(r"reddit\.com/r/\w+/comments/(\w+)", re.I),
        re.compile(r"redd\.it/(\w+)", re.I),
    ),
    Platform.STACKOVERFLOW: (re.compile(r"stackoverflow\.com/(?:questions|q|a)/(\d+)", re.I),),
    Platform.DEVTO: (re.compile(r"dev\.to/([\w.-]+/[\w-]+)", re.I),),
}

_GITHUB_RESERVED = frozenset({"orgs", "settings", "marketplace", "explore", "topics", "sponsors", "features"})


def _query_param(url: str, name: str) -> str | None:
    values = parse_qs(urlsplit(url).query).get(name)
    return values[0] if values else None


def extract_platform_id(platform: str, url: str) -> str | None:
    """Pull the platform-specific identifier out of *url*.

    Returns None when the URL carries no recognizable id; never raises.
    """
    try:
        if platform == Platform.YOUTUBE:
            parts = urlsplit(url)
            if parts.path.rstrip("/") == "/watch":
                vid = _query_param(url, "v")
                if vid and re.fullmatch(r"[\w-]{11}", vid):
                    return vid
            if parts.path.startswith("/playlist"):
                return _query_param(url, "list")
        elif platform == Platform.GITHUB:
            m = re.search(r"github\.com/([\w.-]+)/([\w.-]+)", url, re.I)
            if m and m.group(1).lower() not in _GITHUB_RESERVED:
                repo = m.group(2)
                if repo.endswith(".git"):
                    repo = repo[:-4]
                return f"{m.group(1)}/{repo}"
            return None
        elif platform == Platform.HACKERNEWS:
            item = _query_param(url, "id")
            return item if item and item.isdigit() else None

        for pattern in _ID_PATTERNS.get(platform, ()):
            m = pattern.search(url)
            if m:
                return unquote(m.group(1))
    except ValueError:
        return None
    return None


# ---------------------------------------------------------------------------
# RuleMatcher
# ---------------------------------------------------------------------------


def _sorted(rules: Iterable[PlatformRule]) -> tuple[PlatformRule, ...]:
    # sorted() is stable: equal priorities keep registration order
    return tuple(sorted(rules, key=lambda r: -r.priority))


class RuleMatcher:
    """Matches normalized URLs against a priority-ordered rule index."""

    def __init__(self, rules: Iterable[PlatformRule] | None = None) -> None:
        self._write_lock = threading.Lock()
        self._rules: tuple[PlatformRule, ...] = _sorted(BUILTIN_RULES if rules is None else rules)

    def match(self, normalized_url: str) -> RuleMatch:
        """First enabled rule (descending priority) with a matching pattern wins."""
        for rule in self._rules:
            if not rule.enabled:
                continue
            for pattern in rule.patterns:
                compiled = compile_pattern(pattern)
                if compiled is None or not compiled.search(normalized_url):
                    continue
                return RuleMatch(
                    platform=rule.platform,
                    confidence=MATCH_CONFIDENCE,
                    matched_pattern=pattern,
                    extracted_id=extract_platform_id(rule.platform, normalized_url),
                    content_type=rule.content_type,
                )
        return RuleMatch(platform=Platform.GENERIC, confidence=NO_MATCH_CONFIDENCE)

    def rule_for(self, platform: str) -> PlatformRule | None:
        return next((r for r in self._rules if r.platform == platform), None)

    # -- Registration (copy-on-write) --

    def register(self, rule: PlatformRule) -> None:
        """Add *rule*, replacing any existing rule for the same platform."""
        for pattern in rule.patterns:
            compile_pattern(pattern)  # warm the cache, log bad patterns once
        with self._write_lock:
            kept = [r for r in self._rules if r.platform != rule.platform]
            replaced = len(kept) != len(self._rules)
            self._rules = _sorted([*kept, rule])
        logger.info("%s rule for %s (priority %d)", "Replaced" if replaced else "Registered", rule.platform, rule.priority)

    def update_rule(self, platform: str, **changes) -> bool:
        """Replace the rule for *platform* with an updated copy. False if unknown."""
        changes.pop("platform", None)
        if "patterns" in changes:
            changes["patterns"] = tuple(changes["patterns"])
        with self._write_lock:
            updated = [dataclasses.replace(r, **changes) if r.platform == platform else r for r in self._rules]
            if updated == list(self._rules):
                return any(r.platform == platform for r in self._rules)
            self._rules = _sorted(updated)
        return True

    def set_enabled(self, platform: str, enabled: bool) -> bool:
        return self.update_rule(platform, enabled=enabled)

    def replace_rules(self, rules: Iterable[PlatformRule]) -> None:
        rules = list(rules)
        with self._write_lock:
            self._rules = _sorted(rules)
        logger.info("Rule index replaced (%d rules)", len(rules))

    def rules(self) -> tuple[PlatformRule, ...]:
        return self._rules

    def export_json(self, indent: int | None = 2) -> str:
        return json.dumps([r.to_dict() for r in self._rules], indent=indent, ensure_ascii=False)
