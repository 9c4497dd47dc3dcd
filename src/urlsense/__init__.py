# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""urlsense: platform detection and processing-strategy engine for URLs.

Given an arbitrary URL, determines:
- platform: the content source the URL belongs to (youtube, github, ... or generic)
- content_type: the kind of content behind it (article, video, discussion, ...)
- confidence: how certain each determination is
- processing_strategy: the recommended downstream handling (clip, watch-later, ...)
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field, fields
from enum import StrEnum
from typing import Any


class Platform(StrEnum):
    """Platforms with built-in rules and extraction chains."""

    YOUTUBE = "youtube"
    BILIBILI = "bilibili"
    TWITTER = "twitter"
    MEDIUM = "medium"
    ZHIHU = "zhihu"
    GITHUB = "github"
    WEIBO = "weibo"
    TIKTOK = "tiktok"
    REDDIT = "reddit"
    STACKOVERFLOW = "stackoverflow"
    DEVTO = "devto"
    HACKERNEWS = "hackernews"
    GENERIC = "generic"


class ContentType(StrEnum):
    ARTICLE = "article"
    VIDEO = "video"
    IMAGE_GALLERY = "image_gallery"
    TWEET = "tweet"
    CODE_REPOSITORY = "code_repository"
    DOCUMENTATION = "documentation"
    DISCUSSION = "discussion"
    GENERIC = "generic"


class ProcessingStrategy(StrEnum):
    """Recommended downstream handling for detected content."""

    CLIP = "clip"
    WATCH_LATER = "watch-later"
    BOOKMARK = "bookmark"
    IGNORE = "ignore"


@dataclass(frozen=True)
class PlatformMetadata:
    """Lightweight metadata for a URL.

    Every field is optional; ``None`` always means "unknown" and is never
    conflated with a zero value (``duration=0`` is a known zero-length item).
    ``provenance`` records how the record was derived (source step,
    confidence, timing, step errors) and is informational only.
    """

    platform_id: str | None = None
    title: str | None = None
    description: str | None = None
    thumbnail: str | None = None
    duration: float | None = None  # seconds
    author: str | None = None
    published_at: str | None = None
    view_count: int | None = None
    like_count: int | None = None
    comment_count: int | None = None
    tags: tuple[str, ...] | None = None
    language: str | None = None
    word_count: int | None = None
    reading_time: int | None = None  # minutes
    is_live: bool | None = None
    is_premium: bool | None = None
    provenance: dict[str, Any] = field(default_factory=dict)

    @property
    def source(self) -> str | None:
        return self.provenance.get("source")

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            if f.name == "tags":
                value = list(value)
            elif f.name == "provenance":
                if not value:
                    continue
                value = copy.deepcopy(value)
            out[f.name] = value
        return out


@dataclass
class DetectionResult:
    """Outcome of detecting a single URL.

    A value type: the cache stores and hands out deep copies, so callers may
    mutate their copy freely.
    """

    platform: str
    content_type: str
    confidence: float
    matched_pattern: str | None = None
    extracted_id: str | None = None
    metadata: PlatformMetadata | None = None
    processing_strategy: str | None = None
    content_confidence: float | None = None
    alternatives: list[dict[str, Any]] | None = None
    error: str | None = None
    warnings: list[str] | None = None

    @property
    def degraded(self) -> bool:
        return self.error is not None or bool(self.warnings)

    def copy(self) -> DetectionResult:
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            if isinstance(value, PlatformMetadata):
                value = value.to_dict()
            elif isinstance(value, StrEnum):
                value = value.value
            elif isinstance(value, list):
                value = copy.deepcopy(value)
            out[f.name] = value
        return out
