# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Engine configuration and user preferences.

DetectorConfig is immutable and built once per PlatformDetector, either from
keyword arguments or from ``URLSENSE_*`` environment variables.  Preferences
are the user-tunable part and can be updated at runtime through
``PlatformDetector.update_preferences()``.
"""

from __future__ import annotations

import dataclasses
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from . import ContentType, Platform, ProcessingStrategy

logger = logging.getLogger(__name__)

try:
    from importlib.metadata import version as _pkg_version

    _URLSENSE_VERSION = _pkg_version("urlsense")
except Exception:
    _URLSENSE_VERSION = "unknown"

DEFAULT_USER_AGENT = f"Mozilla/5.0 (compatible; urlsense/{_URLSENSE_VERSION})"

_ENV_PREFIX = "URLSENSE_"

DEFAULT_STRATEGIES: dict[str, ProcessingStrategy] = {
    ContentType.ARTICLE: ProcessingStrategy.CLIP,
    ContentType.VIDEO: ProcessingStrategy.WATCH_LATER,
    ContentType.TWEET: ProcessingStrategy.BOOKMARK,
    ContentType.CODE_REPOSITORY: ProcessingStrategy.BOOKMARK,
    ContentType.DOCUMENTATION: ProcessingStrategy.CLIP,
    ContentType.DISCUSSION: ProcessingStrategy.BOOKMARK,
    ContentType.IMAGE_GALLERY: ProcessingStrategy.BOOKMARK,
    ContentType.GENERIC: ProcessingStrategy.CLIP,
}


@dataclass(frozen=True)
class DetectorConfig:
    """Immutable engine configuration."""

    cache_enabled: bool = True
    cache_ttl: float = 300.0  # seconds
    cache_max_size: int = 1000
    cache_evict_batch: int = 10
    cache_sweep_interval: float = 300.0
    enable_metadata_extraction: bool = True
    extraction_timeout: float = 10.0
    max_page_bytes: int = 512 * 1024
    user_agent: str = DEFAULT_USER_AGENT
    batch_window: int = 5
    classification_threshold: float = 0.6
    article_word_threshold: int = 500
    enable_context_rules: bool = True
    enable_learning: bool = False
    history_size: int = 500
    learning_decay_days: float = 30.0
    enable_platform_api: bool = True
    youtube_api_key: str | None = None
    github_token: str | None = None
    rules_path: str | None = None

    def __post_init__(self) -> None:
        if self.cache_max_size < 1:
            raise ValueError("cache_max_size must be >= 1")
        if self.batch_window < 1:
            raise ValueError("batch_window must be >= 1")
        if self.extraction_timeout <= 0:
            raise ValueError("extraction_timeout must be > 0")
        if not 0.0 <= self.classification_threshold <= 1.0:
            raise ValueError("classification_threshold must be within [0, 1]")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, **overrides: Any) -> DetectorConfig:
        """Build a config from ``URLSENSE_*`` variables.

        Unparseable values are ignored with a warning so that a typo in the
        environment never prevents startup.  Keyword overrides win over the
        environment.
        """
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}

        for name, kind, key in _ENV_FIELDS:
            raw = env.get(_ENV_PREFIX + name)
            if raw is None or raw.strip() == "":
                continue
            try:
                values[key] = _parse_env_value(raw.strip(), kind)
            except ValueError:
                logger.warning("Ignoring invalid %s%s=%r", _ENV_PREFIX, name, raw)

        values.update(overrides)
        try:
            return cls(**values)
        except ValueError as e:
            logger.warning("Invalid configuration from environment (%s); using defaults", e)
            return cls(**overrides)


_ENV_FIELDS: tuple[tuple[str, str, str], ...] = (
    ("CACHE_ENABLED", "bool", "cache_enabled"),
    ("CACHE_TTL", "float", "cache_ttl"),
    ("CACHE_MAX_SIZE", "int", "cache_max_size"),
    ("METADATA", "bool", "enable_metadata_extraction"),
    ("TIMEOUT", "float", "extraction_timeout"),
    ("MAX_PAGE_BYTES", "int", "max_page_bytes"),
    ("USER_AGENT", "str", "user_agent"),
    ("BATCH_WINDOW", "int", "batch_window"),
    ("THRESHOLD", "float", "classification_threshold"),
    ("LEARNING", "bool", "enable_learning"),
    ("PLATFORM_API", "bool", "enable_platform_api"),
    ("YOUTUBE_API_KEY", "str", "youtube_api_key"),
    ("GITHUB_TOKEN", "str", "github_token"),
    ("RULES_PATH", "str", "rules_path"),
)

_TRUE = frozenset({"1", "true", "yes", "on"})
_FALSE = frozenset({"0", "false", "no", "off"})


def _parse_env_value(raw: str, kind: str) -> Any:
    if kind == "bool":
        lowered = raw.lower()
        if lowered in _TRUE:
            return True
        if lowered in _FALSE:
            return False
        raise ValueError(raw)
    if kind == "int":
        return int(raw)
    if kind == "float":
        return float(raw)
    return raw


# ---------------------------------------------------------------------------
# User preferences
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Preferences:
    """User-tunable detection preferences.

    ``enabled_platforms=None`` enables every platform.  A detected platform
    outside the enabled set degrades to ``generic`` when
    ``fallback_to_generic`` is set, otherwise it is kept and the result is
    marked ``ignore``.
    """

    default_strategies: dict[str, ProcessingStrategy] = field(default_factory=lambda: dict(DEFAULT_STRATEGIES))
    enabled_platforms: frozenset[str] | None = None
    auto_detection: bool = True
    cache_duration: float | None = None  # seconds; None = DetectorConfig.cache_ttl
    fallback_to_generic: bool = True

    def is_enabled(self, platform: str) -> bool:
        if platform == Platform.GENERIC or self.enabled_platforms is None:
            return True
        return platform in self.enabled_platforms

    def merged(self, changes: Mapping[str, Any]) -> Preferences:
        """Return a copy with *changes* applied; strategies merge key by key."""
        known = {f.name for f in dataclasses.fields(self)}
        unknown = set(changes) - known
        if unknown:
            raise ValueError(f"Unknown preference(s): {', '.join(sorted(unknown))}")

        updates = dict(changes)
        if "default_strategies" in updates:
            strategies = dict(self.default_strategies)
            for content_type, strategy in (updates["default_strategies"] or {}).items():
                strategies[ContentType(content_type)] = ProcessingStrategy(strategy)
            updates["default_strategies"] = strategies
        if updates.get("enabled_platforms") is not None:
            updates["enabled_platforms"] = frozenset(str(p) for p in updates["enabled_platforms"])
        return dataclasses.replace(self, **updates)
