# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""PlatformDetector: the fail-safe detection pipeline.

normalize → cache → rule match → metadata → classify → decide → cache

``detect()`` never raises.  Malformed input degrades to a low-confidence
generic result with a warning; any unexpected failure is converted to a
generic result carrying ``error`` at the boundary.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

import httpx

from . import ContentType, DetectionResult, Platform, PlatformMetadata, ProcessingStrategy
from .cache import CacheStats, DetectionCache
from .classifier import ContentClassifier
from .config import DetectorConfig, Preferences
from .http import PageFetcher
from .logging_config import URL_PREVIEW_LEN, batch_context, clip, detection_context
from .metadata import MetadataExtractor
from .normalize import is_http_url, normalize_url
from .platform_api import BilibiliApiClient, GitHubApiClient, PlatformApiClient, YouTubeApiClient
from .rule_loader import RuleSet, load_rules_file, load_rules_url
from .rules import NO_MATCH_CONFIDENCE, PlatformRule, RuleMatch, RuleMatcher
from .strategy import DecisionContext, DecisionHistoryEntry, StrategyDecider, StrategyDecision

logger = logging.getLogger(__name__)

MALFORMED_CONFIDENCE_CAP = 0.1
ERROR_CONFIDENCE = 0.1


def _merge_context(
    context: DecisionContext | None,
    url: str,
    platform: str,
    metadata: PlatformMetadata | None,
) -> DecisionContext:
    if context is None:
        return DecisionContext(url=url, platform=platform, metadata=metadata)
    return dataclasses.replace(
        context,
        url=context.url or url,
        platform=context.platform or platform,
        metadata=context.metadata or metadata,
    )


def _apply_decision(result: DetectionResult, decision: StrategyDecision) -> None:
    result.processing_strategy = decision.strategy
    result.alternatives = [dict(a) for a in decision.alternatives] or None


class PlatformDetector:
    """Detects platform, content type and processing strategy for URLs.

    Owns its httpx client unless one is passed in.  Use as an async context
    manager, or call ``aclose()`` when done.
    """

    def __init__(
        self,
        config: DetectorConfig | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        rules: Iterable[PlatformRule] | None = None,
        preferences: Preferences | None = None,
        cache: DetectionCache | None = None,
    ) -> None:
        self.config = config or DetectorConfig()
        self._preferences = preferences or Preferences()

        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            headers={"User-Agent": self.config.user_agent},
            timeout=self.config.extraction_timeout,
            follow_redirects=True,
        )

        api_clients: dict[str, PlatformApiClient] = {}
        if self.config.enable_platform_api:
            api_clients[Platform.YOUTUBE] = YouTubeApiClient(self._client, self.config.youtube_api_key)
            api_clients[Platform.GITHUB] = GitHubApiClient(self._client, self.config.github_token)
            api_clients[Platform.BILIBILI] = BilibiliApiClient(self._client)

        self.matcher = RuleMatcher(rules)
        self.extractor = MetadataExtractor(
            PageFetcher(
                self._client,
                user_agent=self.config.user_agent,
                timeout=self.config.extraction_timeout,
                max_bytes=self.config.max_page_bytes,
            ),
            api_clients=api_clients,
            timeout=self.config.extraction_timeout,
        )
        self.classifier = ContentClassifier(
            threshold=self.config.classification_threshold,
            article_word_threshold=self.config.article_word_threshold,
        )
        self.decider = StrategyDecider(
            self._preferences.default_strategies,
            enable_context_rules=self.config.enable_context_rules,
            enable_learning=self.config.enable_learning,
            history_size=self.config.history_size,
            decay_days=self.config.learning_decay_days,
        )
        self.cache = cache or DetectionCache(
            max_size=self.config.cache_max_size,
            default_ttl=self._preferences.cache_duration or self.config.cache_ttl,
            evict_batch=self.config.cache_evict_batch,
            sweep_interval=self.config.cache_sweep_interval,
            enabled=self.config.cache_enabled,
        )

        if self.config.rules_path:
            self._apply_ruleset(load_rules_file(self.config.rules_path))

    # -- Lifecycle --

    async def __aenter__(self) -> PlatformDetector:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client and not self._client.is_closed:
            await self._client.aclose()

    # -- Detection --

    async def detect(self, url: str, context: DecisionContext | None = None) -> DetectionResult:
        """Detect a single URL.  Never raises."""
        preview = url if isinstance(url, str) else repr(url)
        with detection_context(preview):
            try:
                return await self._detect(url, context)
            except Exception as e:
                logger.exception("Detection failed for %r", clip(preview, URL_PREVIEW_LEN))
                return DetectionResult(
                    platform=Platform.GENERIC,
                    content_type=ContentType.GENERIC,
                    confidence=ERROR_CONFIDENCE,
                    processing_strategy=self.decider.default_for(ContentType.GENERIC),
                    error=str(e) or type(e).__name__,
                )

    async def _detect(self, url: str, context: DecisionContext | None) -> DetectionResult:
        raw = url if isinstance(url, str) else ("" if url is None else str(url))
        key = normalize_url(raw)

        cached = self.cache.get(key)
        if cached is not None:
            if context is not None and cached.processing_strategy != ProcessingStrategy.IGNORE:
                ctx = _merge_context(context, key, cached.platform, cached.metadata)
                _apply_decision(cached, self.decider.decide_with_details(cached.content_type, ctx))
            return cached

        warnings: list[str] = []
        well_formed = is_http_url(key)
        if not well_formed:
            warnings.append(f"not an absolute http(s) URL: {clip(raw, URL_PREVIEW_LEN)!r}")

        prefs = self._preferences
        match = self.matcher.match(key)
        disabled = False
        if not prefs.is_enabled(match.platform):
            if prefs.fallback_to_generic:
                warnings.append(f"platform {match.platform} is disabled, treated as generic")
                match = RuleMatch(platform=Platform.GENERIC, confidence=NO_MATCH_CONFIDENCE)
            else:
                disabled = True

        metadata: PlatformMetadata | None = None
        if (
            not match.is_generic
            and not disabled
            and well_formed
            and self.config.enable_metadata_extraction
            and prefs.auto_detection
        ):
            outcome = await self.extractor.extract_with_details(key, match.platform, platform_id=match.extracted_id)
            metadata = outcome.metadata
            if outcome.source == "url" and outcome.errors:
                warnings.append(f"metadata fell back to URL ({outcome.errors[-1]})")

        classification = self.classifier.classify_with_details(match.platform, metadata, key, match.content_type)

        confidence = match.confidence
        if not well_formed:
            confidence = min(confidence, MALFORMED_CONFIDENCE_CAP)

        result = DetectionResult(
            platform=match.platform,
            content_type=classification.content_type,
            confidence=confidence,
            matched_pattern=match.matched_pattern,
            extracted_id=match.extracted_id,
            metadata=metadata,
            content_confidence=classification.confidence,
            warnings=warnings or None,
        )

        base_ctx = _merge_context(None, key, match.platform, metadata)
        if disabled:
            result.processing_strategy = ProcessingStrategy.IGNORE
            self.cache.set(key, result)
            return result

        if context is None:
            _apply_decision(result, self.decider.decide_with_details(result.content_type, base_ctx))
            self.cache.set(key, result)
            return result

        # The cache keeps the context-free decision; the caller gets theirs
        _apply_decision(result, self.decider.decide_with_details(result.content_type, base_ctx, record=False))
        self.cache.set(key, result)
        ctx = _merge_context(context, key, match.platform, metadata)
        _apply_decision(result, self.decider.decide_with_details(result.content_type, ctx))
        return result

    async def detect_batch(self, urls: Iterable[str], window: int | None = None) -> list[DetectionResult]:
        """Detect *urls* in fixed windows; results keep input order."""
        urls = list(urls)
        size = max(1, window or self.config.batch_window)
        results: list[DetectionResult] = []
        with batch_context(len(urls), size):
            for start in range(0, len(urls), size):
                chunk = urls[start : start + size]
                results.extend(await asyncio.gather(*(self.detect(u) for u in chunk)))
        logger.debug("Batch of %d done in windows of %d", len(urls), size)
        return results

    # -- Cache --

    def get_cache_stats(self) -> CacheStats:
        return self.cache.stats()

    def clear_cache(self) -> None:
        self.cache.clear()

    # -- Preferences --

    @property
    def preferences(self) -> Preferences:
        return self._preferences

    def update_preferences(self, changes: Mapping[str, Any] | None = None, **kwargs: Any) -> Preferences:
        """Merge preference changes.  Cached results are dropped."""
        updates = {**(changes or {}), **kwargs}
        self._preferences = self._preferences.merged(updates)
        if "default_strategies" in updates:
            self.decider.update_default_strategies(updates["default_strategies"] or {})
        if "cache_duration" in updates:
            self.cache.configure(default_ttl=self._preferences.cache_duration or self.config.cache_ttl)
        self.cache.clear()
        logger.info("Preferences updated: %s", ", ".join(sorted(updates)))
        return self._preferences

    # -- Rules --

    def register_rule(self, rule: PlatformRule) -> None:
        self.matcher.register(rule)
        self.cache.clear()

    def rules(self) -> tuple[PlatformRule, ...]:
        return self.matcher.rules()

    async def load_rules(self, source: str | Path | RuleSet) -> RuleSet:
        """Register rules from a RuleSet, a JSON file path or an http(s) URL."""
        if isinstance(source, RuleSet):
            ruleset = source
        elif isinstance(source, str) and is_http_url(source):
            ruleset = await load_rules_url(source, self._client, timeout=self.config.extraction_timeout)
        else:
            ruleset = load_rules_file(source)
        self._apply_ruleset(ruleset)
        return ruleset

    def _apply_ruleset(self, ruleset: RuleSet) -> None:
        for rule in ruleset.rules:
            self.matcher.register(rule)
        if ruleset.default_strategies:
            self.update_preferences(default_strategies=ruleset.default_strategies)
        self.cache.clear()

    # -- Feedback --

    def provide_feedback(self, content_type: str, strategy: str, satisfaction: float) -> DecisionHistoryEntry:
        return self.decider.provide_feedback(content_type, strategy, satisfaction)
