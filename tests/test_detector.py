# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""End-to-end tests for PlatformDetector over a mocked web."""

from __future__ import annotations

import asyncio
import json

import pytest

from tests._helpers import html_page
from urlsense import ContentType, Platform, ProcessingStrategy
from urlsense.config import DetectorConfig, Preferences
from urlsense.detector import PlatformDetector
from urlsense.platform_api import BILIBILI_API_URL, GITHUB_API_URL
from urlsense.rule_loader import parse_rules
from urlsense.rules import PlatformRule
from urlsense.strategy import DecisionContext

YT_URL = "https://www.youtube.com/watch?v=dQw4w9WgXcQ"
MEDIUM_URL = "https://medium.com/jane/understanding-asyncio-2f1a"

_VIDEO_LD = {
    "@context": "https://schema.org",
    "@type": "VideoObject",
    "name": "Rick Astley - Never Gonna Give You Up",
    "duration": "PT3M33S",
    "uploadDate": "2009-10-25",
}

_WIKI_RULE = {
    "platform": "my-wiki",
    "patterns": [r"^https?://wiki\.example\.org/"],
    "content_type": "documentation",
    "priority": 20,
}

_OFFLINE = DetectorConfig(enable_metadata_extraction=False)


def _make_detector(fake_web, config: DetectorConfig | None = None, **kwargs) -> PlatformDetector:
    return PlatformDetector(config or DetectorConfig(), client=fake_web.client(), **kwargs)


# =========================================================================
# Scenarios
# =========================================================================


class TestScenarios:
    @pytest.mark.asyncio
    async def test_youtube_video(self, fake_web):
        fake_web.add_html(YT_URL, html_page(jsonld=_VIDEO_LD, og={"og:title": "OG title"}))
        async with _make_detector(fake_web) as detector:
            result = await detector.detect(YT_URL)
        assert result.platform == Platform.YOUTUBE
        assert result.content_type == ContentType.VIDEO
        assert result.processing_strategy == ProcessingStrategy.WATCH_LATER
        assert result.confidence == 0.9
        assert result.extracted_id == "dQw4w9WgXcQ"
        assert result.metadata.title == "Rick Astley - Never Gonna Give You Up"
        assert result.metadata.duration == 213.0
        assert result.metadata.source == "jsonld"
        assert result.error is None
        assert result.warnings is None

    @pytest.mark.asyncio
    async def test_medium_article(self, fake_web):
        ld = {"@type": "BlogPosting", "headline": "Understanding asyncio", "wordCount": 1800}
        fake_web.add_html(MEDIUM_URL, html_page(jsonld=ld))
        async with _make_detector(fake_web) as detector:
            result = await detector.detect(MEDIUM_URL)
        assert result.platform == Platform.MEDIUM
        assert result.content_type == ContentType.ARTICLE
        assert result.processing_strategy == ProcessingStrategy.CLIP
        assert result.metadata.reading_time == 9

    @pytest.mark.asyncio
    async def test_generic_blog(self, fake_web):
        async with _make_detector(fake_web) as detector:
            result = await detector.detect("https://example.com/blog/my-first-post")
        assert result.platform == Platform.GENERIC
        assert result.content_type == ContentType.ARTICLE
        assert result.processing_strategy == ProcessingStrategy.CLIP
        assert result.confidence == 0.1
        assert result.metadata is None
        assert fake_web.requests == []

    @pytest.mark.asyncio
    async def test_github_repository_via_api(self, fake_web):
        fake_web.add_json(
            f"{GITHUB_API_URL}/psf/requests",
            {"full_name": "psf/requests", "stargazers_count": 50000, "owner": {"login": "psf"}},
        )
        async with _make_detector(fake_web) as detector:
            result = await detector.detect("https://github.com/psf/requests")
        assert result.content_type == ContentType.CODE_REPOSITORY
        assert result.processing_strategy == ProcessingStrategy.BOOKMARK
        assert result.metadata.like_count == 50000
        assert result.metadata.source == "platform-api"
        assert fake_web.hits("github.com") == 0

    @pytest.mark.asyncio
    async def test_github_issue_is_discussion(self, fake_web):
        async with _make_detector(fake_web, _OFFLINE) as detector:
            result = await detector.detect("https://github.com/psf/requests/issues/42")
        assert result.platform == Platform.GITHUB
        assert result.content_type == ContentType.DISCUSSION

    @pytest.mark.asyncio
    async def test_fetch_failure_falls_back_to_url_metadata(self, fake_web):
        async with _make_detector(fake_web) as detector:
            result = await detector.detect(YT_URL)
        assert result.content_type == ContentType.VIDEO
        assert result.metadata.title == "YouTube video dQw4w9WgXcQ"
        assert result.metadata.provenance["error"] == "all metadata sources failed"
        assert result.warnings == ["metadata fell back to URL (og: HTTP 404)"]
        assert result.degraded

    @pytest.mark.asyncio
    async def test_metadata_disabled(self, fake_web):
        async with _make_detector(fake_web, _OFFLINE) as detector:
            result = await detector.detect(YT_URL)
        assert result.metadata is None
        assert result.content_type == ContentType.VIDEO
        assert fake_web.requests == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("url", "platform", "content_type", "strategy"),
        [
            ("https://medium.com/@user/some-article-title", Platform.MEDIUM, ContentType.ARTICLE, ProcessingStrategy.CLIP),
            (
                "https://unknown-blog.example.com/post/my-entry",
                Platform.GENERIC,
                ContentType.ARTICLE,
                ProcessingStrategy.CLIP,
            ),
        ],
    )
    async def test_reference_urls(self, fake_web, url, platform, content_type, strategy):
        async with _make_detector(fake_web) as detector:
            result = await detector.detect(url)
        assert result.platform == platform
        assert result.content_type == content_type
        assert result.processing_strategy == strategy
        assert result.error is None

    @pytest.mark.asyncio
    async def test_bilibili_video_via_api(self, fake_web):
        fake_web.add_json(
            BILIBILI_API_URL,
            {"code": 0, "data": {"bvid": "BV1xx411c7mD", "title": "B站视频", "duration": 300, "tname": "知识"}},
        )
        async with _make_detector(fake_web) as detector:
            result = await detector.detect("https://www.bilibili.com/video/BV1xx411c7mD?p=1")
        assert result.platform == Platform.BILIBILI
        assert result.content_type == ContentType.VIDEO
        assert result.extracted_id == "BV1xx411c7mD"
        assert result.metadata.source == "platform-api"
        assert result.metadata.title == "B站视频"
        assert result.metadata.duration == 300.0
        assert fake_web.hits("www.bilibili.com") == 0

    @pytest.mark.asyncio
    async def test_auto_detection_off_skips_metadata(self, fake_web):
        async with _make_detector(fake_web, preferences=Preferences(auto_detection=False)) as detector:
            result = await detector.detect(YT_URL)
        assert result.metadata is None
        assert fake_web.requests == []


# =========================================================================
# Fail-safe behavior
# =========================================================================


class TestFailSafe:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("url", ["not a url", "", "ftp://files.example.com/x", "http://"])
    async def test_malformed_input(self, fake_web, url):
        async with _make_detector(fake_web) as detector:
            result = await detector.detect(url)
        assert result.platform == Platform.GENERIC
        assert result.confidence <= 0.1
        assert result.warnings and "not an absolute http(s) URL" in result.warnings[0]
        assert result.processing_strategy is not None
        assert fake_web.requests == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "url",
        [
            "x" * 1_000_000,
            "https://example.com/" + "a" * 1_000_000,
            "https://example.com/search?" + "q=1&" * 250_000,
            "https://" + "a" * 1_000_000 + ".com/",
        ],
        ids=["plain", "long-path", "long-query", "long-host"],
    )
    async def test_huge_input(self, fake_web, url):
        async with _make_detector(fake_web) as detector:
            result = await detector.detect(url)
        assert result.platform == Platform.GENERIC
        assert result.processing_strategy is not None
        assert result.confidence <= 0.1
        assert fake_web.requests == []

    @pytest.mark.asyncio
    async def test_none_input(self, fake_web):
        async with _make_detector(fake_web) as detector:
            result = await detector.detect(None)
        assert result.platform == Platform.GENERIC
        assert result.error is None

    @pytest.mark.asyncio
    async def test_internal_error_becomes_result(self, fake_web, monkeypatch):
        async with _make_detector(fake_web, _OFFLINE) as detector:

            def _boom(*args, **kwargs):
                raise RuntimeError("classifier exploded")

            monkeypatch.setattr(detector.classifier, "classify_with_details", _boom)
            result = await detector.detect(YT_URL)
        assert result.platform == Platform.GENERIC
        assert result.content_type == ContentType.GENERIC
        assert result.confidence == 0.1
        assert result.error == "classifier exploded"
        assert result.processing_strategy == ProcessingStrategy.CLIP


# =========================================================================
# Cache
# =========================================================================


class TestDetectorCache:
    @pytest.mark.asyncio
    async def test_second_detect_hits_cache_without_network(self, fake_web):
        fake_web.add_html(YT_URL, html_page(jsonld=_VIDEO_LD))
        async with _make_detector(fake_web) as detector:
            first = await detector.detect(YT_URL)
            second = await detector.detect(YT_URL + "&utm_source=newsletter#t=30")
            stats = detector.get_cache_stats()
        assert fake_web.hits("www.youtube.com") == 1
        assert second.to_dict() == first.to_dict()
        assert stats.hits == 1
        assert stats.size == 1

    @pytest.mark.asyncio
    async def test_cached_result_is_a_copy(self, fake_web):
        async with _make_detector(fake_web, _OFFLINE) as detector:
            first = await detector.detect(YT_URL)
            first.platform = "tampered"
            second = await detector.detect(YT_URL)
        assert second.platform == Platform.YOUTUBE

    @pytest.mark.asyncio
    async def test_clear_cache(self, fake_web):
        async with _make_detector(fake_web, _OFFLINE) as detector:
            await detector.detect(YT_URL)
            detector.clear_cache()
            assert detector.get_cache_stats().size == 0

    @pytest.mark.asyncio
    async def test_cache_disabled(self, fake_web):
        fake_web.add_html(YT_URL, html_page(jsonld=_VIDEO_LD))
        async with _make_detector(fake_web, DetectorConfig(cache_enabled=False)) as detector:
            await detector.detect(YT_URL)
            await detector.detect(YT_URL)
        assert fake_web.hits("www.youtube.com") == 2

    @pytest.mark.asyncio
    async def test_context_decision_not_cached(self, fake_web):
        async with _make_detector(fake_web, _OFFLINE) as detector:
            low = await detector.detect(YT_URL, DecisionContext(available_storage=1024))
            plain = await detector.detect(YT_URL)
            again = await detector.detect(YT_URL, DecisionContext(available_storage=1024))
        assert low.processing_strategy == ProcessingStrategy.BOOKMARK
        assert low.alternatives == [{"strategy": "watch-later", "confidence": 0.7, "reason": "default strategy"}]
        assert plain.processing_strategy == ProcessingStrategy.WATCH_LATER
        assert plain.alternatives is None
        assert again.processing_strategy == ProcessingStrategy.BOOKMARK


# =========================================================================
# Batch
# =========================================================================


class TestBatch:
    @pytest.mark.asyncio
    async def test_order_preserved(self, fake_web):
        urls = [
            "https://github.com/psf/requests",
            "https://example.com/docs/install",
            YT_URL,
            "garbage",
            "https://x.com/jack/status/20",
        ]
        async with _make_detector(fake_web, _OFFLINE) as detector:
            results = await detector.detect_batch(urls, window=2)
        assert [r.platform for r in results] == [
            Platform.GITHUB,
            Platform.GENERIC,
            Platform.YOUTUBE,
            Platform.GENERIC,
            Platform.TWITTER,
        ]
        assert results[1].content_type == ContentType.DOCUMENTATION
        assert results[4].content_type == ContentType.TWEET

    @pytest.mark.asyncio
    @pytest.mark.parametrize("window", [1, 2, 3, 5, 10])
    async def test_windows_bound_concurrency(self, fake_web, window):
        urls = [
            "https://github.com/psf/requests",
            "https://example.com/docs/install",
            YT_URL,
            "garbage",
            "https://x.com/jack/status/20",
            "https://medium.com/@user/some-article-title",
            "https://unknown-blog.example.com/post/my-entry",
        ]
        detector = _make_detector(fake_web, _OFFLINE)
        inner = detector.detect
        in_flight = 0
        peak = 0
        finished_before_start: list[int] = []
        finished = 0

        async def tracked(url, context=None):
            nonlocal in_flight, peak, finished
            finished_before_start.append(finished)
            in_flight += 1
            peak = max(peak, in_flight)
            try:
                await asyncio.sleep(0.01)
                return await inner(url, context)
            finally:
                in_flight -= 1
                finished += 1

        detector.detect = tracked
        async with detector:
            results = await detector.detect_batch(urls, window=window)

        assert peak == min(window, len(urls))
        # Every detection starts only after all earlier windows are done
        for i, done in enumerate(finished_before_start):
            assert done == (i // window) * window

        async with _make_detector(fake_web, _OFFLINE) as reference:
            expected = [(await reference.detect(u)).to_dict() for u in urls]
        assert [r.to_dict() for r in results] == expected

    @pytest.mark.asyncio
    async def test_default_window_from_config(self, fake_web):
        detector = _make_detector(fake_web, DetectorConfig(enable_metadata_extraction=False, batch_window=3))
        inner = detector.detect
        in_flight = 0
        peak = 0

        async def tracked(url, context=None):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            try:
                await asyncio.sleep(0.01)
                return await inner(url, context)
            finally:
                in_flight -= 1

        detector.detect = tracked
        async with detector:
            results = await detector.detect_batch(f"https://example.com/post/{i}" for i in range(8))
        assert peak == 3
        assert [r.extracted_id for r in results] == [None] * 8
        assert len(results) == 8

    @pytest.mark.asyncio
    async def test_empty_batch(self, fake_web):
        async with _make_detector(fake_web, _OFFLINE) as detector:
            assert await detector.detect_batch([]) == []


# =========================================================================
# Preferences
# =========================================================================


class TestPreferences:
    @pytest.mark.asyncio
    async def test_disabled_platform_falls_back_to_generic(self, fake_web):
        prefs = Preferences(enabled_platforms=frozenset({"github"}))
        async with _make_detector(fake_web, _OFFLINE, preferences=prefs) as detector:
            result = await detector.detect(YT_URL)
        assert result.platform == Platform.GENERIC
        assert result.warnings == ["platform youtube is disabled, treated as generic"]

    @pytest.mark.asyncio
    async def test_disabled_platform_ignored_without_fallback(self, fake_web):
        prefs = Preferences(enabled_platforms=frozenset({"github"}), fallback_to_generic=False)
        async with _make_detector(fake_web, preferences=prefs) as detector:
            result = await detector.detect(YT_URL)
        assert result.platform == Platform.YOUTUBE
        assert result.processing_strategy == ProcessingStrategy.IGNORE
        assert fake_web.requests == []

    @pytest.mark.asyncio
    async def test_update_strategies_clears_cache(self, fake_web):
        async with _make_detector(fake_web, _OFFLINE) as detector:
            assert (await detector.detect(YT_URL)).processing_strategy == ProcessingStrategy.WATCH_LATER
            prefs = detector.update_preferences(default_strategies={"video": "bookmark"})
            result = await detector.detect(YT_URL)
        assert prefs.default_strategies[ContentType.VIDEO] == ProcessingStrategy.BOOKMARK
        assert result.processing_strategy == ProcessingStrategy.BOOKMARK

    @pytest.mark.asyncio
    async def test_update_cache_duration(self, fake_web):
        async with _make_detector(fake_web, _OFFLINE) as detector:
            detector.update_preferences({"cache_duration": 5.0})
            assert detector.cache.default_ttl == 5.0
            assert detector.preferences.cache_duration == 5.0

    @pytest.mark.asyncio
    async def test_update_unknown_preference(self, fake_web):
        async with _make_detector(fake_web, _OFFLINE) as detector:
            with pytest.raises(ValueError):
                detector.update_preferences(theme="dark")


# =========================================================================
# Rules
# =========================================================================


class TestRules:
    @pytest.mark.asyncio
    async def test_register_rule(self, fake_web):
        rule = PlatformRule("my-wiki", (r"^https?://wiki\.example\.org/",), ContentType.DOCUMENTATION, priority=20)
        async with _make_detector(fake_web, _OFFLINE) as detector:
            before = await detector.detect("https://wiki.example.org/page")
            detector.register_rule(rule)
            after = await detector.detect("https://wiki.example.org/page")
        assert before.platform == Platform.GENERIC
        assert after.platform == "my-wiki"
        assert after.content_type == ContentType.DOCUMENTATION
        assert after.processing_strategy == ProcessingStrategy.CLIP
        assert after.confidence == 0.9

    @pytest.mark.asyncio
    async def test_load_ruleset(self, fake_web):
        ruleset = parse_rules({"rules": [_WIKI_RULE], "default_strategies": {"documentation": "bookmark"}})
        async with _make_detector(fake_web, _OFFLINE) as detector:
            await detector.load_rules(ruleset)
            result = await detector.detect("https://wiki.example.org/page")
        assert result.platform == "my-wiki"
        assert result.processing_strategy == ProcessingStrategy.BOOKMARK

    @pytest.mark.asyncio
    async def test_load_rules_file(self, fake_web, tmp_path):
        path = tmp_path / "rules.json"
        path.write_text(json.dumps([_WIKI_RULE]), encoding="utf-8")
        async with _make_detector(fake_web, _OFFLINE) as detector:
            ruleset = await detector.load_rules(path)
            assert len(ruleset.rules) == 1
            assert any(r.platform == "my-wiki" for r in detector.rules())

    @pytest.mark.asyncio
    async def test_load_rules_url(self, fake_web):
        fake_web.add_json("https://config.example.com/rules.json", {"rules": [_WIKI_RULE]})
        async with _make_detector(fake_web, _OFFLINE) as detector:
            await detector.load_rules("https://config.example.com/rules.json")
            result = await detector.detect("https://wiki.example.org/page")
        assert result.platform == "my-wiki"

    @pytest.mark.asyncio
    async def test_rules_path_from_config(self, fake_web, tmp_path):
        path = tmp_path / "rules.json"
        path.write_text(json.dumps([_WIKI_RULE]), encoding="utf-8")
        config = DetectorConfig(enable_metadata_extraction=False, rules_path=str(path))
        async with _make_detector(fake_web, config) as detector:
            result = await detector.detect("https://wiki.example.org/page")
        assert result.platform == "my-wiki"


# =========================================================================
# Lifecycle / feedback
# =========================================================================


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_owned_client_closed(self):
        async with PlatformDetector(_OFFLINE) as detector:
            client = detector._client
        assert client.is_closed

    @pytest.mark.asyncio
    async def test_shared_client_left_open(self, fake_web):
        client = fake_web.client()
        async with PlatformDetector(_OFFLINE, client=client):
            pass
        assert not client.is_closed
        await client.aclose()

    @pytest.mark.asyncio
    async def test_feedback_reaches_decider(self, fake_web):
        async with _make_detector(fake_web, _OFFLINE) as detector:
            await detector.detect(YT_URL)
            entry = detector.provide_feedback(ContentType.VIDEO, ProcessingStrategy.WATCH_LATER, 0.8)
            assert entry.satisfaction == 0.8
            assert detector.decider.history()[-1].satisfaction == 0.8
