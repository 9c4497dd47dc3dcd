# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for urlsense.logging_config: structlog + stdlib bridge."""

from __future__ import annotations

import json
import logging
import sys

import pytest
import structlog

from urlsense.detector import PlatformDetector
from urlsense.logging_config import ClipLongValues, batch_context, clip, configure, detection_context


def _last_json_line(err: str) -> dict:
    return json.loads(err.strip().splitlines()[-1])


def _json_lines(err: str) -> list[dict]:
    return [json.loads(line) for line in err.splitlines() if line.strip()]


class TestRenderers:
    def test_single_stderr_handler(self):
        configure(json_output=False)
        root = logging.getLogger()
        assert len(root.handlers) == 1
        assert root.handlers[0].stream is sys.stderr

    def test_console_output_is_human_readable(self, capsys):
        configure(json_output=False)
        logging.getLogger("urlsense.test").warning("cache sweep done")
        err = capsys.readouterr().err
        assert "cache sweep done" in err
        assert "warn" in err.lower()
        assert not err.strip().startswith("{")

    def test_json_output(self, capsys):
        configure(json_output=True)
        logging.getLogger("urlsense.detector").info("detected %s", "youtube")
        parsed = _last_json_line(capsys.readouterr().err)
        assert parsed["event"] == "detected youtube"
        assert parsed["logger"] == "urlsense.detector"
        assert parsed["level"] == "info"
        assert "timestamp" in parsed

    def test_contextvars_in_json_output(self, capsys):
        configure(json_output=True)
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(batch_id="b-1")
        try:
            structlog.get_logger("urlsense.batch").info("batch start")
            parsed = _last_json_line(capsys.readouterr().err)
            assert parsed["batch_id"] == "b-1"
        finally:
            structlog.contextvars.clear_contextvars()


class TestLevels:
    def test_default_level_is_info(self):
        configure()
        assert logging.getLogger().level == logging.INFO

    def test_custom_level(self):
        configure(level="debug")
        assert logging.getLogger().level == logging.DEBUG

    def test_invalid_level_falls_back_to_info(self):
        configure(level="NONEXISTENT")
        assert logging.getLogger().level == logging.INFO

    def test_http_loggers_quieted(self):
        configure(level="DEBUG")
        assert logging.getLogger("httpx").level == logging.WARNING
        assert logging.getLogger("httpcore").level == logging.WARNING

    def test_below_threshold_suppressed(self, capsys):
        configure(level="WARNING")
        logging.getLogger("urlsense.cache").debug("evicted 10 entries")
        assert "evicted" not in capsys.readouterr().err

    def test_no_handler_stacking(self):
        configure(json_output=False)
        configure(json_output=True)
        configure(json_output=False)
        assert len(logging.getLogger().handlers) == 1


class TestClipping:
    def test_clip(self):
        assert clip("abcdef", 3) == "abc...(+3 chars)"
        assert clip("abc", 3) == "abc"

    def test_processor_leaves_tracebacks_alone(self):
        event = {"event": "x" * 20, "url": "y" * 5, "exception": "z" * 20, "count": 10**30}
        out = ClipLongValues(10)(None, "info", event)
        assert out["event"] == "xxxxxxxxxx...(+10 chars)"
        assert out["url"] == "yyyyy"
        assert out["exception"] == "z" * 20
        assert out["count"] == 10**30

    def test_long_message_clipped_in_output(self, capsys):
        configure(json_output=True, max_value_len=64)
        logging.getLogger("urlsense.detector").warning("bad input %s", "q" * 10_000)
        parsed = _last_json_line(capsys.readouterr().err)
        assert len(parsed["event"]) < 100
        assert parsed["event"].endswith("chars)")

    def test_traceback_not_clipped(self, capsys):
        configure(json_output=True, max_value_len=16)
        try:
            raise ValueError("boom")
        except ValueError:
            logging.getLogger("urlsense.detector").exception("failed")
        parsed = _last_json_line(capsys.readouterr().err)
        assert "Traceback" in parsed["exception"]
        assert "ValueError: boom" in parsed["exception"]


class TestDetectionContext:
    def test_url_bound_inside_block_only(self, capsys):
        configure(json_output=True)
        log = logging.getLogger("urlsense.metadata")
        with detection_context("https://example.com/a", platform="generic"):
            log.info("inside")
        log.info("outside")
        inside, outside = _json_lines(capsys.readouterr().err)[-2:]
        assert inside["url"] == "https://example.com/a"
        assert inside["platform"] == "generic"
        assert "url" not in outside

    def test_bound_url_is_previewed(self, capsys):
        configure(json_output=True, max_value_len=10_000)
        with detection_context("https://example.com/" + "a" * 5_000):
            logging.getLogger("urlsense.detector").info("x")
        parsed = _last_json_line(capsys.readouterr().err)
        assert len(parsed["url"]) < 250

    def test_batch_context(self, capsys):
        configure(json_output=True)
        with batch_context(7, 3):
            logging.getLogger("urlsense.detector").info("x")
        parsed = _last_json_line(capsys.readouterr().err)
        assert parsed["batch_size"] == 7
        assert parsed["batch_window"] == 3

    @pytest.mark.asyncio
    async def test_detection_logs_carry_url(self, capsys, fake_web):
        url = "https://www.youtube.com/watch?v=dQw4w9WgXcQ"
        configure(json_output=True, level="DEBUG")
        async with PlatformDetector(client=fake_web.client()) as detector:
            await detector.detect(url)
        lines = _json_lines(capsys.readouterr().err)
        metadata_lines = [line for line in lines if line["logger"] == "urlsense.metadata"]
        assert metadata_lines
        assert all(line["url"] == url for line in metadata_lines)
        structlog.contextvars.clear_contextvars()
