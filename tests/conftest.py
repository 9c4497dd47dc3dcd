# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Shared test configuration and fixtures."""

try:
    import urlsense  # noqa: F401
except ImportError:
    raise ImportError("urlsense is not installed. Run: pip install -e '.[dev]'") from None

import logging

import pytest
import structlog

from tests._helpers import FakeClock, FakeWeb


@pytest.fixture
def fake_web() -> FakeWeb:
    return FakeWeb()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(autouse=True)
def _reset_logging():
    """CLI tests call logging_config.configure(); restore the root logger afterwards."""
    root = logging.getLogger()
    old_handlers = root.handlers[:]
    old_level = root.level
    yield
    root.handlers = old_handlers
    root.setLevel(old_level)
    structlog.reset_defaults()
