# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""urlsense exception hierarchy.

All urlsense-specific errors inherit from UrlSenseError.  None of them
escape ``PlatformDetector.detect()``: extraction errors are absorbed by the
fallback chain, configuration errors by the rule loader, and anything else
by the orchestrator boundary.
"""

from __future__ import annotations


class UrlSenseError(Exception):
    """Base exception for all urlsense errors."""


class RuleConfigError(UrlSenseError):
    """A rule document or a single rule entry is malformed."""

    def __init__(self, message: str, *, index: int | None = None) -> None:
        super().__init__(message)
        self.index = index


class ExtractionError(UrlSenseError):
    """A metadata extraction step failed (network, status, payload shape)."""

    def __init__(self, message: str, *, source: str = "", status_code: int | None = None) -> None:
        super().__init__(message)
        self.source = source
        self.status_code = status_code


class ExtractionTimeout(ExtractionError):
    """A metadata extraction step exceeded its time budget."""


class PlatformApiError(ExtractionError):
    """A platform API returned an error or an unexpected payload."""
