# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Declarative platform rules from JSON documents.

Accepted documents::

    [ {"platform": "...", "patterns": [...], ...}, ... ]
    {"rules": [...], "default_strategies": {"video": "bookmark", ...}}

Each entry is validated on its own.  A bad entry is skipped with a warning;
a bad document yields an empty RuleSet plus a warning.  Pass ``strict=True``
to get a RuleConfigError instead (used by the CLI when the user points at a
file explicitly).
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from . import ContentType, ProcessingStrategy
from .errors import RuleConfigError
from .rules import PlatformRule

logger = logging.getLogger(__name__)

_PLATFORM_SLUG_RE = re.compile(r"^[a-z0-9][a-z0-9_.-]{0,63}$")


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------


class RuleEntry(BaseModel):
    """One platform rule as written in a rule document."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    platform: str = Field(description="Platform slug, e.g. 'youtube' or 'my-wiki'")
    patterns: list[str] = Field(min_length=1, description="Regexes matched against the normalized URL")
    content_type: ContentType = Field(ContentType.GENERIC, description="Default content type for matches")
    priority: int = Field(0, description="Higher priorities are tried first")
    enabled: bool = True
    description: str | None = None

    @field_validator("platform")
    @classmethod
    def _check_platform(cls, value: str) -> str:
        value = value.lower()
        if not _PLATFORM_SLUG_RE.match(value):
            raise ValueError(f"invalid platform slug {value!r}")
        return value

    @field_validator("patterns")
    @classmethod
    def _check_patterns(cls, value: list[str]) -> list[str]:
        for pattern in value:
            if not pattern:
                raise ValueError("empty pattern")
            try:
                re.compile(pattern, re.IGNORECASE)
            except re.error as e:
                raise ValueError(f"pattern {pattern!r} does not compile: {e}") from e
        return value

    def to_rule(self) -> PlatformRule:
        return PlatformRule(
            platform=self.platform,
            patterns=tuple(self.patterns),
            content_type=self.content_type,
            priority=self.priority,
            enabled=self.enabled,
            description=self.description,
        )


@dataclass
class RuleSet:
    """Rules and strategy overrides loaded from one document."""

    rules: list[PlatformRule] = field(default_factory=list)
    default_strategies: dict[str, ProcessingStrategy] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.rules or self.default_strategies)


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def _fail(ruleset: RuleSet, message: str, *, strict: bool, index: int | None = None) -> None:
    if strict:
        raise RuleConfigError(message, index=index)
    logger.warning("Rule document: %s", message)
    ruleset.warnings.append(message)


def _first_error(exc: ValidationError) -> str:
    err = exc.errors()[0]
    loc = ".".join(str(p) for p in err.get("loc", ()))
    return f"{loc}: {err.get('msg', 'invalid')}" if loc else err.get("msg", "invalid")


def parse_rules(data: Any, *, strict: bool = False) -> RuleSet:
    """Validate an already-decoded rule document."""
    ruleset = RuleSet()

    if isinstance(data, dict):
        entries = data.get("rules", [])
        strategies = data.get("default_strategies") or {}
    elif isinstance(data, list):
        entries, strategies = data, {}
    else:
        _fail(ruleset, f"expected a list or an object, got {type(data).__name__}", strict=strict)
        return ruleset

    if not isinstance(entries, list):
        _fail(ruleset, "'rules' must be a list", strict=strict)
        return ruleset

    for i, entry in enumerate(entries):
        try:
            ruleset.rules.append(RuleEntry.model_validate(entry).to_rule())
        except ValidationError as e:
            _fail(ruleset, f"rule #{i} skipped ({_first_error(e)})", strict=strict, index=i)

    if not isinstance(strategies, dict):
        _fail(ruleset, "'default_strategies' must be an object", strict=strict)
        return ruleset

    for content_type, strategy in strategies.items():
        try:
            ruleset.default_strategies[ContentType(content_type)] = ProcessingStrategy(strategy)
        except ValueError:
            _fail(ruleset, f"default strategy {content_type!r} -> {strategy!r} skipped", strict=strict)

    return ruleset


def load_rules(text: str | bytes, *, strict: bool = False) -> RuleSet:
    """Parse a JSON rule document."""
    try:
        data = json.loads(text)
    except (ValueError, UnicodeDecodeError) as e:
        ruleset = RuleSet()
        _fail(ruleset, f"not valid JSON ({e})", strict=strict)
        return ruleset
    return parse_rules(data, strict=strict)


def load_rules_file(path: str | Path, *, strict: bool = False) -> RuleSet:
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as e:
        ruleset = RuleSet()
        _fail(ruleset, f"cannot read {path}: {e.strerror or e}", strict=strict)
        return ruleset
    return load_rules(text, strict=strict)


async def load_rules_url(
    url: str,
    client: httpx.AsyncClient | None = None,
    *,
    timeout: float = 10.0,
    strict: bool = False,
) -> RuleSet:
    """Fetch and parse a rule document over HTTP."""
    owns_client = client is None
    if client is None:
        client = httpx.AsyncClient(timeout=timeout, follow_redirects=True)
    try:
        response = await client.get(url, timeout=timeout)
        response.raise_for_status()
    except httpx.HTTPError as e:
        ruleset = RuleSet()
        _fail(ruleset, f"cannot fetch {url}: {e}", strict=strict)
        return ruleset
    finally:
        if owns_client:
            await client.aclose()
    return load_rules(response.content, strict=strict)
