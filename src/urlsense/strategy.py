# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Processing-strategy decisions: defaults, context rules, learned preference.

Decision order:
  1. default strategy for the content type
  2. context rules: every matching rule is scored; the single best one
     (ties go to the earlier rule) overrides the default when it disagrees
  3. learning (opt-in): a time-decayed vote over past decisions, offered as
     an alternative only, never an override

With learning enabled every decision lands in a fixed-size history ring
that feedback and learning read from.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections import deque
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from . import ContentType, PlatformMetadata, ProcessingStrategy
from .config import DEFAULT_STRATEGIES

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 0.8
DEFAULT_ALTERNATIVE_CONFIDENCE = 0.7
LEARNING_CONFIDENCE_CAP = 0.9
SATISFACTION_WEIGHT = 0.2

LOW_STORAGE_BYTES = 50 * 1024 * 1024
SHORT_VIDEO_SECONDS = 60
SHORT_QUEUE = 5
SATURATED_QUEUE = 50
LONG_ARTICLE_WORDS = 5000
VERY_LONG_ARTICLE_WORDS = 10000
HOT_DISCUSSION_COMMENTS = 100
VERY_HOT_DISCUSSION_COMMENTS = 500

_DAY = 86400.0


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass
class DecisionHistoryEntry:
    content_type: str
    strategy: str
    timestamp: float  # epoch seconds
    satisfaction: float | None = None  # 0.0–1.0

    def to_dict(self) -> dict[str, Any]:
        out = {"content_type": str(self.content_type), "strategy": str(self.strategy), "timestamp": self.timestamp}
        if self.satisfaction is not None:
            out["satisfaction"] = self.satisfaction
        return out


@dataclass
class DecisionContext:
    """Caller-supplied circumstances of a decision.  All fields optional."""

    url: str | None = None
    platform: str | None = None
    metadata: PlatformMetadata | None = None
    current_queue_size: int | None = None
    available_storage: int | None = None  # bytes
    user_history: list[DecisionHistoryEntry | Mapping[str, Any]] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class ContextRule:
    """Overrides the default strategy when ``condition`` holds.

    ``quality`` is a fixed score or a callable computing one from the
    content type and context.
    """

    name: str
    strategy: str
    condition: Callable[[str, DecisionContext], bool]
    quality: float | Callable[[str, DecisionContext], float]
    reason: str = ""

    def score(self, content_type: str, ctx: DecisionContext) -> float:
        return self.quality(content_type, ctx) if callable(self.quality) else self.quality


@dataclass(frozen=True, slots=True)
class StrategyDecision:
    strategy: str
    confidence: float
    reasoning: tuple[str, ...] = ()
    alternatives: tuple[dict[str, Any], ...] = ()


# ---------------------------------------------------------------------------
# Default context rules (declaration order is the tie-break order)
# ---------------------------------------------------------------------------


def _md(ctx: DecisionContext) -> PlatformMetadata:
    return ctx.metadata or PlatformMetadata()


def _text_has(ctx: DecisionContext, *words: str) -> bool:
    title = (_md(ctx).title or "").lower()
    url = (ctx.url or "").lower()
    return any(w in url or w in title for w in words)


DEFAULT_CONTEXT_RULES: tuple[ContextRule, ...] = (
    ContextRule(
        "low-storage",
        ProcessingStrategy.BOOKMARK,
        lambda t, c: c.available_storage is not None and c.available_storage < LOW_STORAGE_BYTES,
        0.95,
        "less than 50 MiB of storage left, bookmark instead of saving content",
    ),
    ContextRule(
        "short-video",
        ProcessingStrategy.CLIP,
        lambda t, c: t == ContentType.VIDEO
        and _md(c).duration is not None
        and 0 < _md(c).duration < SHORT_VIDEO_SECONDS,
        0.9,
        "short video, clip it directly",
    ),
    ContextRule(
        "short-queue",
        ProcessingStrategy.WATCH_LATER,
        lambda t, c: t == ContentType.VIDEO and c.current_queue_size is not None and c.current_queue_size < SHORT_QUEUE,
        0.8,
        "watch-later queue is short",
    ),
    ContextRule(
        "saturated-queue",
        ProcessingStrategy.BOOKMARK,
        lambda t, c: t in (ContentType.VIDEO, ContentType.ARTICLE)
        and c.current_queue_size is not None
        and c.current_queue_size >= SATURATED_QUEUE,
        0.75,
        "queue is saturated, bookmark instead",
    ),
    ContextRule(
        "long-article",
        ProcessingStrategy.WATCH_LATER,
        lambda t, c: t == ContentType.ARTICLE and (_md(c).word_count or 0) > LONG_ARTICLE_WORDS,
        lambda t, c: 0.9 if (_md(c).word_count or 0) > VERY_LONG_ARTICLE_WORDS else 0.7,
        "long article, read it later",
    ),
    ContextRule(
        "chinese-docs",
        ProcessingStrategy.CLIP,
        lambda t, c: t in (ContentType.CODE_REPOSITORY, ContentType.DOCUMENTATION)
        and (_md(c).language or "").lower().split("-")[0] == "zh",
        0.8,
        "Chinese documentation is worth clipping",
    ),
    ContextRule(
        "hot-discussion",
        ProcessingStrategy.BOOKMARK,
        lambda t, c: t == ContentType.DISCUSSION and (_md(c).comment_count or 0) > HOT_DISCUSSION_COMMENTS,
        lambda t, c: 0.9 if (_md(c).comment_count or 0) > VERY_HOT_DISCUSSION_COMMENTS else 0.7,
        "busy discussion, bookmark to follow it",
    ),
    ContextRule(
        "tutorial",
        ProcessingStrategy.CLIP,
        lambda t, c: _text_has(c, "tutorial", "guide"),
        0.8,
        "tutorial content is worth clipping",
    ),
    ContextRule(
        "news",
        ProcessingStrategy.BOOKMARK,
        lambda t, c: _text_has(c, "news"),
        0.7,
        "news goes stale, bookmark it",
    ),
)


# ---------------------------------------------------------------------------
# Decider
# ---------------------------------------------------------------------------


def _as_entry(item: DecisionHistoryEntry | Mapping[str, Any]) -> DecisionHistoryEntry | None:
    if isinstance(item, DecisionHistoryEntry):
        return item
    try:
        return DecisionHistoryEntry(
            content_type=str(item["content_type"]),
            strategy=str(item["strategy"]),
            timestamp=float(item["timestamp"]),
            satisfaction=None if item.get("satisfaction") is None else float(item["satisfaction"]),
        )
    except (KeyError, TypeError, ValueError):
        return None


class StrategyDecider:
    def __init__(
        self,
        default_strategies: Mapping[str, str] | None = None,
        *,
        enable_context_rules: bool = True,
        enable_learning: bool = False,
        history_size: int = 500,
        decay_days: float = 30.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._defaults: dict[str, str] = dict(DEFAULT_STRATEGIES)
        if default_strategies:
            self._defaults.update(default_strategies)
        self.enable_context_rules = enable_context_rules
        self.enable_learning = enable_learning
        self._decay_seconds = decay_days * _DAY
        self._clock = clock
        self._rules: tuple[ContextRule, ...] = DEFAULT_CONTEXT_RULES
        self._history: deque[DecisionHistoryEntry] = deque(maxlen=history_size)
        self._lock = threading.Lock()

    @property
    def default_strategies(self) -> dict[str, str]:
        return dict(self._defaults)

    def default_for(self, content_type: str) -> str:
        return self._defaults.get(content_type, ProcessingStrategy.CLIP)

    # -- Decisions --

    def decide(self, content_type: str, context: DecisionContext | None = None) -> str:
        return self.decide_with_details(content_type, context).strategy

    def decide_with_details(
        self,
        content_type: str,
        context: DecisionContext | None = None,
        *,
        record: bool = True,
    ) -> StrategyDecision:
        ctx = context or DecisionContext()
        default = self.default_for(content_type)
        strategy, confidence = default, DEFAULT_CONFIDENCE
        reasoning = [f"default strategy for {content_type} is {default}"]
        alternatives: list[dict[str, Any]] = []

        if self.enable_context_rules:
            best = self._best_context_rule(content_type, ctx)
            if best is not None and best[0].strategy != default:
                rule, quality = best
                strategy, confidence = rule.strategy, quality
                reasoning.append(f"context rule {rule.name}: {rule.reason}")
                logger.debug("Context rule %s overrides %s -> %s", rule.name, default, rule.strategy)
                alternatives.append(
                    {"strategy": default, "confidence": DEFAULT_ALTERNATIVE_CONFIDENCE, "reason": "default strategy"}
                )

        if self.enable_learning:
            learned = self._learned(content_type, ctx)
            if learned is not None and learned[0] != strategy:
                alternatives.append(
                    {"strategy": learned[0], "confidence": round(learned[1], 4), "reason": "learned from history"}
                )

        if record and self.enable_learning:
            self._record(content_type, strategy)

        return StrategyDecision(
            strategy=strategy,
            confidence=confidence,
            reasoning=tuple(reasoning),
            alternatives=tuple(alternatives),
        )

    def _best_context_rule(self, content_type: str, ctx: DecisionContext) -> tuple[ContextRule, float] | None:
        best: tuple[ContextRule, float] | None = None
        for rule in self._rules:
            if not rule.condition(content_type, ctx):
                continue
            quality = rule.score(content_type, ctx)
            if best is None or quality > best[1]:
                best = (rule, quality)
        return best

    def _learned(self, content_type: str, ctx: DecisionContext) -> tuple[str, float] | None:
        with self._lock:
            entries = list(self._history)
        entries.extend(e for e in map(_as_entry, ctx.user_history) if e is not None)
        entries = [e for e in entries if e.content_type == content_type]
        if not entries:
            return None

        now = self._clock()
        votes: dict[str, float] = {}
        total = 0.0
        for entry in entries:
            age = max(0.0, now - entry.timestamp)
            weight = math.exp(-age / self._decay_seconds) if self._decay_seconds > 0 else 1.0
            votes[entry.strategy] = votes.get(entry.strategy, 0.0) + weight
            total += weight
        if total <= 0:
            return None

        best_strategy, best_weight = max(votes.items(), key=lambda kv: kv[1])
        share = best_weight / total
        scores = [e.satisfaction for e in entries if e.satisfaction is not None]
        bonus = (sum(scores) / len(scores)) * SATISFACTION_WEIGHT if scores else 0.0
        return best_strategy, min(LEARNING_CONFIDENCE_CAP, share + bonus)

    # -- History --

    def _record(self, content_type: str, strategy: str) -> None:
        with self._lock:
            self._history.append(DecisionHistoryEntry(content_type, strategy, self._clock()))

    def provide_feedback(self, content_type: str, strategy: str, satisfaction: float) -> DecisionHistoryEntry:
        """Attach *satisfaction* to the most recent matching decision.

        When no such decision is in the history a new entry is recorded so
        the feedback still counts.
        """
        if not 0.0 <= satisfaction <= 1.0:
            raise ValueError("satisfaction must be within [0, 1]")
        with self._lock:
            for entry in reversed(self._history):
                if entry.content_type == content_type and entry.strategy == strategy:
                    entry.satisfaction = satisfaction
                    return entry
            entry = DecisionHistoryEntry(content_type, strategy, self._clock(), satisfaction)
            self._history.append(entry)
            return entry

    def history(self) -> list[DecisionHistoryEntry]:
        with self._lock:
            return [DecisionHistoryEntry(e.content_type, e.strategy, e.timestamp, e.satisfaction) for e in self._history]

    def clear_history(self) -> None:
        with self._lock:
            self._history.clear()

    # -- Configuration --

    def update_default_strategies(self, strategies: Mapping[str, str]) -> None:
        merged = dict(self._defaults)
        for content_type, strategy in strategies.items():
            merged[ContentType(content_type)] = ProcessingStrategy(strategy)
        self._defaults = merged

    def add_context_rule(self, rule: ContextRule) -> None:
        with self._lock:
            self._rules = (*self._rules, rule)

    def context_rules(self) -> tuple[ContextRule, ...]:
        return self._rules
