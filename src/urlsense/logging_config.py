# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""structlog + stdlib bridge. CLI text mode: ConsoleRenderer, --json-logs: JSONRenderer.

No urlsense imports. Library modules only call ``logging.getLogger(__name__)``
and, around a detection, ``detection_context()``; the application decides how
records render by calling ``configure()``.

Detected URLs are caller input of any size, so every string field of a log
event is clipped to ``max_value_len`` before rendering (tracebacks excepted).
"""

from __future__ import annotations

import contextlib
import logging
import sys
from typing import Any

import structlog

# Chatty third-party loggers that would otherwise log every request at INFO.
_QUIET_LOGGERS = ("httpx", "httpcore")

DEFAULT_MAX_VALUE_LEN = 512
URL_PREVIEW_LEN = 200

_UNCLIPPED_KEYS = frozenset({"exception", "stack"})


def clip(value: str, max_len: int) -> str:
    """``"abcdef"`` with max_len 3 → ``"abc...(+3 chars)"``."""
    if len(value) <= max_len:
        return value
    return f"{value[:max_len]}...(+{len(value) - max_len} chars)"


class ClipLongValues:
    """Processor: clip oversized string values in the event dict."""

    def __init__(self, max_len: int = DEFAULT_MAX_VALUE_LEN) -> None:
        self.max_len = max_len

    def __call__(self, logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
        for key, value in event_dict.items():
            if key not in _UNCLIPPED_KEYS and isinstance(value, str) and len(value) > self.max_len:
                event_dict[key] = clip(value, self.max_len)
        return event_dict


def detection_context(url: str, **extra: Any) -> contextlib.AbstractContextManager[None]:
    """Bind the URL under detection (and *extra*) to every log line in the block.

    Uses structlog contextvars, so concurrent detections in a batch each see
    their own URL.
    """
    return structlog.contextvars.bound_contextvars(url=clip(url, URL_PREVIEW_LEN), **extra)


def batch_context(size: int, window: int) -> contextlib.AbstractContextManager[None]:
    return structlog.contextvars.bound_contextvars(batch_size=size, batch_window=window)


def configure(*, json_output: bool = False, level: str = "INFO", max_value_len: int = DEFAULT_MAX_VALUE_LEN) -> None:
    """Configure structlog with stdlib bridge.

    Args:
        json_output: True for JSON lines, False for human-readable console output.
        level: Root logger level (default INFO).
        max_value_len: Longest string value rendered before clipping.
    """
    shared_processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        ClipLongValues(max_value_len),
    ]

    renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
        foreign_pre_chain=shared_processors,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root_level = getattr(logging, level.upper(), logging.INFO)
    root.setLevel(root_level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(root_level, logging.WARNING))
