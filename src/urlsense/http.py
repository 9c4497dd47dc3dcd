# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Lightweight page fetch for metadata extraction.

Only the document head matters for OpenGraph and JSON-LD, so the body is
streamed and cut off at ``max_bytes``.  Anything that is not an HTML 2xx
response is an ExtractionError.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from .errors import ExtractionError

logger = logging.getLogger(__name__)

DEFAULT_MAX_BYTES = 512 * 1024
DEFAULT_TIMEOUT = 10.0

_HTML_CONTENT_TYPES = ("text/html", "application/xhtml+xml")


@dataclass(frozen=True, slots=True)
class FetchedPage:
    """A (possibly truncated) HTML document."""

    url: str  # final URL after redirects
    status_code: int
    content_type: str
    text: str
    truncated: bool = False


def _decode(body: bytes, response: httpx.Response) -> str:
    encoding = response.charset_encoding or "utf-8"
    try:
        return body.decode(encoding, errors="replace")
    except LookupError:
        return body.decode("utf-8", errors="replace")


class PageFetcher:
    """Fetches HTML pages through a shared httpx.AsyncClient.

    The client is created lazily and owned by the fetcher unless one is
    passed in, in which case the caller keeps ownership.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        user_agent: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        max_bytes: int = DEFAULT_MAX_BYTES,
    ) -> None:
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout
        self.max_bytes = max_bytes
        self._headers = {"Accept": "text/html,application/xhtml+xml;q=0.9,*/*;q=0.5"}
        if user_agent:
            self._headers["User-Agent"] = user_agent

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                headers=self._headers,
                timeout=self._timeout,
                follow_redirects=True,
            )
            self._owns_client = True
        return self._client

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None and not self._client.is_closed:
            await self._client.aclose()

    async def fetch(self, url: str) -> FetchedPage:
        """GET *url* and return at most ``max_bytes`` of its HTML."""
        try:
            async with self.client.stream("GET", url, headers=self._headers) as response:
                if not 200 <= response.status_code < 300:
                    raise ExtractionError(
                        f"HTTP {response.status_code}",
                        source="fetch",
                        status_code=response.status_code,
                    )

                content_type = response.headers.get("content-type", "").split(";")[0].strip().lower()
                if content_type and content_type not in _HTML_CONTENT_TYPES:
                    raise ExtractionError(f"not HTML ({content_type})", source="fetch")

                chunks: list[bytes] = []
                size = 0
                truncated = False
                async for chunk in response.aiter_bytes():
                    chunks.append(chunk)
                    size += len(chunk)
                    if size >= self.max_bytes:
                        truncated = True
                        break

                body = b"".join(chunks)[: self.max_bytes]
                if response.history:
                    logger.debug("Redirected %s -> %s", url, response.url)
                return FetchedPage(
                    url=str(response.url),
                    status_code=response.status_code,
                    content_type=content_type or "text/html",
                    text=_decode(body, response),
                    truncated=truncated,
                )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise ExtractionError(f"{type(e).__name__}: {e}", source="fetch") from e
