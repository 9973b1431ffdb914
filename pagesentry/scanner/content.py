"""Content sources: in-memory snapshots and HTTP fetches."""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from ..page import PageContent

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; PageSentry/0.4)"


class StaticContentSource:
    """Serves HTML held in memory; ``update`` simulates the page changing."""

    def __init__(self, url: str, html: str = ""):
        self.url = url
        self.html = html or ""
        self.snapshots = 0

    def update(self, html: str, url: Optional[str] = None) -> None:
        self.html = html or ""
        if url:
            self.url = url

    def snapshot(self, clean: bool = True) -> PageContent:
        self.snapshots += 1
        return PageContent.from_html(self.url, self.html, clean=clean)


class HttpContentSource:
    """Fetches a page over HTTP and serves the last fetched body.

    ``refresh`` must be awaited before the first ``snapshot``; after
    redirects the final URL becomes the page URL.
    """

    def __init__(
        self,
        url: str,
        timeout_seconds: float = 15.0,
        user_agent: str = DEFAULT_USER_AGENT,
        max_bytes: int = 2_000_000,
    ):
        self.url = url
        self.timeout_seconds = timeout_seconds
        self.user_agent = user_agent
        self.max_bytes = max_bytes
        self.status_code: Optional[int] = None
        self._html = ""
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout_seconds),
                headers={"User-Agent": self.user_agent},
                follow_redirects=True,
            )
        return self._client

    async def refresh(self) -> PageContent:
        """Fetch the page; raises ``httpx.HTTPError`` on transport failures."""
        client = await self._get_client()
        response = await client.get(self.url)
        self.status_code = response.status_code
        final_url = str(response.url)
        if final_url != self.url:
            logger.info("Followed redirect %s -> %s", self.url, final_url)
            self.url = final_url
        body = response.text
        if len(body) > self.max_bytes:
            logger.warning("Truncating %s body from %d to %d chars", self.url, len(body), self.max_bytes)
            body = body[: self.max_bytes]
        self._html = body
        return self.snapshot()

    def snapshot(self, clean: bool = True) -> PageContent:
        return PageContent.from_html(self.url, self._html, clean=clean)

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
