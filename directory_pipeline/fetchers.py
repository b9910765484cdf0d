# directory_pipeline/fetchers.py
"""
Page fetchers used by the crawl engine.

- PlaywrightFetcher: headless Chromium, executes client-side script. The
  default, since many small-business sites are script-rendered.
- HttpxFetcher: plain HTTP, no JS execution. Cheap; useful for static sites
  and tests.

Both raise ProviderError for navigation errors, timeouts, HTTP >= 400 and
non-HTML responses.
"""
from __future__ import annotations

import logging
from typing import Any, Mapping

import httpx
from playwright.async_api import Browser, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError

from directory_pipeline.errors import ProviderError
from directory_pipeline.providers import FetchedPage

log = logging.getLogger(__name__)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


class PlaywrightFetcher:
    """Renders pages in a single headless browser tab."""

    def __init__(
        self,
        timeout: float = 30.0,
        user_agent: str = DEFAULT_USER_AGENT,
        max_content_bytes: int = 5 * 1_048_576,
    ) -> None:
        self.timeout = timeout
        self.user_agent = user_agent
        self.max_content_bytes = max_content_bytes
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._page: Page | None = None

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "PlaywrightFetcher":
        crawl_cfg = config.get("crawl", {})
        return cls(
            timeout=float(crawl_cfg.get("timeout", 30.0)),
            user_agent=crawl_cfg.get("user_agent", DEFAULT_USER_AGENT),
        )

    async def __aenter__(self) -> "PlaywrightFetcher":
        """Starts Playwright, launches Chromium, creates a page, sets UA."""
        log.info("Starting headless browser session...")
        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch()
        self._page = await self._browser.new_page()
        await self._page.set_extra_http_headers({"User-Agent": self.user_agent})
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Tears down the browser cleanly."""
        log.info("Closing headless browser session...")
        try:
            if self._browser is not None:
                await self._browser.close()
        finally:
            if self._playwright is not None:
                await self._playwright.stop()
        log.info("Browser session closed.")

    async def fetch(self, url: str) -> FetchedPage:
        if self._page is None:
            raise RuntimeError("PlaywrightFetcher must be used as an async context manager")

        timeout_ms = int(self.timeout * 1000)
        log.debug("Navigating to %s (timeout=%sms)...", url, timeout_ms)
        try:
            response = await self._page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)
            if response is None:
                raise ProviderError(f"No response from {url}", provider="browser")

            status = response.status
            if status >= 400:
                raise ProviderError(f"HTTP error {status} for {url}", provider="browser")

            ctype = (response.headers or {}).get("content-type", "").lower()
            if ctype and "text/html" not in ctype:
                raise ProviderError(f"Non-HTML content at {url} ({ctype})", provider="browser")

            html = await self._page.content()
            final_url = self._page.url or url
        except PlaywrightError as e:
            # TimeoutError is a subclass of playwright's Error
            raise ProviderError(f"Navigation failed for {url}: {e}", provider="browser") from e

        if len(html) > self.max_content_bytes:
            log.warning("Content too large at %s (%d bytes); truncating.", url, len(html))
            html = html[: self.max_content_bytes]
        if final_url != url:
            log.info("Navigation redirected: %s -> %s", url, final_url)
        return FetchedPage(url=url, final_url=final_url, status=status, html=html)


class HttpxFetcher:
    """Fetches HTML over HTTP(S) with redirects and timeouts. No JS execution."""

    def __init__(
        self,
        timeout: float = 30.0,
        user_agent: str = DEFAULT_USER_AGENT,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.timeout = timeout
        self.user_agent = user_agent
        self._client = client
        self._owns_client = client is None

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "HttpxFetcher":
        crawl_cfg = config.get("crawl", {})
        return cls(
            timeout=float(crawl_cfg.get("timeout", 30.0)),
            user_agent=crawl_cfg.get("user_agent", DEFAULT_USER_AGENT),
        )

    async def __aenter__(self) -> "HttpxFetcher":
        if self._client is None:
            self._client = httpx.AsyncClient(
                follow_redirects=True,
                timeout=self.timeout,
                headers={"User-Agent": self.user_agent},
            )
        log.info("httpx session initialized.")
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
        log.info("httpx session closed.")

    async def fetch(self, url: str) -> FetchedPage:
        if self._client is None:
            raise RuntimeError("HttpxFetcher must be used as an async context manager")
        try:
            resp = await self._client.get(url)
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ProviderError(f"HTTP error for {url}: {e}", provider="http") from e
        except httpx.RequestError as e:
            raise ProviderError(f"Network error fetching {url}: {e}", provider="http") from e

        ctype = resp.headers.get("content-type", "").lower()
        if "text/html" not in ctype:
            raise ProviderError(f"Non-HTML content at {url} ({ctype})", provider="http")
        return FetchedPage(url=url, final_url=str(resp.url), status=resp.status_code, html=resp.text)
