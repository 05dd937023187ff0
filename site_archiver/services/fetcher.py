"""
Page fetching: a rendered path (Playwright) with a raw HTTP fallback.

The strategy is picked once per job by ``open_fetcher``: if the browser
cannot be launched, every page of that job goes straight to httpx.
"""
from __future__ import annotations

import logging
from collections.abc import Callable

import httpx
from playwright.async_api import async_playwright

from site_archiver.config import Settings
from site_archiver.errors import FetchFailure
from site_archiver.services.retry import with_retry

logger = logging.getLogger(__name__)


def browser_headers(user_agent: str) -> dict[str, str]:
    return {
        "User-Agent": user_agent,
        "Accept-Language": "en-US,en;q=0.9",
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8",
    }


class PlaywrightRenderer:
    """One headless Chromium per job; each page gets a fresh tab."""

    def __init__(self, config: Settings):
        self.config = config
        self._playwright = None
        self._browser = None
        self._context = None

    async def start(self) -> None:
        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(
            headless=True,
            args=[
                "--no-sandbox",
                "--disable-setuid-sandbox",
                "--disable-dev-shm-usage",
                "--disable-gpu",
            ],
        )
        self._context = await self._browser.new_context(
            user_agent=self.config.user_agent,
            viewport={"width": 1280, "height": 900},
            locale="en-US",
        )

    async def render(self, url: str) -> str:
        page = await self._context.new_page()
        try:
            await page.goto(url, wait_until="domcontentloaded", timeout=self.config.page_timeout * 1000)
            # Give deferred scripts a moment before serializing the DOM
            await page.wait_for_timeout(self.config.render_settle_ms)
            return await page.content()
        finally:
            await page.close()

    async def close(self) -> None:
        if self._browser is not None:
            await self._browser.close()
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None


class PageFetcher:
    def __init__(self, client: httpx.AsyncClient, config: Settings, renderer=None):
        self.client = client
        self.config = config
        self.renderer = renderer

    @property
    def mode(self) -> str:
        return "rendered" if self.renderer is not None else "raw_http"

    def _retry(self, operation, url: str, timeout: float):
        return with_retry(
            operation,
            url=url,
            attempts=self.config.retry_attempts,
            base_delay=self.config.retry_base_delay,
            max_delay=self.config.retry_max_delay,
            timeout=timeout,
        )

    async def _get(self, url: str, timeout: float) -> httpx.Response:
        response = await self.client.get(url, timeout=timeout)
        response.raise_for_status()
        return response

    async def fetch(self, url: str) -> str:
        """Return the page markup, rendered when possible."""
        if self.renderer is not None:
            try:
                return await self._retry(lambda: self.renderer.render(url), url, self.config.page_timeout)
            except FetchFailure as exc:
                logger.warning("Rendering failed for %s, falling back to HTTP: %s", url, exc.reason)

        async def raw() -> str:
            return (await self._get(url, self.config.page_timeout)).text

        return await self._retry(raw, url, self.config.page_timeout)

    async def fetch_bytes(self, url: str) -> bytes:
        async def download() -> bytes:
            return (await self._get(url, self.config.asset_timeout)).content

        return await self._retry(download, url, self.config.asset_timeout)

    async def close(self) -> None:
        if self.renderer is not None:
            try:
                await self.renderer.close()
            except Exception as exc:
                logger.warning("Browser shutdown failed: %s", exc)
            self.renderer = None


async def open_fetcher(
    client: httpx.AsyncClient,
    config: Settings,
    renderer_factory: Callable[[Settings], object] = PlaywrightRenderer,
) -> PageFetcher:
    if not config.use_browser:
        return PageFetcher(client, config)

    renderer = renderer_factory(config)
    try:
        await renderer.start()
    except Exception as exc:
        logger.warning("Browser launch failed, using HTTP-only mode: %s", exc)
        try:
            await renderer.close()
        except Exception:
            logger.debug("Cleanup after failed browser launch also failed", exc_info=True)
        return PageFetcher(client, config)

    logger.info("Browser launched")
    return PageFetcher(client, config, renderer)
