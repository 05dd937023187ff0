"""
Asset pipeline: localize same-host images, stylesheets and scripts of one
page and collect the links to crawl next.
"""
from __future__ import annotations

import asyncio
import logging
from urllib.parse import urldefrag, urljoin, urlparse

from bs4 import BeautifulSoup, Tag

from site_archiver.services.fetcher import PageFetcher
from site_archiver.storage.base import ArchiveStore
from site_archiver.utils import (
    asset_path_for_url,
    effective_base_url,
    normalize_url,
    page_path_for_url,
    relative_reference,
    same_host,
)

logger = logging.getLogger(__name__)

# (CSS selector, attribute holding the reference)
ASSET_REFERENCES = (
    ("img[src]", "src"),
    ('link[rel~="stylesheet"][href]', "href"),
    ("script[src]", "src"),
)

SKIPPED_LINK_PREFIXES = ("#", "mailto:", "tel:", "javascript:")


def extract_links(soup: BeautifulSoup, base_url: str) -> list[str]:
    """Absolute, fragment-free anchor targets in document order."""
    links: list[str] = []
    seen: set[str] = set()
    for anchor in soup.select("a[href]"):
        href = anchor["href"].strip()
        if not href or href.lower().startswith(SKIPPED_LINK_PREFIXES):
            continue
        url = normalize_url(urljoin(base_url, href))
        if urlparse(url).scheme in {"http", "https"} and url not in seen:
            seen.add(url)
            links.append(url)
    return links


class AssetPipeline:
    def __init__(self, store: ArchiveStore, job_id: str, fetcher: PageFetcher):
        self.store = store
        self.job_id = job_id
        self.fetcher = fetcher
        self._downloads: dict[str, asyncio.Task] = {}

    async def process_page(self, html: str, page_url: str) -> tuple[str, list[str]]:
        """Download this page's assets, rewrite their references, return (html, links)."""
        soup = BeautifulSoup(html, "html.parser")
        base_url = effective_base_url(soup, page_url)
        page_path = page_path_for_url(page_url)

        jobs = []
        for selector, attribute in ASSET_REFERENCES:
            for tag in soup.select(selector):
                jobs.append(self._localize(tag, attribute, base_url, page_url, page_path))

        results = await asyncio.gather(*jobs, return_exceptions=True)
        failed = [r for r in results if isinstance(r, Exception)]
        if failed:
            logger.warning("%d of %d assets failed on %s", len(failed), len(results), page_url)

        return str(soup), extract_links(soup, base_url)

    async def _localize(self, tag: Tag, attribute: str, base_url: str, page_url: str, page_path: str) -> None:
        asset_url = urldefrag(urljoin(base_url, tag[attribute].strip())).url
        if urlparse(asset_url).scheme not in {"http", "https"} or not same_host(asset_url, page_url):
            return

        local_path = asset_path_for_url(asset_url)
        if local_path in self._downloads or not await asyncio.to_thread(self.store.file_exists, self.job_id, local_path):
            await self._download(asset_url, local_path)
        tag[attribute] = relative_reference(local_path, page_path)

    async def _download(self, asset_url: str, local_path: str) -> None:
        # References that share a path share one download for the whole job
        task = self._downloads.get(local_path)
        if task is None:
            task = asyncio.ensure_future(self._fetch_and_save(asset_url, local_path))
            self._downloads[local_path] = task
        try:
            await asyncio.shield(task)
        except Exception as exc:
            # Forget failures so a later page may try again
            if self._downloads.get(local_path) is task:
                del self._downloads[local_path]
            logger.warning("Asset skipped %s: %s", asset_url, exc)
            raise

    async def _fetch_and_save(self, asset_url: str, local_path: str) -> None:
        data = await self.fetcher.fetch_bytes(asset_url)
        await asyncio.to_thread(self.store.save_asset, self.job_id, asset_url, data, local_path)
