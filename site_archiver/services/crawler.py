"""
Crawler: breadth-first capture of one site into one archive job.

    pending -> processing -> completed | failed

Pages are handled one at a time in FIFO order; a page that cannot be
fetched or processed is logged and skipped. Only faults of the loop itself
(e.g. an unreadable index) fail the job.
"""
from __future__ import annotations

import asyncio
import logging
from collections import deque
from urllib.parse import urlparse

import httpx

from site_archiver.config import Settings, settings as default_settings
from site_archiver.errors import OrchestrationFailure, StoreError
from site_archiver.models import JobStatus, utcnow
from site_archiver.services.assets import AssetPipeline
from site_archiver.services.fetcher import PageFetcher, PlaywrightRenderer, browser_headers, open_fetcher
from site_archiver.storage.base import ArchiveStore
from site_archiver.utils import normalize_url, page_path_for_url

logger = logging.getLogger(__name__)


class Crawler:
    def __init__(
        self,
        store: ArchiveStore,
        config: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        renderer_factory=PlaywrightRenderer,
    ):
        self.store = store
        self.config = config or default_settings
        self.transport = transport
        self.renderer_factory = renderer_factory

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.config.page_timeout,
            follow_redirects=True,
            headers=browser_headers(self.config.user_agent),
            transport=self.transport,
        )

    async def run(self, job_id: str, seed_url: str) -> None:
        seed_url = normalize_url(seed_url)
        try:
            self.store.update(job_id, status=JobStatus.PROCESSING)
            async with self._client() as client:
                fetcher = await open_fetcher(client, self.config, self.renderer_factory)
                try:
                    logger.info("Archiving %s (job %s, %s mode)", seed_url, job_id, fetcher.mode)
                    pipeline = AssetPipeline(self.store, job_id, fetcher)
                    await self._traverse(job_id, seed_url, fetcher, pipeline)
                finally:
                    await fetcher.close()

            pages = len(self.store.get(job_id).pages)
            self.store.update(
                job_id,
                status=JobStatus.COMPLETED,
                pages_archived=pages,
                completed_at=utcnow(),
            )
            logger.info("Archiving completed for %s (%d pages)", seed_url, pages)
        except asyncio.CancelledError:
            logger.warning("Archiving interrupted for %s", seed_url)
            self._fail(job_id, "Archiving interrupted by shutdown")
            raise
        except Exception as exc:
            logger.exception("Archiving failed for %s", seed_url)
            self._fail(job_id, str(exc) or type(exc).__name__)

    def _fail(self, job_id: str, error: str) -> None:
        try:
            self.store.update(job_id, status=JobStatus.FAILED, error=error)
        except Exception:
            logger.exception("Could not mark archive %s as failed", job_id)

    async def _traverse(self, job_id: str, seed_url: str, fetcher: PageFetcher, pipeline: AssetPipeline) -> set[str]:
        domain = urlparse(seed_url).hostname
        queue: deque[tuple[str, int]] = deque([(seed_url, 0)])
        visited: set[str] = set()

        while queue and len(visited) < self.config.max_pages:
            url, depth = queue.popleft()
            if url in visited or depth > self.config.max_depth:
                continue

            if visited and self.config.pacing_delay:
                await asyncio.sleep(self.config.pacing_delay)
            visited.add(url)
            logger.info("Archiving page %s (depth %d)", url, depth)

            try:
                links = await self._archive_page(job_id, url, fetcher, pipeline)
            except StoreError as exc:
                raise OrchestrationFailure(f"Archive index unavailable while saving {url}: {exc}") from exc
            except Exception as exc:
                logger.warning("Failed to archive %s: %s", url, exc)
                continue

            if depth < self.config.max_depth:
                for link in links:
                    if urlparse(link).hostname == domain and link not in visited:
                        queue.append((link, depth + 1))

        return visited

    async def _archive_page(self, job_id: str, url: str, fetcher: PageFetcher, pipeline: AssetPipeline) -> list[str]:
        html = await fetcher.fetch(url)
        rewritten, links = await pipeline.process_page(html, url)
        await asyncio.to_thread(self.store.save_page, job_id, url, rewritten, page_path_for_url(url))
        return links
