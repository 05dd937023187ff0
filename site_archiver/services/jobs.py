from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path
from urllib.parse import urlparse

from site_archiver.errors import InvalidURL, NotFound, QueueFull
from site_archiver.models import ArchiveJob, JobStatus
from site_archiver.services.crawler import Crawler
from site_archiver.storage.base import ArchiveStore
from site_archiver.utils import is_valid_url, normalize_url

logger = logging.getLogger(__name__)


class JobRunner:
    """Fixed pool of asyncio workers fed by a bounded queue."""

    def __init__(self, workers: int = 2, queue_size: int = 16):
        self.workers = workers
        self.queue_size = queue_size
        self._queue: asyncio.Queue | None = None
        self._tasks: list[asyncio.Task] = []

    @property
    def full(self) -> bool:
        return self._queue is not None and self._queue.full()

    def start(self) -> None:
        """Spawn the workers; must be called from inside the running event loop."""
        if self._tasks:
            return
        self._queue = asyncio.Queue(maxsize=self.queue_size)
        self._tasks = [asyncio.create_task(self._work(n)) for n in range(self.workers)]

    def submit(self, job_id: str, factory: Callable[[], Awaitable[None]]) -> None:
        if self._queue is None:
            raise RuntimeError("JobRunner.start() has not been called")
        try:
            self._queue.put_nowait((job_id, factory))
        except asyncio.QueueFull as exc:
            raise QueueFull("Too many archive jobs queued, try again later") from exc

    async def _work(self, n: int) -> None:
        while True:
            job_id, factory = await self._queue.get()
            try:
                await factory()
            except Exception:
                logger.exception("Worker %d: job %s crashed", n, job_id)
            finally:
                self._queue.task_done()

    async def join(self) -> None:
        if self._queue is not None:
            await self._queue.join()

    async def stop(self) -> list[str]:
        """Cancel the workers and return the ids of jobs that never started."""
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

        abandoned = []
        while self._queue is not None and not self._queue.empty():
            job_id, _ = self._queue.get_nowait()
            self._queue.task_done()
            abandoned.append(job_id)
        return abandoned


class ArchiveService:
    """Operations offered to the HTTP layer."""

    def __init__(self, store: ArchiveStore, crawler: Crawler, runner: JobRunner):
        self.store = store
        self.crawler = crawler
        self.runner = runner

    def start_archiving(self, url: str) -> dict:
        if not is_valid_url(url):
            raise InvalidURL(f"Invalid URL: {url!r}")
        # Reject before creating a record so a refused request leaves nothing behind
        if self.runner.full:
            raise QueueFull("Too many archive jobs queued, try again later")

        url = normalize_url(url)
        domain = urlparse(url).hostname
        job = self.store.create(url, domain)
        self.runner.submit(job.id, lambda: self.crawler.run(job.id, url))
        return {"job_id": job.id, "status": "started", "url": url, "domain": domain}

    async def shutdown(self) -> None:
        for job_id in await self.runner.stop():
            self._abandon(job_id, "Archiving cancelled by shutdown before it started")

    def fail_unfinished(self) -> int:
        """Mark jobs left pending or processing by a previous run as failed."""
        stale = [job for job in self.store.list() if not job.status.terminal]
        for job in stale:
            self._abandon(job.id, "Archiving interrupted by a restart")
        return len(stale)

    def _abandon(self, job_id: str, error: str) -> None:
        try:
            job = self.store.get(job_id)
        except NotFound:
            return
        if job.status.terminal:
            return
        if job.status == JobStatus.PENDING:
            self.store.update(job_id, status=JobStatus.PROCESSING)
        self.store.update(job_id, status=JobStatus.FAILED, error=error)
        logger.warning("Archive %s failed: %s", job_id, error)

    def get_job_status(self, job_id: str) -> dict:
        job = self.store.get(job_id)
        return {
            "job_id": job.id,
            "status": job.status.value,
            "url": job.url,
            "domain": job.domain,
            "timestamp": job.timestamp.isoformat(),
            "pages_archived": job.pages_archived,
            "error": job.error,
        }

    def list_archives(self, domain: str | None = None) -> list[dict]:
        jobs = self.store.list_by_domain(domain) if domain else self.store.list()
        return [job.summary() for job in jobs]

    def get_archive(self, job_id: str) -> ArchiveJob:
        return self.store.get(job_id)

    def archived_file_path(self, job_id: str, relative_path: str) -> Path:
        self.store.get(job_id)
        path = self.store.file_path(job_id, relative_path or "index.html")
        if not path.is_file():
            raise NotFound(f"File {relative_path} not found in archive {job_id}")
        return path

    def get_archived_file(self, job_id: str, relative_path: str) -> bytes:
        return self.store.read_file(job_id, relative_path or "index.html")

    def delete_archive(self, job_id: str) -> None:
        self.store.delete(job_id)
