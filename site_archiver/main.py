from __future__ import annotations

import logging
import mimetypes

from fastapi import Depends, FastAPI, Request
from fastapi.responses import FileResponse, JSONResponse
from pydantic import BaseModel

from site_archiver.config import Settings, settings as default_settings
from site_archiver.errors import InvalidURL, NotFound, QueueFull
from site_archiver.models import JobStatus
from site_archiver.services.crawler import Crawler
from site_archiver.services.fetcher import PlaywrightRenderer
from site_archiver.services.jobs import ArchiveService, JobRunner
from site_archiver.storage.local import LocalArchiveStore

logger = logging.getLogger(__name__)


class ArchiveRequest(BaseModel):
    url: str


def get_service(request: Request) -> ArchiveService:
    return request.app.state.service


def create_app(config: Settings | None = None, transport=None, renderer_factory=PlaywrightRenderer) -> FastAPI:
    config = config or default_settings
    app = FastAPI(title=config.app_name)

    @app.on_event("startup")
    async def startup():
        logging.basicConfig(level=config.log_level.upper())
        store = LocalArchiveStore(config)
        crawler = Crawler(store, config, transport=transport, renderer_factory=renderer_factory)
        runner = JobRunner(workers=config.job_workers, queue_size=config.job_queue_size)
        runner.start()
        app.state.service = ArchiveService(store, crawler, runner)
        stale = app.state.service.fail_unfinished()
        if stale:
            logger.warning("Marked %d unfinished archives from a previous run as failed", stale)
        logger.info("Archive store at %s, %d workers", store.root.resolve(), config.job_workers)

    @app.on_event("shutdown")
    async def shutdown():
        await app.state.service.shutdown()

    @app.exception_handler(InvalidURL)
    async def invalid_url(request: Request, exc: InvalidURL):
        return JSONResponse({"error": str(exc)}, status_code=400)

    @app.exception_handler(NotFound)
    async def not_found(request: Request, exc: NotFound):
        return JSONResponse({"error": str(exc)}, status_code=404)

    @app.exception_handler(QueueFull)
    async def queue_full(request: Request, exc: QueueFull):
        return JSONResponse({"error": str(exc)}, status_code=503)

    @app.post("/api/archive")
    async def start_archive(body: ArchiveRequest, service: ArchiveService = Depends(get_service)):
        return service.start_archiving(body.url.strip())

    @app.get("/api/status/{job_id}")
    async def job_status(job_id: str, service: ArchiveService = Depends(get_service)):
        return service.get_job_status(job_id)

    @app.get("/api/archives")
    async def all_archives(domain: str | None = None, service: ArchiveService = Depends(get_service)):
        archives = service.list_archives(domain)
        return {"total": len(archives), "archives": archives}

    @app.get("/api/archives/{domain}")
    async def domain_archives(domain: str, service: ArchiveService = Depends(get_service)):
        return {"domain": domain, "archives": service.list_archives(domain)}

    @app.get("/api/archive/{job_id}/info")
    async def archive_info(job_id: str, service: ArchiveService = Depends(get_service)):
        return service.get_archive(job_id).to_dict()

    @app.delete("/api/archive/{job_id}")
    async def delete_archive(job_id: str, service: ArchiveService = Depends(get_service)):
        service.delete_archive(job_id)
        return {"message": "Archive deleted successfully"}

    @app.get("/api/view/{job_id}")
    @app.get("/api/view/{job_id}/{path:path}")
    async def view_archive(job_id: str, path: str = "", service: ArchiveService = Depends(get_service)):
        job = service.get_archive(job_id)
        if job.status != JobStatus.COMPLETED:
            return JSONResponse({"error": "Archive not ready", "status": job.status.value}, status_code=409)

        file_path = service.archived_file_path(job_id, path)
        media_type = mimetypes.guess_type(file_path.name)[0] or "application/octet-stream"
        return FileResponse(
            str(file_path),
            media_type=media_type,
            headers={"X-Archive-Id": job_id, "X-Archive-Timestamp": job.timestamp.isoformat()},
        )

    return app


app = create_app()
