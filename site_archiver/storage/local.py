"""
Local archive store: one consolidated JSON index plus one directory per job.

    <base_storage_dir>/metadata.json      {"archives": [...]}
    <base_storage_dir>/<job id>/...        captured pages
    <base_storage_dir>/<job id>/assets/... captured assets

Every mutation rewrites the whole index. The read-modify-write cycle runs
under a store-wide lock so concurrent jobs in one process cannot lose each
other's updates; several processes sharing one index are not supported.
"""
from __future__ import annotations

import json
import logging
import os
import shutil
import threading
import uuid
from collections.abc import Callable
from dataclasses import fields
from pathlib import Path

from site_archiver.config import Settings, settings as default_settings
from site_archiver.errors import InvalidTransition, NotFound, StoreError
from site_archiver.models import ArchiveJob, AssetRecord, JobStatus, PageRecord, utcnow
from site_archiver.storage.base import ArchiveStore

logger = logging.getLogger(__name__)

_MUTABLE_FIELDS = {f.name for f in fields(ArchiveJob)} - {"id", "created_at"}


class LocalArchiveStore(ArchiveStore):
    name = "local"

    def __init__(self, config: Settings | None = None):
        config = config or default_settings
        self.root = Path(config.base_storage_dir)
        self.index_path = self.root / config.index_filename
        self._lock = threading.RLock()
        self.root.mkdir(parents=True, exist_ok=True)
        if not self.index_path.exists():
            self._write_index([])

    # ── index ────────────────────────────────────────────────────────────────
    def _read_index(self) -> list[ArchiveJob]:
        try:
            payload = json.loads(self.index_path.read_text(encoding="utf-8"))
            return [ArchiveJob.from_dict(row) for row in payload["archives"]]
        except (OSError, ValueError, KeyError, TypeError) as exc:
            raise StoreError(f"Cannot read archive index {self.index_path}: {exc}") from exc

    def _write_index(self, jobs: list[ArchiveJob]) -> None:
        tmp = self.index_path.with_suffix(".tmp")
        try:
            tmp.write_text(
                json.dumps({"archives": [job.to_dict() for job in jobs]}, indent=2, ensure_ascii=False),
                encoding="utf-8",
            )
            os.replace(tmp, self.index_path)
        except OSError as exc:
            raise StoreError(f"Cannot write archive index {self.index_path}: {exc}") from exc

    def _mutate(self, job_id: str, change: Callable[[ArchiveJob], None]) -> ArchiveJob:
        with self._lock:
            jobs = self._read_index()
            for job in jobs:
                if job.id == job_id:
                    change(job)
                    job.updated_at = utcnow()
                    self._write_index(jobs)
                    return job
        raise NotFound(f"Archive {job_id} not found")

    # ── jobs ─────────────────────────────────────────────────────────────────
    def create(self, url: str, domain: str) -> ArchiveJob:
        job = ArchiveJob(id=str(uuid.uuid4()), url=url, domain=domain)
        (self.root / job.id).mkdir(parents=True, exist_ok=True)
        with self._lock:
            jobs = self._read_index()
            jobs.append(job)
            self._write_index(jobs)
        logger.info("Created archive %s for %s", job.id, url)
        return job

    def update(self, job_id: str, **changes) -> ArchiveJob:
        unknown = set(changes) - _MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown archive fields: {', '.join(sorted(unknown))}")

        def apply(job: ArchiveJob) -> None:
            if "status" in changes:
                new_status = JobStatus(changes["status"])
                if new_status != job.status and not job.status.can_become(new_status):
                    raise InvalidTransition(
                        f"Archive {job_id}: {job.status.value} -> {new_status.value} not allowed"
                    )
                changes["status"] = new_status
            for key, value in changes.items():
                setattr(job, key, value)

        return self._mutate(job_id, apply)

    def get(self, job_id: str) -> ArchiveJob:
        with self._lock:
            for job in self._read_index():
                if job.id == job_id:
                    return job
        raise NotFound(f"Archive {job_id} not found")

    def list(self) -> list[ArchiveJob]:
        with self._lock:
            jobs = self._read_index()
        return sorted(jobs, key=lambda job: job.created_at, reverse=True)

    def delete(self, job_id: str) -> None:
        with self._lock:
            jobs = self._read_index()
            remaining = [job for job in jobs if job.id != job_id]
            if len(remaining) == len(jobs):
                raise NotFound(f"Archive {job_id} not found")
            shutil.rmtree(self.root / job_id, ignore_errors=True)
            self._write_index(remaining)
        logger.info("Deleted archive %s", job_id)

    # ── captured files ───────────────────────────────────────────────────────
    def file_path(self, job_id: str, relative_path: str) -> Path:
        job_dir = (self.root / job_id).resolve()
        target = (job_dir / relative_path).resolve()
        if not target.is_relative_to(job_dir) or target == job_dir:
            raise NotFound(f"{relative_path} is outside archive {job_id}")
        return target

    def read_file(self, job_id: str, relative_path: str) -> bytes:
        self.get(job_id)
        path = self.file_path(job_id, relative_path)
        if not path.is_file():
            raise NotFound(f"File {relative_path} not found in archive {job_id}")
        return path.read_bytes()

    @staticmethod
    def _ensure_open(job: ArchiveJob) -> None:
        if job.status.terminal:
            raise InvalidTransition(f"Archive {job.id} is {job.status.value}; no more files accepted")

    def _append(self, job_id: str, attr: str, record) -> None:
        def apply(job: ArchiveJob) -> None:
            self._ensure_open(job)
            getattr(job, attr).append(record)

        self._mutate(job_id, apply)

    def save_page(self, job_id: str, url: str, html: str, relative_path: str) -> Path:
        self._ensure_open(self.get(job_id))
        path = self.file_path(job_id, relative_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(html, encoding="utf-8")
        self._append(job_id, "pages", PageRecord(url=url, path=relative_path))
        return path

    def save_asset(self, job_id: str, url: str, data: bytes, relative_path: str) -> Path:
        self._ensure_open(self.get(job_id))
        path = self.file_path(job_id, relative_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        self._append(job_id, "assets", AssetRecord(url=url, path=relative_path))
        return path
