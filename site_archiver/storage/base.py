from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path

from site_archiver.models import ArchiveJob


class ArchiveStore(ABC):
    """Durable record of archive jobs and the files they captured."""

    name: str

    @abstractmethod
    def create(self, url: str, domain: str) -> ArchiveJob:
        raise NotImplementedError

    @abstractmethod
    def update(self, job_id: str, **fields) -> ArchiveJob:
        raise NotImplementedError

    @abstractmethod
    def get(self, job_id: str) -> ArchiveJob:
        raise NotImplementedError

    @abstractmethod
    def list(self) -> list[ArchiveJob]:
        raise NotImplementedError

    def list_by_domain(self, domain: str) -> list[ArchiveJob]:
        return [job for job in self.list() if job.domain == domain]

    @abstractmethod
    def save_page(self, job_id: str, url: str, html: str, relative_path: str) -> Path:
        raise NotImplementedError

    @abstractmethod
    def save_asset(self, job_id: str, url: str, data: bytes, relative_path: str) -> Path:
        raise NotImplementedError

    @abstractmethod
    def file_path(self, job_id: str, relative_path: str) -> Path:
        raise NotImplementedError

    def file_exists(self, job_id: str, relative_path: str) -> bool:
        return self.file_path(job_id, relative_path).is_file()

    @abstractmethod
    def read_file(self, job_id: str, relative_path: str) -> bytes:
        raise NotImplementedError

    @abstractmethod
    def delete(self, job_id: str) -> None:
        raise NotImplementedError
