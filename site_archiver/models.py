from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum


def utcnow() -> datetime:
    return datetime.now(UTC)


def _parse_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _format_dt(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)

    def can_become(self, other: JobStatus) -> bool:
        return other in _TRANSITIONS[self]


_TRANSITIONS = {
    JobStatus.PENDING: {JobStatus.PROCESSING},
    JobStatus.PROCESSING: {JobStatus.COMPLETED, JobStatus.FAILED},
    JobStatus.COMPLETED: set(),
    JobStatus.FAILED: set(),
}


@dataclass
class CapturedFile:
    url: str
    path: str                   # relative to the job directory
    saved_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {"url": self.url, "path": self.path, "saved_at": _format_dt(self.saved_at)}

    @classmethod
    def from_dict(cls, data: dict):
        return cls(url=data["url"], path=data["path"], saved_at=_parse_dt(data.get("saved_at")))


class PageRecord(CapturedFile):
    pass


class AssetRecord(CapturedFile):
    pass


@dataclass
class ArchiveJob:
    id: str
    url: str                    # seed URL
    domain: str
    status: JobStatus = JobStatus.PENDING
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime | None = None
    completed_at: datetime | None = None
    error: str | None = None
    pages_archived: int = 0
    pages: list[PageRecord] = field(default_factory=list)
    assets: list[AssetRecord] = field(default_factory=list)

    @property
    def timestamp(self) -> datetime:
        return self.created_at

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "url": self.url,
            "domain": self.domain,
            "status": self.status.value,
            "timestamp": _format_dt(self.created_at),
            "created_at": _format_dt(self.created_at),
            "updated_at": _format_dt(self.updated_at),
            "completed_at": _format_dt(self.completed_at),
            "error": self.error,
            "pages_archived": self.pages_archived,
            "pages": [p.to_dict() for p in self.pages],
            "assets": [a.to_dict() for a in self.assets],
        }

    def summary(self) -> dict:
        """Listing entry: the record without its page and asset lists."""
        data = self.to_dict()
        del data["pages"], data["assets"]
        return data

    @classmethod
    def from_dict(cls, data: dict) -> ArchiveJob:
        return cls(
            id=data["id"],
            url=data["url"],
            domain=data["domain"],
            status=JobStatus(data.get("status", JobStatus.PENDING.value)),
            created_at=_parse_dt(data.get("created_at")) or utcnow(),
            updated_at=_parse_dt(data.get("updated_at")),
            completed_at=_parse_dt(data.get("completed_at")),
            error=data.get("error"),
            pages_archived=data.get("pages_archived", 0),
            pages=[PageRecord.from_dict(p) for p in data.get("pages", [])],
            assets=[AssetRecord.from_dict(a) for a in data.get("assets", [])],
        )
