from __future__ import annotations


class ArchiverError(Exception):
    """Base class for every error raised by the archiver."""


class InvalidURL(ArchiverError, ValueError):
    pass


class NotFound(ArchiverError, KeyError):
    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "not found"


class FetchFailure(ArchiverError):
    def __init__(self, url: str, reason: str = ""):
        self.url = url
        self.reason = reason
        super().__init__(f"{url}: {reason}" if reason else url)


class OrchestrationFailure(ArchiverError):
    pass


class StoreError(ArchiverError):
    pass


class InvalidTransition(ArchiverError):
    pass


class QueueFull(ArchiverError):
    pass
