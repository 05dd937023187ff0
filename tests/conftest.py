import httpx
import pytest

from site_archiver.config import Settings
from site_archiver.storage.local import LocalArchiveStore


class FakeSite:
    """In-memory website served through httpx.MockTransport."""

    def __init__(self):
        self.routes: dict[str, tuple[int, bytes, str]] = {}
        self.hits: list[str] = []

    def add(self, url: str, body: str | bytes, status: int = 200, content_type: str = "text/html"):
        if isinstance(body, str):
            body = body.encode("utf-8")
        self.routes[url] = (status, body, content_type)

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.hits.append(url)
        if url not in self.routes:
            return httpx.Response(404, text="not found")
        status, body, content_type = self.routes[url]
        return httpx.Response(status, content=body, headers={"content-type": content_type})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def config(tmp_path):
    return Settings(
        _env_file=None,
        base_storage_dir=str(tmp_path / "archives"),
        pacing_delay=0,
        retry_base_delay=0,
        retry_max_delay=0,
        use_browser=False,
    )


@pytest.fixture
def store(config):
    return LocalArchiveStore(config)


@pytest.fixture
def site():
    return FakeSite()
