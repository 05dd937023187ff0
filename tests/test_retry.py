import asyncio

import pytest

from site_archiver.errors import FetchFailure
from site_archiver.services import retry
from site_archiver.services.retry import backoff_delay, with_retry


def test_backoff_delay_doubles_then_caps():
    assert [backoff_delay(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 5.0, 5.0]


def test_backoff_delay_custom_base():
    assert backoff_delay(1, base=0.5, cap=10) == 0.5
    assert backoff_delay(3, base=0.5, cap=10) == 2.0


@pytest.fixture
def sleeps(monkeypatch):
    recorded = []

    async def fake_sleep(delay):
        recorded.append(delay)

    monkeypatch.setattr(retry.asyncio, "sleep", fake_sleep)
    return recorded


def test_retry_succeeds_after_failures(sleeps):
    calls = []

    async def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise ConnectionError("socket hang up")
        return "ok"

    assert asyncio.run(with_retry(flaky, url="https://ex.test/")) == "ok"
    assert len(calls) == 3
    assert sleeps == [1.0, 2.0]


def test_retry_gives_up_after_three_attempts(sleeps):
    calls = []

    async def broken():
        calls.append(1)
        raise ConnectionError("refused")

    with pytest.raises(FetchFailure) as info:
        asyncio.run(with_retry(broken, url="https://ex.test/x"))

    assert len(calls) == 3
    assert sleeps == [1.0, 2.0]
    assert info.value.url == "https://ex.test/x"
    assert "refused" in info.value.reason
    assert isinstance(info.value.__cause__, ConnectionError)


def test_retry_timeout_counts_as_failure():
    calls = []

    async def hangs():
        calls.append(1)
        await asyncio.Event().wait()

    with pytest.raises(FetchFailure):
        asyncio.run(with_retry(hangs, url="https://ex.test/slow", attempts=2, base_delay=0, timeout=0.01))
    assert len(calls) == 2
