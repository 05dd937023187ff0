from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from site_archiver.errors import FetchFailure

logger = logging.getLogger(__name__)

T = TypeVar("T")


def backoff_delay(attempt: int, base: float = 1.0, cap: float = 5.0) -> float:
    """Seconds to wait after failed attempt number ``attempt`` (1-based)."""
    return min(base * 2 ** (attempt - 1), cap)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    url: str,
    attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 5.0,
    timeout: float | None = None,
) -> T:
    """Await ``operation()`` up to ``attempts`` times, each bounded by ``timeout``.

    Raises FetchFailure once the last attempt has failed.
    """
    last_error: Exception | None = None
    for attempt in range(1, attempts + 1):
        try:
            return await asyncio.wait_for(operation(), timeout)
        except Exception as exc:
            last_error = exc
            reason = str(exc) or type(exc).__name__
            logger.warning("Attempt %d/%d failed for %s: %s", attempt, attempts, url, reason)
            if attempt < attempts:
                await asyncio.sleep(backoff_delay(attempt, base_delay, max_delay))
    reason = (str(last_error) or type(last_error).__name__) if last_error else "no attempts made"
    raise FetchFailure(url, reason) from last_error
