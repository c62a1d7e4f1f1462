"""Exponential-backoff retry for transient remote failures."""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

import httpx

from lessonpack.config import settings
from lessonpack.services.document_store import RemoteServiceError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_TRANSIENT_MARKERS = ("ECONNRESET", "ETIMEDOUT")


def is_transient(exc: BaseException) -> bool:
    """Rate limits, 5xx responses, connection resets and timeouts."""
    if isinstance(exc, RemoteServiceError):
        return exc.status_code == 429 or 500 <= exc.status_code < 600
    if isinstance(exc, (httpx.TimeoutException, httpx.ConnectError, httpx.ReadError,
                        httpx.RemoteProtocolError)):
        return True
    if isinstance(exc, (ConnectionResetError, TimeoutError)):
        return True
    message = str(exc)
    return any(marker in message for marker in _TRANSIENT_MARKERS)


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    max_retries: Optional[int] = None,
    base_delay: Optional[float] = None,
    operation_name: str = "API call",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Await ``fn()`` up to ``max_retries + 1`` times.

    The delay before attempt n+1 is ``base_delay * 2 ** (n - 1)``.  Errors
    that are not transient propagate immediately; the last transient error
    propagates once the attempts are used up.
    """
    retries = settings.PUBLISH_MAX_RETRIES if max_retries is None else max_retries
    delay_base = settings.PUBLISH_BASE_DELAY if base_delay is None else base_delay
    total = retries + 1

    attempt = 1
    while True:
        try:
            return await fn()
        except Exception as exc:
            if not is_transient(exc) or attempt >= total:
                raise
            delay = delay_base * 2 ** (attempt - 1)
            logger.warning(
                "%s failed (attempt %d/%d): %s. Retrying in %.1fs …",
                operation_name,
                attempt,
                total,
                exc,
                delay,
            )
            await sleep(delay)
            attempt += 1
