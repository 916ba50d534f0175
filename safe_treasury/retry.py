"""Bounded exponential backoff for read-only RPC calls."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

import requests

from .constants import READ_BASE_DELAY_SECONDS, READ_MAX_ATTEMPTS

T = TypeVar("T")

logger = logging.getLogger(__name__)

TRANSIENT_EXCEPTION_TYPES = (
    ConnectionError,
    TimeoutError,
    asyncio.TimeoutError,
    requests.exceptions.ConnectionError,
    requests.exceptions.Timeout,
)

TRANSIENT_MESSAGE_MARKERS = (
    "fetch",
    "network",
    "timeout",
    "ECONNREFUSED",
    "ETIMEDOUT",
    "ECONNRESET",
)


def is_transient_error(exc: BaseException) -> bool:
    """Return True for network-layer failures worth retrying."""
    if isinstance(exc, TRANSIENT_EXCEPTION_TYPES):
        return True
    message = str(exc)
    return any(marker in message for marker in TRANSIENT_MESSAGE_MARKERS)


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    description: str = "RPC call",
    max_attempts: int = READ_MAX_ATTEMPTS,
    base_delay: float = READ_BASE_DELAY_SECONDS,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    log: Optional[logging.Logger] = None,
) -> T:
    """Await ``fn`` until it succeeds, retrying transient failures.

    The delay before attempt ``n + 1`` is ``base_delay * 2 ** (n - 1)``.
    Non-transient errors and the last failed attempt are re-raised as is.
    """
    log = log or logger
    attempt = 1
    while True:
        try:
            return await fn()
        except Exception as exc:
            if not is_transient_error(exc) or attempt >= max_attempts:
                raise
            delay = base_delay * (2 ** (attempt - 1))
            log.warning(
                "  %s failed (attempt %s/%s): %s. Retrying in %ss...",
                description,
                attempt,
                max_attempts,
                exc,
                delay,
            )
            await sleep(delay)
            attempt += 1
