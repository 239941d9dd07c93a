"""HTTP utilities providing retry semantics for transient transport failures."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

import httpx

logger = logging.getLogger(__name__)


DEFAULT_TIMEOUT = httpx.Timeout(30.0, connect=10.0)


class RetryConfig:
    def __init__(self, *, attempts: int = 3, backoff_seconds: float = 1.0) -> None:
        self.attempts = attempts
        self.backoff_seconds = backoff_seconds


async def request_with_retry(
    func: Callable[..., Awaitable[httpx.Response]],
    *args,
    retry_config: RetryConfig | None = None,
    **kwargs,
) -> httpx.Response:
    """
    Call ``func`` and retry only when the transport fails.

    Responses are returned whatever their status code; HTTP errors are the
    caller's to interpret. The last transport error is re-raised once all
    attempts are used up.
    """
    config = retry_config or RetryConfig()
    last_exception: httpx.TransportError | None = None

    for attempt in range(1, config.attempts + 1):
        try:
            return await func(*args, **kwargs)
        except httpx.TransportError as exc:
            last_exception = exc
            logger.warning(
                "Transport failure on attempt %s/%s: %s",
                attempt,
                config.attempts,
                exc,
            )
            if attempt < config.attempts and config.backoff_seconds:
                await asyncio.sleep(config.backoff_seconds)

    if last_exception is not None:
        raise last_exception
    raise RuntimeError("Request failed without raising an exception")


__all__ = ["DEFAULT_TIMEOUT", "RetryConfig", "request_with_retry"]
