# catalog_sync/net.py
# HTTP retry helper shared by the catalog and ERP clients.
from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from catalog_sync.errors import TransientNetworkError

logger = logging.getLogger("uvicorn.error")

RETRYABLE_STATUS = {502, 503, 504}


def backoff_delay(attempt: int, base: float = 0.5, cap: float = 8.0) -> float:
    """Exponential backoff: base, 2*base, 4*base, ... never above cap."""
    return min(cap, base * (2 ** (attempt - 1)))


async def request_with_retry(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    max_attempts: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 8.0,
    **kwargs: Any,
) -> httpx.Response:
    """
    Send a request, retrying only transport failures, timeouts and gateway-ish
    5xx answers. Any other status (including 4xx validation errors) is returned
    to the caller on the first attempt.
    """
    last_exc: Exception | None = None
    for attempt in range(1, max_attempts + 1):
        try:
            resp = await client.request(method, url, **kwargs)
        except httpx.TransportError as e:
            last_exc = e
        else:
            if resp.status_code not in RETRYABLE_STATUS:
                return resp
            last_exc = httpx.HTTPStatusError(
                f"{resp.status_code} from {method} {url}", request=resp.request, response=resp
            )
        if attempt < max_attempts:
            delay = backoff_delay(attempt, base_delay, max_delay)
            logger.warning(
                "[HTTP RETRY] %s %s failed (attempt %d/%d): %s. Retrying in %.1fs...",
                method, url, attempt, max_attempts, last_exc, delay,
            )
            await asyncio.sleep(delay)
    raise TransientNetworkError(f"{method} {url} failed after {max_attempts} attempts: {last_exc}")
