import asyncio
from typing import Any, Awaitable, Callable

import httpx

_RETRYABLE_STATUS = {429, 500, 502, 503, 504}


def _is_retryable(exc: Exception) -> bool:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in _RETRYABLE_STATUS
    return isinstance(exc, httpx.TransportError)


async def with_retry(
    fn: Callable[..., Awaitable[Any]],
    *args: Any,
    max_retries: int = 4,
    base_delay: float = 0.5,
    **kwargs: Any,
) -> Any:
    """Await an HTTP call with exponential backoff on rate limits, 5xx and transport errors.

    Waits base_delay * 1, 2, 4, ... seconds between attempts.
    """
    for attempt in range(max_retries):
        try:
            return await fn(*args, **kwargs)
        except (httpx.HTTPStatusError, httpx.TransportError) as exc:
            if attempt == max_retries - 1 or not _is_retryable(exc):
                raise
            await asyncio.sleep(base_delay * (2 ** attempt))
