"""Retry loop shared by the httpx based clients."""
import asyncio
import logging
from typing import Callable

import httpx

logger = logging.getLogger(__name__)


async def request_with_retries(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    operation: str,
    timeout: float,
    retry_count: int,
    backoff_seconds: float,
    timeout_error: Callable[[str, float], Exception],
    retry_error: Callable[[str, int], Exception],
    **kwargs,
) -> httpx.Response:
    """Send a request, retrying transport errors and 5xx responses.

    Args:
        client: httpx client to send with
        method: HTTP method
        url: Request URL (relative to the client's base URL)
        operation: Operation name used in errors and logs
        timeout: Configured timeout, reported in the timeout error
        retry_count: Retries after the first attempt
        backoff_seconds: Base delay between attempts, doubled each time
        timeout_error: Factory for the error raised on timeout
        retry_error: Factory for the error raised when retries run out
        **kwargs: Passed through to httpx

    Returns:
        First response with a status below 500

    Raises:
        The timeout_error on the first timeout, retry_error once every attempt failed.
    """
    for attempt in range(retry_count + 1):
        try:
            response = await client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            logger.error(f"{operation} timed out after {timeout}s: {e}")
            raise timeout_error(operation, timeout) from e
        except httpx.TransportError as e:
            logger.warning(f"{operation} transport error (attempt {attempt + 1}): {e}")
        else:
            if response.status_code < 500:
                return response
            logger.warning(
                f"{operation} returned {response.status_code} (attempt {attempt + 1}): {response.text[:500]}"
            )

        if attempt < retry_count and backoff_seconds > 0:
            await asyncio.sleep(backoff_seconds * (2 ** attempt))

    logger.error(f"{operation} failed after {retry_count} retries")
    raise retry_error(operation, retry_count)
