"""
Outbound HTTP helpers shared by the OAuth flow and provider clients.

Every request carries a bounded timeout. Provider API calls are retried a
small, bounded number of times on transport failures only; HTTP error
statuses are returned to the caller untouched.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_ATTEMPTS = 3

# Overridable so tests don't sleep between attempts
RETRY_WAIT = wait_exponential(multiplier=0.5, max=4)


def create_http_client(timeout: float = DEFAULT_TIMEOUT_SECONDS) -> httpx.AsyncClient:
    """Create a shared async client with a bounded timeout."""
    return httpx.AsyncClient(timeout=httpx.Timeout(timeout))


@asynccontextmanager
async def client_session(
    client: Optional[httpx.AsyncClient],
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
) -> AsyncIterator[httpx.AsyncClient]:
    """Yield the shared client, or a short-lived one when none was injected."""
    if client is not None:
        yield client
        return

    async with httpx.AsyncClient(timeout=httpx.Timeout(timeout)) as owned:
        yield owned


async def request_with_retry(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    **kwargs,
) -> httpx.Response:
    """Send a request, retrying on connection-level failures."""
    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(max(1, max_attempts)),
        wait=RETRY_WAIT,
        retry=retry_if_exception_type(httpx.TransportError),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    ):
        with attempt:
            return await client.request(method, url, **kwargs)
    raise AssertionError("unreachable")  # pragma: no cover
