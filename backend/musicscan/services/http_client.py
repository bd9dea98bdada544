"""
Shared HTTP client for upstream services.

Upstreams answer 429 when we go too fast. The answer to that is a fixed
sleep and another try of the same request, a bounded number of times. A
rate-limit sleep is not a failed attempt: the queue item's attempt counter
is never touched by it.
"""

import asyncio
import logging
from typing import Any, Callable

import httpx

from musicscan.config import settings
from musicscan.services.steps import SchemaValidationError, TransientStepError

logger = logging.getLogger(__name__)


class UpstreamError(TransientStepError):
    """An upstream call failed (network error or non-2xx response)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimitedError(UpstreamError):
    """Upstream kept answering 429 after every allowed retry."""
    pass


class UpstreamClient:
    """Thin wrapper around httpx.AsyncClient with fixed 429 handling."""

    def __init__(
        self,
        base_url: str,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
        rate_limit_sleep: float | None = None,
        rate_limit_retries: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ):
        self.base_url = base_url.rstrip("/")
        self.headers = headers or {}
        self.timeout = timeout if timeout is not None else settings.http_timeout
        self.rate_limit_sleep = (
            rate_limit_sleep if rate_limit_sleep is not None else settings.rate_limit_sleep
        )
        self.rate_limit_retries = (
            rate_limit_retries if rate_limit_retries is not None else settings.rate_limit_retries
        )
        self.transport = transport
        self.sleep = sleep

    async def request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """
        Send a request, sleeping and retrying on 429.

        Raises:
            RateLimitedError: still rate limited after all retries
            UpstreamError: network failure or any other non-2xx status

        ``get_json``/``post_json`` additionally raise SchemaValidationError
        when a 2xx body is not JSON.
        """
        url = f"{self.base_url}/{path.lstrip('/')}"
        rate_limited = 0

        async with httpx.AsyncClient(
            timeout=self.timeout, headers=self.headers, transport=self.transport
        ) as client:
            while True:
                try:
                    response = await client.request(method, url, **kwargs)
                except httpx.HTTPError as e:
                    logger.warning(f"{method} {url} failed: {e}")
                    raise UpstreamError(f"Request to {url} failed: {e}") from e

                if response.status_code == 429:
                    if rate_limited >= self.rate_limit_retries:
                        raise RateLimitedError(
                            f"Rate limited by {url} after {rate_limited} retries", status_code=429
                        )
                    rate_limited += 1
                    logger.warning(
                        f"Rate limited by {url}, sleeping {self.rate_limit_sleep}s "
                        f"(retry {rate_limited}/{self.rate_limit_retries})"
                    )
                    await self.sleep(self.rate_limit_sleep)
                    continue

                if response.is_error:
                    detail = response.text[:200] if response.text else "No details"
                    logger.warning(f"{method} {url} returned {response.status_code}: {detail}")
                    raise UpstreamError(
                        f"HTTP {response.status_code} from {url}: {detail}",
                        status_code=response.status_code,
                    )

                return response

    async def get_json(self, path: str, **kwargs: Any) -> Any:
        response = await self.request("GET", path, **kwargs)
        return _json(response)

    async def post_json(self, path: str, body: dict[str, Any] | None = None, **kwargs: Any) -> Any:
        response = await self.request("POST", path, json=body or {}, **kwargs)
        return _json(response)


def _json(response: httpx.Response) -> Any:
    # A 2xx body that does not parse will not parse on a retry either
    try:
        return response.json()
    except ValueError as e:
        raise SchemaValidationError(f"Invalid JSON from {response.request.url}") from e
