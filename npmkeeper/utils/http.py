"""
HTTP client utilities for npmkeeper.

This module provides an asynchronous HTTP client with retry logic,
request pacing, concurrency control, and registry-specific error handling.
Two call styles are offered:

* :meth:`HTTPClient.get_json`: retries transient failures and raises
  :class:`NetworkError` / :class:`RegistryError`; used for registry fetches.
* :meth:`HTTPClient.send`: one attempt, no status interpretation; used by
  the upstream gateway, which applies its own rate-limit state machine.
"""

from __future__ import annotations

import time
import httpx
import random
import asyncio
from typing import Any, Optional, Dict, cast

from npmkeeper.utils.logger import get_logger
from npmkeeper.__version__ import __version__
from npmkeeper.exceptions import NetworkError, RegistryError
from npmkeeper.constants import (
    DEFAULT_TIMEOUT,
    DEFAULT_MAX_RETRIES,
    USER_AGENT_TEMPLATE,
)

logger = get_logger("http")


class HTTPClient:
    """Asynchronous HTTP client with retries, pacing, and concurrency control.

    Args:
        timeout: Request timeout in seconds.
        max_retries: Maximum number of retry attempts for :meth:`get_json`.
        rate_limit_delay: Minimum delay (seconds) between requests.
        verify_ssl: Whether to verify SSL certificates.
        user_agent: Custom User-Agent header value.
        max_concurrency: Maximum number of concurrent requests.

    Example:
        >>> async with HTTPClient() as client:
        ...     data = await client.get_json("https://registry.npmjs.org/left-pad")
    """

    def __init__(
        self,
        *,
        timeout: int = DEFAULT_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        rate_limit_delay: float = 0.0,
        verify_ssl: bool = True,
        user_agent: Optional[str] = None,
        max_concurrency: int = 10,
    ) -> None:
        self.timeout = timeout
        self.max_retries = max_retries
        self.rate_limit_delay = rate_limit_delay
        self.verify_ssl = verify_ssl
        self.user_agent = user_agent or USER_AGENT_TEMPLATE.format(version=__version__)
        self.max_concurrency = max_concurrency

        self._client: Optional[httpx.AsyncClient] = None
        self._last_request_time: float = 0.0
        self._rate_limit_lock = asyncio.Lock()
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._max_429_retries: int = 5

    async def __aenter__(self) -> "HTTPClient":
        await self._ensure_client()
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        await self.close()

    async def _ensure_client(self) -> None:
        """Initialize the underlying httpx client if needed."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                http2=True,
                verify=self.verify_ssl,
                follow_redirects=True,
                headers={"User-Agent": self.user_agent},
            )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _rate_limit(self) -> None:
        """Enforce a minimum delay between outgoing requests."""
        if self.rate_limit_delay <= 0:
            return

        async with self._rate_limit_lock:
            now = time.time()
            elapsed = now - self._last_request_time

            if elapsed < self.rate_limit_delay:
                delay = self.rate_limit_delay - elapsed
                self._last_request_time = now + delay
                await asyncio.sleep(delay)
            else:
                self._last_request_time = now

    async def send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Issue a single request and return the response whatever its status.

        Transport failures propagate as ``httpx`` exceptions.
        """
        await self._ensure_client()
        assert self._client is not None

        await self._rate_limit()
        async with self._semaphore:
            return await self._client.request(method, url.strip(), **kwargs)

    async def _request_with_retry(
        self,
        method: str,
        url: str,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send ``method url`` until it succeeds, fails permanently, or attempts run out.

        Timeouts, connection errors and 5xx responses are retried with
        exponential backoff. 429 responses wait for ``Retry-After`` and do
        not consume an attempt, up to a separate limit. Any other 4xx is
        permanent; 404 becomes :class:`RegistryError`.
        """
        clean_url = url.strip().strip("\"'")
        attempts = self.max_retries + 1
        throttled = 0
        last_exc: Optional[Exception] = None
        attempt = 0

        while attempt < attempts:
            try:
                response = await self.send(method, clean_url, **kwargs)
            except (httpx.TimeoutException, httpx.NetworkError) as exc:
                last_exc = exc
                logger.warning(
                    "%s (%d/%d): %s",
                    "Request timeout" if isinstance(exc, httpx.TimeoutException) else "Network error",
                    attempt + 1,
                    attempts,
                    clean_url,
                )
            else:
                status = response.status_code
                if status == 429:
                    throttled += 1
                    if throttled > self._max_429_retries:
                        raise NetworkError(
                            f"Rate limit exceeded after {self._max_429_retries} retries",
                            url=clean_url,
                            status_code=429,
                        )
                    delay = _retry_after(response)
                    logger.warning(
                        "Rate limited (429), retrying after %ss (%d/%d)",
                        delay,
                        throttled,
                        self._max_429_retries,
                    )
                    await asyncio.sleep(delay)
                    continue

                if status < 400:
                    return response

                if status == 404:
                    raise RegistryError(
                        f"Resource not found: {clean_url}",
                        url=clean_url,
                        status_code=404,
                    )

                error = NetworkError(
                    f"HTTP {status} error for {clean_url}",
                    url=clean_url,
                    status_code=status,
                    response_body=response.text,
                )
                if status < 500:
                    raise error
                last_exc = error
                logger.warning("HTTP %d error (%d/%d): %s", status, attempt + 1, attempts, clean_url)

            attempt += 1
            if attempt < attempts:
                delay = (2 ** (attempt - 1)) + random.uniform(0.0, 0.3)
                logger.debug("Retrying in %.2fs", delay)
                await asyncio.sleep(delay)

        raise NetworkError(
            f"Request failed after {attempts} attempts: {clean_url}",
            url=clean_url,
        ) from last_exc

    async def get(self, url: str, **kwargs: Any) -> httpx.Response:
        """Perform a GET request with retry logic."""
        return await self._request_with_retry("GET", url, **kwargs)

    async def get_json(self, url: str, **kwargs: Any) -> Dict[str, Any]:
        """Fetch a URL and parse the response as a JSON object."""
        response = await self.get(url, **kwargs)

        try:
            data = response.json()
        except ValueError as exc:
            raise NetworkError(
                f"Invalid JSON response from {url}",
                url=url,
                response_body=response.text,
            ) from exc

        if not isinstance(data, dict):
            raise NetworkError(
                f"Expected JSON object from {url}",
                url=url,
                response_body=response.text,
            )

        return cast(Dict[str, Any], data)


def _retry_after(response: httpx.Response) -> int:
    """Seconds to wait before retrying a throttled request (at least 1)."""
    try:
        return max(int(response.headers.get("Retry-After", "1")), 1)
    except ValueError:
        return 1
