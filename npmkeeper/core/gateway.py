"""Rate-limit aware, serialized access to an auxiliary host (GitHub).

Every call goes through one :class:`asyncio.Lock`, so requests to the host
run strictly one at a time in call order. When the host answers 429, or
403 with ``X-RateLimit-Remaining: 0``, the gateway enters a backoff window
(until ``X-RateLimit-Reset``, else a default number of seconds) during
which calls return :class:`GatewayRateLimited` without touching the
network. The next successful response closes the window.

Rate limiting is an expected outcome here, not an error, so it is reported
as a result value rather than raised.
"""

from __future__ import annotations

import math
import time
import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

import httpx

from npmkeeper.constants import DEFAULT_RATE_LIMIT_BACKOFF_SECONDS
from npmkeeper.utils.http import HTTPClient
from npmkeeper.utils.logger import get_logger

logger = get_logger("gateway")

__all__ = [
    "GatewayResult",
    "GatewaySuccess",
    "GatewayRateLimited",
    "GatewayNetworkError",
    "RateLimitState",
    "UpstreamGateway",
]


@dataclass(frozen=True)
class GatewaySuccess:
    """The host answered (any status other than a rate-limit response)."""

    response: httpx.Response
    status: str = "success"


@dataclass(frozen=True)
class GatewayRateLimited:
    """The call was refused locally or by the host because of rate limiting."""

    status: str = "rate-limited"


@dataclass(frozen=True)
class GatewayNetworkError:
    """The request failed below HTTP (DNS, connect, timeout, ...)."""

    error: BaseException
    status: str = "error"


GatewayResult = Union[GatewaySuccess, GatewayRateLimited, GatewayNetworkError]


@dataclass
class RateLimitState:
    """Backoff window of one host. ``retry_after`` is an epoch timestamp."""

    retry_after: Optional[float] = None

    def in_backoff(self, now: float) -> bool:
        return self.retry_after is not None and now < self.retry_after


class UpstreamGateway:
    """Serialized, rate-limit aware requests to one upstream host.

    Args:
        http_client: Transport used for the actual requests.
        default_backoff: Seconds to back off when the host gives no reset time.
        state: Shared :class:`RateLimitState`; a fresh one by default.
        clock: Returns the current epoch time in seconds.
    """

    def __init__(
        self,
        http_client: HTTPClient,
        *,
        default_backoff: float = DEFAULT_RATE_LIMIT_BACKOFF_SECONDS,
        state: Optional[RateLimitState] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.http_client = http_client
        self.default_backoff = default_backoff
        self.state = state if state is not None else RateLimitState()
        self._clock = clock
        self._lock = asyncio.Lock()

    async def request(self, url: str, method: str = "GET", **kwargs: Any) -> GatewayResult:
        """Queue a request behind all earlier ones and run it.

        Never raises for transport failures; see :data:`GatewayResult`.
        """
        async with self._lock:
            return await self._perform(method, url, **kwargs)

    async def _perform(self, method: str, url: str, **kwargs: Any) -> GatewayResult:
        now = self._clock()
        if self.state.in_backoff(now):
            assert self.state.retry_after is not None
            logger.debug(
                "Upstream rate limited, waiting %ds before retrying (%s)",
                math.ceil(self.state.retry_after - now),
                url,
            )
            return GatewayRateLimited()

        try:
            response = await self.http_client.send(method, url, **kwargs)
        except (httpx.HTTPError, httpx.InvalidURL, httpx.StreamError, OSError) as exc:
            logger.debug("Upstream request to %s failed: %s", url, exc)
            return GatewayNetworkError(exc)

        if _is_rate_limit_response(response):
            self.state.retry_after = self._backoff_until(response)
            logger.debug(
                "Upstream rate limit hit (HTTP %d), backing off for %ds",
                response.status_code,
                math.ceil(self.state.retry_after - self._clock()),
            )
            return GatewayRateLimited()

        self.state.retry_after = None
        return GatewaySuccess(response)

    def _backoff_until(self, response: httpx.Response) -> float:
        reset = response.headers.get("X-RateLimit-Reset")
        if reset is not None:
            try:
                return float(int(reset))
            except ValueError:
                logger.debug("Ignoring unparseable X-RateLimit-Reset %r", reset)
        return self._clock() + self.default_backoff


def _is_rate_limit_response(response: httpx.Response) -> bool:
    if response.status_code == 429:
        return True
    return (
        response.status_code == 403
        and response.headers.get("X-RateLimit-Remaining") == "0"
    )
