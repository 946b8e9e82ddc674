"""
Rate-limited HTTP client shared by the card data adapters.

Every outbound call goes through the same policy: a minimum spacing
between calls, an optional per-window request budget, a wall-clock
timeout, and exponential backoff on 429/5xx responses.
"""
import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

import httpx
import structlog

from precon_roi.core.exceptions import (
    NotFoundError,
    UpstreamError,
    UpstreamTimeoutError,
    UpstreamUnavailableError,
)
from precon_roi.core.rate_limit import MinIntervalThrottle, WindowRateLimiter, backoff_delay

logger = structlog.get_logger()


@dataclass
class FetchConfig:
    """Configuration for a rate-limited API client."""
    base_url: str
    rate_limit_seconds: float = 0.1
    max_retries: int = 4
    backoff_factor: float = 2.0
    max_backoff_seconds: float = 60.0
    timeout_seconds: float = 30.0
    user_agent: str = "MTG-Commander-ROI/1.0"
    headers: dict[str, str] = field(default_factory=dict)


class RateLimitedFetcher:
    """
    JSON-over-HTTP client enforcing the outbound request policy.

    Usage:
        fetcher = RateLimitedFetcher(FetchConfig(base_url="https://api.scryfall.com"))
        data = await fetcher.get_json("/cards/named", params={"fuzzy": "Sol Ring"})

    Raises NotFoundError on 404, UpstreamError on other 4xx responses,
    UpstreamUnavailableError once 429/5xx/network retries are exhausted and
    UpstreamTimeoutError when a call exceeds ``timeout_seconds``.
    """

    def __init__(
        self,
        config: FetchConfig,
        *,
        name: str = "api",
        client: Optional[httpx.AsyncClient] = None,
        window_limiter: Optional[WindowRateLimiter] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.name = name
        self.window_limiter = window_limiter
        self.throttle = MinIntervalThrottle(config.rate_limit_seconds, clock=clock, sleep=sleep)
        self._client = client
        self._owns_client = client is None
        self._sleep = sleep

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.config.base_url,
                timeout=self.config.timeout_seconds,
                headers={
                    "User-Agent": self.config.user_agent,
                    "Accept": "application/json",
                    **self.config.headers,
                },
                follow_redirects=True,
            )
            self._owns_client = True
        return self._client

    async def get_json(
        self,
        url: str,
        params: Optional[dict[str, Any]] = None,
        max_retries: Optional[int] = None,
    ) -> Any:
        return await self.request_json("GET", url, params=params, max_retries=max_retries)

    async def post_json(
        self,
        url: str,
        body: Any,
        max_retries: Optional[int] = None,
        retry_on_timeout: bool = False,
    ) -> Any:
        return await self.request_json(
            "POST",
            url,
            json_body=body,
            max_retries=max_retries,
            retry_on_timeout=retry_on_timeout,
        )

    async def request_json(
        self,
        method: str,
        url: str,
        *,
        params: Optional[dict[str, Any]] = None,
        json_body: Any = None,
        max_retries: Optional[int] = None,
        retry_on_timeout: bool = False,
    ) -> Any:
        """
        Make a rate-limited request and decode the JSON body.

        Args:
            method: HTTP method.
            url: Absolute URL or path relative to ``base_url``.
            params: Query parameters.
            json_body: JSON request body.
            max_retries: Override for ``config.max_retries``.
            retry_on_timeout: Treat timeouts as transient and retry them.

        Returns:
            Decoded JSON response.
        """
        retries = self.config.max_retries if max_retries is None else max_retries
        attempt = 0

        while True:
            if self.window_limiter is not None:
                await self.window_limiter.acquire()
            await self.throttle.wait()
            client = await self._get_client()

            try:
                response = await asyncio.wait_for(
                    client.request(method, url, params=params, json=json_body),
                    timeout=self.config.timeout_seconds,
                )
            except (asyncio.TimeoutError, httpx.TimeoutException) as e:
                if retry_on_timeout and attempt < retries:
                    await self._backoff(attempt, url, reason="timeout")
                    attempt += 1
                    continue
                logger.error(
                    "Request timed out",
                    client=self.name,
                    url=url,
                    timeout_seconds=self.config.timeout_seconds,
                )
                raise UpstreamTimeoutError(
                    f"{self.name} request timed out. Please try again."
                ) from e
            except httpx.TransportError as e:
                if attempt < retries:
                    await self._backoff(attempt, url, reason="network", error=str(e))
                    attempt += 1
                    continue
                logger.error(
                    "Request failed, max retries reached",
                    client=self.name,
                    url=url,
                    error=str(e),
                    retry_count=attempt,
                )
                raise UpstreamUnavailableError(
                    f"{self.name} is unreachable. Please try again."
                ) from e

            status = response.status_code
            if status == 429 or status >= 500:
                if attempt < retries:
                    await self._backoff(
                        attempt,
                        url,
                        reason="rate_limited" if status == 429 else "server_error",
                        status=status,
                        retry_after=response.headers.get("Retry-After"),
                    )
                    attempt += 1
                    continue
                logger.error(
                    "Upstream still failing, max retries reached",
                    client=self.name,
                    url=url,
                    status=status,
                    retry_count=attempt,
                )
                raise UpstreamUnavailableError(
                    f"{self.name} is temporarily unavailable ({status}). Please try again.",
                    status_code=status,
                )

            if status == 404:
                raise NotFoundError(f"{self.name}: not found ({url})")

            if status >= 400:
                logger.error(
                    "Upstream API error",
                    client=self.name,
                    url=url,
                    status=status,
                    error=response.text[:200],
                )
                raise UpstreamError(
                    f"{self.name} API error: {status} {response.reason_phrase}",
                    status_code=status,
                )

            try:
                return response.json()
            except ValueError as e:
                raise UpstreamError(
                    f"{self.name} returned a non-JSON body", status_code=status
                ) from e

    async def _backoff(
        self,
        attempt: int,
        url: str,
        reason: str,
        status: Optional[int] = None,
        retry_after: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        wait_seconds = backoff_delay(
            attempt,
            factor=self.config.backoff_factor,
            cap=self.config.max_backoff_seconds,
            retry_after=retry_after,
        )
        logger.warning(
            "Upstream request failed, retrying",
            client=self.name,
            url=url,
            reason=reason,
            status=status,
            error=error,
            retry_count=attempt + 1,
            wait_seconds=wait_seconds,
        )
        await self._sleep(wait_seconds)

    async def close(self) -> None:
        """Close the HTTP client if this fetcher created it."""
        if self._owns_client and self._client is not None and not self._client.is_closed:
            await self._client.aclose()
