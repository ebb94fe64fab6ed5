"""Resilient client: bounded retry with exponential backoff.

Retries happen here and nowhere else. The proxy forwards each request once;
this client decides whether a failed call is worth repeating.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

import httpx

from devrelay.core.cancellation import CancellationToken
from devrelay.core.errors import NetworkError, UpstreamError

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY = 0.4  # seconds
BACKOFF_MULTIPLIER = 2


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to try and how long to wait in between."""
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    base_delay: float = DEFAULT_BASE_DELAY
    multiplier: float = BACKOFF_MULTIPLIER

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0:
            raise ValueError("base_delay cannot be negative")

    def delay_for(self, attempt: int) -> float:
        """Delay after zero-indexed ``attempt`` fails: base * multiplier**attempt."""
        return self.base_delay * (self.multiplier ** attempt)


def is_retryable_status(status_code: int) -> bool:
    return status_code >= 500


class ResilientClient:
    """Async HTTP client that retries transport failures and 5xx responses.

    4xx responses are returned immediately; they are the caller's problem,
    not the network's.
    """

    def __init__(
        self,
        base_url: str = "",
        policy: Optional[RetryPolicy] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Args:
            base_url: Prefix for relative request URLs (usually the proxy).
            policy: Default retry policy for ``call``.
            client: Pre-built httpx client (tests inject a mock transport).
            timeout: Request timeout in seconds when building our own client.
            sleep: Coroutine used between attempts.
        """
        self._policy = policy or RetryPolicy()
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._sleep = sleep

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    async def __aenter__(self) -> "ResilientClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def _attempt(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            return await self._client.request(method, url, **kwargs)
        except httpx.TransportError as e:
            raise NetworkError(f"{method} {url} failed: {e}") from e

    async def _call_with_retry(
        self, method: str, url: str, policy: RetryPolicy, **kwargs
    ) -> httpx.Response:
        last_error: Optional[NetworkError] = None
        for attempt in range(policy.max_attempts):
            try:
                response = await self._attempt(method, url, **kwargs)
            except NetworkError as e:
                last_error = e
            else:
                if not is_retryable_status(response.status_code):
                    return response
                last_error = UpstreamError(
                    f"{method} {url} returned {response.status_code}", response,
                )

            if attempt + 1 < policy.max_attempts:
                delay = policy.delay_for(attempt)
                logger.warning(
                    "Attempt %d/%d for %s %s failed (%s); retrying in %.2fs",
                    attempt + 1, policy.max_attempts, method, url, last_error, delay,
                )
                await self._sleep(delay)

        logger.warning("Giving up on %s %s after %d attempts", method, url, policy.max_attempts)
        raise last_error

    async def call(
        self,
        method: str,
        url: str,
        policy: Optional[RetryPolicy] = None,
        token: Optional[CancellationToken] = None,
        **kwargs,
    ) -> httpx.Response:
        """Issue a request, retrying per policy.

        Args:
            method: HTTP method.
            url: Absolute URL or path relative to base_url.
            policy: Overrides the client's default policy for this call.
            token: Cancels the whole call (all attempts and waits) when fired.
            **kwargs: Passed to httpx.AsyncClient.request (headers, content, params...).

        Returns:
            The first response with status < 500.

        Raises:
            NetworkError: Last attempt failed at the transport level.
            UpstreamError: Last attempt returned a 5xx status.
            CancellationError: The token fired; never retried.
        """
        coro = self._call_with_retry(method, url, policy or self._policy, **kwargs)
        if token is None:
            return await coro
        return await token.run(coro)

    async def close(self) -> None:
        """Close the underlying client if this instance created it."""
        if self._owns_client and not self._client.is_closed:
            await self._client.aclose()
