"""Async HTTP forwarder that relays proxied requests to the backend origin.

Uses httpx.AsyncClient for non-blocking request forwarding with streaming
responses. The forwarder never retries: transport failures surface to the
caller as NetworkError.
"""

import logging
from dataclasses import dataclass, field
from typing import AsyncIterable, AsyncIterator, Optional

import httpx

from devrelay.core.errors import ConfigurationError, NetworkError
from devrelay.proxy.headers import apply_response_policy, filter_request_headers
from devrelay.proxy.stream import read_request_body, relay_body

logger = logging.getLogger(__name__)

# Fallback origin when BACKEND_INTERNAL_URL is unset
DEFAULT_BACKEND_URL = "http://backend-dev:8080"

# Inbound paths under this prefix are forwarded with the prefix removed
DEFAULT_ROUTE_PREFIX = "/api/backend"

SUPPORTED_METHODS = ("GET", "HEAD", "POST", "PUT", "DELETE", "PATCH")


@dataclass(frozen=True)
class ForwardTarget:
    """Backend origin: scheme, host and optional port, nothing else."""
    scheme: str
    host: str
    port: Optional[int] = None

    @classmethod
    def parse(cls, address: str) -> "ForwardTarget":
        """Validate an origin address such as ``http://backend-dev:8080``.

        Raises:
            ConfigurationError: If the address is not an absolute http(s) URL.
        """
        try:
            url = httpx.URL(address.strip())
        except (httpx.InvalidURL, TypeError) as e:
            raise ConfigurationError(f"Invalid backend address {address!r}: {e}") from e
        if url.scheme not in ("http", "https"):
            raise ConfigurationError(
                f"Backend address {address!r} must use http or https"
            )
        if not url.host:
            raise ConfigurationError(f"Backend address {address!r} has no host")
        return cls(scheme=url.scheme, host=url.host, port=url.port)

    @property
    def origin(self) -> str:
        host = f"[{self.host}]" if ":" in self.host else self.host
        if self.port is None:
            return f"{self.scheme}://{host}"
        return f"{self.scheme}://{host}:{self.port}"

    def url_for(self, raw_path: str, query: str = "") -> httpx.URL:
        """Build the outbound URL; existing percent-escapes are kept as sent."""
        return httpx.URL(self.origin).copy_with(
            path=raw_path,
            query=query.encode("utf-8") if query else None,
        )

    def __str__(self) -> str:
        return self.origin


@dataclass
class InboundRequest:
    """Transport-independent view of a request arriving at the proxy."""
    method: str
    path: str
    query: str = ""
    headers: list[tuple[str, str]] = field(default_factory=list)
    body: Optional[AsyncIterable[bytes]] = None


@dataclass
class ProxyResponse:
    """Origin response with policy-adjusted headers and a live body."""
    status_code: int
    headers: httpx.Headers
    body: AsyncIterator[bytes]
    upstream: httpx.Response

    async def aclose(self) -> None:
        """Release the origin connection without reading the rest of the body."""
        await self.upstream.aclose()


def strip_prefix(path: str, prefix: str) -> str:
    """Remove the routing prefix; an empty remainder becomes ``/``."""
    prefix = prefix.rstrip("/")
    if prefix and (path == prefix or path.startswith(prefix + "/")):
        path = path[len(prefix):]
    return path or "/"


class RequestForwarder:
    """Async HTTP forwarder that proxies requests to a single origin."""

    def __init__(
        self,
        route_prefix: str = DEFAULT_ROUTE_PREFIX,
        timeout: float = 120.0,
        connect_timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Args:
            route_prefix: Path prefix stripped from inbound requests.
            timeout: Request timeout in seconds.
            connect_timeout: Connect timeout in seconds.
            client: Pre-built client (tests inject one with a mock transport).
        """
        self._prefix = route_prefix
        self._timeout = timeout
        self._connect_timeout = connect_timeout
        self._client = client

    @property
    def route_prefix(self) -> str:
        return self._prefix

    async def _get_client(self) -> httpx.AsyncClient:
        """Lazy-init the httpx async client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout, connect=self._connect_timeout),
                follow_redirects=False,
            )
        return self._client

    async def build_request(self, inbound: InboundRequest, target: ForwardTarget) -> httpx.Request:
        """Derive the outbound request: prefix stripped, headers filtered, body buffered.

        The request is built directly rather than through the client so that
        httpx's default headers (user-agent, accept-encoding...) are not
        added on top of what the caller sent. Host and content-length are
        recomputed by httpx for the new hop.
        """
        client = await self._get_client()
        url = target.url_for(strip_prefix(inbound.path, self._prefix), inbound.query)
        content = await read_request_body(inbound.method, inbound.body)
        return httpx.Request(
            inbound.method,
            url,
            headers=filter_request_headers(inbound.headers),
            content=content,
            extensions={"timeout": client.timeout.as_dict()},
        )

    async def forward(self, inbound: InboundRequest, target: ForwardTarget) -> ProxyResponse:
        """Forward a request to the origin and return a streaming response.

        Args:
            inbound: The request as received by the proxy.
            target: Origin to forward to.

        Returns:
            ProxyResponse whose body must be consumed or closed by the caller.

        Raises:
            NetworkError: On connect refused, reset or timeout.
        """
        client = await self._get_client()
        request = await self.build_request(inbound, target)
        logger.debug("Forwarding %s %s", request.method, request.url)

        try:
            upstream = await client.send(request, stream=True)
        except httpx.TransportError as e:
            logger.warning("Forward failed: %s %s: %r", request.method, request.url, e)
            raise NetworkError(f"{request.method} {request.url} failed: {e}") from e

        return ProxyResponse(
            status_code=upstream.status_code,
            headers=apply_response_policy(upstream.headers),
            body=relay_body(upstream),
            upstream=upstream,
        )

    async def close(self) -> None:
        """Close the underlying httpx client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
