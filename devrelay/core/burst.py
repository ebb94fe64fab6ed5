"""Concurrent fan-out with independent, ordered outcomes."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

import httpx

from devrelay.core.errors import NetworkError, describe_error
from devrelay.utils.helpers import truncate_text

logger = logging.getLogger(__name__)

INDEX_PLACEHOLDER = "{i}"


@dataclass
class RequestSpec:
    """Everything needed to issue one request."""
    url: str
    method: str = "GET"
    headers: dict = field(default_factory=dict)
    content: Optional[bytes] = None

    def render(self, index: int) -> "RequestSpec":
        """Copy with ``{i}`` in the URL replaced by ``index``."""
        return RequestSpec(
            url=self.url.replace(INDEX_PLACEHOLDER, str(index)),
            method=self.method,
            headers=dict(self.headers),
            content=self.content,
        )


@dataclass
class BurstResult:
    """Outcome of one dispatched call: a response summary or a failure marker."""
    index: int
    url: str
    status_code: Optional[int] = None
    summary: str = ""
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    @property
    def ok(self) -> bool:
        return not self.failed and 200 <= self.status_code < 300

    def __str__(self) -> str:
        if self.failed:
            return f"ERR: {self.error}"
        return f"{self.status_code}:{self.summary}"


class BurstDispatcher:
    """Fires many requests at once and collects every outcome."""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        base_url: str = "",
        summary_length: int = 80,
    ):
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url)
        self._summary_length = summary_length

    async def _one(self, index: int, spec: RequestSpec) -> BurstResult:
        try:
            response = await self._client.request(
                spec.method, spec.url, headers=spec.headers, content=spec.content,
            )
        except httpx.TransportError as e:
            raise NetworkError(describe_error(e)) from e
        return BurstResult(
            index=index,
            url=spec.url,
            status_code=response.status_code,
            summary=truncate_text(response.text, self._summary_length),
        )

    async def dispatch(self, requests: Sequence[RequestSpec]) -> list[BurstResult]:
        """Run all requests concurrently; results follow dispatch order.

        A failing call never cancels or delays the others.
        """
        outcomes = await asyncio.gather(
            *(self._one(i, spec) for i, spec in enumerate(requests)),
            return_exceptions=True,
        )
        results = []
        for i, (spec, outcome) in enumerate(zip(requests, outcomes)):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.warning("Burst call %d to %s failed: %s", i, spec.url, outcome)
                outcome = BurstResult(index=i, url=spec.url, error=describe_error(outcome))
            results.append(outcome)
        return results

    async def burst(self, n: int, template: RequestSpec) -> list[BurstResult]:
        """Dispatch ``n`` copies of ``template`` concurrently; returns exactly ``n`` results."""
        if n < 0:
            raise ValueError("n cannot be negative")
        return await self.dispatch([template.render(i) for i in range(n)])

    async def close(self) -> None:
        if self._owns_client and not self._client.is_closed:
            await self._client.aclose()
