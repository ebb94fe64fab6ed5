"""Server-side smoke checks against the origin, run side by side."""

from typing import Optional

import httpx

from devrelay.core.burst import BurstDispatcher, BurstResult, RequestSpec

SMOKE_CHECKS = [
    RequestSpec(url="/api/hello?name=Dev"),
    RequestSpec(url="/api/add?a=7&b=35"),
    RequestSpec(url="/api/user/42"),
    RequestSpec(url="/api/time"),
]


async def run_smoke_checks(
    base_url: str,
    client: Optional[httpx.AsyncClient] = None,
) -> list[BurstResult]:
    """Fire every check at once; a failing check never hides the others."""
    owns_client = client is None
    client = client or httpx.AsyncClient(base_url=base_url, headers={"cache-control": "no-store"})
    try:
        return await BurstDispatcher(client=client, summary_length=200).dispatch(SMOKE_CHECKS)
    finally:
        if owns_client:
            await client.aclose()
