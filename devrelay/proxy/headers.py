"""Header policy applied at the proxy boundary.

Only ``host`` and ``content-length`` are removed from inbound requests: the
first is derived from the origin URL, the second is recomputed by httpx from
the buffered body. Everything else, authentication headers included, is
forwarded without inspection.
"""

from typing import Iterable

import httpx

# Headers to strip when forwarding (set by proxy itself)
STRIP_HEADERS = frozenset({"host", "content-length"})

CACHE_CONTROL = "cache-control"
NO_STORE = "no-store"


def filter_request_headers(headers: Iterable[tuple[str, str]]) -> list[tuple[str, str]]:
    """Drop the proxy-owned headers from an inbound header list.

    Order and repeated names are preserved so multi-valued headers reach the
    origin exactly as sent.
    """
    return [
        (name, value) for name, value in headers
        if name.lower() not in STRIP_HEADERS
    ]


def apply_response_policy(headers: httpx.Headers) -> httpx.Headers:
    """Copy origin response headers and force ``cache-control: no-store``.

    Any cache directive from the origin is replaced, never merged.
    """
    out = httpx.Headers(headers)
    out[CACHE_CONTROL] = NO_STORE
    return out
