"""Error taxonomy shared by the proxy and the client layer."""

from typing import Optional

import httpx


class RelayError(Exception):
    """Base class for all devrelay errors."""


class ConfigurationError(RelayError):
    """Raised at startup when the backend origin address is unusable."""


class NetworkError(RelayError):
    """Transport-level failure: connection refused, reset, or timed out."""


class UpstreamError(NetworkError):
    """The origin answered with a 5xx status.

    Subclasses NetworkError so retry logic treats both the same way.
    """

    def __init__(self, message: str, response: httpx.Response):
        self.response = response
        self.status_code = response.status_code
        super().__init__(message)


class CancellationError(RelayError):
    """An in-flight call was aborted by its cancellation token."""

    def __init__(self, message: str, reason: str = "aborted"):
        self.reason = reason  # "aborted" | "deadline"
        super().__init__(message)


class TokenReusedError(RelayError):
    """A cancellation token was bound to a second call."""


def describe_error(exc: BaseException, limit: Optional[int] = None) -> str:
    """Short human-readable description of an exception, for logs and results."""
    text = str(exc) or exc.__class__.__name__
    if limit is not None and len(text) > limit:
        text = text[:limit - 3] + "..."
    return text
