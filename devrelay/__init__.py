"""devrelay - transparent HTTP relay with a resilient client toolkit."""

__version__ = "0.1.0"

from devrelay.core.errors import (
    RelayError,
    ConfigurationError,
    NetworkError,
    UpstreamError,
    CancellationError,
    TokenReusedError,
)
from devrelay.core.cancellation import CancellationToken
from devrelay.core.retry import RetryPolicy, ResilientClient
from devrelay.core.burst import BurstDispatcher, BurstResult, RequestSpec
from devrelay.core.events import EventStreamConsumer, StreamHandle, StreamState
from devrelay.proxy.forwarder import ForwardTarget, InboundRequest, ProxyResponse, RequestForwarder
from devrelay.config.settings import Settings

__all__ = [
    "RelayError",
    "ConfigurationError",
    "NetworkError",
    "UpstreamError",
    "CancellationError",
    "TokenReusedError",
    "CancellationToken",
    "RetryPolicy",
    "ResilientClient",
    "BurstDispatcher",
    "BurstResult",
    "RequestSpec",
    "EventStreamConsumer",
    "StreamHandle",
    "StreamState",
    "ForwardTarget",
    "InboundRequest",
    "ProxyResponse",
    "RequestForwarder",
    "Settings",
]
