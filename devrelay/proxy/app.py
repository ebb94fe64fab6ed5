"""FastAPI proxy application.

Endpoints:
    GET|HEAD|POST|PUT|DELETE|PATCH  <prefix>/{path}  -- forwarded to the origin
    GET  /health                                      -- Health check
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.background import BackgroundTask

from devrelay import __version__
from devrelay.config.settings import Settings
from devrelay.core.errors import NetworkError
from devrelay.proxy.forwarder import (
    SUPPORTED_METHODS,
    ForwardTarget,
    InboundRequest,
    RequestForwarder,
)

logger = logging.getLogger(__name__)


def inbound_from_request(request: Request) -> InboundRequest:
    """Capture method, raw path, raw query, raw headers and body stream."""
    raw_path = request.scope.get("raw_path")
    if raw_path:
        path = raw_path.split(b"?", 1)[0].decode("latin-1")
    else:
        path = request.url.path
    return InboundRequest(
        method=request.method,
        path=path,
        query=request.scope.get("query_string", b"").decode("latin-1"),
        headers=[(k.decode("latin-1"), v.decode("latin-1")) for k, v in request.headers.raw],
        body=request.stream(),
    )


def create_app(
    settings: Optional[Settings] = None,
    forwarder: Optional[RequestForwarder] = None,
    target: Optional[ForwardTarget] = None,
) -> FastAPI:
    """Create the FastAPI proxy application.

    The origin is resolved here, once, so a bad address fails at startup
    rather than on the first request.

    Args:
        settings: Configuration; defaults to environment-driven Settings().
        forwarder: HTTP forwarder to the origin.
        target: Origin override (otherwise taken from settings).

    Returns:
        Configured FastAPI application.

    Raises:
        ConfigurationError: If the configured origin is malformed.
    """
    settings = settings or Settings()
    _target = target or settings.get_target()
    _forwarder = forwarder or RequestForwarder(
        route_prefix=settings.route_prefix,
        timeout=settings.request_timeout,
        connect_timeout=settings.connect_timeout,
    )
    prefix = _forwarder.route_prefix.rstrip("/")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Forwarding %s/* to %s", prefix, _target)
        yield
        await _forwarder.close()

    app = FastAPI(
        title="devrelay",
        description="Transparent HTTP relay to a single backend origin",
        version=__version__,
        lifespan=lifespan,
    )

    # --- Health ---

    @app.get("/health")
    async def health():
        return {"status": "ok", "service": "devrelay", "target": str(_target)}

    # --- Relay ---

    async def relay(request: Request):
        inbound = inbound_from_request(request)
        try:
            response = await _forwarder.forward(inbound, _target)
        except NetworkError as e:
            return JSONResponse(
                status_code=502,
                content={"error": {"message": str(e), "type": "network_error"}},
                headers={"cache-control": "no-store"},
            )

        out = StreamingResponse(
            response.body,
            status_code=response.status_code,
            background=BackgroundTask(response.aclose),
        )
        # Replace Starlette's defaults so repeated origin headers survive verbatim
        out.raw_headers = [
            (name.encode("latin-1"), value.encode("latin-1"))
            for name, value in response.headers.multi_items()
        ]
        return out

    if prefix:
        app.add_api_route(prefix, relay, methods=list(SUPPORTED_METHODS), include_in_schema=False)
    app.add_api_route(
        prefix + "/{path:path}", relay, methods=list(SUPPORTED_METHODS), include_in_schema=False,
    )

    return app
