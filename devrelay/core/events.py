"""Long-lived push-event consumption with an explicit connection state machine.

States: CLOSED -> CONNECTING -> OPEN, with ERRORED on transport failure.
There is no automatic reconnect; call ``start`` again after an error.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

import httpx

from devrelay.proxy.stream import EventFrame, EventFrameParser

logger = logging.getLogger(__name__)

EventHandler = Callable[[EventFrame], None]


class StreamState(str, Enum):
    CLOSED = "closed"
    CONNECTING = "connecting"
    OPEN = "open"
    ERRORED = "errored"


@dataclass
class StreamHandle:
    """Connection state and registered handlers; outlives individual connections."""
    state: StreamState = StreamState.CLOSED
    on_message: Optional[EventHandler] = None
    handlers: dict[str, EventHandler] = field(default_factory=dict)
    on_error: Optional[Callable[[Exception], None]] = None
    on_state_change: Optional[Callable[[StreamState], None]] = None

    def dispatch(self, frame: EventFrame) -> None:
        """Unnamed frames go to on_message, named ones to their handler, others are dropped."""
        if not frame.is_named:
            if self.on_message is not None:
                self.on_message(frame)
            return
        handler = self.handlers.get(frame.event)
        if handler is not None:
            handler(frame)
        else:
            logger.debug("Dropping unhandled event %r", frame.event)


class EventStreamConsumer:
    """Consumes a ``text/event-stream`` endpoint and dispatches its frames.

    Usage:
        consumer = EventStreamConsumer(client, on_message=print)
        consumer.add_handler("tick", lambda f: print("[tick]", f.data))
        await consumer.start("/api/sse")
        ...
        await consumer.stop()
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        base_url: str = "",
        on_message: Optional[EventHandler] = None,
        on_error: Optional[Callable[[Exception], None]] = None,
        on_state_change: Optional[Callable[[StreamState], None]] = None,
    ):
        self._owns_client = client is None
        # Push streams stay open indefinitely; only bound the connect phase
        self._client = client or httpx.AsyncClient(
            base_url=base_url, timeout=httpx.Timeout(None, connect=10.0),
        )
        self.handle = StreamHandle(
            on_message=on_message,
            on_error=on_error,
            on_state_change=on_state_change,
        )
        self._task: Optional[asyncio.Task] = None
        self._generation = 0
        self.connections_closed = 0

    @property
    def state(self) -> StreamState:
        return self.handle.state

    def add_handler(self, event: str, handler: EventHandler) -> None:
        self.handle.handlers[event] = handler

    def _set_state(self, state: StreamState, generation: Optional[int] = None) -> None:
        # Writes from a superseded connection are ignored
        if generation is not None and generation != self._generation:
            return
        if self.handle.state is state:
            return
        self.handle.state = state
        if self.handle.on_state_change is not None:
            self.handle.on_state_change(state)

    def _detach(self) -> Optional[asyncio.Task]:
        """Take the current connection out of service. No awaits: atomic in the loop."""
        previous = self._task
        self._task = None
        self._generation += 1
        if previous is not None and not previous.done():
            previous.cancel()
            self.connections_closed += 1
            return previous
        return None

    async def start(self, endpoint: str, headers: Optional[dict] = None) -> None:
        """Open a new connection, closing any CONNECTING/OPEN one first."""
        previous = self._detach()
        generation = self._generation
        if previous is not None:
            self._set_state(StreamState.CLOSED)
        self._set_state(StreamState.CONNECTING)
        self._task = asyncio.create_task(
            self._consume(endpoint, headers or {}, generation, previous)
        )

    async def stop(self) -> None:
        """Close the stream from any state, releasing the connection."""
        previous = self._detach()
        self._set_state(StreamState.CLOSED)
        if previous is not None:
            await asyncio.gather(previous, return_exceptions=True)

    async def wait_closed(self) -> None:
        """Wait until the current connection task finishes on its own."""
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)

    async def _consume(
        self,
        endpoint: str,
        headers: dict,
        generation: int,
        previous: Optional[asyncio.Task],
    ) -> None:
        if previous is not None:
            # The old connection must be fully released before the new one begins
            await asyncio.gather(previous, return_exceptions=True)

        request_headers = {"accept": "text/event-stream", "cache-control": "no-store"}
        request_headers.update(headers)
        parser = EventFrameParser()
        try:
            async with self._client.stream("GET", endpoint, headers=request_headers) as response:
                if response.status_code >= 300:
                    raise httpx.HTTPStatusError(
                        f"Event stream {endpoint} answered {response.status_code}",
                        request=response.request,
                        response=response,
                    )
                async for chunk in response.aiter_bytes():
                    for frame in parser.feed(chunk):
                        self._deliver(frame, generation)
                trailing = parser.finalize()
                if trailing is not None:
                    self._deliver(trailing, generation)
        except asyncio.CancelledError:
            raise
        except (httpx.HTTPError, httpx.StreamError) as e:
            logger.warning("Event stream %s failed: %s", endpoint, e)
            self._fail(e, generation)
            return
        except Exception as e:
            # A handler raised; the connection is already released by the context manager
            logger.exception("Event handler for %s raised", endpoint)
            self._fail(e, generation)
            return

        logger.info("Event stream %s ended by origin", endpoint)
        self._set_state(StreamState.CLOSED, generation)

    def _fail(self, error: Exception, generation: int) -> None:
        if generation != self._generation:
            return
        self._set_state(StreamState.ERRORED, generation)
        if self.handle.on_error is not None:
            self.handle.on_error(error)

    def _deliver(self, frame: EventFrame, generation: int) -> None:
        if generation != self._generation:
            return
        self._set_state(StreamState.OPEN, generation)
        self.handle.dispatch(frame)

    async def close(self) -> None:
        """Stop the stream and close the client if this instance created it."""
        await self.stop()
        if self._owns_client and not self._client.is_closed:
            await self._client.aclose()
