"""Body relaying between caller and origin, plus the push-event frame parser.

Response bodies are never buffered: the proxy yields origin bytes as they
arrive so long-lived event streams and large downloads pass straight through.
Request bodies for mutating methods are read fully before dispatch.
"""

import codecs
import logging
from dataclasses import dataclass
from typing import AsyncIterable, AsyncIterator, Optional

import httpx

logger = logging.getLogger(__name__)

# Methods that never carry a request body through the proxy
BODYLESS_METHODS = frozenset({"GET", "HEAD"})


async def read_request_body(method: str, body: Optional[AsyncIterable[bytes]]) -> Optional[bytes]:
    """Materialize the inbound body for methods that send one.

    Returns None for GET/HEAD (the body, if any, is discarded) and for
    requests without a body stream.
    """
    if method.upper() in BODYLESS_METHODS or body is None:
        return None
    chunks = []
    async for chunk in body:
        chunks.append(chunk)
    return b"".join(chunks)


async def relay_body(upstream: httpx.Response) -> AsyncIterator[bytes]:
    """Yield raw origin bytes as they arrive, closing the upstream when done.

    Uses ``aiter_raw`` so content-encoding and chunk boundaries chosen by the
    origin are not touched. The finally block also runs when the consumer
    stops early (client disconnect), releasing the origin connection.
    """
    relayed = 0
    try:
        async for chunk in upstream.aiter_raw():
            relayed += len(chunk)
            yield chunk
    finally:
        await upstream.aclose()
        logger.debug("Relay closed: %s %d bytes", upstream.request.url, relayed)


@dataclass
class EventFrame:
    """A single push event: optional name plus its data payload."""
    data: str
    event: Optional[str] = None
    id: Optional[str] = None

    @property
    def is_named(self) -> bool:
        return bool(self.event) and self.event != "message"


class EventFrameParser:
    """Incremental parser for ``text/event-stream`` bodies.

    Usage:
        parser = EventFrameParser()
        async for chunk in response.aiter_bytes():
            for frame in parser.feed(chunk):
                dispatch(frame)
        trailing = parser.finalize()
    """

    def __init__(self) -> None:
        self._buffer = ""
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending_cr = False

    def feed(self, chunk: bytes) -> list[EventFrame]:
        """Feed raw bytes, returning every frame completed by this chunk."""
        text = self._decoder.decode(chunk)
        if self._pending_cr:
            text = "\r" + text
        # A trailing CR may be the first half of a CRLF split across chunks
        self._pending_cr = text.endswith("\r")
        if self._pending_cr:
            text = text[:-1]
        self._buffer += text.replace("\r\n", "\n").replace("\r", "\n")
        frames = []
        while "\n\n" in self._buffer:
            block, self._buffer = self._buffer.split("\n\n", 1)
            frame = self._parse_block(block)
            if frame is not None:
                frames.append(frame)
        return frames

    def finalize(self) -> Optional[EventFrame]:
        """Parse whatever is left once the stream has ended."""
        block, self._buffer = self._buffer + self._decoder.decode(b"", final=True), ""
        self._pending_cr = False
        if not block.strip():
            return None
        return self._parse_block(block)

    def _parse_block(self, block: str) -> Optional[EventFrame]:
        """Parse one blank-line-terminated block. Comment-only blocks yield None."""
        event_type: Optional[str] = None
        event_id: Optional[str] = None
        data_lines: list[str] = []

        for line in block.split("\n"):
            if not line or line.startswith(":"):
                continue
            name, _, value = line.partition(":")
            if value.startswith(" "):
                value = value[1:]
            if name == "event":
                event_type = value
            elif name == "data":
                data_lines.append(value)
            elif name == "id":
                event_id = value

        if not data_lines:
            return None

        return EventFrame(data="\n".join(data_lines), event=event_type, id=event_id)
