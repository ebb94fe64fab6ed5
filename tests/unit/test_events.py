"""Unit tests for the push-event stream consumer."""

import asyncio

import httpx
import pytest

from devrelay.core.events import EventStreamConsumer, StreamState


class _EventBody(httpx.AsyncByteStream):
    """Sends the given frames, then either ends or stays open until closed."""

    def __init__(self, frames, hold_open=True, fail_after=False):
        self._frames = frames
        self._hold_open = hold_open
        self._fail_after = fail_after
        self.closes = 0

    async def __aiter__(self):
        for frame in self._frames:
            yield frame
            await asyncio.sleep(0)
        if self._fail_after:
            raise httpx.ReadError("connection reset")
        if self._hold_open:
            await asyncio.Event().wait()

    async def aclose(self) -> None:
        self.closes += 1


class _EventOrigin:
    """Push-event origin handing out a fresh tracked body per connection."""

    def __init__(self, frames=(b"data: hello 1\n\nevent: tick\ndata: 1\n\n",), status_code=200, **body_kwargs):
        self._frames = list(frames)
        self._status_code = status_code
        self._body_kwargs = body_kwargs
        self.bodies: list[_EventBody] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = _EventBody(self._frames, **self._body_kwargs)
        self.bodies.append(body)
        return httpx.Response(
            self._status_code,
            headers={"content-type": "text/event-stream"},
            stream=body,
        )


class _Recorder:
    def __init__(self):
        self.messages = []
        self.ticks = []
        self.errors = []
        self.states = []
        self.got_tick = asyncio.Event()
        self.settled = asyncio.Event()

    def on_message(self, frame):
        self.messages.append(frame.data)

    def on_tick(self, frame):
        self.ticks.append(frame.data)
        self.got_tick.set()

    def on_error(self, exc):
        self.errors.append(exc)

    def on_state(self, state):
        self.states.append(state)
        if state in (StreamState.ERRORED, StreamState.CLOSED):
            self.settled.set()


def _consumer(origin, recorder):
    client = httpx.AsyncClient(base_url="http://proxy", transport=httpx.MockTransport(origin.handler))
    consumer = EventStreamConsumer(
        client=client,
        on_message=recorder.on_message,
        on_error=recorder.on_error,
        on_state_change=recorder.on_state,
    )
    consumer.add_handler("tick", recorder.on_tick)
    return consumer


@pytest.mark.asyncio
async def test_frames_dispatched_to_handlers():
    """Test unnamed frames reach on_message and tick frames reach the tick handler."""
    origin = _EventOrigin()
    recorder = _Recorder()
    consumer = _consumer(origin, recorder)

    await consumer.start("/api/sse")
    await asyncio.wait_for(recorder.got_tick.wait(), timeout=2)

    assert consumer.state is StreamState.OPEN
    assert recorder.messages == ["hello 1"]
    assert recorder.ticks == ["1"]
    assert recorder.states == [StreamState.CONNECTING, StreamState.OPEN]
    await consumer.close()


@pytest.mark.asyncio
async def test_unmatched_named_events_dropped():
    """Test a named event without a handler is ignored."""
    origin = _EventOrigin(frames=[b"event: other\ndata: x\n\nevent: tick\ndata: 2\n\n"])
    recorder = _Recorder()
    consumer = _consumer(origin, recorder)

    await consumer.start("/api/sse")
    await asyncio.wait_for(recorder.got_tick.wait(), timeout=2)

    assert recorder.messages == []
    assert recorder.ticks == ["2"]
    await consumer.close()


@pytest.mark.asyncio
async def test_restart_closes_previous_connection_exactly_once():
    """Test start on an open stream closes the old connection once, then opens the new one."""
    origin = _EventOrigin()
    recorder = _Recorder()
    consumer = _consumer(origin, recorder)

    await consumer.start("/api/sse")
    await asyncio.wait_for(recorder.got_tick.wait(), timeout=2)
    recorder.got_tick.clear()

    await consumer.start("/api/sse")
    await asyncio.wait_for(recorder.got_tick.wait(), timeout=2)

    assert len(origin.bodies) == 2
    assert origin.bodies[0].closes == 1
    assert origin.bodies[1].closes == 0
    assert consumer.connections_closed == 1
    assert recorder.states == [
        StreamState.CONNECTING,
        StreamState.OPEN,
        StreamState.CLOSED,
        StreamState.CONNECTING,
        StreamState.OPEN,
    ]

    await consumer.stop()
    assert origin.bodies[1].closes == 1
    assert consumer.state is StreamState.CLOSED


@pytest.mark.asyncio
async def test_restart_while_connecting():
    """Test a second start before the first frame still closes the first connection."""
    origin = _EventOrigin()
    recorder = _Recorder()
    consumer = _consumer(origin, recorder)

    await consumer.start("/api/sse")
    assert consumer.state is StreamState.CONNECTING
    await consumer.start("/api/sse")
    await asyncio.wait_for(recorder.got_tick.wait(), timeout=2)

    assert consumer.connections_closed == 1
    assert consumer.state is StreamState.OPEN
    assert all(body.closes <= 1 for body in origin.bodies)
    await consumer.close()


@pytest.mark.asyncio
async def test_repeated_restarts_do_not_leak():
    """Test many start cycles leave at most the current connection open."""
    origin = _EventOrigin()
    recorder = _Recorder()
    consumer = _consumer(origin, recorder)

    for _ in range(5):
        recorder.got_tick.clear()
        await consumer.start("/api/sse")
        await asyncio.wait_for(recorder.got_tick.wait(), timeout=2)

    await consumer.stop()

    assert len(origin.bodies) == 5
    assert [body.closes for body in origin.bodies] == [1] * 5


@pytest.mark.asyncio
async def test_transport_error_moves_to_errored_without_reconnect():
    """Test a dropped connection ends in ERRORED and is not retried."""
    origin = _EventOrigin(hold_open=False, fail_after=True)
    recorder = _Recorder()
    consumer = _consumer(origin, recorder)

    await consumer.start("/api/sse")
    await asyncio.wait_for(recorder.settled.wait(), timeout=2)
    await asyncio.sleep(0.05)

    assert consumer.state is StreamState.ERRORED
    assert len(recorder.errors) == 1
    assert len(origin.bodies) == 1
    assert recorder.ticks == ["1"]


@pytest.mark.asyncio
async def test_handler_exception_moves_to_errored():
    """Test a raising handler ends the stream in ERRORED, never a stale OPEN."""
    origin = _EventOrigin(frames=[b"data: one\n\n"])
    recorder = _Recorder()
    consumer = _consumer(origin, recorder)

    def broken_handler(frame):
        raise ValueError("handler bug")

    consumer.handle.on_message = broken_handler

    await consumer.start("/api/sse")
    await asyncio.wait_for(recorder.settled.wait(), timeout=2)
    await consumer.wait_closed()

    assert consumer.state is StreamState.ERRORED
    assert isinstance(recorder.errors[0], ValueError)
    assert origin.bodies[0].closes == 1
    await consumer.stop()
    assert consumer.state is StreamState.CLOSED


@pytest.mark.asyncio
async def test_error_status_moves_to_errored():
    """Test a non-2xx answer on connect is an error, not an open stream."""
    origin = _EventOrigin(status_code=401, frames=[b"missing/invalid x-api-key"], hold_open=False)
    recorder = _Recorder()
    consumer = _consumer(origin, recorder)

    await consumer.start("/api/secure/sse")
    await asyncio.wait_for(recorder.settled.wait(), timeout=2)

    assert consumer.state is StreamState.ERRORED
    assert StreamState.OPEN not in recorder.states
    assert isinstance(recorder.errors[0], httpx.HTTPStatusError)


@pytest.mark.asyncio
async def test_origin_ending_stream_closes():
    """Test a cleanly finished stream ends in CLOSED."""
    origin = _EventOrigin(hold_open=False)
    recorder = _Recorder()
    consumer = _consumer(origin, recorder)

    await consumer.start("/api/sse")
    await consumer.wait_closed()

    assert consumer.state is StreamState.CLOSED
    assert recorder.errors == []
    assert origin.bodies[0].closes == 1


@pytest.mark.asyncio
async def test_errored_stream_can_be_restarted():
    """Test start after an error opens a fresh connection."""
    origin = _EventOrigin(hold_open=False, fail_after=True)
    recorder = _Recorder()
    consumer = _consumer(origin, recorder)

    await consumer.start("/api/sse")
    await asyncio.wait_for(recorder.settled.wait(), timeout=2)
    recorder.settled.clear()

    await consumer.start("/api/sse")
    await asyncio.wait_for(recorder.settled.wait(), timeout=2)

    assert len(origin.bodies) == 2
    assert consumer.connections_closed == 0
    assert len(recorder.errors) == 2


@pytest.mark.asyncio
async def test_stop_from_any_state():
    """Test stop is valid when never started and when already closed."""
    recorder = _Recorder()
    consumer = _consumer(_EventOrigin(), recorder)

    await consumer.stop()
    await consumer.stop()

    assert consumer.state is StreamState.CLOSED
    assert recorder.states == []
