"""Tests for the canonical event stream."""

import asyncio

import pytest

from agentbridge.common.enums import EventType
from agentbridge.errors import UpstreamError
from agentbridge.llm.stream import (
    StreamEvent,
    new_error_stream,
    new_stream_from_string,
    start_stream,
)
from agentbridge.models import ToolCall


async def collect(stream):
    return [event async for event in stream]


@pytest.mark.asyncio
async def test_text_then_end():
    """Text chunks arrive in order and read_all joins them."""
    async def produce(stream):
        await stream.send_text("Hel")
        await stream.send_text("lo")
        await stream.send_end()

    assert await start_stream(produce).read_all() == "Hello"


@pytest.mark.asyncio
async def test_producer_exception_becomes_error_event():
    """An exception escaping the producer is delivered as a single error event."""
    async def produce(stream):
        await stream.send_text("partial")
        raise UpstreamError(500, "boom", "openai")

    events = await collect(start_stream(produce))

    assert [e.type for e in events] == [EventType.TEXT, EventType.ERROR]
    assert isinstance(events[-1].value, UpstreamError)
    assert events[-1].value.status_code == 500


@pytest.mark.asyncio
async def test_read_all_raises_carried_error():
    with pytest.raises(UpstreamError):
        await new_error_stream(UpstreamError(401, "bad key")).read_all()


@pytest.mark.asyncio
async def test_nothing_after_terminal_event():
    """Only the first terminal event is delivered."""
    async def produce(stream):
        await stream.send_end()
        await stream.send_text("late")
        await stream.send_error(RuntimeError("late"))

    events = await collect(start_stream(produce))

    assert [e.type for e in events] == [EventType.END]


@pytest.mark.asyncio
async def test_stream_closes_without_terminal_event():
    """A producer that returns without end still closes the stream."""
    async def produce(stream):
        await stream.send_text("only text")

    events = await collect(start_stream(produce))

    assert [e.type for e in events] == [EventType.TEXT]


@pytest.mark.asyncio
async def test_tool_calls_then_end():
    async def produce(stream):
        await stream.send_tool_calls([ToolCall(id="call_1", name="search")])
        await stream.send_end()

    events = await collect(start_stream(produce))

    assert events[0].type == EventType.TOOL_CALLS
    assert events[0].value[0].id == "call_1"
    assert events[1].type == EventType.END


@pytest.mark.asyncio
async def test_read_all_rejects_tool_calls():
    async def produce(stream):
        await stream.send_tool_calls([ToolCall(id="call_1", name="search")])

    with pytest.raises(ValueError):
        await start_stream(produce).read_all()


@pytest.mark.asyncio
async def test_cancel_stops_producer():
    """Cancelling the stream cancels the producer task and closes the stream."""
    started = asyncio.Event()
    cancelled = asyncio.Event()

    async def produce(stream):
        started.set()
        try:
            await asyncio.sleep(60)
        except asyncio.CancelledError:
            cancelled.set()
            raise

    stream = start_stream(produce)
    await started.wait()
    stream.cancel()

    events = await asyncio.wait_for(collect(stream), 2.0)

    assert events == []
    assert cancelled.is_set()


@pytest.mark.asyncio
async def test_stream_from_string():
    stream = new_stream_from_string("complete answer")

    events = await collect(stream)

    assert events == [StreamEvent(EventType.TEXT, "complete answer"), StreamEvent(EventType.END)]
    assert stream.terminated
