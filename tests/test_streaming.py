"""Tests for the streaming post writer and its service."""

import asyncio
import json

import pytest

from agentbridge.common import props
from agentbridge.common.enums import EventType, StreamOutcome
from agentbridge.errors import UpstreamError
from agentbridge.i18n import localize
from agentbridge.llm.stream import StreamEvent, new_error_stream, new_stream_from_string, start_stream
from agentbridge.models import ToolCall
from agentbridge.platform.models import Post
from agentbridge.streaming.service import PostStreamWriter, StreamingService, modify_post_for_bot
from fakes import FakeLLM, text_script, until


def scripted(*items):
    """Stream from a FakeLLM script."""
    llm = FakeLLM(list(items))
    return llm, llm.chat_completion(None)


async def new_post(platform, message: str = "") -> Post:
    channel = platform.add_channel()
    return await platform.create_post(Post(channel_id=channel.id, user_id="bot", message=message))


def test_modify_post_for_bot():
    post = Post(user_id="someone")

    modify_post_for_bot("bot1", "u1", post, "p1")

    assert post.user_id == "bot1"
    assert post.props == {props.LLM_REQUESTER_USER_ID: "u1", props.RESPONDING_TO: "p1"}


@pytest.mark.asyncio
async def test_writer_batches_updates(platform):
    """Chunks are buffered until the byte threshold, then flushed together."""
    post = await new_post(platform)
    _, stream = scripted(*text_script("abc", "def", "ghijk"))
    writer = PostStreamWriter(platform, post, flush_interval=1000, flush_bytes=10)

    outcome = await writer.run(stream)

    assert outcome == StreamOutcome.DONE
    assert post.message == "abcdefghijk"
    assert platform.updates == ["abcdefghijk", "abcdefghijk"]
    assert platform.controls(post.id) == ["start", "end"]
    nexts = [p["next"] for _, p in platform.events if "next" in p]
    assert nexts == ["abcdefghijk", "abcdefghijk"]


@pytest.mark.asyncio
async def test_writer_flushes_on_interval(platform):
    post = await new_post(platform)
    _, stream = scripted(*text_script("a", "b"))

    await PostStreamWriter(platform, post, flush_interval=0, flush_bytes=4096).run(stream)

    assert platform.updates == ["a", "ab", "ab"]


@pytest.mark.asyncio
async def test_writer_error_replaces_body(platform):
    post = await new_post(platform)
    _, stream = scripted(StreamEvent(EventType.TEXT, "half an ans"), StreamEvent(EventType.ERROR, UpstreamError(500, "boom")))

    outcome = await PostStreamWriter(platform, post).run(stream)

    assert outcome == StreamOutcome.ERROR
    assert post.message == localize("ai.stream_error")
    assert platform.controls(post.id) == ["start", "end"]


@pytest.mark.asyncio
async def test_writer_empty_result(platform):
    post = await new_post(platform)

    outcome = await PostStreamWriter(platform, post).run(new_stream_from_string("  "))

    assert outcome == StreamOutcome.DONE
    assert post.message == localize("ai.no_result")


@pytest.mark.asyncio
async def test_writer_stores_pending_tool_calls(platform):
    post = await new_post(platform)
    calls = [ToolCall(id="call_1", name="lookup", arguments='{"username": "bob"}')]
    _, stream = scripted(StreamEvent(EventType.TEXT, "Let me check."), StreamEvent(EventType.TOOL_CALLS, calls), StreamEvent(EventType.END))

    outcome = await PostStreamWriter(platform, post).run(stream)

    assert outcome == StreamOutcome.TOOL_CALLS
    pending = json.loads(post.get_prop(props.PENDING_TOOL_CALLS))
    assert pending == [{
        "id": "call_1",
        "name": "lookup",
        "description": "",
        "arguments": {"username": "bob"},
        "result": "",
        "status": 0,
    }]
    assert post.message == "Let me check."
    tool_events = [p for _, p in platform.events if p.get("control") == "tool_call"]
    assert json.loads(tool_events[0]["tool_call"]) == pending


@pytest.mark.asyncio
async def test_writer_survives_platform_failures(platform):
    """A failing update is logged and streaming continues."""
    post = await new_post(platform)
    original = platform.update_post
    failures = []

    async def flaky(p):
        if not failures:
            failures.append(p.message)
            raise RuntimeError("db down")
        return await original(p)

    platform.update_post = flaky
    _, stream = scripted(*text_script("a", "b"))

    assert await PostStreamWriter(platform, post, flush_interval=0).run(stream) == StreamOutcome.DONE
    assert failures == ["a"]
    assert platform.updates[-1] == "ab"


@pytest.mark.asyncio
async def test_stop_streaming_cancels_and_writes_notice(platform):
    post = await new_post(platform)
    hold = asyncio.Event()
    llm, stream = scripted(StreamEvent(EventType.TEXT, "partial"), hold)
    streaming = StreamingService(platform, flush_interval=0)

    task = await streaming.stream_to_post(stream, post)
    await until(lambda: post.message == "partial")
    assert streaming.is_streaming(post.id)

    assert await streaming.stop_streaming(post.id) is True

    assert task.result() == StreamOutcome.CANCELLED
    assert post.message == "partial\n\n" + localize("ai.cancelled")
    assert platform.controls(post.id)[-1] == "cancel"
    assert not streaming.is_streaming(post.id)
    await until(lambda: llm.cancelled)
    assert await streaming.stop_streaming(post.id) is False


@pytest.mark.asyncio
async def test_second_stream_replaces_first(platform):
    """Only one writer is live per post; the replacement starts from the caller's body."""
    post = await new_post(platform)
    hold = asyncio.Event()
    _, first = scripted(StreamEvent(EventType.TEXT, "old"), hold)
    streaming = StreamingService(platform, flush_interval=0)

    first_task = await streaming.stream_to_post(first, post)
    await until(lambda: post.message == "old")

    post.message = ""
    second_task = await streaming.stream_to_post(new_stream_from_string("fresh"), post)

    assert first_task.result() == StreamOutcome.CANCELLED
    assert await second_task == StreamOutcome.DONE
    assert post.message == "fresh"
    assert not streaming.is_streaming(post.id)


@pytest.mark.asyncio
async def test_stream_to_new_dm(platform, alice):
    streaming = StreamingService(platform)

    created, task = await streaming.stream_to_new_dm("bot1", new_error_stream(RuntimeError("x")), alice.id, Post(message=""))

    assert await task == StreamOutcome.ERROR
    channel = platform.channels[created.channel_id]
    assert channel.is_direct
    assert created.user_id == "bot1"
    assert platform.posts[created.id].message == localize("ai.stream_error")


@pytest.mark.asyncio
async def test_close_cancels_all(platform):
    streaming = StreamingService(platform)
    posts = [await new_post(platform), await new_post(platform)]
    tasks = []
    for post in posts:
        async def produce(stream):
            await asyncio.sleep(60)
        tasks.append(await streaming.stream_to_post(start_stream(produce), post))

    await streaming.close()

    assert [t.result() for t in tasks] == [StreamOutcome.CANCELLED, StreamOutcome.CANCELLED]
    assert all(p.message == localize("ai.cancelled") for p in posts)


@pytest.mark.asyncio
async def test_stop_before_first_chunk(platform):
    """Stopping a stream that has produced nothing still writes the notice and aborts the producer."""
    post = await new_post(platform)
    aborted = asyncio.Event()

    async def produce(stream):
        try:
            await asyncio.sleep(60)
        except asyncio.CancelledError:
            aborted.set()
            raise

    streaming = StreamingService(platform)
    task = await streaming.stream_to_post(start_stream(produce), post)

    assert await streaming.stop_streaming(post.id) is True

    assert task.result() == StreamOutcome.CANCELLED
    assert post.message == localize("ai.cancelled")
    assert platform.controls(post.id) == ["start", "cancel"]
    await asyncio.wait_for(aborted.wait(), 2.0)
