"""Streaming post writer.

Consumes a canonical event stream and materializes it into a chat post:
1. Buffering text chunks and flushing them on a time or size threshold.
2. Persisting pending tool calls for the approval UI.
3. Replacing the body with a localized notice on error or cancellation.
"""

import asyncio
import logging
import time
from typing import Any

from ..common.enums import EventType, StreamControl, StreamOutcome
from ..common.props import LLM_REQUESTER_USER_ID, PENDING_TOOL_CALLS, RESPONDING_TO
from ..i18n import localize
from ..llm.stream import TextStreamResult
from ..models import ToolCall, tool_calls_to_json
from ..platform.client import PlatformClient
from ..platform.models import Post

logger = logging.getLogger(__name__)

POST_UPDATE_EVENT = "postupdate"


def modify_post_for_bot(bot_user_id: str, requester_user_id: str, post: Post, responding_to_id: str = "") -> None:
    """Attribute post to the bot and record who may cancel or regenerate it."""
    post.user_id = bot_user_id
    post.add_prop(LLM_REQUESTER_USER_ID, requester_user_id)
    if responding_to_id:
        post.add_prop(RESPONDING_TO, responding_to_id)


class PostStreamWriter:
    """Writes one stream into one post.

    Usage:
        writer = PostStreamWriter(client, post, "en")
        outcome = await writer.run(stream)
    """

    def __init__(
        self,
        client: PlatformClient,
        post: Post,
        locale: str = "en",
        flush_interval: float = 0.2,
        flush_bytes: int = 4096,
    ):
        self.client = client
        self.post = post
        self.locale = locale
        self.flush_interval = flush_interval
        self.flush_bytes = flush_bytes

        self.pending_bytes = 0
        self.last_flush_time = time.monotonic()

    async def run(self, stream: TextStreamResult) -> StreamOutcome:
        try:
            await self._publish(control=StreamControl.START)
            async for event in stream:
                if event.type == EventType.TEXT:
                    await self.handle_text(event.value)
                elif event.type == EventType.TOOL_CALLS:
                    return await self._finish_tool_calls(event.value)
                elif event.type == EventType.ERROR:
                    return await self._finish_error(event.value)
                elif event.type == EventType.END:
                    break
            return await self._finish_end()
        except asyncio.CancelledError:
            stream.cancel()
            task = asyncio.current_task()
            if task is not None:
                task.uncancel()
            return await self._finish_cancelled()

    async def handle_text(self, text: str) -> None:
        if not text:
            return
        self.post.message += text
        self.pending_bytes += len(text.encode("utf-8"))

        elapsed = time.monotonic() - self.last_flush_time
        if elapsed >= self.flush_interval or self.pending_bytes >= self.flush_bytes:
            await self.flush()

    async def flush(self) -> None:
        """Persist the post and push its current body to clients."""
        try:
            await self.client.update_post(self.post)
            await self._publish(next=self.post.message)
        except Exception as e:
            logger.warning(f"Error flushing stream for post {self.post.id}: {e}")
        self.pending_bytes = 0
        self.last_flush_time = time.monotonic()

    async def _finish_end(self) -> StreamOutcome:
        if not self.post.message.strip():
            self.post.message = localize("ai.no_result", self.locale)
        await self.flush()
        await self._publish(control=StreamControl.END)
        return StreamOutcome.DONE

    async def _finish_error(self, error: Any) -> StreamOutcome:
        logger.error(f"Error streaming to post {self.post.id}: {error}")
        self.post.message = localize("ai.stream_error", self.locale)
        await self.flush()
        await self._publish(control=StreamControl.END)
        return StreamOutcome.ERROR

    async def _finish_tool_calls(self, tool_calls: list[ToolCall]) -> StreamOutcome:
        encoded = tool_calls_to_json(tool_calls)
        self.post.add_prop(PENDING_TOOL_CALLS, encoded)
        await self.flush()
        await self._publish(control=StreamControl.TOOL_CALL, tool_call=encoded)
        return StreamOutcome.TOOL_CALLS

    async def _finish_cancelled(self) -> StreamOutcome:
        notice = localize("ai.cancelled", self.locale)
        text = self.post.message.rstrip()
        self.post.message = f"{text}\n\n{notice}" if text else notice
        await self.flush()
        await self._publish(control=StreamControl.CANCEL)
        return StreamOutcome.CANCELLED

    async def _publish(self, **payload: Any) -> None:
        try:
            await self.client.publish_event(
                POST_UPDATE_EVENT,
                {"post_id": self.post.id, **payload},
                channel_id=self.post.channel_id,
            )
        except Exception as e:
            logger.warning(f"Failed to publish update for post {self.post.id}: {e}")


class StreamingService:
    """Runs one writer task per post and owns their cancellation.

    At most one writer is live per post; registering a second one cancels
    and awaits the first.

    Usage:
        streaming = StreamingService(client)
        post, task = await streaming.stream_to_new_post(stream, post, "en")
        ...
        await streaming.stop_streaming(post.id)
    """

    def __init__(self, client: PlatformClient, flush_interval: float = 0.2, flush_bytes: int = 4096):
        self.client = client
        self.flush_interval = flush_interval
        self.flush_bytes = flush_bytes
        self._contexts: dict[str, asyncio.Task] = {}
        self._lock = asyncio.Lock()

    def is_streaming(self, post_id: str) -> bool:
        task = self._contexts.get(post_id)
        return task is not None and not task.done()

    async def stream_to_post(self, stream: TextStreamResult, post: Post, locale: str = "en") -> asyncio.Task:
        """Start writing stream into an existing post.

        Returns:
            The writer task; its result is a StreamOutcome
        """
        writer = PostStreamWriter(self.client, post, locale, self.flush_interval, self.flush_bytes)
        async with self._lock:
            previous = self._contexts.pop(post.id, None)
            if previous is not None and not previous.done():
                logger.info(f"Replacing active stream for post {post.id}")
                # The cancelled writer appends its notice; the new stream starts from the caller's body.
                message = post.message
                previous.cancel()
                await asyncio.gather(previous, return_exceptions=True)
                post.message = message

            task = asyncio.create_task(self._run(post.id, writer, stream), name=f"stream-{post.id}")
            self._contexts[post.id] = task
            # A task cancelled before its first step never enters the writer, so let it start.
            await asyncio.sleep(0)
        return task

    async def _run(self, post_id: str, writer: PostStreamWriter, stream: TextStreamResult) -> StreamOutcome:
        try:
            return await writer.run(stream)
        finally:
            # No await between check and delete, so this is atomic on the loop.
            if self._contexts.get(post_id) is asyncio.current_task():
                del self._contexts[post_id]

    async def stream_to_new_post(
        self, stream: TextStreamResult, post: Post, locale: str = "en"
    ) -> tuple[Post, asyncio.Task]:
        created = await self.client.create_post(post)
        task = await self.stream_to_post(stream, created, locale)
        return created, task

    async def stream_to_new_dm(
        self, bot_user_id: str, stream: TextStreamResult, user_id: str, post: Post, locale: str = "en"
    ) -> tuple[Post, asyncio.Task]:
        channel = await self.client.get_direct_channel(user_id, bot_user_id)
        post.channel_id = channel.id
        post.user_id = bot_user_id
        return await self.stream_to_new_post(stream, post, locale)

    async def stop_streaming(self, post_id: str) -> bool:
        """Cancel the writer for post_id and wait for it to write its notice.

        Returns:
            False if nothing was streaming to the post
        """
        async with self._lock:
            task = self._contexts.pop(post_id, None)
            if task is None or task.done():
                return False
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        return True

    async def close(self) -> None:
        async with self._lock:
            tasks = list(self._contexts.values())
            self._contexts.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
