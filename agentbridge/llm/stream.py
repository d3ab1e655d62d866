"""Canonical streaming events produced by every provider adapter.

A provider runs its upstream call in its own task and pushes events into a
bounded queue. Exactly one consumer iterates the stream. At most one terminal
event (end or error) is delivered; anything sent after it is dropped.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

from ..common.enums import EventType
from ..models import ToolCall

logger = logging.getLogger(__name__)

STREAM_BUFFER_SIZE = 100

_CLOSED = object()


@dataclass
class StreamEvent:
    type: EventType
    value: Any = None

    @property
    def is_terminal(self) -> bool:
        return self.type in (EventType.END, EventType.ERROR)


class TextStreamResult:
    """Async iterator over StreamEvents backed by a bounded queue."""

    def __init__(self, maxsize: int = STREAM_BUFFER_SIZE):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize)
        self._terminated = False
        self._closed = False
        self._task: Optional[asyncio.Task] = None

    @property
    def terminated(self) -> bool:
        return self._terminated

    async def send(self, event: StreamEvent) -> None:
        if self._terminated or self._closed:
            logger.debug(f"Dropping {event.type} event after stream terminated")
            return
        if event.is_terminal:
            self._terminated = True
        await self._queue.put(event)

    async def send_text(self, text: str) -> None:
        await self.send(StreamEvent(EventType.TEXT, text))

    async def send_error(self, error: BaseException) -> None:
        await self.send(StreamEvent(EventType.ERROR, error))

    async def send_tool_calls(self, tool_calls: list[ToolCall]) -> None:
        await self.send(StreamEvent(EventType.TOOL_CALLS, tool_calls))

    async def send_end(self) -> None:
        await self.send(StreamEvent(EventType.END))

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._queue.put(_CLOSED)

    def cancel(self) -> None:
        """Cancel the producing task, which aborts the upstream request."""
        if self._task is not None and not self._task.done():
            self._task.cancel()

    def __aiter__(self) -> AsyncIterator[StreamEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[StreamEvent]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item
            if item.is_terminal:
                return

    async def read_all(self) -> str:
        """Collect every text chunk into one string.

        Raises:
            Exception: The error carried by an error event
            ValueError: If the model asked for tool calls
        """
        parts: list[str] = []
        async for event in self:
            if event.type == EventType.TEXT:
                parts.append(event.value)
            elif event.type == EventType.ERROR:
                raise event.value
            elif event.type == EventType.TOOL_CALLS:
                raise ValueError("Tool calls are not supported for read all")
            elif event.type == EventType.END:
                break
        return "".join(parts)


Producer = Callable[[TextStreamResult], Awaitable[None]]


def start_stream(producer: Producer, name: str = "llm-stream") -> TextStreamResult:
    """Run producer in its own task and return the stream it writes to.

    An exception escaping the producer becomes an error event. The stream is
    always closed when the producer finishes, including on cancellation.
    """
    stream = TextStreamResult()

    async def runner():
        try:
            await producer(stream)
        except asyncio.CancelledError:
            logger.info(f"{name} cancelled")
            raise
        except Exception as e:
            logger.error(f"{name} failed: {e}")
            await stream.send_error(e)
        finally:
            if not stream._closed:
                stream._closed = True
                try:
                    stream._queue.put_nowait(_CLOSED)
                except asyncio.QueueFull:
                    # The consumer is still draining; hand the sentinel over asynchronously.
                    asyncio.get_running_loop().create_task(stream._queue.put(_CLOSED))

    stream._task = asyncio.create_task(runner(), name=name)
    return stream


def new_stream_from_string(text: str) -> TextStreamResult:
    """Wrap a complete response as a single text event followed by end."""
    stream = TextStreamResult()
    stream._queue.put_nowait(StreamEvent(EventType.TEXT, text))
    stream._queue.put_nowait(StreamEvent(EventType.END))
    stream._terminated = True
    stream._queue.put_nowait(_CLOSED)
    stream._closed = True
    return stream


def new_error_stream(error: BaseException) -> TextStreamResult:
    stream = TextStreamResult()
    stream._queue.put_nowait(StreamEvent(EventType.ERROR, error))
    stream._terminated = True
    stream._queue.put_nowait(_CLOSED)
    stream._closed = True
    return stream
