"""HTTP plumbing shared by the provider adapters."""

import asyncio
import base64
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Optional

import httpx

from ..core.config import ServiceConfig
from ..errors import MAX_ERROR_BODY_BYTES, StreamTimeoutError, UpstreamError
from ..llm.language_model import LanguageModel, approximate_token_count
from ..models import MessageFile

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT = 60.0
MAX_IMAGE_SIZE = 20 * 1024 * 1024
SUPPORTED_IMAGE_TYPES = ("image/png", "image/jpeg", "image/gif", "image/webp")


@dataclass
class SSEEvent:
    event: str
    data: str


class HTTPProvider(LanguageModel):
    """Base for adapters that talk to their upstream over httpx.

    The transport is injected so every adapter goes through the hostname
    allow-list wrapper; tests substitute an ``httpx.MockTransport``.
    """

    name = "provider"

    def __init__(
        self,
        config: ServiceConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ):
        self.config = config
        self.transport = transport
        self.timeout = timeout
        self.streaming_timeout = config.streaming_timeout
        self._client: Optional[httpx.AsyncClient] = None

    def _base_url(self) -> str:
        return self.config.api_url

    def _default_headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json"}

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self._base_url(),
                headers=self._default_headers(),
                timeout=httpx.Timeout(self.timeout),
                transport=self.transport,
            )
        return self._client

    def count_tokens(self, text: str) -> int:
        return approximate_token_count(text)

    async def close(self):
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()


async def check_response(response: httpx.Response, provider: str) -> None:
    """Raise UpstreamError for any non-2xx response, keeping the head of the body."""
    if 200 <= response.status_code < 300:
        return
    body = await response.aread()
    text = body[:MAX_ERROR_BODY_BYTES].decode("utf-8", errors="replace")
    logger.error(f"{provider} returned {response.status_code}: {text}")
    raise UpstreamError(response.status_code, text, provider)


async def with_inactivity_timeout(source: AsyncIterator, timeout: float) -> AsyncIterator:
    """Re-yield items from source, failing if the gap between two exceeds timeout."""
    iterator = source.__aiter__()
    while True:
        try:
            item = await asyncio.wait_for(iterator.__anext__(), timeout)
        except StopAsyncIteration:
            return
        except asyncio.TimeoutError:
            raise StreamTimeoutError() from None
        yield item


async def iter_sse(response: httpx.Response, timeout: float) -> AsyncIterator[SSEEvent]:
    """Parse a server-sent-events body into events."""
    event = ""
    data: list[str] = []
    async for line in with_inactivity_timeout(response.aiter_lines(), timeout):
        if not line:
            if data:
                yield SSEEvent(event or "message", "\n".join(data))
            event, data = "", []
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        value = value[1:] if value.startswith(" ") else value
        if field == "event":
            event = value
        elif field == "data":
            data.append(value)
    if data:
        yield SSEEvent(event or "message", "\n".join(data))


async def image_data_url(file: MessageFile) -> str:
    data = await file.read()
    return f"data:{file.mime_type};base64,{base64.b64encode(data).decode('ascii')}"
