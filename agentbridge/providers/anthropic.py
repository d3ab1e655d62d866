"""Anthropic Messages API adapter."""

import base64
import json
import logging
from typing import Any, Optional

import httpx

from ..common.enums import PostRole, ToolCallStatus
from ..core.config import ServiceConfig
from ..errors import AgentBridgeError
from ..llm.language_model import LanguageModelConfig
from ..llm.stream import TextStreamResult, start_stream
from ..models import CompletionRequest, Message, ToolCall
from .base import SUPPORTED_IMAGE_TYPES, HTTPProvider, check_response, iter_sse

logger = logging.getLogger(__name__)

ANTHROPIC_BASE_URL = "https://api.anthropic.com/v1"
ANTHROPIC_VERSION = "2023-06-01"
DEFAULT_MODEL = "claude-3-5-sonnet-latest"
DEFAULT_MAX_TOKENS = 8192
DEFAULT_INPUT_LIMIT = 100000


class AnthropicProvider(HTTPProvider):
    """Streams from /v1/messages.

    The system prompt is lifted to the top-level ``system`` field and
    consecutive turns of the same role are merged, since the API requires
    strict user/assistant alternation.
    """

    name = "anthropic"

    def __init__(self, config: ServiceConfig, transport: Optional[httpx.AsyncBaseTransport] = None, **kwargs):
        super().__init__(config, transport, **kwargs)
        self.default_model = config.default_model or DEFAULT_MODEL

    def _base_url(self) -> str:
        return self.config.api_url or ANTHROPIC_BASE_URL

    def _default_headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-api-key": self.config.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
        }

    def input_token_limit(self) -> int:
        return self.config.effective_input_token_limit or DEFAULT_INPUT_LIMIT

    def get_default_config(self) -> LanguageModelConfig:
        return LanguageModelConfig(
            model=self.default_model,
            max_generated_tokens=self.config.output_token_limit or DEFAULT_MAX_TOKENS,
        )

    def chat_completion(self, request: CompletionRequest) -> TextStreamResult:
        async def produce(stream: TextStreamResult):
            payload = await self.build_payload(request)
            await self._stream_messages(payload, stream)

        return start_stream(produce, name=f"{self.name}-stream")

    async def build_payload(self, request: CompletionRequest) -> dict[str, Any]:
        system, messages = await self.posts_to_messages(request.posts)
        payload: dict[str, Any] = {
            "model": request.model or self.default_model,
            "max_tokens": request.max_generated_tokens or self.config.output_token_limit or DEFAULT_MAX_TOKENS,
            "messages": messages,
            "stream": True,
        }
        if system:
            payload["system"] = system

        tools = request.context.tools.get_tools() if request.context.tools is not None else []
        if tools:
            payload["tools"] = [
                {"name": tool.name, "description": tool.description, "input_schema": tool.schema}
                for tool in tools
            ]
        return payload

    async def posts_to_messages(self, posts: list[Message]) -> tuple[str, list[dict[str, Any]]]:
        """Convert posts to (system, messages) with same-role turns merged."""
        system_parts: list[str] = []
        turns: list[tuple[str, list[dict[str, Any]]]] = []

        def append(role: str, blocks: list[dict[str, Any]]):
            if not blocks:
                return
            if turns and turns[-1][0] == role:
                turns[-1][1].extend(blocks)
            else:
                turns.append((role, list(blocks)))

        for post in posts:
            if post.role == PostRole.SYSTEM:
                if post.content:
                    system_parts.append(post.content)
                continue

            if post.role == PostRole.ASSISTANT:
                blocks: list[dict[str, Any]] = []
                if post.content:
                    blocks.append({"type": "text", "text": post.content})
                resolved = [tc for tc in post.tool_calls if tc.status != ToolCallStatus.PENDING]
                for tc in resolved:
                    blocks.append({
                        "type": "tool_use",
                        "id": tc.id,
                        "name": tc.name,
                        "input": _decode_arguments(tc.arguments),
                    })
                append("assistant", blocks)
                append("user", [
                    {
                        "type": "tool_result",
                        "tool_use_id": tc.id,
                        "content": tc.result or "",
                        "is_error": tc.status == ToolCallStatus.ERROR,
                    }
                    for tc in resolved
                ])
                continue

            blocks = []
            if post.content:
                blocks.append({"type": "text", "text": post.content})
            for file in post.files:
                blocks.append(await self._image_block(file))
            append("user", blocks)

        messages = [{"role": role, "content": blocks} for role, blocks in turns]
        return "\n\n".join(system_parts), messages

    @staticmethod
    async def _image_block(file) -> dict[str, Any]:
        if file.mime_type not in SUPPORTED_IMAGE_TYPES:
            return {"type": "text", "text": f"[Unsupported image type: {file.mime_type}]"}
        try:
            data = await file.read()
        except Exception as e:
            logger.warning(f"Failed to read image {file.name}: {e}")
            return {"type": "text", "text": "[Error reading image data]"}
        return {
            "type": "image",
            "source": {
                "type": "base64",
                "media_type": file.mime_type,
                "data": base64.b64encode(data).decode("ascii"),
            },
        }

    async def _stream_messages(self, payload: dict[str, Any], stream: TextStreamResult) -> None:
        client = await self._get_client()

        tool_uses: list[dict[str, str]] = []
        current_tool: Optional[dict[str, str]] = None
        stop_reason = ""

        async with client.stream("POST", "/messages", json=payload) as response:
            await check_response(response, self.name)
            async for sse in iter_sse(response, self.streaming_timeout):
                data = json.loads(sse.data) if sse.data else {}
                event_type = data.get("type", sse.event)

                if event_type == "content_block_start":
                    block = data.get("content_block") or {}
                    if block.get("type") == "tool_use":
                        current_tool = {"id": block.get("id", ""), "name": block.get("name", ""), "arguments": ""}
                elif event_type == "content_block_delta":
                    delta = data.get("delta") or {}
                    if delta.get("type") == "text_delta" and delta.get("text"):
                        await stream.send_text(delta["text"])
                    elif delta.get("type") == "input_json_delta" and current_tool is not None:
                        current_tool["arguments"] += delta.get("partial_json", "")
                elif event_type == "content_block_stop":
                    if current_tool is not None:
                        tool_uses.append(current_tool)
                        current_tool = None
                elif event_type == "message_delta":
                    stop_reason = (data.get("delta") or {}).get("stop_reason") or stop_reason
                elif event_type == "message_stop":
                    break
                elif event_type == "error":
                    error = data.get("error") or {}
                    raise AgentBridgeError(f"anthropic stream error: {error.get('type', '')} {error.get('message', '')}".strip())

        if stop_reason == "tool_use" and tool_uses:
            await stream.send_tool_calls([
                ToolCall(
                    id=tu["id"],
                    name=tu["name"],
                    arguments=tu["arguments"] or "{}",
                    status=ToolCallStatus.PENDING,
                )
                for tu in tool_uses
            ])
        await stream.send_end()


def _decode_arguments(raw: str) -> Any:
    try:
        return json.loads(raw) if raw else {}
    except json.JSONDecodeError:
        return {}
