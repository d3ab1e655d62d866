"""OpenAI chat completions adapter (OpenAI, Azure OpenAI and compatible APIs)."""

import json
import logging
from typing import Any, Optional

import httpx

from ..common.enums import PostRole, ServiceType, ToolCallStatus
from ..core.config import ServiceConfig
from ..errors import AgentBridgeError
from ..llm.language_model import LanguageModelConfig
from ..llm.stream import TextStreamResult, start_stream
from ..models import CompletionRequest, Message, ToolCall
from .base import (
    MAX_IMAGE_SIZE,
    SUPPORTED_IMAGE_TYPES,
    HTTPProvider,
    check_response,
    image_data_url,
    iter_sse,
)

logger = logging.getLogger(__name__)

OPENAI_BASE_URL = "https://api.openai.com/v1"
AZURE_API_VERSION = "2024-06-01"
DEFAULT_MODEL = "gpt-4o"
MAX_FUNCTION_CALLS = 10

UNSUPPORTED_IMAGE_TEXT = "User submitted image was not a supported format. Tell the user this."
IMAGE_TOO_LARGE_TEXT = "User submitted a image larger than 20MB. Tell the user this."

# Checked in order, so longer prefixes come first.
MODEL_INPUT_LIMITS = (
    ("gpt-4o", 128000),
    ("o1", 128000),
    ("gpt-4-turbo", 128000),
    ("gpt-4", 8192),
    ("gpt-3.5", 16385),
)
DEFAULT_INPUT_LIMIT = 128000


class OpenAIProvider(HTTPProvider):
    """Streams chat completions from an OpenAI-style endpoint.

    Usage:
        llm = OpenAIProvider(service_config, transport=restricted_transport)
        stream = llm.chat_completion(request)
        async for event in stream:
            ...
    """

    name = "openai"

    def __init__(self, config: ServiceConfig, transport: Optional[httpx.AsyncBaseTransport] = None, **kwargs):
        super().__init__(config, transport, **kwargs)
        self.service_type = config.type
        self.default_model = config.default_model or DEFAULT_MODEL

    def _base_url(self) -> str:
        if self.service_type == ServiceType.OPENAI:
            return self.config.api_url or OPENAI_BASE_URL
        return self.config.api_url.rstrip("/")

    def _default_headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.service_type == ServiceType.AZURE:
            headers["api-key"] = self.config.api_key
            return headers
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        if self.config.org_id:
            headers["OpenAI-Organization"] = self.config.org_id
        return headers

    def _completions_path(self, model: str) -> tuple[str, dict[str, str]]:
        if self.service_type == ServiceType.AZURE:
            return f"/openai/deployments/{model}/chat/completions", {"api-version": AZURE_API_VERSION}
        return "/chat/completions", {}

    def input_token_limit(self) -> int:
        if self.config.effective_input_token_limit > 0:
            return self.config.effective_input_token_limit
        for prefix, limit in MODEL_INPUT_LIMITS:
            if self.default_model.startswith(prefix):
                return limit
        return DEFAULT_INPUT_LIMIT

    def get_default_config(self) -> LanguageModelConfig:
        return LanguageModelConfig(model=self.default_model, max_generated_tokens=self.config.output_token_limit)

    def chat_completion(self, request: CompletionRequest) -> TextStreamResult:
        async def produce(stream: TextStreamResult):
            payload = await self.build_payload(request)
            await self._stream_completion(payload, stream)

        return start_stream(produce, name=f"{self.name}-stream")

    async def build_payload(self, request: CompletionRequest) -> dict[str, Any]:
        messages = await self.posts_to_messages(request.posts)

        consecutive_tool_messages = 0
        for message in reversed(messages):
            if message["role"] != "tool":
                break
            consecutive_tool_messages += 1
        if consecutive_tool_messages > MAX_FUNCTION_CALLS:
            raise AgentBridgeError("too many function calls")

        payload: dict[str, Any] = {
            "model": request.model or self.default_model,
            "messages": messages,
            "stream": True,
        }
        max_tokens = request.max_generated_tokens or self.config.output_token_limit
        if max_tokens:
            payload["max_tokens"] = max_tokens

        tools = request.context.tools.get_tools() if request.context.tools is not None else []
        if tools:
            payload["tools"] = [tool.get_tool_spec() for tool in tools]

        if self.config.send_user_id and request.context.requesting_user_id:
            payload["user"] = request.context.requesting_user_id
        return payload

    async def posts_to_messages(self, posts: list[Message]) -> list[dict[str, Any]]:
        messages: list[dict[str, Any]] = []
        for post in posts:
            if post.role == PostRole.SYSTEM:
                messages.append({"role": "system", "content": post.content})
                continue

            if post.role == PostRole.ASSISTANT:
                resolved = [tc for tc in post.tool_calls if tc.status != ToolCallStatus.PENDING]
                if not post.content and not resolved:
                    continue
                msg: dict[str, Any] = {"role": "assistant", "content": post.content or None}
                if resolved:
                    msg["tool_calls"] = [
                        {
                            "id": tc.id,
                            "type": "function",
                            "function": {"name": tc.name, "arguments": tc.arguments},
                        }
                        for tc in resolved
                    ]
                messages.append(msg)
                for tc in resolved:
                    messages.append({"role": "tool", "tool_call_id": tc.id, "content": tc.result or ""})
                continue

            if post.files:
                messages.append({"role": "user", "content": await self._multi_content(post)})
            else:
                messages.append({"role": "user", "content": post.content})
        return messages

    async def _multi_content(self, post: Message) -> list[dict[str, Any]]:
        parts: list[dict[str, Any]] = []
        if post.content:
            parts.append({"type": "text", "text": post.content})
        for file in post.files:
            if file.mime_type not in SUPPORTED_IMAGE_TYPES:
                parts.append({"type": "text", "text": UNSUPPORTED_IMAGE_TEXT})
                continue
            if file.size > MAX_IMAGE_SIZE:
                parts.append({"type": "text", "text": IMAGE_TOO_LARGE_TEXT})
                continue
            parts.append({
                "type": "image_url",
                "image_url": {"url": await image_data_url(file), "detail": "auto"},
            })
        return parts

    async def _stream_completion(self, payload: dict[str, Any], stream: TextStreamResult) -> None:
        client = await self._get_client()
        path, params = self._completions_path(payload["model"])

        # Partial tool calls keyed by their index in the delta stream.
        pending: dict[int, dict[str, str]] = {}

        async with client.stream("POST", path, json=payload, params=params) as response:
            await check_response(response, self.name)
            async for sse in iter_sse(response, self.streaming_timeout):
                if sse.data == "[DONE]":
                    break
                chunk = json.loads(sse.data)
                choices = chunk.get("choices") or []
                if not choices:
                    continue
                choice = choices[0]
                delta = choice.get("delta") or {}

                if delta.get("content"):
                    await stream.send_text(delta["content"])

                for tc_delta in delta.get("tool_calls") or []:
                    entry = pending.setdefault(tc_delta.get("index", 0), {"id": "", "name": "", "arguments": ""})
                    if tc_delta.get("id"):
                        entry["id"] = tc_delta["id"]
                    function = tc_delta.get("function") or {}
                    if function.get("name"):
                        entry["name"] = function["name"]
                    if function.get("arguments"):
                        entry["arguments"] += function["arguments"]

                finish_reason = choice.get("finish_reason")
                if finish_reason == "tool_calls":
                    await stream.send_tool_calls(self._collect_tool_calls(pending))
                    await stream.send_end()
                    return
                if finish_reason:
                    break

        await stream.send_end()

    @staticmethod
    def _collect_tool_calls(pending: dict[int, dict[str, str]]) -> list[ToolCall]:
        return [
            ToolCall(
                id=entry["id"],
                name=entry["name"],
                arguments=entry["arguments"] or "{}",
                status=ToolCallStatus.PENDING,
            )
            for _, entry in sorted(pending.items())
        ]
