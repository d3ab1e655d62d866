"""AWS Bedrock ConverseStream adapter.

Requests are signed with botocore's SigV4 signer and sent through the shared
httpx client, so the hostname allow-list applies like for every other
provider. The response body is an AWS event stream decoded with
``botocore.eventstream``.
"""

import json
import logging
from typing import Any, Optional
from urllib.parse import quote

import httpx
from botocore.auth import SigV4Auth
from botocore.awsrequest import AWSRequest
from botocore.credentials import Credentials
from botocore.eventstream import EventStreamBuffer

from ..common.enums import PostRole
from ..core.config import ServiceConfig
from ..errors import AgentBridgeError
from ..llm.language_model import LanguageModelConfig
from ..llm.stream import TextStreamResult, start_stream
from ..models import CompletionRequest, Message
from .base import HTTPProvider, check_response, with_inactivity_timeout

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "anthropic.claude-3-sonnet-20240229-v1:0"
DEFAULT_REGION = "us-east-1"
DEFAULT_MAX_TOKENS = 4096
DEFAULT_TEMPERATURE = 0.7
DEFAULT_TOP_P = 0.9
EMPTY_USER_TEXT = "Please analyze the attached content."

MODEL_INPUT_LIMITS = (
    ("opus", 200000),
    ("sonnet", 180000),
    ("haiku", 150000),
    ("claude-2", 100000),
    ("instant", 100000),
    ("titan", 32000),
)
DEFAULT_INPUT_LIMIT = 100000


class BedrockProvider(HTTPProvider):
    """Converse API client.

    Credentials come from the service config: ``apiKey`` is the access key
    id, ``orgId`` the secret key, and ``region`` (or a bare ``apiURL``) the
    AWS region. A full ``apiURL`` overrides the runtime endpoint.
    """

    name = "bedrock"

    def __init__(self, config: ServiceConfig, transport: Optional[httpx.AsyncBaseTransport] = None, **kwargs):
        super().__init__(config, transport, **kwargs)
        self.default_model = config.default_model or DEFAULT_MODEL
        self.region = self._resolve_region(config)
        self.credentials = Credentials(config.api_key, config.org_id)

    @staticmethod
    def _resolve_region(config: ServiceConfig) -> str:
        if config.region:
            return config.region
        if config.api_url and not config.api_url.startswith("http"):
            return config.api_url
        return DEFAULT_REGION

    def _base_url(self) -> str:
        if self.config.api_url.startswith("http"):
            return self.config.api_url.rstrip("/")
        return f"https://bedrock-runtime.{self.region}.amazonaws.com"

    def input_token_limit(self) -> int:
        if self.config.effective_input_token_limit > 0:
            return self.config.effective_input_token_limit
        model = self.default_model.lower()
        for marker, limit in MODEL_INPUT_LIMITS:
            if marker in model:
                return limit
        return DEFAULT_INPUT_LIMIT

    def get_default_config(self) -> LanguageModelConfig:
        return LanguageModelConfig(
            model=self.default_model,
            max_generated_tokens=self.config.output_token_limit or DEFAULT_MAX_TOKENS,
        )

    def chat_completion(self, request: CompletionRequest) -> TextStreamResult:
        async def produce(stream: TextStreamResult):
            model = request.model or self.default_model
            body = self.build_body(request)
            await self._converse_stream(model, body, stream)

        return start_stream(produce, name=f"{self.name}-stream")

    def build_body(self, request: CompletionRequest) -> dict[str, Any]:
        system, messages = self.posts_to_messages(request.posts)
        body: dict[str, Any] = {
            "messages": messages,
            "inferenceConfig": {
                "maxTokens": request.max_generated_tokens or self.config.output_token_limit or DEFAULT_MAX_TOKENS,
                "temperature": DEFAULT_TEMPERATURE,
                "topP": DEFAULT_TOP_P,
            },
        }
        if system:
            body["system"] = [{"text": text} for text in system]
        return body

    @staticmethod
    def posts_to_messages(posts: list[Message]) -> tuple[list[str], list[dict[str, Any]]]:
        system: list[str] = []
        messages: list[dict[str, Any]] = []

        for post in posts:
            if post.role == PostRole.SYSTEM:
                if post.content:
                    system.append(post.content)
                continue

            text = post.content
            if post.role == PostRole.ASSISTANT:
                if not text.strip():
                    continue
                role = "assistant"
            else:
                if not text.strip():
                    if not post.files:
                        continue
                    text = EMPTY_USER_TEXT
                role = "user"

            if messages and messages[-1]["role"] == role:
                messages[-1]["content"].append({"text": text})
            else:
                messages.append({"role": role, "content": [{"text": text}]})

        return system, messages

    def _sign(self, url: str, body: bytes) -> dict[str, str]:
        aws_request = AWSRequest(
            method="POST",
            url=url,
            data=body,
            headers={"Content-Type": "application/json", "Accept": "application/vnd.amazon.eventstream"},
        )
        SigV4Auth(self.credentials, "bedrock", self.region).add_auth(aws_request)
        return dict(aws_request.headers.items())

    async def _converse_stream(self, model: str, body: dict[str, Any], stream: TextStreamResult) -> None:
        client = await self._get_client()
        url = f"{self._base_url()}/model/{quote(model, safe='')}/converse-stream"
        payload = json.dumps(body).encode("utf-8")
        headers = self._sign(url, payload)

        async with client.stream("POST", url, content=payload, headers=headers) as response:
            await check_response(response, self.name)
            buffer = EventStreamBuffer()
            async for chunk in with_inactivity_timeout(response.aiter_bytes(), self.streaming_timeout):
                buffer.add_data(chunk)
                for message in buffer:
                    done = await self._handle_event(message.headers, message.payload, stream)
                    if done:
                        return

        await stream.send_end()

    async def _handle_event(self, headers: dict[str, Any], payload: bytes, stream: TextStreamResult) -> bool:
        if headers.get(":message-type") == "exception":
            exception_type = headers.get(":exception-type", "exception")
            raise AgentBridgeError(f"bedrock {exception_type}: {payload.decode('utf-8', errors='replace')}")

        event_type = headers.get(":event-type", "")
        data = json.loads(payload) if payload else {}

        if event_type == "contentBlockDelta":
            text = (data.get("delta") or {}).get("text")
            if text:
                await stream.send_text(text)
        elif event_type == "messageStop":
            stop_reason = data.get("stopReason", "")
            if stop_reason == "tool_use":
                raise AgentBridgeError("tool use not yet implemented for Bedrock")
            await stream.send_end()
            return True
        return False
