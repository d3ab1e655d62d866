"""AskSage adapter.

AskSage has no streaming endpoint, so the complete answer is wrapped as a
single text event followed by end.
"""

import logging
from typing import Any, Optional

import httpx

from ..common.enums import PostRole
from ..core.config import ServiceConfig
from ..errors import MAX_ERROR_BODY_BYTES, UpstreamError
from ..llm.language_model import LanguageModelConfig
from ..llm.stream import TextStreamResult, start_stream
from ..models import CompletionRequest, Message
from .base import HTTPProvider

logger = logging.getLogger(__name__)

SERVER_BASE_URL = "https://server-nginx.asksage.ai"
AUTH_BASE_URL = "https://user-server-cac-gov.asksage.ai"
DEFAULT_MODEL = "gpt-4o"
DEFAULT_PERSONA = "default"
# The real limit is not published; budget conservatively.
DEFAULT_INPUT_LIMIT = 4096
TOKEN_COUNT_PADDING = 100


class AskSageProvider(HTTPProvider):
    name = "asksage"

    def __init__(self, config: ServiceConfig, transport: Optional[httpx.AsyncBaseTransport] = None, **kwargs):
        super().__init__(config, transport, **kwargs)
        self.default_model = config.default_model or DEFAULT_MODEL
        self.server_base_url = (config.api_url or SERVER_BASE_URL).rstrip("/")
        self._token: Optional[str] = None

    def _base_url(self) -> str:
        return self.server_base_url

    def input_token_limit(self) -> int:
        return self.config.effective_input_token_limit or DEFAULT_INPUT_LIMIT

    def count_tokens(self, text: str) -> int:
        return super().count_tokens(text) + TOKEN_COUNT_PADDING

    def get_default_config(self) -> LanguageModelConfig:
        return LanguageModelConfig(model=self.default_model, max_generated_tokens=self.config.output_token_limit)

    def chat_completion(self, request: CompletionRequest) -> TextStreamResult:
        async def produce(stream: TextStreamResult):
            text = await self.query(request)
            await stream.send_text(text)
            await stream.send_end()

        return start_stream(produce, name=f"{self.name}-query")

    async def chat_completion_no_stream(self, request: CompletionRequest) -> str:
        return await self.query(request)

    async def login(self) -> str:
        client = await self._get_client()
        response = await client.post(
            f"{AUTH_BASE_URL}/get-token",
            json={"email": self.config.username, "password": self.config.password},
        )
        await _check(response)
        data = response.json()
        token = (data.get("response") or {}).get("access_token", "")
        if not token:
            raise UpstreamError(response.status_code, "asksage login returned no access token", self.name)
        self._token = token
        return token

    async def query(self, request: CompletionRequest) -> str:
        token = self._token or await self.login()
        client = await self._get_client()
        response = await client.post(
            "/query",
            json=self.build_query(request),
            headers={"x-access-tokens": token},
        )
        await _check(response)
        data = response.json()
        return str(data.get("message", ""))

    def build_query(self, request: CompletionRequest) -> dict[str, Any]:
        system_prompt, messages = self.posts_to_messages(request.posts)
        return {
            "message": messages,
            "system_prompt": system_prompt,
            "persona": DEFAULT_PERSONA,
            "model": request.model or self.default_model,
        }

    @staticmethod
    def posts_to_messages(posts: list[Message]) -> tuple[str, list[dict[str, str]]]:
        system_prompt = ""
        messages: list[dict[str, str]] = []
        for post in posts:
            if post.role == PostRole.SYSTEM:
                system_prompt += post.content
            elif post.role == PostRole.ASSISTANT:
                messages.append({"user": "gpt", "message": post.content})
            else:
                messages.append({"user": "me", "message": post.content})
        return system_prompt, messages


async def _check(response: httpx.Response) -> None:
    if response.status_code == 200:
        return
    body = response.text[:MAX_ERROR_BODY_BYTES]
    logger.error(f"non 200 response from asksage: {response.status_code}\nBody:\n{body}")
    raise UpstreamError(response.status_code, f"non 200 response from asksage: {response.status_code}\nBody:\n{body}")
