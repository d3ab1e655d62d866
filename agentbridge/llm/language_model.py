"""Provider-neutral language model interface and its wrappers."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

from ..common.enums import EventType, PostRole
from ..models import CompletionRequest
from .stream import TextStreamResult, start_stream
from .truncation import token_budget

logger = logging.getLogger(__name__)


@dataclass
class LanguageModelConfig:
    model: str = ""
    max_generated_tokens: int = 0


class LanguageModel(ABC):
    """Uniform streaming interface over an upstream LLM.

    ``chat_completion`` never blocks on the network: it starts a task and
    returns the stream that task writes to. Failures arrive as error events.
    """

    @abstractmethod
    def chat_completion(self, request: CompletionRequest) -> TextStreamResult:
        pass

    async def chat_completion_no_stream(self, request: CompletionRequest) -> str:
        return await self.chat_completion(request).read_all()

    @abstractmethod
    def count_tokens(self, text: str) -> int:
        pass

    @abstractmethod
    def input_token_limit(self) -> int:
        pass

    @abstractmethod
    def get_default_config(self) -> LanguageModelConfig:
        pass

    async def close(self) -> None:
        """Release upstream connections."""


def approximate_token_count(text: str) -> int:
    """Average of the character and word based estimates."""
    by_chars = len(text) / 4.0
    by_words = len(text.split()) / 0.75
    return int((by_chars + by_words) / 2.0)


class LanguageModelWrapper(LanguageModel):
    def __init__(self, wrapped: LanguageModel):
        self.wrapped = wrapped

    def chat_completion(self, request: CompletionRequest) -> TextStreamResult:
        return self.wrapped.chat_completion(request)

    async def chat_completion_no_stream(self, request: CompletionRequest) -> str:
        return await self.wrapped.chat_completion_no_stream(request)

    def count_tokens(self, text: str) -> int:
        return self.wrapped.count_tokens(text)

    def input_token_limit(self) -> int:
        return self.wrapped.input_token_limit()

    def get_default_config(self) -> LanguageModelConfig:
        return self.wrapped.get_default_config()

    async def close(self) -> None:
        await self.wrapped.close()


class TruncationWrapper(LanguageModelWrapper):
    """Trims every request to the wrapped model's input budget."""

    def _truncate(self, request: CompletionRequest) -> None:
        budget = token_budget(self.wrapped.input_token_limit())
        # The truncator drops from the front, so system posts go last while it runs.
        system = [p for p in request.posts if p.role == PostRole.SYSTEM]
        request.posts = [p for p in request.posts if p.role != PostRole.SYSTEM] + system
        truncated = request.truncate(budget, self.wrapped.count_tokens)
        kept_system = [p for p in request.posts if p.role == PostRole.SYSTEM]
        request.posts = kept_system + [p for p in request.posts if p.role != PostRole.SYSTEM]
        if truncated:
            logger.info(f"Truncated conversation to fit {budget} token budget ({len(request.posts)} posts kept)")

    def chat_completion(self, request: CompletionRequest) -> TextStreamResult:
        self._truncate(request)
        return self.wrapped.chat_completion(request)

    async def chat_completion_no_stream(self, request: CompletionRequest) -> str:
        self._truncate(request)
        return await self.wrapped.chat_completion_no_stream(request)


class LanguageModelLogWrapper(LanguageModelWrapper):
    """Logs requests and collected responses when LLM tracing is enabled."""

    def _log_request(self, request: CompletionRequest) -> None:
        lines = [f"[{post.role}] {post.content}" for post in request.posts]
        logger.info(
            "LLM request:\n"
            + "\n".join(lines)
            + f"\nmodel={request.model or ''} max_generated_tokens={request.max_generated_tokens or 0}"
            + f"\ncontext:\n{request.context}"
        )

    def chat_completion(self, request: CompletionRequest) -> TextStreamResult:
        self._log_request(request)
        upstream = self.wrapped.chat_completion(request)

        async def relay(stream: TextStreamResult):
            collected: list[str] = []
            try:
                async for event in upstream:
                    if event.type == EventType.TEXT:
                        collected.append(event.value)
                    elif event.type == EventType.TOOL_CALLS:
                        logger.info(f"LLM tool calls: {[tc.to_dict() for tc in event.value]}")
                    elif event.type == EventType.ERROR:
                        logger.info(f"LLM error: {event.value}")
                    await stream.send(event)
            finally:
                upstream.cancel()
                logger.info(f"LLM response: {''.join(collected)}")

        return start_stream(relay, name="llm-trace")

    async def chat_completion_no_stream(self, request: CompletionRequest) -> str:
        self._log_request(request)
        result = await self.wrapped.chat_completion_no_stream(request)
        logger.info(f"LLM response: {result}")
        return result
