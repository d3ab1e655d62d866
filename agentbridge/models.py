"""Provider-neutral data models for LLM conversations."""

import json
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, TYPE_CHECKING

from .common.enums import PostRole, ToolCallStatus

if TYPE_CHECKING:
    from .llm.context import Context


@dataclass
class MessageFile:
    """A file attached to a message.

    Attributes:
        name: Original file name
        mime_type: MIME type reported by the host
        size: Size in bytes
        reader: Coroutine factory returning the file contents
    """
    name: str
    mime_type: str
    size: int
    reader: Optional[Callable[[], Awaitable[bytes]]] = None

    async def read(self) -> bytes:
        if self.reader is None:
            return b""
        return await self.reader()


@dataclass
class ToolCall:
    """One attempted tool invocation and its eventual result."""
    id: str
    name: str
    arguments: str = "{}"
    description: str = ""
    result: Optional[str] = None
    status: ToolCallStatus = ToolCallStatus.PENDING

    def to_dict(self) -> dict[str, Any]:
        try:
            arguments = json.loads(self.arguments) if self.arguments else {}
        except json.JSONDecodeError:
            arguments = self.arguments
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "arguments": arguments,
            "result": self.result or "",
            "status": int(self.status),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ToolCall":
        arguments = data.get("arguments", {})
        if not isinstance(arguments, str):
            arguments = json.dumps(arguments)
        return cls(
            id=data.get("id", ""),
            name=data.get("name", ""),
            description=data.get("description", ""),
            arguments=arguments,
            result=data.get("result") or None,
            status=ToolCallStatus(int(data.get("status", ToolCallStatus.PENDING))),
        )


def tool_calls_to_json(tool_calls: list[ToolCall]) -> str:
    return json.dumps([tc.to_dict() for tc in tool_calls])


def tool_calls_from_json(raw: Any) -> list[ToolCall]:
    if not raw:
        return []
    data = json.loads(raw) if isinstance(raw, str) else raw
    return [ToolCall.from_dict(item) for item in data]


@dataclass
class Message:
    """Chat message for LLM interactions.

    Attributes:
        role: Message role - "system", "user" or "assistant"
        content: Message text content
        files: Attached files, forwarded as images when the bot allows vision
        tool_calls: Tool-use records produced by the assistant
    """
    role: PostRole
    content: str = ""
    files: list[MessageFile] = field(default_factory=list)
    tool_calls: list[ToolCall] = field(default_factory=list)


@dataclass
class CompletionRequest:
    """Everything a provider needs for one completion."""
    posts: list[Message]
    context: "Context"
    model: Optional[str] = None
    max_generated_tokens: Optional[int] = None

    def truncate(self, max_tokens: int, count_tokens: Callable[[str], int]) -> bool:
        from .llm.truncation import truncate_posts

        self.posts, truncated = truncate_posts(self.posts, max_tokens, count_tokens)
        return truncated
