"""Tool registry used by providers and the tool-approval flow."""

import json
import logging
import threading
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar, TYPE_CHECKING

from pydantic import BaseModel, ValidationError

from ..errors import ToolError, UnknownToolError

if TYPE_CHECKING:
    from .context import Context

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


class ToolArguments:
    """Deferred access to the model-supplied JSON arguments.

    Providers hand the raw JSON through untouched; the resolver decides how to
    parse it, usually into its own pydantic model.
    """

    def __init__(self, raw: str):
        self.raw = raw or "{}"

    def decode(self, model: Optional[type[T]] = None) -> Any:
        """Decode the arguments.

        Args:
            model: Pydantic model to validate against. Without one the raw
                JSON object is returned as a dict.

        Raises:
            ToolError: If the JSON is malformed or fails validation
        """
        try:
            if model is None:
                return json.loads(self.raw)
            return model.model_validate_json(self.raw)
        except (json.JSONDecodeError, ValidationError) as e:
            raise ToolError(f"invalid tool arguments: {e}") from e


Resolver = Callable[["Context", ToolArguments], Awaitable[str]]


@dataclass
class Tool:
    name: str
    description: str
    schema: dict[str, Any]
    resolver: Resolver

    @classmethod
    def from_model(cls, name: str, description: str, args_model: type[BaseModel], resolver: Resolver) -> "Tool":
        return cls(
            name=name,
            description=description,
            schema=args_model.model_json_schema(),
            resolver=resolver,
        )

    def get_tool_spec(self) -> dict[str, Any]:
        """OpenAI function-calling definition for this tool."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.schema,
            },
        }


class ToolStore:
    """Name to tool mapping for a single request.

    Usage:
        store = ToolStore(trace=settings.enable_llm_trace)
        store.add_tools([lookup_tool])

        result = await store.resolve_tool("LookupMattermostUser", ToolArguments(raw), context)
    """

    def __init__(self, trace: bool = False):
        self._tools: dict[str, Tool] = {}
        self._lock = threading.RLock()
        self.trace = trace

    def add_tools(self, tools: list[Tool]) -> None:
        with self._lock:
            for tool in tools:
                if tool.name in self._tools:
                    logger.warning(f"Tool name collision, replacing existing tool: {tool.name}")
                self._tools[tool.name] = tool

    def get_tools(self) -> list[Tool]:
        with self._lock:
            return list(self._tools.values())

    def get_tool(self, name: str) -> Optional[Tool]:
        with self._lock:
            return self._tools.get(name)

    def __len__(self) -> int:
        return len(self._tools)

    async def resolve_tool(self, name: str, args: ToolArguments, context: "Context") -> str:
        """Run a tool by name.

        Raises:
            UnknownToolError: If no tool with that name is registered
            Exception: Whatever the resolver raises, unchanged
        """
        tool = self.get_tool(name)
        if tool is None:
            self._trace_unknown(name, args)
            raise UnknownToolError(name)

        result = await tool.resolver(context, args)
        self._trace_resolved(name, args, result)
        return result

    def _trace_unknown(self, name: str, args: ToolArguments) -> None:
        if self.trace:
            logger.info(f"unknown tool called: name={name} args={args.raw}")

    def _trace_resolved(self, name: str, args: ToolArguments, result: str) -> None:
        if self.trace:
            logger.info(f"tool resolved: name={name} args={args.raw} result={result}")
