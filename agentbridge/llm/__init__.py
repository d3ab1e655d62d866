from .context import Context
from .language_model import (
    LanguageModel,
    LanguageModelConfig,
    LanguageModelLogWrapper,
    TruncationWrapper,
    approximate_token_count,
)
from .prompts import Prompts
from .stream import StreamEvent, TextStreamResult, new_stream_from_string, start_stream
from .tools import Tool, ToolArguments, ToolStore
from .truncation import token_budget, truncate_posts

__all__ = [
    "Context",
    "LanguageModel",
    "LanguageModelConfig",
    "LanguageModelLogWrapper",
    "Prompts",
    "StreamEvent",
    "TextStreamResult",
    "Tool",
    "ToolArguments",
    "ToolStore",
    "TruncationWrapper",
    "approximate_token_count",
    "new_stream_from_string",
    "start_stream",
    "token_budget",
    "truncate_posts",
]
