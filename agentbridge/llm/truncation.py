"""Input-token budgeting for completion requests."""

import logging
import math
from typing import Callable, TYPE_CHECKING

from ..models import Message

if TYPE_CHECKING:
    from .language_model import LanguageModel

logger = logging.getLogger(__name__)

FUNCTIONS_TOKEN_BUDGET = 200
TOKEN_LIMIT_BUFFER_SIZE = 0.9
MIN_TOKENS = 100
CHARS_PER_TOKEN = 4


def truncate_posts(
    posts: list[Message],
    max_tokens: int,
    count_tokens: Callable[[str], int],
) -> tuple[list[Message], bool]:
    """Drop the oldest posts until the rest fit in max_tokens.

    Walks from newest to oldest. The first post that does not fit is kept with
    its head cut by (tokens over budget * 4) characters; everything older is
    dropped. Order is preserved.

    Returns:
        (kept posts, whether anything was dropped or trimmed)
    """
    kept: list[Message] = []
    total = 0
    truncated = False

    for index in range(len(posts) - 1, -1, -1):
        if total >= max_tokens:
            truncated = True
            break

        post = posts[index]
        post_tokens = count_tokens(post.content)
        if total + post_tokens > max_tokens:
            over = post_tokens - (max_tokens - total)
            cut = over * CHARS_PER_TOKEN
            content = post.content[cut:].strip() if cut < len(post.content) else ""
            kept.append(Message(
                role=post.role,
                content=content,
                files=post.files,
                tool_calls=post.tool_calls,
            ))
            truncated = True
            break

        total += post_tokens
        kept.append(post)

    kept.reverse()
    return kept, truncated


def token_budget(input_token_limit: int) -> int:
    """Budget left for posts once tool definitions and a safety margin are reserved."""
    return int(max(math.floor((input_token_limit - FUNCTIONS_TOKEN_BUDGET) * TOKEN_LIMIT_BUFFER_SIZE), MIN_TOKENS))
