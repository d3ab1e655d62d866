"""Channel interval analysis: what happened in a channel over a period."""

import logging

from ..common.enums import PostRole
from ..errors import AgentBridgeError
from ..llm.context import Context
from ..llm.language_model import LanguageModel
from ..llm.prompts import (
    PROMPT_FIND_ACTION_ITEMS,
    PROMPT_FIND_OPEN_QUESTIONS,
    PROMPT_SUMMARIZE_CHANNEL_RANGE,
    PROMPT_SUMMARIZE_CHANNEL_SINCE,
    PROMPT_THREAD_USER,
    Prompts,
)
from ..llm.stream import TextStreamResult
from ..models import CompletionRequest, Message
from ..platform.client import PlatformClient
from ..platform.models import ThreadData, User
from .format import format_thread

logger = logging.getLogger(__name__)

MAX_INTERVAL_POSTS = 200
MAX_INTERVAL_MS = 14 * 24 * 60 * 60 * 1000

# preset -> (prompt, title)
INTERVAL_PRESETS = {
    "summarize_unreads": (PROMPT_SUMMARIZE_CHANNEL_SINCE, "Summarize Unreads"),
    "summarize_range": (PROMPT_SUMMARIZE_CHANNEL_RANGE, "Summarize Channel"),
    "action_items": (PROMPT_FIND_ACTION_ITEMS, "Find Action Items"),
    "open_questions": (PROMPT_FIND_OPEN_QUESTIONS, "Find Open Questions"),
}


def validate_interval(start_time: int, end_time: int, preset: str) -> None:
    """Check an interval request before any posts are fetched.

    Times are epoch milliseconds; an end_time of 0 means up to now.

    Raises:
        AgentBridgeError: If the preset is unknown or the range is empty or longer than 14 days
    """
    if preset not in INTERVAL_PRESETS:
        raise AgentBridgeError(f"invalid preset prompt: {preset}")
    if end_time and start_time >= end_time:
        raise AgentBridgeError("start_time must be before end_time")
    if end_time and end_time - start_time > MAX_INTERVAL_MS:
        raise AgentBridgeError("date range cannot exceed 14 days")


class ChannelSummarizer:
    """Runs a preset prompt over the posts of a channel interval.

    Usage:
        summarizer = ChannelSummarizer(client, prompts)
        stream = await summarizer.interval(bot.llm, context, channel.id, since, 0, "summarize_unreads")
    """

    def __init__(self, client: PlatformClient, prompts: Prompts):
        self.client = client
        self.prompts = prompts

    async def interval_posts(self, channel_id: str, start_time: int, end_time: int) -> ThreadData:
        """Undeleted posts of the interval, oldest first, keeping the newest when over the cap."""
        posts = await self.client.get_channel_posts(channel_id, start_time, end_time)
        posts = sorted((p for p in posts if p.delete_at == 0), key=lambda p: p.create_at)
        if len(posts) > MAX_INTERVAL_POSTS:
            logger.info(f"Channel {channel_id} interval has {len(posts)} posts, keeping the last {MAX_INTERVAL_POSTS}")
            posts = posts[-MAX_INTERVAL_POSTS:]

        users_by_id: dict[str, User] = {}
        for post in posts:
            if post.user_id not in users_by_id:
                users_by_id[post.user_id] = await self.client.get_user(post.user_id)
        return ThreadData(posts=posts, users_by_id=users_by_id)

    async def interval(
        self,
        llm: LanguageModel,
        context: Context,
        channel_id: str,
        start_time: int,
        end_time: int,
        preset: str,
    ) -> TextStreamResult:
        validate_interval(start_time, end_time, preset)
        prompt, _ = INTERVAL_PRESETS[preset]

        thread = await self.interval_posts(channel_id, start_time, end_time)
        context.parameters = {**context.parameters, "Thread": format_thread(thread)}

        system = self.prompts.format_system(prompt, context)
        _, user = self.prompts.format(PROMPT_THREAD_USER, context)
        messages = [
            Message(role=PostRole.SYSTEM, content=system),
            Message(role=PostRole.USER, content=user),
        ]
        return llm.chat_completion(CompletionRequest(posts=messages, context=context))
