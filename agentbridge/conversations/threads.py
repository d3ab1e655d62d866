"""Thread analysis: summaries, action items and open questions."""

import dataclasses
import logging

from ..common.enums import AnalysisType, PostRole
from ..common.props import PROMPT_TYPE, REFERENCED_THREAD
from ..errors import AgentBridgeError
from ..i18n import localize
from ..llm.context import Context
from ..llm.language_model import LanguageModel
from ..llm.prompts import (
    PROMPT_FIND_ACTION_ITEMS,
    PROMPT_FIND_OPEN_QUESTIONS,
    PROMPT_SUMMARIZE_THREAD,
    PROMPT_THREAD_USER,
    Prompts,
)
from ..llm.stream import TextStreamResult
from ..models import CompletionRequest, Message
from ..platform.client import PlatformClient, get_thread_data
from ..platform.models import Post
from .format import format_thread

logger = logging.getLogger(__name__)

ANALYSIS_PROMPTS = {
    AnalysisType.SUMMARIZE_THREAD: PROMPT_SUMMARIZE_THREAD,
    AnalysisType.ACTION_ITEMS: PROMPT_FIND_ACTION_ITEMS,
    AnalysisType.OPEN_QUESTIONS: PROMPT_FIND_OPEN_QUESTIONS,
}

ANALYSIS_TITLES = {
    AnalysisType.SUMMARIZE_THREAD: "Thread Summary",
    AnalysisType.ACTION_ITEMS: "Action Items",
    AnalysisType.OPEN_QUESTIONS: "Open Questions",
}


def parse_analysis_type(value: str) -> AnalysisType:
    try:
        return AnalysisType(value)
    except ValueError:
        raise AgentBridgeError(f"invalid analysis type: {value}") from None


class ThreadAnalyzer:
    """Builds and runs analysis requests over a thread.

    Usage:
        analyzer = ThreadAnalyzer(client, prompts)
        stream = await analyzer.analyze(bot.llm, root_id, context, AnalysisType.SUMMARIZE_THREAD)
    """

    def __init__(self, client: PlatformClient, prompts: Prompts):
        self.client = client
        self.prompts = prompts

    async def initial_messages(self, post_id: str, context: Context, analysis_type: str) -> list[Message]:
        """System prompt for the analysis followed by the formatted thread as the user turn."""
        prompt = ANALYSIS_PROMPTS[parse_analysis_type(analysis_type)]

        thread = await get_thread_data(self.client, post_id)
        context = dataclasses.replace(
            context, parameters={**context.parameters, "Thread": format_thread(thread)}
        )

        system = self.prompts.format_system(prompt, context)
        _, user = self.prompts.format(PROMPT_THREAD_USER, context)
        return [
            Message(role=PostRole.SYSTEM, content=system),
            Message(role=PostRole.USER, content=user),
        ]

    async def analyze(
        self, llm: LanguageModel, post_id: str, context: Context, analysis_type: str
    ) -> TextStreamResult:
        messages = await self.initial_messages(post_id, context, analysis_type)
        return llm.chat_completion(CompletionRequest(posts=messages, context=context))


def make_analysis_post(locale: str, site_url: str, post_id: str, analysis_type: str) -> Post:
    """Opening DM post for an analysis; the streamed result is appended to it."""
    link = f"{site_url.rstrip('/')}/_redirect/pl/{post_id}"
    key = {
        AnalysisType.SUMMARIZE_THREAD: "ai.summarize_thread",
        AnalysisType.ACTION_ITEMS: "ai.action_items",
        AnalysisType.OPEN_QUESTIONS: "ai.open_questions",
    }.get(analysis_type, "ai.analyze_thread")

    post = Post(message=localize(key, locale).format(link=link))
    post.add_prop(REFERENCED_THREAD, post_id)
    post.add_prop(PROMPT_TYPE, str(analysis_type))
    return post
