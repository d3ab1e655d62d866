"""Completion orchestrator.

Turns a user post into a provider request, streams the reply into a bot post,
and drives the follow-up flows (tool approval, regeneration, thread and
channel analysis). Other plugins get non-streaming completions through
``simple_completion``.
"""

import asyncio
import dataclasses
import logging
from typing import Any, Optional

from ..bots.bot import Bot
from ..bots.manager import BotManager
from ..bots.permissions import check_usage_restrictions
from ..common import props
from ..common.enums import PostRole, StreamOutcome
from ..core.title_store import TitleStore
from ..errors import NotFoundError, PermissionDeniedError, UsageRestrictedError
from ..i18n import localize
from ..llm.context import Context
from ..llm.prompts import PROMPT_DIRECT_MESSAGE_QUESTION, Prompts
from ..llm.stream import TextStreamResult
from ..models import CompletionRequest, Message
from ..platform.client import PlatformClient, get_thread_data, is_dm_with
from ..platform.models import Channel, Post, ThreadData, User
from ..streaming.service import StreamingService, modify_post_for_bot
from .builder import ConversationBuilder
from .channels import INTERVAL_PRESETS, ChannelSummarizer, validate_interval
from .context_builder import ContextBuilder
from .handle_messages import MessageHandlingMixin
from .regeneration import RegenerationMixin
from .threads import ANALYSIS_TITLES, ThreadAnalyzer, make_analysis_post, parse_analysis_type
from .tool_handling import ToolHandlingMixin

logger = logging.getLogger(__name__)

TITLE_REQUEST = (
    "Write a short title for the following request. "
    "Include only the title and nothing else, no quotations. Request:\n"
)
TITLE_MAX_TOKENS = 25


class ConversationsService(MessageHandlingMixin, ToolHandlingMixin, RegenerationMixin):
    """Entry point for everything that produces a bot reply.

    Usage:
        conversations = ConversationsService(client, bots, prompts, context_builder, streaming, title_store)

        # From the host's post hook
        await conversations.handle_message(post)

        # From the API
        await conversations.handle_tool_call(user_id, post, ["call_1"])
    """

    def __init__(
        self,
        client: PlatformClient,
        bots: BotManager,
        prompts: Prompts,
        context_builder: ContextBuilder,
        streaming: StreamingService,
        title_store: Optional[TitleStore] = None,
    ):
        self.client = client
        self.bots = bots
        self.prompts = prompts
        self.context_builder = context_builder
        self.streaming = streaming
        self.title_store = title_store

        self.builder = ConversationBuilder(client, bots.is_any_bot, prompts)
        self.analyzer = ThreadAnalyzer(client, prompts)
        self.summarizer = ChannelSummarizer(client, prompts)
        self._background: set[asyncio.Task] = set()

    async def process_user_request(
        self,
        bot: Bot,
        user: User,
        channel: Channel,
        post: Post,
        context: Optional[Context] = None,
    ) -> TextStreamResult:
        """Start a completion answering post.

        A root post starts a new conversation; a reply carries the thread up
        to (not including) the post as history.
        """
        if context is None:
            context = await self.context_builder.build(bot, user, channel)

        if not post.root_id:
            messages = [self.builder.system_message(PROMPT_DIRECT_MESSAGE_QUESTION, context)]
        else:
            thread = await get_thread_data(self.client, post.id)
            thread.cutoff_before_post_id(post.id)
            messages = await self.existing_conversation_to_messages(bot, thread, context)

        messages.append(await self.builder.post_to_message(bot, post))
        return bot.llm.chat_completion(CompletionRequest(posts=messages, context=context))

    async def existing_conversation_to_messages(
        self, bot: Bot, thread: ThreadData, context: Context
    ) -> list[Message]:
        """History for a continuing conversation.

        Follow-ups to a thread analysis re-run the analysis prompt ahead of
        the conversation so the model sees the analyzed thread again.

        Raises:
            PermissionDeniedError: If the user lost access to the analyzed thread
        """
        first = thread.posts[0] if thread.posts else None
        referenced = first.get_prop(props.REFERENCED_THREAD) if first else None
        if referenced and first.user_id == bot.user_id:
            messages = await self._analysis_follow_up(bot, first, referenced, context)
        else:
            messages = [self.builder.system_message(PROMPT_DIRECT_MESSAGE_QUESTION, context)]

        messages.extend(await self.builder.thread_to_messages(bot, thread.posts))
        return messages

    async def _analysis_follow_up(self, bot: Bot, first: Post, referenced: str, context: Context) -> list[Message]:
        thread_post = await self.client.get_post(referenced)
        thread_channel = await self.client.get_channel(thread_post.channel_id)
        try:
            await check_usage_restrictions(self.client, bot, context.requesting_user_id, thread_channel)
        except UsageRestrictedError as e:
            notice = Post(
                channel_id=context.channel.id if context.channel else first.channel_id,
                root_id=first.id,
                message=localize("ai.no_longer_access", context.locale),
            )
            await self.create_non_response_post(bot.user_id, context.requesting_user_id, notice)
            raise PermissionDeniedError("user no longer has access to original thread") from e

        analysis_type = first.get_prop(props.PROMPT_TYPE)
        return await self.analyzer.initial_messages(referenced, context, analysis_type)

    async def create_non_response_post(self, bot_user_id: str, requester_user_id: str, post: Post) -> Post:
        """Bot post that is not an LLM reply and cannot be regenerated."""
        modify_post_for_bot(bot_user_id, requester_user_id, post)
        post.add_prop(props.NO_REGEN, "true")
        return await self.client.create_post(post)

    async def response_locale(self, bot: Bot, user: User, channel: Optional[Channel]) -> str:
        """User locale in their own DM with the bot, else the server default."""
        if is_dm_with(bot.user_id, channel) and user.id in channel.name.split("__"):
            return user.locale or "en"
        server = await self.client.get_server_config()
        return server.default_locale or "en"

    # Titles

    def schedule_title(self, bot: Bot, post: Post, context: Context, writer: asyncio.Task) -> None:
        """Generate a title for a new conversation once its reply finished."""
        if self.title_store is None or post.root_id:
            return
        self._spawn(self._title_when_done(bot, post, context, writer), name=f"title-{post.id}")

    async def _title_when_done(self, bot: Bot, post: Post, context: Context, writer: asyncio.Task) -> None:
        try:
            outcome = await writer
        except asyncio.CancelledError:
            return
        except Exception as e:
            logger.error(f"Stream for post {post.id} failed, skipping title: {e}")
            return
        if outcome not in (StreamOutcome.DONE, StreamOutcome.TOOL_CALLS):
            return

        try:
            await self.generate_title(bot, TITLE_REQUEST + post.message, post.id, context)
        except Exception as e:
            logger.error(f"Failed to generate title: {e}")

    async def generate_title(self, bot: Bot, request: str, root_post_id: str, context: Context) -> str:
        """Ask the bot's model for a short title and store it."""
        title_request = CompletionRequest(
            posts=[Message(role=PostRole.USER, content=request)],
            context=dataclasses.replace(context, tools=None),
            max_generated_tokens=TITLE_MAX_TOKENS,
        )
        title = await bot.llm.chat_completion_no_stream(title_request)
        title = title.strip("\n \"'")
        await self.save_title(root_post_id, title)
        return title

    async def save_title(self, root_post_id: str, title: str) -> None:
        if self.title_store is None:
            return
        await self.title_store.save_title(root_post_id, title)

    def _spawn(self, coro, name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    # Thread analysis

    async def thread_analysis(self, user_id: str, bot: Bot, post_id: str, analysis_type: str) -> Post:
        """Analyze the thread containing post_id into a new DM with the bot.

        Raises:
            PermissionDeniedError: If the bot may not be used on that thread
        """
        analysis_type = parse_analysis_type(analysis_type)
        user = await self.client.get_user(user_id)
        post = await self.client.get_post(post_id)
        channel = await self.client.get_channel(post.channel_id)
        try:
            await check_usage_restrictions(self.client, bot, user_id, channel)
        except UsageRestrictedError as e:
            raise PermissionDeniedError(str(e)) from e

        context = await self.context_builder.build(bot, user, channel, with_tools=False)
        stream = await self.analyzer.analyze(bot.llm, post.id, context, analysis_type)

        server = await self.client.get_server_config()
        locale = user.locale or "en"
        analysis_post = make_analysis_post(locale, server.site_url, post.id, analysis_type)
        modify_post_for_bot(bot.user_id, user.id, analysis_post)
        created, _ = await self.streaming.stream_to_new_dm(bot.user_id, stream, user.id, analysis_post, locale)

        title = ANALYSIS_TITLES.get(analysis_type, "Thread Analysis")
        self._spawn(self._save_title_logged(created.id, title), name=f"title-{created.id}")
        return created

    async def _save_title_logged(self, root_post_id: str, title: str) -> None:
        try:
            await self.save_title(root_post_id, title)
        except Exception as e:
            logger.error(f"Failed to save title: {e}")

    # Channel intervals

    async def channel_interval(
        self, user_id: str, bot: Bot, channel_id: str, start_time: int, end_time: int, preset: str
    ) -> Post:
        """Run a preset over a channel's posts in [start_time, end_time] into a new DM with the bot.

        Raises:
            AgentBridgeError: If the preset or time range is invalid
            PermissionDeniedError: If the user cannot read the channel or the bot may not be used there
        """
        validate_interval(start_time, end_time, preset)
        channel = await self.client.get_channel(channel_id)
        if not await self.client.can_read_channel(user_id, channel.id):
            raise PermissionDeniedError("user doesn't have permission to read channel")
        try:
            await check_usage_restrictions(self.client, bot, user_id, channel)
        except UsageRestrictedError as e:
            raise PermissionDeniedError(str(e)) from e

        user = await self.client.get_user(user_id)
        context = await self.context_builder.build(bot, user, channel, with_tools=False)
        stream = await self.summarizer.interval(bot.llm, context, channel.id, start_time, end_time, preset)

        post = Post()
        modify_post_for_bot(bot.user_id, user.id, post)
        post.add_prop(props.NO_REGEN, "true")
        created, _ = await self.streaming.stream_to_new_dm(bot.user_id, stream, user.id, post, user.locale or "en")

        _, title = INTERVAL_PRESETS[preset]
        self._spawn(self._save_title_logged(created.id, title), name=f"title-{created.id}")
        return created

    # Inter-plugin

    async def simple_completion(
        self,
        requester_user_id: str,
        system_prompt: str,
        user_prompt: str,
        bot_username: str = "",
        parameters: Optional[dict[str, Any]] = None,
    ) -> str:
        """Complete caller-supplied prompt templates with a bot, without streaming.

        The templates see the same ``{context}`` and parameters as bundled
        prompts. An unknown bot_username falls back to the default bot.

        Raises:
            NotFoundError: If no bot is configured or the requester does not exist
            PromptRenderError: If a template references a missing or private field
        """
        bot = self.bots.get_bot_by_username(bot_username) if bot_username else None
        bot = bot or self.bots.get_default_bot()
        if bot is None:
            raise NotFoundError(f"bot not found: {bot_username}")

        user = await self.client.get_user(requester_user_id)
        context = await self.context_builder.build(bot, user, None, parameters=parameters, with_tools=False)
        request = CompletionRequest(
            posts=[
                Message(role=PostRole.SYSTEM, content=self.prompts.format_string(system_prompt, context)),
                Message(role=PostRole.USER, content=self.prompts.format_string(user_prompt, context)),
            ],
            context=context,
        )
        return await bot.llm.chat_completion_no_stream(request)

    # Bots and streams

    async def get_ai_bots(self, user_id: str) -> list[Bot]:
        return await self.bots.get_bots_for_user(user_id)

    async def stop_streaming(self, user_id: str, post_id: str) -> bool:
        """Cancel a reply in progress. Only the original requester may stop it.

        Raises:
            NotFoundError: If the post is not a bot reply
            PermissionDeniedError: If user_id did not request the reply
        """
        post = await self.client.get_post(post_id)
        if self.bots.get_bot_by_id(post.user_id) is None:
            raise NotFoundError("post is not a bot response")
        if post.get_prop(props.LLM_REQUESTER_USER_ID) != user_id:
            raise PermissionDeniedError("only the original requester can stop the response")
        return await self.streaming.stop_streaming(post_id)

    async def close(self) -> None:
        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
