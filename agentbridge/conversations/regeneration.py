"""Regenerating a bot reply in place."""

import logging
from typing import TYPE_CHECKING

from ..bots.permissions import check_usage_restrictions
from ..common import props
from ..errors import AgentBridgeError, NotFoundError, PermissionDeniedError, UsageRestrictedError
from ..platform.models import Post
from .threads import make_analysis_post

if TYPE_CHECKING:
    from .service import ConversationsService

logger = logging.getLogger(__name__)


class RegenerationMixin:
    """Regenerate handling for ConversationsService."""

    async def handle_regenerate(self: "ConversationsService", user_id: str, post: Post) -> None:
        """Throw away the reply in post and stream a new one into it.

        Analysis posts re-run their analysis; every other reply re-answers the
        post recorded in ``responding_to``.

        Raises:
            NotFoundError: If post was not written by a bot
            PermissionDeniedError: If user_id is not the requester, the post is
                tagged no-regen, or the analyzed thread is no longer accessible
            AgentBridgeError: If the post lacks the props needed to regenerate
        """
        bot = self.bots.get_bot_by_id(post.user_id)
        if bot is None:
            raise NotFoundError("unable to get bot")
        if post.get_prop(props.LLM_REQUESTER_USER_ID) != user_id:
            raise PermissionDeniedError("only the original poster can regenerate")
        if post.get_prop(props.NO_REGEN) is not None:
            raise PermissionDeniedError("tagged no regen")

        user = await self.client.get_user(user_id)
        channel = await self.client.get_channel(post.channel_id)

        post.del_prop(props.PENDING_TOOL_CALLS)
        post.del_prop(props.RESOLVED_TOOL_CALLS)
        post.del_prop(props.TOOL_CALL_DEPTH)

        thread_id = post.get_prop(props.REFERENCED_THREAD)
        if thread_id:
            analysis_type = post.get_prop(props.PROMPT_TYPE) or ""
            thread_post = await self.client.get_post(thread_id)
            thread_channel = await self.client.get_channel(thread_post.channel_id)
            try:
                await check_usage_restrictions(self.client, bot, user_id, thread_channel)
            except UsageRestrictedError as e:
                raise PermissionDeniedError("user no longer has access to the original thread") from e

            server = await self.client.get_server_config()
            post.message = make_analysis_post(user.locale or "en", server.site_url, thread_id, analysis_type).message
            context = await self.context_builder.build(bot, user, channel, with_tools=False)
            stream = await self.analyzer.analyze(bot.llm, thread_id, context, analysis_type)
        else:
            responding_to = post.get_prop(props.RESPONDING_TO)
            if not responding_to:
                raise AgentBridgeError("post missing responding to prop")
            responding_post = await self.client.get_post(responding_to)

            post.message = ""
            context = await self.context_builder.build(bot, user, channel)
            stream = await self.process_user_request(bot, user, channel, responding_post, context)

        locale = await self.response_locale(bot, user, channel)
        logger.info(f"Regenerating post {post.id}")
        await self.streaming.stream_to_post(stream, post, locale)
