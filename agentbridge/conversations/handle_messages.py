"""Routing of newly created posts to a bot."""

import logging
from typing import Optional, TYPE_CHECKING

from ..bots.permissions import check_usage_restrictions, check_user_access
from ..common import props
from ..core.context import set_request_context
from ..errors import UsageRestrictedError
from ..platform.models import Channel, Post, User
from ..streaming.service import modify_post_for_bot

if TYPE_CHECKING:
    from ..bots.bot import Bot
    from .service import ConversationsService

logger = logging.getLogger(__name__)


def skip_reason(post: Post) -> Optional[str]:
    """Why post must never trigger a reply, judged from the post alone."""
    if post.remote_id:
        return "not responding to remote posts"
    if post.get_prop(props.WRANGLER) is not None:
        return "not responding to wrangler posts"
    if post.get_prop(props.FROM_PLUGIN) is not None and post.get_prop(props.ACTIVATE_AI) is None:
        return "not responding to plugin posts"
    if post.get_prop(props.FROM_WEBHOOK) is not None:
        return "not responding to webhook posts"
    return None


class MessageHandlingMixin:
    """Post hook of ConversationsService."""

    async def handle_message(self: "ConversationsService", post: Post) -> Optional[Post]:
        """Reply to post if it mentions a bot or is in a DM with one.

        Returns:
            The bot's response post, or None when the post is ignored

        Raises:
            PermissionDeniedError: If a follow-up to a thread analysis comes
                from a user who lost access to the analyzed thread
        """
        if self.bots.is_any_bot(post.user_id):
            logger.debug("not responding to ourselves")
            return None
        reason = skip_reason(post)
        if reason:
            logger.debug(reason)
            return None

        channel = await self.client.get_channel(post.channel_id)
        user = await self.client.get_user(post.user_id)

        if (user.is_bot or post.get_prop(props.FROM_BOT) is not None) and post.get_prop(props.ACTIVATE_AI) is None:
            logger.debug("not responding to other bots")
            return None

        set_request_context(post.id, user.id)
        try:
            bot = self.bots.get_bot_mentioned(post.message)
            if bot is not None:
                await check_usage_restrictions(self.client, bot, user.id, channel)
            else:
                bot = self.bots.get_bot_for_dm_channel(channel)
                if bot is None:
                    return None
                await check_user_access(self.client, bot, user.id)
        except UsageRestrictedError as e:
            logger.info(f"Not responding to post {post.id}: {e}")
            return None

        return await self._respond(bot, user, channel, post)

    async def _respond(self: "ConversationsService", bot: "Bot", user: User, channel: Channel, post: Post) -> Post:
        context = await self.context_builder.build(bot, user, channel)
        stream = await self.process_user_request(bot, user, channel, post, context)

        response = Post(channel_id=channel.id, root_id=post.thread_root_id)
        modify_post_for_bot(bot.user_id, user.id, response, post.id)
        locale = await self.response_locale(bot, user, channel)
        created, writer = await self.streaming.stream_to_new_post(stream, response, locale)

        self.schedule_title(bot, post, context, writer)
        return created
