"""Per-bot channel and user access policies."""

from ..common.enums import AccessLevel
from ..errors import UsageRestrictedError
from ..platform.client import PlatformClient
from ..platform.models import Channel
from .bot import Bot


def check_channel_access(bot: Bot, channel: Channel) -> None:
    """Raise UsageRestrictedError if the bot may not be used in channel."""
    level = bot.config.channel_access_level
    if level == AccessLevel.ALL:
        return
    if level == AccessLevel.ALLOW:
        if channel.id not in bot.config.channel_ids:
            raise UsageRestrictedError("channel not allowed")
        return
    if level == AccessLevel.BLOCK:
        if channel.id in bot.config.channel_ids:
            raise UsageRestrictedError("channel blocked")
        return
    raise UsageRestrictedError("channel usage block for bot")


async def check_user_access(client: PlatformClient, bot: Bot, user_id: str) -> None:
    """Raise UsageRestrictedError if user_id may not use the bot.

    Team membership is looked up through the host for allow and block lists.
    """
    level = bot.config.user_access_level
    if level == AccessLevel.ALL:
        return
    if level == AccessLevel.ALLOW:
        if user_id in bot.config.user_ids:
            return
        for team_id in bot.config.team_ids:
            if await client.is_team_member(team_id, user_id):
                return
        raise UsageRestrictedError("user not allowed")
    if level == AccessLevel.BLOCK:
        if user_id in bot.config.user_ids:
            raise UsageRestrictedError("user blocked")
        for team_id in bot.config.team_ids:
            if await client.is_team_member(team_id, user_id):
                raise UsageRestrictedError("user's team blocked")
        return
    raise UsageRestrictedError("user usage block for bot")


async def check_usage_restrictions(client: PlatformClient, bot: Bot, user_id: str, channel: Channel) -> None:
    check_channel_access(bot, channel)
    await check_user_access(client, bot, user_id)
