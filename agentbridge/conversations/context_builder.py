"""Builds the per-request Context."""

import logging
from datetime import datetime, timezone
from typing import Any, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ..bots.bot import Bot
from ..llm.context import Context
from ..llm.tools import ToolStore
from ..mcp.client_manager import MCPClientManager
from ..platform.client import PlatformClient, is_dm_with
from ..platform.models import Channel, User
from ..tools.built_in import BuiltInToolProvider

logger = logging.getLogger(__name__)

RFC1123 = "%a, %d %b %Y %H:%M:%S %Z"


def format_time_for_user(user: Optional[User], now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    tz_name = user.preferred_timezone() if user else ""
    if tz_name:
        try:
            return now.astimezone(ZoneInfo(tz_name)).strftime(RFC1123)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(f"Unknown timezone {tz_name!r}, using UTC")
    return now.astimezone(timezone.utc).strftime(RFC1123)


class ContextBuilder:
    def __init__(
        self,
        client: PlatformClient,
        tool_provider: BuiltInToolProvider,
        mcp_manager: Optional[MCPClientManager] = None,
        trace_tools: bool = False,
    ):
        self.client = client
        self.tool_provider = tool_provider
        self.mcp_manager = mcp_manager
        self.trace_tools = trace_tools

    async def build(
        self,
        bot: Bot,
        user: User,
        channel: Optional[Channel],
        parameters: Optional[dict[str, Any]] = None,
        with_tools: bool = True,
    ) -> Context:
        server = await self.client.get_server_config()
        team = None
        if channel is not None and channel.team_id:
            team = await self.client.get_team(channel.team_id)

        is_dm = is_dm_with(bot.user_id, channel)
        context = Context(
            time=format_time_for_user(user),
            server_name=server.site_name,
            company_name=server.company_name,
            requesting_user=user,
            channel=channel,
            team=team,
            is_dm_with_bot=is_dm,
            bot_name=bot.display_name,
            bot_username=bot.username,
            bot_user_id=bot.user_id,
            bot_model=bot.model_name,
            custom_instructions=bot.config.custom_instructions,
            parameters=dict(parameters or {}),
        )
        if with_tools:
            context.tools = await self.get_tools(bot, user, is_dm)
        return context

    async def get_tools(self, bot: Bot, user: User, is_dm: bool) -> ToolStore:
        store = ToolStore(trace=self.trace_tools)
        if bot.config.disable_tools:
            return store

        store.add_tools(self.tool_provider.get_tools(is_dm, bot))

        # MCP tools are only offered in a DM with the bot.
        if is_dm and self.mcp_manager is not None and self.mcp_manager.enabled:
            try:
                store.add_tools(await self.mcp_manager.get_tools_for_user(user.id))
            except Exception as e:
                logger.error(f"Failed to load MCP tools for user {user.id}: {e}")
        return store
