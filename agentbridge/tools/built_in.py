"""Tools that ship with the bridge."""

import logging
import re
from datetime import datetime, timezone

from pydantic import BaseModel, Field

from ..bots.bot import Bot
from ..errors import NotFoundError, ToolError
from ..llm.context import Context
from ..llm.tools import Tool, ToolArguments
from ..platform.client import PlatformClient

logger = logging.getLogger(__name__)

USERNAME_PATTERN = re.compile(r"^[a-z][a-z0-9.\-_]{0,63}$")


class LookupUserArgs(BaseModel):
    username: str = Field(
        description="The username of the user to lookup without a leading '@'. Example: 'firstname.lastname'"
    )


class BuiltInToolProvider:
    """Built-in tools offered to a bot, depending on where it is used."""

    def __init__(self, client: PlatformClient):
        self.client = client

    def get_tools(self, is_dm: bool, bot: Bot) -> list[Tool]:
        if not is_dm:
            return []
        return [
            Tool.from_model(
                name="LookupMattermostUser",
                description=(
                    "Lookup a Mattermost user by their username. Available information includes: "
                    "username, full name, email, nickname, position, locale, timezone, last activity, and status."
                ),
                args_model=LookupUserArgs,
                resolver=self.lookup_user,
            )
        ]

    async def lookup_user(self, context: Context, args: ToolArguments) -> str:
        params: LookupUserArgs = args.decode(LookupUserArgs)
        username = params.username.lstrip("@")
        if not USERNAME_PATTERN.match(username):
            raise ToolError("invalid username")

        try:
            user = await self.client.get_user_by_username(username)
        except NotFoundError:
            return "user not found"

        status = await self.client.get_user_status(user.id)
        config = await self.client.get_server_config()

        lines = [f"Username: {user.username}"]
        if config.show_full_name and (user.first_name or user.last_name):
            lines.append(f"Full Name: {user.first_name} {user.last_name}")
        if config.show_email_address:
            lines.append(f"Email: {user.email}")
        if user.nickname:
            lines.append(f"Nickname: {user.nickname}")
        if user.position:
            lines.append(f"Position: {user.position}")
        if user.locale:
            lines.append(f"Locale: {user.locale}")
        lines.append(f"Timezone: {user.preferred_timezone()}")
        if status.last_activity_at:
            last_activity = datetime.fromtimestamp(status.last_activity_at / 1000, tz=timezone.utc)
            lines.append(f"Last Activity: {last_activity.strftime('%Y-%m-%d %H:%M:%S %Z')}")
        # Manual statuses are free text set by the user, keep them out of the prompt.
        if status.status and not status.manual:
            lines.append(f"Status: {status.status}")
        return "\n".join(lines)
