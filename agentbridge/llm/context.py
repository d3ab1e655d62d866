"""Request context carried from the incoming post to the provider and tools."""

from dataclasses import dataclass, field
from typing import Any, Optional, TYPE_CHECKING

from ..platform.models import Channel, Team, User

if TYPE_CHECKING:
    from .tools import ToolStore


@dataclass
class Context:
    """Read-only request state, built once per user request.

    Prompt templates see this object as ``context`` so any attribute can be
    referenced, e.g. ``{context.requesting_user.username}``.
    """
    time: str = ""
    server_name: str = ""
    company_name: str = ""
    requesting_user: Optional[User] = None
    channel: Optional[Channel] = None
    team: Optional[Team] = None
    is_dm_with_bot: bool = False

    bot_name: str = ""
    bot_username: str = ""
    bot_user_id: str = ""
    bot_model: str = ""
    custom_instructions: str = ""

    tools: Optional["ToolStore"] = None
    parameters: dict[str, Any] = field(default_factory=dict)

    @property
    def locale(self) -> str:
        if self.requesting_user and self.requesting_user.locale:
            return self.requesting_user.locale
        return "en"

    @property
    def requesting_user_id(self) -> str:
        return self.requesting_user.id if self.requesting_user else ""

    def __str__(self) -> str:
        parts = [f"Time: {self.time}", f"ServerName: {self.server_name}"]
        if self.requesting_user:
            parts.append(f"RequestingUser: {self.requesting_user.username}")
        if self.channel:
            parts.append(f"Channel: {self.channel.name}")
        parts.append(f"BotName: {self.bot_name}")
        parts.append(f"BotModel: {self.bot_model}")
        if self.tools is not None:
            parts.append(f"Tools: {', '.join(t.name for t in self.tools.get_tools())}")
        return "\n".join(parts)
