from .bot import Bot
from .manager import BotManager
from .mentions import is_mentioned, mentioned_usernames
from .permissions import check_channel_access, check_usage_restrictions, check_user_access

__all__ = [
    "Bot",
    "BotManager",
    "check_channel_access",
    "check_usage_restrictions",
    "check_user_access",
    "is_mentioned",
    "mentioned_usernames",
]
