from .client import (
    BotAccount,
    PlatformClient,
    ServerConfig,
    UserStatus,
    dm_channel_name,
    get_thread_data,
    is_dm_with,
)
from .models import Channel, FileInfo, Post, Team, ThreadData, User

__all__ = [
    "BotAccount",
    "Channel",
    "FileInfo",
    "PlatformClient",
    "Post",
    "ServerConfig",
    "Team",
    "ThreadData",
    "User",
    "UserStatus",
    "dm_channel_name",
    "get_thread_data",
    "is_dm_with",
]
