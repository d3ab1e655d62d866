"""Contract for the host chat platform.

The bridge never talks to the platform directly; the process that embeds it
supplies a PlatformClient implementation.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from typing import Any, Optional

from .models import Channel, FileInfo, Post, Team, ThreadData, User


@dataclass
class BotAccount:
    user_id: str
    username: str
    display_name: str = ""
    description: str = ""
    delete_at: int = 0


@dataclass
class UserStatus:
    status: str = ""
    manual: bool = False
    last_activity_at: int = 0


@dataclass
class ServerConfig:
    site_name: str = ""
    company_name: str = ""
    site_url: str = ""
    default_locale: str = "en"
    show_full_name: bool = True
    show_email_address: bool = False


class PlatformClient(ABC):
    """Minimal host surface used by the bridge."""

    @abstractmethod
    async def get_user(self, user_id: str) -> User: ...

    @abstractmethod
    async def get_user_by_username(self, username: str) -> User: ...

    @abstractmethod
    async def get_user_status(self, user_id: str) -> UserStatus: ...

    @abstractmethod
    async def get_channel(self, channel_id: str) -> Channel: ...

    @abstractmethod
    async def get_direct_channel(self, user_id: str, other_user_id: str) -> Channel: ...

    @abstractmethod
    async def get_team(self, team_id: str) -> Team: ...

    @abstractmethod
    async def is_team_member(self, team_id: str, user_id: str) -> bool: ...

    @abstractmethod
    async def get_post(self, post_id: str) -> Post: ...

    @abstractmethod
    async def get_post_thread(self, post_id: str) -> list[Post]: ...

    @abstractmethod
    async def get_channel_posts(self, channel_id: str, since: int, until: int = 0) -> list[Post]:
        """Posts of a channel created at or after since, and at or before until unless it is 0."""

    @abstractmethod
    async def can_read_channel(self, user_id: str, channel_id: str) -> bool: ...

    @abstractmethod
    async def get_file_info(self, file_id: str) -> FileInfo: ...

    @abstractmethod
    async def get_file(self, file_id: str) -> bytes: ...

    @abstractmethod
    async def create_post(self, post: Post) -> Post: ...

    @abstractmethod
    async def update_post(self, post: Post) -> Post: ...

    @abstractmethod
    async def publish_event(self, event: str, payload: dict[str, Any], user_id: str = "", channel_id: str = "") -> None: ...

    @abstractmethod
    async def get_server_config(self) -> ServerConfig: ...

    @abstractmethod
    async def kv_get(self, key: str) -> Optional[bytes]: ...

    @abstractmethod
    async def kv_set(self, key: str, value: bytes) -> None: ...

    @abstractmethod
    def cluster_mutex(self, name: str) -> AbstractAsyncContextManager: ...

    @abstractmethod
    async def get_bots(self) -> list[BotAccount]: ...

    @abstractmethod
    async def create_bot(self, bot: BotAccount) -> BotAccount: ...

    @abstractmethod
    async def patch_bot(self, user_id: str, display_name: str, description: str) -> BotAccount: ...

    @abstractmethod
    async def update_bot_active(self, user_id: str, active: bool) -> None: ...


async def get_thread_data(client: PlatformClient, post_id: str) -> ThreadData:
    """Fetch the thread containing post_id, oldest first, with authors."""
    posts = await client.get_post_thread(post_id)
    posts = sorted(posts, key=lambda p: p.create_at)

    users_by_id: dict[str, User] = {}
    for post in posts:
        if post.user_id not in users_by_id:
            users_by_id[post.user_id] = await client.get_user(post.user_id)

    return ThreadData(posts=posts, users_by_id=users_by_id)


def dm_channel_name(user_id: str, other_user_id: str) -> str:
    """Host naming convention for direct channels: sorted ids joined by '__'."""
    first, second = sorted([user_id, other_user_id])
    return f"{first}__{second}"


def is_dm_with(bot_user_id: str, channel: Optional[Channel]) -> bool:
    if channel is None or not channel.is_direct:
        return False
    parts = channel.name.split("__")
    return len(parts) == 2 and bot_user_id in parts
