"""Host-platform records as seen by the bridge."""

from dataclasses import dataclass, field
from typing import Any

from ..common.enums import ChannelType

TRUE_VALUES = (True, "true", "True", "1")


@dataclass
class User:
    id: str
    username: str
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    nickname: str = ""
    position: str = ""
    locale: str = ""
    timezone: dict[str, str] = field(default_factory=dict)
    is_bot: bool = False
    delete_at: int = 0

    def preferred_timezone(self) -> str:
        """Same precedence as the host: automatic when enabled, else manual."""
        if self.timezone.get("useAutomaticTimezone") in TRUE_VALUES:
            return self.timezone.get("automaticTimezone", "")
        return self.timezone.get("manualTimezone", "")


@dataclass
class Team:
    id: str
    name: str = ""
    display_name: str = ""


@dataclass
class Channel:
    id: str
    type: ChannelType = ChannelType.OPEN
    name: str = ""
    display_name: str = ""
    team_id: str = ""

    @property
    def is_direct(self) -> bool:
        return self.type == ChannelType.DIRECT


@dataclass
class FileInfo:
    id: str
    name: str
    mime_type: str = ""
    size: int = 0
    extension: str = ""
    content: str = ""


@dataclass
class Post:
    id: str = ""
    channel_id: str = ""
    user_id: str = ""
    root_id: str = ""
    message: str = ""
    create_at: int = 0
    delete_at: int = 0
    remote_id: str = ""
    file_ids: list[str] = field(default_factory=list)
    props: dict[str, Any] = field(default_factory=dict)

    def get_prop(self, key: str, default: Any = None) -> Any:
        return self.props.get(key, default)

    def add_prop(self, key: str, value: Any) -> None:
        self.props[key] = value

    def del_prop(self, key: str) -> None:
        self.props.pop(key, None)

    @property
    def thread_root_id(self) -> str:
        return self.root_id or self.id

    def attachments(self) -> list[dict[str, Any]]:
        return self.props.get("attachments") or []


@dataclass
class ThreadData:
    """Posts of a thread, oldest first, with their authors."""
    posts: list[Post]
    users_by_id: dict[str, User] = field(default_factory=dict)

    def cutoff_before_post_id(self, post_id: str) -> None:
        # Scan from the end, the anchor is usually one of the last posts.
        for i in range(len(self.posts) - 1, -1, -1):
            if self.posts[i].id == post_id:
                self.posts = self.posts[:i]
                break
