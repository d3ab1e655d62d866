"""Turns a chat thread into provider-neutral messages."""

import logging
from typing import Callable, Optional

from ..bots.bot import Bot
from ..common import props
from ..common.enums import PostRole, ToolCallStatus
from ..llm.context import Context
from ..llm.prompts import Prompts
from ..models import Message, MessageFile, tool_calls_from_json
from ..platform.client import PlatformClient
from ..platform.models import FileInfo, Post
from .format import format_post_body

logger = logging.getLogger(__name__)

ATTACHED_FILES_HEADING = "Attached File Contents:"
TRUNCATED_FILE_NOTICE = "\n... (file truncated, it exceeds the maximum size that can be read)"


class ConversationBuilder:
    """Builds message sequences from host posts.

    Args:
        client: Host platform client used for file lookups
        is_bot_user: Predicate telling whether a user id belongs to a configured bot
        prompts: Templates for system prompts
    """

    def __init__(self, client: PlatformClient, is_bot_user: Callable[[str], bool], prompts: Prompts):
        self.client = client
        self.is_bot_user = is_bot_user
        self.prompts = prompts

    def system_message(self, template: str, context: Context) -> Message:
        """Rendered system template followed by the bot's custom instructions."""
        system = self.prompts.format_system(template, context)
        if context.custom_instructions:
            system = f"{system}\n\n{context.custom_instructions}" if system else context.custom_instructions
        return Message(role=PostRole.SYSTEM, content=system)

    async def thread_to_messages(self, bot: Bot, posts: list[Post]) -> list[Message]:
        return [await self.post_to_message(bot, post) for post in posts]

    async def post_to_message(self, bot: Bot, post: Post) -> Message:
        role = PostRole.ASSISTANT if self.is_bot_user(post.user_id) else PostRole.USER
        content = format_post_body(post)
        files: list[MessageFile] = []

        if post.file_ids:
            sections: list[str] = []
            for file_id in post.file_ids:
                try:
                    info = await self.client.get_file_info(file_id)
                except Exception as e:
                    logger.error(f"Unable to get file info for {file_id}: {e}")
                    continue

                text = await self._read_text(info, bot.config.max_file_size)
                if text is not None:
                    sections.append(f"File Name: {info.name}\nContent: {text}")

                if bot.config.enable_vision and info.mime_type.startswith("image/"):
                    files.append(MessageFile(
                        name=info.name,
                        mime_type=info.mime_type,
                        size=info.size,
                        reader=self._file_reader(info.id),
                    ))

            if sections:
                content = f"{content}\n{ATTACHED_FILES_HEADING}\n" + "\n\n".join(sections)

        tool_calls = []
        if role == PostRole.ASSISTANT:
            tool_calls = [
                tc for tc in tool_calls_from_json(post.get_prop(props.RESOLVED_TOOL_CALLS))
                if tc.status != ToolCallStatus.PENDING
            ]

        return Message(role=role, content=content, files=files, tool_calls=tool_calls)

    async def _read_text(self, info: FileInfo, max_size: int) -> Optional[str]:
        """Text of a file when the host extracted it or it is a text/* file."""
        if info.content:
            data = info.content.encode("utf-8")
        elif info.mime_type.startswith("text/"):
            try:
                data = await self.client.get_file(info.id)
            except Exception as e:
                logger.error(f"Unable to read file {info.id}: {e}")
                return None
        else:
            return None

        if len(data) > max_size:
            return data[:max_size].decode("utf-8", errors="ignore") + TRUNCATED_FILE_NOTICE
        return data.decode("utf-8", errors="replace")

    def _file_reader(self, file_id: str):
        async def read() -> bytes:
            return await self.client.get_file(file_id)
        return read
