"""Tool approval gate.

A reply that asked for tools stops with the calls stored on the post as
``pending_tool_calls``. The requester resubmits the ids they accept; accepted
calls run, the rest are refused, and the model continues in the same post.
"""

import logging
from typing import TYPE_CHECKING

from ..common import props
from ..common.enums import ToolCallStatus
from ..errors import AgentBridgeError, NotFoundError, PermissionDeniedError, ToolDepthExceededError
from ..llm.context import Context
from ..llm.stream import new_error_stream
from ..llm.tools import ToolArguments, ToolStore
from ..models import CompletionRequest, ToolCall, tool_calls_from_json, tool_calls_to_json
from ..platform.client import get_thread_data
from ..platform.models import Post

if TYPE_CHECKING:
    from .service import ConversationsService

logger = logging.getLogger(__name__)

MAX_TOOL_DEPTH = 10
TOOL_CALL_REJECTED = "Tool call rejected by user"
TOOL_CALL_FAILED = "Tool call failed"


async def resolve_tool_calls(tool_calls: list[ToolCall], accepted_ids: list[str], context: Context) -> None:
    """Move every call to a terminal status, running only the accepted ones."""
    tools = context.tools if context.tools is not None else ToolStore()
    for tool_call in tool_calls:
        if tool_call.id not in accepted_ids:
            tool_call.result = TOOL_CALL_REJECTED
            tool_call.status = ToolCallStatus.REJECTED
            continue
        try:
            tool_call.result = await tools.resolve_tool(tool_call.name, ToolArguments(tool_call.arguments), context)
            tool_call.status = ToolCallStatus.SUCCESS
        except Exception as e:
            logger.warning(f"Tool call {tool_call.name} failed: {e}")
            tool_call.result = f"{TOOL_CALL_FAILED}: {e}"
            tool_call.status = ToolCallStatus.ERROR


class ToolHandlingMixin:
    """Tool-call resubmission for ConversationsService."""

    async def handle_tool_call(self: "ConversationsService", user_id: str, post: Post, accepted_tool_ids: list[str]) -> None:
        """Resolve the pending tool calls on post and continue the reply.

        Raises:
            NotFoundError: If post was not written by a bot
            PermissionDeniedError: If user_id is not the original requester
            AgentBridgeError: If the post has no valid pending tool calls
        """
        bot = self.bots.get_bot_by_id(post.user_id)
        if bot is None:
            raise NotFoundError("unable to get bot")
        if post.get_prop(props.LLM_REQUESTER_USER_ID) != user_id:
            raise PermissionDeniedError("only the original requester can resolve tool calls")

        raw = post.get_prop(props.PENDING_TOOL_CALLS)
        if not raw:
            raise AgentBridgeError("post missing pending tool calls")
        try:
            tool_calls = tool_calls_from_json(raw)
        except (ValueError, TypeError, KeyError) as e:
            raise AgentBridgeError("post pending tool calls not valid JSON") from e

        user = await self.client.get_user(user_id)
        channel = await self.client.get_channel(post.channel_id)
        context = await self.context_builder.build(bot, user, channel)
        locale = await self.response_locale(bot, user, channel)

        depth = int(post.get_prop(props.TOOL_CALL_DEPTH) or 0) + 1
        if depth > MAX_TOOL_DEPTH:
            error = ToolDepthExceededError()
            for tool_call in tool_calls:
                tool_call.result = str(error)
                tool_call.status = ToolCallStatus.ERROR
        else:
            await resolve_tool_calls(tool_calls, accepted_tool_ids, context)

        resolved = tool_calls_from_json(post.get_prop(props.RESOLVED_TOOL_CALLS)) + tool_calls
        post.add_prop(props.RESOLVED_TOOL_CALLS, tool_calls_to_json(resolved))
        post.del_prop(props.PENDING_TOOL_CALLS)
        post.add_prop(props.TOOL_CALL_DEPTH, depth)
        await self.client.update_post(post)

        if depth > MAX_TOOL_DEPTH:
            logger.warning(f"Tool resolution depth {depth} exceeded on post {post.id}")
            await self.streaming.stream_to_post(new_error_stream(ToolDepthExceededError()), post, locale)
            return

        if not any(tc.status == ToolCallStatus.SUCCESS for tc in tool_calls):
            logger.info(f"No tool calls succeeded on post {post.id}, not continuing")
            return

        thread = await get_thread_data(self.client, post.id)
        thread.cutoff_before_post_id(post.id)
        thread.posts.append(post)
        messages = await self.existing_conversation_to_messages(bot, thread, context)

        stream = bot.llm.chat_completion(CompletionRequest(posts=messages, context=context))
        await self.streaming.stream_to_post(stream, post, locale)
