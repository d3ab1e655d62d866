"""API route definitions.

The host proxies these routes and sets ``Mattermost-User-Id`` to the
authenticated user.
"""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from pydantic import BaseModel, Field

from ..bots.bot import Bot
from ..conversations.service import ConversationsService
from ..errors import AgentBridgeError, NotFoundError, PermissionDeniedError, UpstreamError, UsageRestrictedError

logger = logging.getLogger(__name__)

router = APIRouter()


class ToolCallRequest(BaseModel):
    """Tool ids the user approved.

    Example:
        {"accepted_tool_ids": ["call_1"]}
    """
    accepted_tool_ids: list[str] = Field(default_factory=list)


class AnalyzeRequest(BaseModel):
    """Thread analysis request.

    Example:
        {"analysis_type": "summarize_thread", "bot_username": "matty"}
    """
    analysis_type: str
    bot_username: Optional[str] = None


class IntervalRequest(BaseModel):
    """Channel interval request. Times are epoch milliseconds; end_time 0 means until now.

    Example:
        {"start_time": 1700000000000, "end_time": 0, "preset_prompt": "summarize_unreads"}
    """
    start_time: int
    end_time: int = 0
    preset_prompt: str
    bot_username: Optional[str] = None


class AnalyzeResponse(BaseModel):
    postid: str
    channelid: str


class SimpleCompletionRequest(BaseModel):
    """Inter-plugin completion request; prompts are templates rendered against the request context."""
    system_prompt: str = Field("", alias="systemPrompt")
    user_prompt: str = Field("", alias="userPrompt")
    bot_username: str = Field("", alias="botUsername")
    requester_user_id: str = Field("", alias="requesterUserID")
    parameters: dict[str, Any] = Field(default_factory=dict)


class SimpleCompletionResponse(BaseModel):
    response: str


class BotInfo(BaseModel):
    id: str
    username: str
    display_name: str
    service_type: str
    disable_tools: bool


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str


def get_conversations(request: Request) -> ConversationsService:
    return request.app.state.conversations


def get_user_id(mattermost_user_id: Optional[str] = Header(None, alias="Mattermost-User-Id")) -> str:
    if not mattermost_user_id:
        raise HTTPException(status_code=401, detail="Not authorized")
    return mattermost_user_id


def to_http_error(e: Exception) -> HTTPException:
    if isinstance(e, (PermissionDeniedError, UsageRestrictedError)):
        return HTTPException(status_code=403, detail=str(e))
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, UpstreamError):
        return HTTPException(status_code=502, detail=str(e))
    if isinstance(e, AgentBridgeError):
        return HTTPException(status_code=400, detail=str(e))
    logger.error(f"Unhandled error in API: {e}")
    return HTTPException(status_code=500, detail="internal error")


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse(status="healthy", version="0.1.0")


@router.post("/post/{post_id}/stop")
async def stop_post(
    post_id: str,
    user_id: str = Depends(get_user_id),
    conversations: ConversationsService = Depends(get_conversations),
):
    """Cancel a reply that is still streaming."""
    try:
        stopped = await conversations.stop_streaming(user_id, post_id)
    except Exception as e:
        raise to_http_error(e)
    return {"stopped": stopped}


@router.post("/post/{post_id}/regenerate")
async def regenerate_post(
    post_id: str,
    user_id: str = Depends(get_user_id),
    conversations: ConversationsService = Depends(get_conversations),
):
    try:
        post = await conversations.client.get_post(post_id)
        await conversations.handle_regenerate(user_id, post)
    except Exception as e:
        raise to_http_error(e)
    return {"status": "ok"}


@router.post("/post/{post_id}/tool_call")
async def tool_call(
    post_id: str,
    request: ToolCallRequest,
    user_id: str = Depends(get_user_id),
    conversations: ConversationsService = Depends(get_conversations),
):
    """Accept or reject the pending tool calls of a reply.

    Every pending call not listed in accepted_tool_ids is rejected.
    """
    try:
        post = await conversations.client.get_post(post_id)
        await conversations.handle_tool_call(user_id, post, request.accepted_tool_ids)
    except Exception as e:
        raise to_http_error(e)
    return {"status": "ok"}


def get_bot(conversations: ConversationsService, bot_username: Optional[str]) -> Bot:
    if bot_username:
        bot = conversations.bots.get_bot_by_username(bot_username)
    else:
        bot = conversations.bots.get_default_bot()
    if bot is None:
        raise HTTPException(status_code=404, detail="bot not found")
    return bot


@router.post("/post/{post_id}/analyze", response_model=AnalyzeResponse)
async def analyze_thread(
    post_id: str,
    request: AnalyzeRequest,
    user_id: str = Depends(get_user_id),
    conversations: ConversationsService = Depends(get_conversations),
):
    """Start a thread analysis in a DM with the bot."""
    bot = get_bot(conversations, request.bot_username)
    try:
        created = await conversations.thread_analysis(user_id, bot, post_id, request.analysis_type)
    except Exception as e:
        raise to_http_error(e)
    return AnalyzeResponse(postid=created.id, channelid=created.channel_id)


@router.post("/channels/{channel_id}/interval", response_model=AnalyzeResponse)
async def channel_interval(
    channel_id: str,
    request: IntervalRequest,
    user_id: str = Depends(get_user_id),
    conversations: ConversationsService = Depends(get_conversations),
):
    """Summarize, or find action items or open questions in, a channel interval."""
    bot = get_bot(conversations, request.bot_username)
    try:
        created = await conversations.channel_interval(
            user_id, bot, channel_id, request.start_time, request.end_time, request.preset_prompt
        )
    except Exception as e:
        raise to_http_error(e)
    return AnalyzeResponse(postid=created.id, channelid=created.channel_id)


@router.post("/inter-plugin/v1/simple_completion", response_model=SimpleCompletionResponse)
async def simple_completion(
    request: SimpleCompletionRequest,
    conversations: ConversationsService = Depends(get_conversations),
):
    """Non-streaming completion for other plugins, on behalf of requesterUserID."""
    if not request.requester_user_id:
        raise HTTPException(status_code=400, detail="requesterUserID is required")
    try:
        response = await conversations.simple_completion(
            request.requester_user_id,
            request.system_prompt,
            request.user_prompt,
            request.bot_username,
            request.parameters,
        )
    except Exception as e:
        raise to_http_error(e)
    return SimpleCompletionResponse(response=response)


@router.get("/ai_bots", response_model=list[BotInfo])
async def list_ai_bots(
    user_id: str = Depends(get_user_id),
    conversations: ConversationsService = Depends(get_conversations),
):
    """Bots the user may talk to, default bot first."""
    bots = await conversations.get_ai_bots(user_id)
    return [
        BotInfo(
            id=bot.user_id,
            username=bot.username,
            display_name=bot.display_name,
            service_type=str(bot.config.service.type),
            disable_tools=bot.config.disable_tools,
        )
        for bot in bots
    ]
