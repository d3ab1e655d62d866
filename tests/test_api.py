"""Tests for the post-action HTTP API."""

import httpx
import pytest
from fastapi import FastAPI

from agentbridge.api import router
from agentbridge.common import props
from agentbridge.models import ToolCall, tool_calls_to_json
from fakes import Harness, make_bot


def make_app(harness: Harness) -> FastAPI:
    app = FastAPI()
    app.include_router(router)
    app.state.conversations = harness.conversations
    return app


@pytest.fixture
def harness(platform):
    return Harness(platform, [make_bot(platform, "matty")])


@pytest.fixture
async def api(harness):
    transport = httpx.ASGITransport(app=make_app(harness))
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    await harness.drain()


def as_user(user) -> dict:
    return {"Mattermost-User-Id": user.id}


@pytest.mark.asyncio
async def test_health(api):
    response = await api.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_requires_user_header(api):
    response = await api.get("/ai_bots")

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_ai_bots(api, alice):
    response = await api.get("/ai_bots", headers=as_user(alice))

    assert response.status_code == 200
    [bot] = response.json()
    assert bot["username"] == "matty"
    assert bot["service_type"] == "openai"
    assert bot["disable_tools"] is False


@pytest.mark.asyncio
async def test_tool_call_wrong_user_forbidden(api, harness, platform, alice, bob):
    bot = harness.bots.get_default_bot()
    dm = await platform.get_direct_channel(alice.id, bot.user_id)
    post = platform.add_post(dm.id, bot.user_id, "", **{
        props.LLM_REQUESTER_USER_ID: alice.id,
        props.PENDING_TOOL_CALLS: tool_calls_to_json([ToolCall(id="call_1", name="LookupMattermostUser")]),
    })

    response = await api.post(f"/post/{post.id}/tool_call", json={"accepted_tool_ids": ["call_1"]}, headers=as_user(bob))

    assert response.status_code == 403
    assert post.get_prop(props.PENDING_TOOL_CALLS)


@pytest.mark.asyncio
async def test_regenerate_unknown_post(api, alice):
    response = await api.post("/post/nope/regenerate", headers=as_user(alice))

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_stop_not_streaming(api, harness, platform, alice):
    bot = harness.bots.get_default_bot()
    dm = await platform.get_direct_channel(alice.id, bot.user_id)
    post = platform.add_post(dm.id, bot.user_id, "done", **{props.LLM_REQUESTER_USER_ID: alice.id})

    response = await api.post(f"/post/{post.id}/stop", headers=as_user(alice))

    assert response.status_code == 200
    assert response.json() == {"stopped": False}


@pytest.mark.asyncio
async def test_analyze(api, platform, alice, bob):
    channel = platform.add_channel()
    root = platform.add_post(channel.id, bob.id, "we need a plan")

    response = await api.post(
        f"/post/{root.id}/analyze",
        json={"analysis_type": "summarize_thread", "bot_username": "matty"},
        headers=as_user(alice),
    )

    assert response.status_code == 200
    body = response.json()
    created = platform.posts[body["postid"]]
    assert created.channel_id == body["channelid"]
    assert created.get_prop(props.REFERENCED_THREAD) == root.id


@pytest.mark.asyncio
@pytest.mark.parametrize("payload, status", [
    ({"analysis_type": "poem"}, 400),
    ({"analysis_type": "summarize_thread", "bot_username": "ghost"}, 404),
])
async def test_analyze_errors(api, platform, alice, payload, status):
    root = platform.add_post(platform.add_channel().id, alice.id, "hi")

    response = await api.post(f"/post/{root.id}/analyze", json=payload, headers=as_user(alice))

    assert response.status_code == status


@pytest.mark.asyncio
async def test_channel_interval(api, platform, alice, bob):
    channel = platform.add_channel(name="town-square")
    first = platform.add_post(channel.id, bob.id, "release is friday")

    response = await api.post(
        f"/channels/{channel.id}/interval",
        json={"start_time": first.create_at, "preset_prompt": "summarize_unreads"},
        headers=as_user(alice),
    )

    assert response.status_code == 200
    body = response.json()
    created = platform.posts[body["postid"]]
    assert created.channel_id == body["channelid"]
    assert created.get_prop(props.NO_REGEN) == "true"


@pytest.mark.asyncio
async def test_channel_interval_errors(api, platform, alice, bob):
    channel = platform.add_channel()
    platform.channel_members[channel.id] = {bob.id}

    bad_preset = await api.post(f"/channels/{channel.id}/interval", json={"start_time": 0, "preset_prompt": "poem"}, headers=as_user(alice))
    no_access = await api.post(f"/channels/{channel.id}/interval", json={"start_time": 0, "preset_prompt": "action_items"}, headers=as_user(alice))

    assert bad_preset.status_code == 400
    assert no_access.status_code == 403


@pytest.mark.asyncio
async def test_simple_completion(api, harness, alice):
    response = await api.post("/inter-plugin/v1/simple_completion", json={
        "systemPrompt": "You are {context.bot_name}.",
        "userPrompt": "Title for {Subject}",
        "requesterUserID": alice.id,
        "parameters": {"Subject": "the outage"},
    })

    assert response.status_code == 200
    assert response.json() == {"response": '"A Title"\n'}
    request = harness.bots.get_default_bot().llm.requests[0]
    assert request.posts[1].content == "Title for the outage"


@pytest.mark.asyncio
@pytest.mark.parametrize("payload, status", [
    ({"userPrompt": "hi"}, 400),
    ({"userPrompt": "hi", "requesterUserID": "nobody"}, 404),
])
async def test_simple_completion_errors(api, platform, payload, status):
    response = await api.post("/inter-plugin/v1/simple_completion", json=payload)

    assert response.status_code == status


@pytest.mark.asyncio
async def test_simple_completion_refuses_private_fields(api, alice):
    response = await api.post("/inter-plugin/v1/simple_completion", json={
        "userPrompt": "{context.tools._tools}",
        "requesterUserID": alice.id,
    })

    assert response.status_code == 400
    assert "private field" in response.json()["detail"]
