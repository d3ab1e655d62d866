"""Tests for the tool registry and built-in tools."""

import pytest
from pydantic import BaseModel

from agentbridge.errors import ToolError, UnknownToolError
from agentbridge.llm.context import Context
from agentbridge.llm.tools import Tool, ToolArguments, ToolStore
from agentbridge.platform.client import UserStatus
from agentbridge.tools.built_in import BuiltInToolProvider
from fakes import make_bot


class EchoArgs(BaseModel):
    text: str


async def echo(context: Context, args: ToolArguments) -> str:
    return args.decode(EchoArgs).text.upper()


def echo_tool(name: str = "echo") -> Tool:
    return Tool.from_model(name, "Echo text back", EchoArgs, echo)


def test_tool_spec_uses_model_schema():
    spec = echo_tool().get_tool_spec()

    assert spec["type"] == "function"
    assert spec["function"]["name"] == "echo"
    assert "text" in spec["function"]["parameters"]["properties"]


def test_tool_arguments_decode():
    assert ToolArguments('{"a": 1}').decode() == {"a": 1}
    assert ToolArguments("").decode() == {}
    with pytest.raises(ToolError):
        ToolArguments("{not json").decode()
    with pytest.raises(ToolError):
        ToolArguments('{"other": 1}').decode(EchoArgs)


def test_name_collision_replaces_tool():
    store = ToolStore()
    first = echo_tool()
    second = echo_tool()
    store.add_tools([first])
    store.add_tools([second])

    assert len(store) == 1
    assert store.get_tool("echo") is second


@pytest.mark.asyncio
async def test_resolve_tool():
    store = ToolStore(trace=True)
    store.add_tools([echo_tool()])

    result = await store.resolve_tool("echo", ToolArguments('{"text": "hi"}'), Context())

    assert result == "HI"


@pytest.mark.asyncio
async def test_resolve_unknown_tool():
    with pytest.raises(UnknownToolError):
        await ToolStore().resolve_tool("missing", ToolArguments("{}"), Context())


@pytest.mark.asyncio
async def test_resolver_errors_propagate():
    store = ToolStore()
    store.add_tools([echo_tool()])

    with pytest.raises(ToolError):
        await store.resolve_tool("echo", ToolArguments("{}"), Context())


def test_lookup_user_only_offered_in_dm(platform):
    provider = BuiltInToolProvider(platform)
    bot = make_bot(platform)

    assert provider.get_tools(False, bot) == []
    assert [t.name for t in provider.get_tools(True, bot)] == ["LookupMattermostUser"]


@pytest.mark.asyncio
async def test_lookup_user(platform, alice):
    """Lookup hides the email unless the server shows it, and manual statuses."""
    provider = BuiltInToolProvider(platform)
    alice.position = "Engineer"
    platform.statuses[alice.id] = UserStatus(status="away", manual=False, last_activity_at=1700000000000)

    result = await provider.lookup_user(Context(), ToolArguments('{"username": "@alice"}'))

    assert "Username: alice" in result
    assert "Full Name: Alice Liddell" in result
    assert "Position: Engineer" in result
    assert "Status: away" in result
    assert "Last Activity: 2023-11-14" in result
    assert "Email" not in result

    platform.server.show_email_address = True
    platform.statuses[alice.id] = UserStatus(status="in a meeting", manual=True)
    result = await provider.lookup_user(Context(), ToolArguments('{"username": "alice"}'))

    assert "Email: alice@example.com" in result
    assert "Status" not in result


@pytest.mark.asyncio
async def test_lookup_user_not_found(platform):
    provider = BuiltInToolProvider(platform)

    assert await provider.lookup_user(Context(), ToolArguments('{"username": "nobody"}')) == "user not found"


@pytest.mark.asyncio
async def test_lookup_user_rejects_invalid_username(platform):
    provider = BuiltInToolProvider(platform)

    with pytest.raises(ToolError):
        await provider.lookup_user(Context(), ToolArguments('{"username": "Robert; DROP"}'))
