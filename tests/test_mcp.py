"""Tests for the MCP client cache and tool adaptation."""

import time

import pytest
from mcp import types

from agentbridge.core.config import MCPConfig, MCPServerConfig
from agentbridge.errors import AgentBridgeError, ToolError
from agentbridge.llm.context import Context
from agentbridge.llm.tools import ToolArguments
from agentbridge.mcp.client_manager import MCPClientManager
from agentbridge.mcp.user_client import UserClient


def mcp_config(enabled: bool = True, url: str = "https://mcp.example.com/sse") -> MCPConfig:
    return MCPConfig(enabled=enabled, servers={"docs": MCPServerConfig(base_url=url)}, idle_timeout_minutes=1)


class FakeSession:
    def __init__(self, result: types.CallToolResult):
        self.result = result
        self.calls = []

    async def call_tool(self, name, arguments, read_timeout_seconds=None):
        self.calls.append((name, arguments))
        return self.result


def text_result(*texts: str, is_error: bool = False) -> types.CallToolResult:
    return types.CallToolResult(content=[types.TextContent(type="text", text=t) for t in texts], isError=is_error)


@pytest.mark.asyncio
async def test_mcp_tool_resolves_through_session():
    client = UserClient("u1", mcp_config(), ["*.example.com"])
    session = FakeSession(text_result("line one", "line two"))
    client._sessions["docs"] = session
    client._add_tool("docs", types.Tool(name="search", description="Search docs", inputSchema={"type": "object"}))

    tool = client.get_tools()[0]
    result = await tool.resolver(Context(), ToolArguments('{"query": "deploy"}'))

    assert tool.name == "search"
    assert tool.schema == {"type": "object"}
    assert result == "line one\nline two"
    assert session.calls == [("search", {"query": "deploy"})]


@pytest.mark.asyncio
async def test_mcp_tool_errors():
    client = UserClient("u1", mcp_config(), ["*.example.com"])

    with pytest.raises(ToolError, match="not connected"):
        await client.call_tool("docs", "search", {})

    client._sessions["docs"] = FakeSession(text_result("quota exceeded", is_error=True))
    with pytest.raises(ToolError, match="quota exceeded"):
        await client.call_tool("docs", "search", {})

    client._sessions["docs"] = FakeSession(text_result())
    with pytest.raises(ToolError, match="no text content"):
        await client.call_tool("docs", "search", {})


@pytest.mark.asyncio
async def test_connect_refuses_disallowed_servers():
    client = UserClient("u1", mcp_config(url="https://mcp.elsewhere.io/sse"), ["*.example.com"])

    with pytest.raises(AgentBridgeError, match="failed to connect to any MCP server"):
        await client.connect()
    await client.close()


@pytest.mark.asyncio
async def test_manager_disabled_has_no_tools():
    manager = MCPClientManager(mcp_config(enabled=False), [])
    await manager.start()

    assert not manager.enabled
    assert await manager.get_tools_for_user("u1") == []
    await manager.close()


@pytest.mark.asyncio
async def test_manager_caches_and_reaps_clients(monkeypatch):
    connects = []

    async def fake_connect(self):
        connects.append(self.user_id)
        self._add_tool("docs", types.Tool(name="search", description="", inputSchema={"type": "object"}))

    monkeypatch.setattr(UserClient, "connect", fake_connect)
    manager = MCPClientManager(mcp_config(), ["*.example.com"])

    tools = await manager.get_tools_for_user("u1")
    await manager.get_tools_for_user("u1")
    await manager.get_tools_for_user("u2")

    assert [t.name for t in tools] == ["search"]
    assert connects == ["u1", "u2"]

    (await manager.get_client("u1")).last_activity = time.monotonic() - 120
    assert await manager.cleanup_inactive() == 1

    await manager.get_tools_for_user("u1")
    assert connects == ["u1", "u2", "u1"]
    await manager.close()


@pytest.mark.asyncio
async def test_dropped_session_reconnects(monkeypatch):
    """A client whose session dropped is replaced on next use and reaped by cleanup."""
    connects = []

    async def fake_connect(self):
        connects.append(self.user_id)
        self._sessions["docs"] = FakeSession(text_result("found it"))
        self._add_tool("docs", types.Tool(name="search", description="", inputSchema={"type": "object"}))

    monkeypatch.setattr(UserClient, "connect", fake_connect)
    manager = MCPClientManager(mcp_config(), ["*.example.com"])

    first = await manager.get_client("u1")
    first._session_ended("docs")

    assert first.stale
    with pytest.raises(ToolError, match="not connected"):
        await first.call_tool("docs", "search", {})

    second = await manager.get_client("u1")
    assert second is not first
    assert connects == ["u1", "u1"]
    assert await second.call_tool("docs", "search", {}) == "found it"

    other = await manager.get_client("u2")
    other._session_ended("docs")
    assert await manager.cleanup_inactive() == 1
    assert await manager.get_client("u1") is second
    await manager.close()


@pytest.mark.asyncio
async def test_close_is_not_a_dropped_session():
    client = UserClient("u1", mcp_config(), ["*.example.com"])
    client._sessions["docs"] = FakeSession(text_result("x"))

    await client.close()
    client._session_ended("docs")

    assert not client.stale
