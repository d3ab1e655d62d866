"""Connections from one user to every configured MCP tool server."""

import asyncio
import logging
import time
from datetime import timedelta
from typing import Any, Optional

import httpx
from mcp import ClientSession, types
from mcp.client.sse import sse_client

from ..core.config import MCPConfig, MCPServerConfig
from ..core.hostname_filter import RestrictedTransport, check_url_allowed
from ..errors import AgentBridgeError, ToolError
from ..llm.context import Context
from ..llm.tools import Tool, ToolArguments

logger = logging.getLogger(__name__)

USER_ID_HEADER = "X-Mattermost-UserID"
TOOL_CALL_TIMEOUT = timedelta(minutes=5)


class UserClient:
    """Holds one MCP session per server for a single user.

    Each session lives in its own task, which owns the SSE connection for
    its whole lifetime; ``close`` signals those tasks and waits for them.
    """

    def __init__(
        self,
        user_id: str,
        config: MCPConfig,
        allowed_hostnames: list[str],
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.user_id = user_id
        self.config = config
        self.allowed_hostnames = allowed_hostnames
        self.transport = transport
        self.last_activity = time.monotonic()
        # Set once an established session drops; the manager then replaces this client.
        self.stale = False

        self._sessions: dict[str, ClientSession] = {}
        self._tools: dict[str, Tool] = {}
        self._tasks: list[asyncio.Task] = []
        self._closed = asyncio.Event()

    def touch(self) -> None:
        self.last_activity = time.monotonic()

    def _http_client_factory(
        self,
        headers: Optional[dict[str, str]] = None,
        timeout: Optional[httpx.Timeout] = None,
        auth: Optional[httpx.Auth] = None,
    ) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            headers=headers,
            timeout=timeout or httpx.Timeout(30.0),
            auth=auth,
            follow_redirects=True,
            transport=RestrictedTransport(self.allowed_hostnames, self.transport),
        )

    async def connect(self) -> None:
        """Connect to all servers.

        Raises:
            AgentBridgeError: If no server could be reached
        """
        for server_id, server in self.config.servers.items():
            try:
                tools = await self._start_server(server_id, server)
            except Exception as e:
                logger.error(f"Failed to connect to MCP server {server_id} for user {self.user_id}: {e}")
                continue
            for tool in tools:
                self._add_tool(server_id, tool)

        if not self._sessions:
            raise AgentBridgeError(f"failed to connect to any MCP server for user {self.user_id}")
        logger.info(f"MCP client for user {self.user_id} connected to {len(self._sessions)} server(s), {len(self._tools)} tool(s)")

    async def _start_server(self, server_id: str, server: MCPServerConfig) -> list[types.Tool]:
        check_url_allowed(server.base_url, self.allowed_hostnames)
        ready: asyncio.Future = asyncio.get_running_loop().create_future()
        task = asyncio.create_task(self._run_session(server_id, server, ready), name=f"mcp-{server_id}-{self.user_id}")
        self._tasks.append(task)
        return await ready

    async def _run_session(self, server_id: str, server: MCPServerConfig, ready: asyncio.Future) -> None:
        headers = dict(server.headers)
        headers[USER_ID_HEADER] = self.user_id
        try:
            async with sse_client(server.base_url, headers=headers, httpx_client_factory=self._http_client_factory) as (read, write):
                async with ClientSession(read, write) as session:
                    await session.initialize()
                    result = await session.list_tools()
                    self._sessions[server_id] = session
                    ready.set_result(result.tools)
                    await self._closed.wait()
        except Exception as e:
            if not ready.done():
                ready.set_exception(e)
            else:
                logger.error(f"MCP session {server_id} for user {self.user_id} ended: {e}")
        finally:
            self._session_ended(server_id)

    def _session_ended(self, server_id: str) -> None:
        if self._sessions.pop(server_id, None) is not None and not self._closed.is_set():
            logger.warning(f"MCP session {server_id} for user {self.user_id} dropped")
            self.stale = True

    def _add_tool(self, server_id: str, mcp_tool: types.Tool) -> None:
        if mcp_tool.name in self._tools:
            logger.warning(f"MCP tool name conflict, {server_id} overrides existing tool {mcp_tool.name}")

        async def resolve(context: Context, args: ToolArguments) -> str:
            return await self.call_tool(server_id, mcp_tool.name, args.decode())

        self._tools[mcp_tool.name] = Tool(
            name=mcp_tool.name,
            description=mcp_tool.description or "",
            schema=mcp_tool.inputSchema,
            resolver=resolve,
        )

    def get_tools(self) -> list[Tool]:
        self.touch()
        return list(self._tools.values())

    async def call_tool(self, server_id: str, name: str, arguments: dict[str, Any]) -> str:
        """Call a tool and join its text content with newlines.

        Raises:
            ToolError: If the server is gone, reports an error, or returns no text
        """
        self.touch()
        session = self._sessions.get(server_id)
        if session is None:
            raise ToolError(f"MCP server {server_id} is not connected")

        result = await session.call_tool(name, arguments, read_timeout_seconds=TOOL_CALL_TIMEOUT)
        texts = [item.text for item in result.content if isinstance(item, types.TextContent)]
        if not texts:
            raise ToolError(f"tool {name} returned no text content")
        output = "\n".join(texts)
        if result.isError:
            raise ToolError(output)
        return output

    async def close(self) -> None:
        self._closed.set()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        self._tools.clear()
