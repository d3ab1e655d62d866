"""Per-user MCP client cache with idle reaping."""

import asyncio
import logging
import time
from typing import Optional

import httpx

from ..core.config import MCPConfig
from ..llm.tools import Tool
from .user_client import UserClient

logger = logging.getLogger(__name__)

CLEANUP_INTERVAL_SECONDS = 5 * 60


class MCPClientManager:
    """Creates, caches and reaps UserClients.

    Usage:
        manager = MCPClientManager(config.mcp, allowed_hostnames)
        await manager.start()

        tools = await manager.get_tools_for_user(user_id)
    """

    def __init__(
        self,
        config: MCPConfig,
        allowed_hostnames: list[str],
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self.allowed_hostnames = allowed_hostnames
        self.transport = transport
        self.idle_timeout = config.idle_timeout_minutes * 60
        self._clients: dict[str, UserClient] = {}
        self._lock = asyncio.Lock()
        self._cleanup_task: Optional[asyncio.Task] = None

    @property
    def enabled(self) -> bool:
        return self.config.enabled and bool(self.config.servers)

    async def start(self) -> None:
        if self.enabled and self._cleanup_task is None:
            self._cleanup_task = asyncio.create_task(self._cleanup_loop(), name="mcp-cleanup")
            logger.info(f"MCP client manager started with {len(self.config.servers)} server(s)")

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(CLEANUP_INTERVAL_SECONDS)
            await self.cleanup_inactive()

    async def cleanup_inactive(self) -> int:
        """Close clients that are idle or whose sessions dropped."""
        cutoff = time.monotonic() - self.idle_timeout
        async with self._lock:
            idle = [uid for uid, client in self._clients.items() if client.stale or client.last_activity < cutoff]
            reaped = [self._clients.pop(uid) for uid in idle]

        for client in reaped:
            logger.info(f"Closing idle MCP client for user {client.user_id}")
            await client.close()
        return len(reaped)

    async def get_client(self, user_id: str) -> UserClient:
        """Cached client for user_id, connecting on first use or after a dropped session.

        Raises:
            AgentBridgeError: If no server could be reached
        """
        stale = None
        async with self._lock:
            client = self._clients.get(user_id)
            if client is not None and client.stale:
                stale = self._clients.pop(user_id)
                client = None
        if stale is not None:
            logger.info(f"Reconnecting MCP client for user {user_id}")
            await stale.close()
        if client is not None:
            client.touch()
            return client

        # Connect without holding the map lock.
        client = UserClient(user_id, self.config, self.allowed_hostnames, self.transport)
        await client.connect()

        async with self._lock:
            existing = self._clients.get(user_id)
            if existing is None:
                self._clients[user_id] = client
                return client
        await client.close()
        return existing

    async def get_tools_for_user(self, user_id: str) -> list[Tool]:
        if not self.enabled:
            return []
        client = await self.get_client(user_id)
        return client.get_tools()

    async def close(self) -> None:
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            self._cleanup_task = None
        async with self._lock:
            clients = list(self._clients.values())
            self._clients.clear()
        for client in clients:
            await client.close()
