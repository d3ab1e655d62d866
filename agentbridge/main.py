"""FastAPI application entrypoint.

The host process supplies its PlatformClient to ``create_app``; the returned
app serves the post-action API and the conversations service handles posts
passed to ``app.state.conversations.handle_message``.
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

import httpx
from fastapi import FastAPI

from .api import router
from .bots.manager import BotManager
from .config import Settings, get_settings
from .conversations.context_builder import ContextBuilder
from .conversations.service import ConversationsService
from .core.config import PluginConfig, load_plugin_config
from .core.context import RequestIdFilter
from .core.hostname_filter import parse_allowed_hostnames
from .core.title_store import TitleStore
from .llm.prompts import Prompts
from .mcp.client_manager import MCPClientManager
from .platform.client import PlatformClient
from .streaming.service import StreamingService
from .tools.built_in import BuiltInToolProvider

# Configure logging
logging.basicConfig(
    level=get_settings().log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s",
    force=True,  # Ensure this config overrides any existing settings
)
for _handler in logging.getLogger().handlers:
    _handler.addFilter(RequestIdFilter())
logger = logging.getLogger(__name__)


@dataclass
class Services:
    bots: BotManager
    streaming: StreamingService
    conversations: ConversationsService
    mcp: MCPClientManager
    title_store: TitleStore

    async def close(self) -> None:
        await self.conversations.close()
        await self.streaming.close()
        await self.mcp.close()
        await self.bots.close()
        await self.title_store.close()


async def build_services(
    client: PlatformClient,
    settings: Settings,
    plugin_config: PluginConfig,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Services:
    """Wire every service from settings and the plugin configuration."""
    if settings.default_bot_name and not plugin_config.default_bot_name:
        plugin_config.default_bot_name = settings.default_bot_name
    plugin_config.enable_llm_trace = plugin_config.enable_llm_trace or settings.enable_llm_trace

    allowed = parse_allowed_hostnames(
        settings.allowed_upstream_hostnames or plugin_config.allowed_upstream_hostnames
    )

    bots = BotManager(
        client,
        multi_llm_licensed=settings.multi_llm_licensed,
        allowed_hostnames_override=settings.allowed_upstream_hostnames,
        transport=transport,
    )
    await bots.ensure_bots(plugin_config)
    logger.info(f"{len(bots.get_all_bots())} bot(s) active")

    mcp = MCPClientManager(plugin_config.mcp, allowed, transport)
    await mcp.start()

    title_store = TitleStore(settings.database_url)
    await title_store.initialize()

    streaming = StreamingService(client, settings.streaming_flush_interval, settings.streaming_flush_bytes)
    context_builder = ContextBuilder(
        client,
        BuiltInToolProvider(client),
        mcp_manager=mcp,
        trace_tools=plugin_config.enable_llm_trace,
    )
    conversations = ConversationsService(
        client,
        bots,
        Prompts(),
        context_builder,
        streaming,
        title_store,
    )
    return Services(bots, streaming, conversations, mcp, title_store)


def create_app(client: PlatformClient, plugin_config: Optional[PluginConfig] = None) -> FastAPI:
    """Build the FastAPI app bound to a host platform client."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler for startup/shutdown."""
        settings = get_settings()
        logger.info("Starting agent bridge...")

        config = plugin_config or load_plugin_config()
        services = await build_services(client, settings, config)
        app.state.services = services
        app.state.conversations = services.conversations
        logger.info("Agent bridge started")

        yield

        logger.info("Shutting down agent bridge...")
        await services.close()

    app = FastAPI(
        title="Agent Bridge",
        description="LLM bots for team chat",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(router)
    return app
