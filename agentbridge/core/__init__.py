"""Core modules for the agent bridge."""

from .config import BotConfig, ConfigLoader, MCPConfig, PluginConfig, ServiceConfig, get_config, load_plugin_config
from .context import RequestIdFilter, current_request, set_request_context
from .hostname_filter import RestrictedTransport, is_hostname_allowed, parse_allowed_hostnames
from .title_store import TitleStore

__all__ = [
    "BotConfig", "ConfigLoader", "MCPConfig", "PluginConfig", "ServiceConfig", "get_config", "load_plugin_config",
    "RequestIdFilter", "current_request", "set_request_context",
    "RestrictedTransport", "is_hostname_allowed", "parse_allowed_hostnames",
    "TitleStore",
]
