"""Bot, service and MCP configuration loaded from YAML."""

import os
import re
import logging
from pathlib import Path
from functools import lru_cache
from typing import Any, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from ..common.enums import AccessLevel, ServiceType
from ..errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_MAX_FILE_SIZE = 5 * 1024 * 1024
DEFAULT_STREAMING_TIMEOUT_SECONDS = 10
DEFAULT_MCP_IDLE_TIMEOUT_MINUTES = 30


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class ServiceConfig(_CamelModel):
    name: str = ""
    type: ServiceType
    api_key: str = ""
    org_id: str = Field("", alias="orgId")
    default_model: str = ""
    api_url: str = Field("", alias="apiURL")
    username: str = ""
    password: str = ""
    region: str = ""
    # Legacy single limit, read as the input limit
    token_limit: int = 0
    input_token_limit: int = 0
    output_token_limit: int = 0
    streaming_timeout_seconds: int = 0
    send_user_id: bool = Field(False, alias="sendUserID")

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_type(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.replace("-", "").replace("_", "").lower()
        return value

    @property
    def effective_input_token_limit(self) -> int:
        return self.input_token_limit or self.token_limit

    @property
    def streaming_timeout(self) -> float:
        return float(self.streaming_timeout_seconds or DEFAULT_STREAMING_TIMEOUT_SECONDS)


class BotConfig(_CamelModel):
    id: str = ""
    name: str = ""
    display_name: str = ""
    custom_instructions: str = ""
    service: ServiceConfig
    enable_vision: bool = False
    disable_tools: bool = False
    channel_access_level: AccessLevel = AccessLevel.ALL
    channel_ids: list[str] = Field(default_factory=list, alias="channelIDs")
    user_access_level: AccessLevel = AccessLevel.ALL
    user_ids: list[str] = Field(default_factory=list, alias="userIDs")
    team_ids: list[str] = Field(default_factory=list, alias="teamIDs")
    max_file_size: int = DEFAULT_MAX_FILE_SIZE

    def validate_config(self) -> None:
        """Check the usability invariant.

        Raises:
            ConfigurationError: Describing the first problem found
        """
        if not self.name:
            raise ConfigurationError("bot name is empty")
        if not self.display_name:
            raise ConfigurationError(f"bot {self.name} has no display name")

        service = self.service
        if service.type in (ServiceType.OPENAI, ServiceType.ANTHROPIC, ServiceType.BEDROCK):
            if not service.api_key:
                raise ConfigurationError(f"bot {self.name} is missing an API key")
        elif service.type == ServiceType.OPENAI_COMPATIBLE:
            if not service.api_url:
                raise ConfigurationError(f"bot {self.name} is missing an API URL")
        elif service.type == ServiceType.AZURE:
            if not service.api_key or not service.api_url:
                raise ConfigurationError(f"bot {self.name} needs both an API key and an API URL")
        elif service.type == ServiceType.ASKSAGE:
            if not service.username or not service.password:
                raise ConfigurationError(f"bot {self.name} needs a username and password")

    def is_valid(self) -> bool:
        try:
            self.validate_config()
        except ConfigurationError:
            return False
        return True


class MCPServerConfig(_CamelModel):
    base_url: str = Field(alias="baseURL")
    headers: dict[str, str] = Field(default_factory=dict)


class MCPConfig(_CamelModel):
    enabled: bool = False
    servers: dict[str, MCPServerConfig] = Field(default_factory=dict)
    idle_timeout_minutes: int = DEFAULT_MCP_IDLE_TIMEOUT_MINUTES


class PluginConfig(_CamelModel):
    bots: list[BotConfig] = Field(default_factory=list)
    default_bot_name: str = ""
    enable_llm_trace: bool = Field(False, alias="enableLLMTrace")
    allowed_upstream_hostnames: str = ""
    mcp: MCPConfig = Field(default_factory=MCPConfig)


class ConfigLoader:
    """Loads configuration from YAML files with environment variable substitution."""

    def __init__(self, config_path: str = "config/config.yaml"):
        self.config_path = config_path
        self._config: dict[str, Any] = {}
        self.load()

    def load(self):
        """Load YAML config and substitute env vars."""
        path = Path(self.config_path)
        if not path.exists():
            logger.warning(f"Config file not found at {path}")
            return

        content = path.read_text(encoding="utf-8")
        content = self._substitute_env_vars(content)

        try:
            self._config = yaml.safe_load(content) or {}
            logger.info(f"Loaded config from {path}")
        except yaml.YAMLError as e:
            logger.error(f"Error parsing YAML config: {e}")

    def _substitute_env_vars(self, content: str) -> str:
        """Replace ${VAR} with value from os.environ."""
        pattern = re.compile(r'\$\{([^}^{]+)\}')

        def replace(match):
            return os.environ.get(match.group(1), match.group(0))

        return pattern.sub(replace, content)

    def get(self, key: str, default: Any = None) -> Any:
        """Get config value by key (dot notation supported)."""
        value = self._config
        for k in key.split("."):
            if not isinstance(value, dict):
                return default
            value = value.get(k)
            if value is None:
                return default
        return value

    def as_dict(self) -> dict[str, Any]:
        return dict(self._config)


def parse_plugin_config(data: dict[str, Any]) -> PluginConfig:
    """Build a PluginConfig, skipping bots whose service block cannot be parsed."""
    data = dict(data)
    bots: list[BotConfig] = []
    for raw in data.pop("bots", None) or []:
        try:
            bots.append(BotConfig.model_validate(raw))
        except ValueError as e:
            logger.error(f"Skipping unparseable bot configuration {raw.get('name', '')!r}: {e}")
    config = PluginConfig.model_validate(data)
    config.bots = bots
    return config


def load_plugin_config(loader: Optional[ConfigLoader] = None) -> PluginConfig:
    loader = loader or get_config()
    return parse_plugin_config(loader.as_dict())


@lru_cache
def get_config() -> ConfigLoader:
    """Get cached YAML config instance."""
    from ..config import get_settings

    return ConfigLoader(get_settings().config_path)
