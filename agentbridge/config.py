"""Process settings for the bridge."""

from functools import lru_cache
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Bot, service and MCP definitions
    config_path: str = "config/config.yaml"

    # Persistence for conversation titles
    database_url: str = "sqlite+aiosqlite:///./agentbridge.db"

    # Outbound HTTP, overrides allowedUpstreamHostnames from the YAML file when set
    allowed_upstream_hostnames: str = ""

    # Licensing: without it only the first configured bot is activated
    multi_llm_licensed: bool = False

    enable_llm_trace: bool = False
    default_bot_name: str = ""

    # Streaming post writer
    streaming_flush_interval: float = 0.2
    streaming_flush_bytes: int = 4096

    # Server Configuration
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"

    class Config:
        env_prefix = "AGENTBRIDGE_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    """Get singleton settings instance."""
    return Settings()
