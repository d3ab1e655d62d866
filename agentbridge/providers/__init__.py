"""Provider adapters and the factory that picks one per bot."""

import logging
from typing import Optional

import httpx

from ..common.enums import ServiceType
from ..core.config import ServiceConfig
from ..core.hostname_filter import RestrictedTransport
from ..llm.language_model import LanguageModel, LanguageModelLogWrapper, TruncationWrapper
from .anthropic import AnthropicProvider
from .asksage import AskSageProvider
from .base import HTTPProvider
from .bedrock import BedrockProvider
from .openai import OpenAIProvider

logger = logging.getLogger(__name__)

PROVIDERS: dict[ServiceType, type[HTTPProvider]] = {
    ServiceType.OPENAI: OpenAIProvider,
    ServiceType.OPENAI_COMPATIBLE: OpenAIProvider,
    ServiceType.AZURE: OpenAIProvider,
    ServiceType.ANTHROPIC: AnthropicProvider,
    ServiceType.BEDROCK: BedrockProvider,
    ServiceType.ASKSAGE: AskSageProvider,
}


def new_language_model(
    service: ServiceConfig,
    allowed_hostnames: list[str],
    enable_trace: bool = False,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> LanguageModel:
    """Build the provider for a service, wrapped for tracing and truncation.

    Args:
        service: The bot's upstream service configuration
        allowed_hostnames: Parsed upstream allow-list
        enable_trace: Log every request and response
        transport: Inner transport, defaults to a real network transport

    Raises:
        ValueError: If the service type has no adapter
    """
    provider_cls = PROVIDERS.get(service.type)
    if provider_cls is None:
        raise ValueError(f"unsupported service type: {service.type}")

    provider = provider_cls(service, transport=RestrictedTransport(allowed_hostnames, transport))
    llm: LanguageModel = provider
    if enable_trace:
        llm = LanguageModelLogWrapper(llm)
    return TruncationWrapper(llm)


__all__ = [
    "AnthropicProvider",
    "AskSageProvider",
    "BedrockProvider",
    "HTTPProvider",
    "OpenAIProvider",
    "PROVIDERS",
    "new_language_model",
]
