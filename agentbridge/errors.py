"""Exception types shared across the bridge."""

from typing import Optional

import httpx

# Upstream bodies are cut to this size before they reach logs or error events.
MAX_ERROR_BODY_BYTES = 16 * 1024


class AgentBridgeError(Exception):
    """Base class for errors raised by the bridge."""


class ConfigurationError(AgentBridgeError):
    pass


class UsageRestrictedError(AgentBridgeError):
    """Raised when a bot's access policy denies a user or channel."""

    def __init__(self, reason: str):
        super().__init__(f"usage restriction: {reason}")
        self.reason = reason


class PermissionDeniedError(AgentBridgeError):
    pass


class NotFoundError(AgentBridgeError):
    pass


class HostnameNotAllowedError(httpx.TransportError):
    """Raised by the restricted transport before any bytes leave the process."""

    def __init__(self, hostname: str, request: Optional[httpx.Request] = None):
        super().__init__(
            f"hostname {hostname!r} is not on allowed list, add this host to allowed upstream hosts",
            request=request,
        )
        self.hostname = hostname


class UpstreamError(AgentBridgeError):
    """Non-2xx response from an LLM provider."""

    def __init__(self, status_code: int, body: str = "", provider: str = ""):
        self.status_code = status_code
        self.body = body[:MAX_ERROR_BODY_BYTES]
        self.provider = provider
        prefix = f"{provider}: " if provider else ""
        super().__init__(f"{prefix}{status_code} {self.body}".rstrip())


class StreamTimeoutError(AgentBridgeError):
    def __init__(self, message: str = "stream inactive"):
        super().__init__(message)


class ToolError(AgentBridgeError):
    pass


class UnknownToolError(ToolError):
    def __init__(self, name: str):
        super().__init__(f"unknown tool {name}")
        self.name = name


class ToolDepthExceededError(AgentBridgeError):
    def __init__(self):
        super().__init__("max tool resolution depth exceeded")


class PromptNotFoundError(AgentBridgeError):
    def __init__(self, name: str):
        super().__init__(f"prompt template not found: {name}")
        self.name = name


class PromptRenderError(AgentBridgeError):
    pass
