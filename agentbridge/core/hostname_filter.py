"""Outbound HTTP restriction to an allow-list of upstream hostnames."""

import logging
from typing import Optional

import httpx

from ..errors import HostnameNotAllowedError

logger = logging.getLogger(__name__)


def parse_allowed_hostnames(value: str) -> list[str]:
    """Split a comma separated allow-list, ignoring blanks."""
    return [h.strip() for h in (value or "").split(",") if h.strip()]


def is_hostname_allowed(hostname: str, allowed: list[str]) -> bool:
    """Exact match, ``*.domain`` suffix match, or ``*`` for everything.

    Hostnames carrying an IPv6 zone id ('%') never match a wildcard.
    """
    for pattern in allowed:
        if pattern == "*":
            return True
        if pattern.startswith("*."):
            if "%" in hostname:
                continue
            if hostname.endswith(pattern[1:]):
                return True
        elif pattern == hostname:
            return True
    return False


class RestrictedTransport(httpx.AsyncBaseTransport):
    """Transport wrapper that refuses requests to hosts outside the allow-list."""

    def __init__(self, allowed_hostnames: list[str], transport: Optional[httpx.AsyncBaseTransport] = None):
        self.allowed_hostnames = list(allowed_hostnames)
        self._transport = transport or httpx.AsyncHTTPTransport()

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        hostname = request.url.host
        if not is_hostname_allowed(hostname, self.allowed_hostnames):
            logger.warning(f"Blocked outbound request to {hostname}")
            raise HostnameNotAllowedError(hostname, request=request)
        return await self._transport.handle_async_request(request)

    async def aclose(self) -> None:
        await self._transport.aclose()


def check_url_allowed(url: str, allowed: list[str]) -> None:
    """Raise HostnameNotAllowedError for a URL whose host is not allowed."""
    hostname = httpx.URL(url).host
    if not is_hostname_allowed(hostname, allowed):
        raise HostnameNotAllowedError(hostname)
