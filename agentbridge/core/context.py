"""Request-scoped logging context.

Each user request gets an id stored in a ContextVar; tasks spawned while
handling the request inherit it, so upstream failures in the logs can be
matched to the request that caused them.
"""

import contextvars
import logging
import uuid
from dataclasses import dataclass
from typing import Optional


@dataclass
class RequestContext:
    request_id: str
    post_id: str = ""
    user_id: Optional[str] = None
    bot_name: Optional[str] = None


_request_context: contextvars.ContextVar[Optional[RequestContext]] = contextvars.ContextVar(
    "request_context", default=None
)


def current_request() -> Optional[RequestContext]:
    return _request_context.get()


def set_request_context(post_id: str = "", user_id: str = None, bot_name: str = None) -> RequestContext:
    ctx = RequestContext(uuid.uuid4().hex[:12], post_id, user_id, bot_name)
    _request_context.set(ctx)
    return ctx


class RequestIdFilter(logging.Filter):
    """Adds ``request_id`` to every record, '-' outside a request."""

    def filter(self, record: logging.LogRecord) -> bool:
        ctx = _request_context.get()
        record.request_id = ctx.request_id if ctx else "-"
        return True
