"""
Request correlation.

Every request carries an id, taken from the client's ``X-Request-ID`` header
when it is well formed and generated otherwise. The id is echoed back on the
response, stamped on log records and copied into error envelopes as
``trace_id``.
"""

import logging
import re
import uuid
from contextvars import ContextVar
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

# Client-supplied ids end up in log lines
_VALID_REQUEST_ID = re.compile(r"^[A-Za-z0-9._-]{1,64}$")

request_id_ctx: ContextVar[str] = ContextVar("request_id", default="")


def generate_id() -> str:
    return uuid.uuid4().hex[:12]


def resolve_request_id(header_value: str | None) -> str:
    """Accept a client id only if it is short and plain; otherwise mint one."""
    if header_value and _VALID_REQUEST_ID.match(header_value):
        return header_value
    return generate_id()


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Response]
    ) -> Response:
        request_id = resolve_request_id(request.headers.get(REQUEST_ID_HEADER))
        request_id_ctx.set(request_id)
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


def get_request_id() -> str:
    return request_id_ctx.get() or "unknown"


class CorrelationLogFilter(logging.Filter):
    """Adds ``%(request_id)s`` to every record ("unknown" outside a request)."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = get_request_id()
        return True
