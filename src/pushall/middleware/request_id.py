"""Request ID middleware — trace one push through the relay's log.

Learn: Every HTTP request gets an ID, either the caller's X-Request-ID
(if it looks like an ID) or a fresh UUID. The ID and the routing token
from the query string are bound to structlog's contextvars, so the
`pushall.push` line and any rejection logged while handling the request
carry both. The ID is echoed in the response header.

Incoming IDs are untrusted input that ends up in the log file: anything
longer than MAX_REQUEST_ID_LENGTH or outside [A-Za-z0-9._:-] is
replaced rather than logged.

BaseHTTPMiddleware only wraps HTTP scopes; WebSocket connections pass
through untouched and log their token themselves.
"""

import re
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

REQUEST_ID_HEADER = "X-Request-ID"
MAX_REQUEST_ID_LENGTH = 128

_VALID_REQUEST_ID = re.compile(r"[A-Za-z0-9._:-]+")


def _request_id_from(request: Request) -> str:
    incoming = request.headers.get(REQUEST_ID_HEADER, "")
    if len(incoming) <= MAX_REQUEST_ID_LENGTH and _VALID_REQUEST_ID.fullmatch(incoming):
        return incoming
    return str(uuid.uuid4())


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Bind request ID and token to the log context of each request."""

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = _request_id_from(request)

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)
        token = request.query_params.get("token")
        if token:
            structlog.contextvars.bind_contextvars(token=token)

        response: Response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
