"""Per-request access line and logging context."""

import time
import uuid
from collections.abc import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from auth_gateway.logger import bind_request_context, clear_request_context, get_logger

logger = get_logger(__name__)

REQUEST_ID_HEADERS = ("X-Request-ID", "X-Correlation-ID", "traceparent")
QUIET_PATHS = frozenset({"/health"})


def resolve_request_id(request: Request) -> str:
    """Reuse an upstream correlation id when one is present."""
    existing = getattr(request.state, "request_id", None)
    if existing:
        return existing
    for header in REQUEST_ID_HEADERS:
        value = request.headers.get(header)
        if value:
            return value
    return uuid.uuid4().hex


class AccessLogMiddleware(BaseHTTPMiddleware):
    """
    Outermost middleware: assigns the request id and writes one line per request.

    Example::

        INFO:     [web-1:4242] http_request method=POST path=/reports status=303 duration=41.2ms user=- request_id=9f2c...

    Only the path is logged. Query strings are left out because OAuth callbacks
    carry authorization codes.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = resolve_request_id(request)
        request.state.request_id = request_id
        bind_request_context(request_id=request_id, path=request.url.path)
        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000

        response.headers.setdefault("X-Request-ID", request_id)
        if request.url.path not in QUIET_PATHS:
            user = getattr(request.state, "current_user", None)
            logger.info(
                "http_request",
                method=request.method,
                path=request.url.path,
                status=response.status_code,
                duration=f"{elapsed_ms:.1f}ms",
                client=request.client.host if request.client else "-",
                user=getattr(user, "username", None) or "-",
            )
        clear_request_context()
        return response
