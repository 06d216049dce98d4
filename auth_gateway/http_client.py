"""
Pooled HTTP client for identity-provider calls.

The token, Graph profile and group-membership requests all go through one
``httpx.AsyncClient``. Every call is bounded by ``HTTP_TIMEOUT_SECONDS`` so a
silent provider fails the login instead of hanging the request.
"""

from __future__ import annotations

import httpx

from auth_gateway import __version__
from auth_gateway.config import settings
from auth_gateway.logger import get_logger

logger = get_logger(__name__)

POOL_LIMITS = httpx.Limits(
    max_connections=50,
    max_keepalive_connections=10,
    keepalive_expiry=30.0,
)

_client: httpx.AsyncClient | None = None
_timeout_seconds: float = settings.http_timeout_seconds


def configure_http_client(*, timeout_seconds: float) -> None:
    """Set the timeout used when the client is (re)created."""
    global _timeout_seconds
    _timeout_seconds = timeout_seconds


async def get_http_client() -> httpx.AsyncClient:
    """Return the shared client, creating it on first use or after shutdown."""
    global _client
    if _client is None or _client.is_closed:
        _client = httpx.AsyncClient(
            timeout=httpx.Timeout(_timeout_seconds, connect=min(_timeout_seconds, 5.0)),
            limits=POOL_LIMITS,
            http2=True,
            follow_redirects=False,
            headers={"User-Agent": f"auth-gateway/{__version__}"},
        )
        logger.info("http_client_created", timeout_seconds=_timeout_seconds)
    return _client


async def close_http_client() -> None:
    """Release pooled connections; called from the application lifespan."""
    global _client
    if _client is not None and not _client.is_closed:
        await _client.aclose()
        logger.info("http_client_closed")
    _client = None
