"""Server-side session middleware.

The cookie carries only a signed, opaque session id; the session contents live
in a ``SessionBackend``. The loaded dict is exposed as ``request.session``.
"""

import secrets
from collections.abc import Callable

from fastapi import Request, Response
from itsdangerous import BadSignature, TimestampSigner
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from auth_gateway.logger import get_logger
from auth_gateway.sessions.memory_backend import SessionBackend
from auth_gateway.sessions.store import ROTATE_SESSION_ID

logger = get_logger(__name__)


class ServerSessionMiddleware(BaseHTTPMiddleware):
    def __init__(
        self,
        app: ASGIApp,
        *,
        backend: SessionBackend,
        secret_key: str,
        cookie_name: str = "auth_gateway_session",
        max_age: int = 86400,
        https_only: bool = True,
        same_site: str = "lax",
        path: str = "/",
    ) -> None:
        super().__init__(app)
        self.backend = backend
        self.signer = TimestampSigner(secret_key)
        self.cookie_name = cookie_name
        self.max_age = max_age
        self.https_only = https_only
        self.same_site = same_site
        self.path = path

    def _load_session_id(self, request: Request) -> str | None:
        cookie = request.cookies.get(self.cookie_name)
        if not cookie:
            return None
        try:
            return self.signer.unsign(cookie, max_age=self.max_age).decode("utf-8")
        except BadSignature:
            logger.info("session_cookie_rejected", reason="bad_or_expired_signature")
            return None

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        had_cookie = self.cookie_name in request.cookies
        session_id = self._load_session_id(request)
        data = self.backend.get(session_id) if session_id else None
        if data is None:
            # Never adopt an id the store does not know about.
            session_id = None
        request.scope["session"] = data or {}

        response: Response = await call_next(request)

        session = request.scope.get("session") or {}
        if session.pop(ROTATE_SESSION_ID, False) and session_id is not None:
            self.backend.delete(session_id)
            session_id = None
            logger.info("session_id_rotated")
        if session:
            if session_id is None:
                session_id = secrets.token_urlsafe(32)
            self.backend.set(session_id, dict(session), ttl_seconds=self.max_age)
            response.set_cookie(
                self.cookie_name,
                self.signer.sign(session_id).decode("utf-8"),
                max_age=self.max_age,
                path=self.path,
                secure=self.https_only,
                httponly=True,
                samesite=self.same_site,
            )
        elif session_id is not None or had_cookie:
            if session_id is not None:
                self.backend.delete(session_id)
            response.delete_cookie(
                self.cookie_name,
                path=self.path,
                secure=self.https_only,
                httponly=True,
                samesite=self.same_site,
            )
        return response
