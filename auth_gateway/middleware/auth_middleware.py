"""Authentication middleware for the gateway.

Must run inside ``ServerSessionMiddleware`` so that ``request.session`` is
available. Every non-excluded request is checked by the bound ``AuthRouter``;
the returned decision is interpreted here and nowhere else.
"""

from collections.abc import Callable, Iterable

from fastapi import Request, Response, status
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.exceptions import HTTPException
from starlette.formparsers import MultiPartException
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from auth_gateway.auth.decisions import (
    AuthRequest,
    Continue,
    Deny,
    Fatal,
    Redirect,
    RenderLoginForm,
)
from auth_gateway.auth.errors import auth_error_payload
from auth_gateway.auth.login_form import (
    PASSWORD_FIELD,
    SUBMIT_FIELD,
    USERNAME_FIELD,
    LoginFormPresenter,
)
from auth_gateway.auth.router import AuthRouter
from auth_gateway.logger import bind_request_context, get_logger
from auth_gateway.middleware.access_log_middleware import resolve_request_id
from auth_gateway.sessions.store import SessionStore

logger = get_logger(__name__)

# Routes that don't require authentication
EXCLUDED_ROUTES: set[str] = {
    "/health",
    "/auth/metrics",
}

# Query flag that triggers logout on any path
LOGOUT_FLAG = "logout"

_FORM_CONTENT_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


class AuthMiddleware(BaseHTTPMiddleware):
    """Enforces the configured authentication strategy for all routes except excluded ones."""

    def __init__(
        self,
        app: ASGIApp,
        *,
        router: AuthRouter,
        presenter: LoginFormPresenter,
        logout_redirect_url: str = "/",
        logout_cookie_names: Iterable[str] = (),
        secure_cookies: bool = True,
    ) -> None:
        super().__init__(app)
        self.router = router
        self.presenter = presenter
        self.logout_redirect_url = logout_redirect_url
        self.logout_cookie_names = tuple(logout_cookie_names)
        self.secure_cookies = secure_cookies

    def _is_excluded_route(self, path: str) -> bool:
        return path in EXCLUDED_ROUTES

    def _wants_json(self, request: Request) -> bool:
        accept = request.headers.get("accept", "")
        return "application/json" in accept and "text/html" not in accept

    async def _read_login_form(self, request: Request) -> dict[str, str] | None:
        """Return the submitted credentials when the request is a login form post."""
        if not self.router.accepts_login_form or request.method != "POST":
            return None
        content_type = request.headers.get("content-type", "")
        if not content_type.startswith(_FORM_CONTENT_TYPES):
            return None

        # Read the raw body first so it stays available to the wrapped application.
        await request.body()
        try:
            form = await request.form()
        except (HTTPException, MultiPartException) as exc:
            logger.info("login_form_unreadable", error=str(exc))
            return None
        if SUBMIT_FIELD not in form:
            return None

        username = form.get(USERNAME_FIELD)
        password = form.get(PASSWORD_FIELD)
        return {
            USERNAME_FIELD: username if isinstance(username, str) else "",
            PASSWORD_FIELD: password if isinstance(password, str) else "",
        }

    def _logout(self, session: SessionStore) -> Response:
        self.router.logout(session)
        session.invalidate()

        response = RedirectResponse(self.logout_redirect_url, status_code=status.HTTP_302_FOUND)
        for name in self.logout_cookie_names:
            response.delete_cookie(name, path="/", secure=self.secure_cookies)
        logger.info("auth_logout", auth_method=str(self.router.method))
        return response

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Check authentication for non-excluded routes."""
        path = request.url.path
        request_id = resolve_request_id(request)
        request.state.request_id = request_id
        bind_request_context(request_id=request_id, path=path)
        request.state.auth_method = self.router.auth_method_display_name()

        if self._is_excluded_route(path):
            logger.debug("auth_skipped", reason="excluded_route")
            return await call_next(request)

        session = SessionStore.from_request(request)

        if LOGOUT_FLAG in request.query_params:
            return self._logout(session)

        login_form = await self._read_login_form(request)
        auth_request = AuthRequest(
            path=path,
            query=dict(request.query_params),
            login_form=login_form,
        )
        decision = await self.router.require_auth(auth_request, session)

        if isinstance(decision, Continue):
            request.state.current_user = decision.user
            return await call_next(request)

        if isinstance(decision, Redirect):
            logger.debug("auth_redirect", status=decision.status_code)
            return RedirectResponse(decision.url, status_code=decision.status_code)

        if isinstance(decision, RenderLoginForm):
            username = (login_form or {}).get(USERNAME_FIELD, "")
            return self.presenter.render_login(error=decision.error, username=username)

        if isinstance(decision, Deny):
            if self._wants_json(request):
                return JSONResponse(
                    status_code=decision.status_code,
                    content=auth_error_payload(detail=decision.message, code=decision.code),
                )
            return self.presenter.render_denied(
                message=decision.message, status_code=decision.status_code
            )

        if isinstance(decision, Fatal):
            logger.critical("auth_fatal", code=decision.code)
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content=auth_error_payload(detail=decision.message, code=decision.code),
            )

        raise TypeError(f"Unhandled authentication decision: {decision!r}")
