"""
FastAPI application for the auth gateway.

Enforces the configured authentication strategy (Azure AD, LDAP or none) in
front of the gateway's own routes or a wrapped ASGI application.
"""

import secrets
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.types import ASGIApp

from auth_gateway import __version__
from auth_gateway.auth.errors import AuthError
from auth_gateway.auth.login_form import LoginFormPresenter
from auth_gateway.auth.router import AuthRouter
from auth_gateway.config import Settings
from auth_gateway.config import settings as default_settings
from auth_gateway.http_client import close_http_client, configure_http_client
from auth_gateway.logger import get_logger, setup_logging
from auth_gateway.middleware.access_log_middleware import AccessLogMiddleware
from auth_gateway.middleware.auth_middleware import AuthMiddleware
from auth_gateway.middleware.security_middleware import SecurityMiddleware
from auth_gateway.routers import api_router
from auth_gateway.sessions.memory_backend import MemorySessionBackend, SessionBackend
from auth_gateway.sessions.middleware import ServerSessionMiddleware


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan handler for startup and shutdown."""
    logger = get_logger(__name__)
    logger.info(
        "gateway_starting",
        auth_method=app.state.auth_router.auth_method_display_name(),
    )

    yield

    logger.info("gateway_shutting_down")
    await close_http_client()
    logger.info("gateway_shutdown_complete")


def create_app(
    settings: Settings | None = None,
    *,
    wrapped_app: ASGIApp | None = None,
    session_backend: SessionBackend | None = None,
    auth_router: AuthRouter | None = None,
) -> FastAPI:
    """Create and configure the gateway application.

    Raises ``ConfigError`` for an invalid authentication configuration, so a
    misconfigured process never starts serving.
    """
    settings = settings or default_settings
    setup_logging(settings.debug)
    logger = get_logger(__name__)

    auth_router = auth_router or AuthRouter.from_settings(settings)
    configure_http_client(timeout_seconds=settings.http_timeout_seconds)

    secret_key = settings.session_secret_key
    if not secret_key:
        secret_key = secrets.token_urlsafe(32)
        logger.warning(
            "session_secret_generated",
            message="SESSION_SECRET_KEY is not set; sessions will not survive a restart.",
        )
    session_backend = session_backend or MemorySessionBackend(
        max_entries=settings.session_max_entries
    )

    app = FastAPI(
        title=settings.app_name,
        description="Authentication gateway (Azure AD, LDAP or none)",
        version=__version__,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.settings = settings
    app.state.auth_router = auth_router
    app.state.session_backend = session_backend

    @app.exception_handler(AuthError)
    async def _auth_error_handler(_request: Request, exc: AuthError):
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_payload(),
            headers=exc.headers,
        )

    # Middleware executes in reverse order of registration: the last one added
    # is outermost. Resulting order: access log -> security -> session -> auth.
    app.add_middleware(
        AuthMiddleware,
        router=auth_router,
        presenter=LoginFormPresenter(
            app_name=settings.app_name,
            auth_method_display_name=auth_router.auth_method_display_name(),
        ),
        logout_redirect_url=settings.logout_redirect_url,
        logout_cookie_names=settings.logout_cookie_names,
        secure_cookies=settings.session_https_only,
    )
    app.add_middleware(
        ServerSessionMiddleware,
        backend=session_backend,
        secret_key=secret_key,
        cookie_name=settings.session_cookie_name,
        max_age=settings.session_max_age_seconds,
        https_only=settings.session_https_only,
        same_site=settings.session_same_site,
    )
    app.add_middleware(SecurityMiddleware, hsts=settings.session_https_only)
    app.add_middleware(AccessLogMiddleware)

    @app.get("/health")
    async def health():
        """Health check endpoint (excluded from auth)."""
        return {"status": "healthy"}

    app.include_router(api_router)

    if wrapped_app is not None:
        app.mount("/", wrapped_app)
    else:

        @app.get("/")
        async def root(request: Request):
            """Root endpoint - service status and the current user."""
            user = getattr(request.state, "current_user", None)
            return {
                "status": "running",
                "service": settings.app_name,
                "version": __version__,
                "auth_method": auth_router.auth_method_display_name(),
                "user": user.model_dump() if user else None,
            }

    return app


app = create_app()
