"""FastAPI dependencies for the authenticated user."""

from fastapi import Request, status

from auth_gateway.auth.errors import AuthError
from auth_gateway.auth.models import NormalizedUser
from auth_gateway.auth.router import AuthRouter


async def get_current_user_from_request(request: Request) -> NormalizedUser:
    """Get the current user from request state (set by AuthMiddleware).

    Raises an explicit 401 when the middleware did not establish an identity,
    e.g. on excluded routes or when the active strategy is not enforced.
    """
    user = getattr(request.state, "current_user", None)
    if user is None:
        raise AuthError(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            code="auth.not_authenticated",
        )
    return user


def get_auth_router(request: Request) -> AuthRouter:
    return request.app.state.auth_router

