"""Identity and metrics endpoints under ``/auth``.

``/auth/metrics`` is public (see ``EXCLUDED_ROUTES``); ``/auth/me`` requires a
signed-in user.
"""

from typing import Annotated

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel

from auth_gateway.auth.dependencies import get_auth_router, get_current_user_from_request
from auth_gateway.auth.models import NormalizedUser
from auth_gateway.auth.router import AuthRouter
from auth_gateway.observability.auth_metrics import get_auth_metrics

PROMETHEUS_CONTENT_TYPE = "text/plain; version=0.0.4"

router = APIRouter()


class WhoAmIResponse(BaseModel):
    auth_method: str
    user: NormalizedUser


@router.get("/me", response_model=WhoAmIResponse, summary="Current user")
async def whoami(
    user: Annotated[NormalizedUser, Depends(get_current_user_from_request)],
    auth_router: Annotated[AuthRouter, Depends(get_auth_router)],
) -> WhoAmIResponse:
    return WhoAmIResponse(auth_method=auth_router.auth_method_display_name(), user=user)


@router.get("/metrics", response_class=PlainTextResponse, summary="Login metrics (Prometheus)")
async def login_metrics() -> PlainTextResponse:
    return PlainTextResponse(
        get_auth_metrics().render_prometheus(), media_type=PROMETHEUS_CONTENT_TYPE
    )
