"""Outcomes of an authentication check.

Strategies never write responses themselves. They return one of these values
and ``AuthMiddleware`` turns it into an HTTP response, so the decision logic
can be exercised without a live request.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field

from auth_gateway.auth.models import NormalizedUser


@dataclass(frozen=True, slots=True)
class AuthRequest:
    """The parts of an inbound request that authentication decisions depend on."""

    path: str = "/"
    query: Mapping[str, str] = field(default_factory=dict)
    # Present only when the request is a login form submission.
    login_form: Mapping[str, str] | None = None


@dataclass(frozen=True, slots=True)
class Continue:
    """Let the wrapped application handle the request."""

    user: NormalizedUser | None = None


@dataclass(frozen=True, slots=True)
class Redirect:
    url: str
    status_code: int = 302


@dataclass(frozen=True, slots=True)
class RenderLoginForm:
    error: str | None = None


@dataclass(frozen=True, slots=True)
class Deny:
    message: str
    code: str = "auth.denied"
    status_code: int = 403


@dataclass(frozen=True, slots=True)
class Fatal:
    message: str
    code: str = "auth.config_error"


type AuthDecision = Continue | Redirect | RenderLoginForm | Deny | Fatal
