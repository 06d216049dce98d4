"""Common contract for the authentication strategies."""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from collections.abc import Callable

from auth_gateway.auth.decisions import AuthDecision, AuthRequest
from auth_gateway.auth.models import NormalizedUser
from auth_gateway.auth.provider_config import DISPLAY_NAMES, AuthMethod
from auth_gateway.sessions.store import SessionStore

Clock = Callable[[], float]


class AuthStrategy(ABC):
    """One way of establishing identity, bound once at startup."""

    method: AuthMethod
    # True only for strategies that read credentials from a posted login form.
    accepts_login_form: bool = False

    def __init__(self, *, clock: Clock = time.time) -> None:
        self._clock = clock

    @property
    def display_name(self) -> str:
        return DISPLAY_NAMES[self.method]

    @property
    @abstractmethod
    def is_enabled(self) -> bool:
        """False when required settings are missing; enforcement is then skipped."""

    @abstractmethod
    def is_authenticated(self, session: SessionStore) -> bool: ...

    @abstractmethod
    def current_user(self, session: SessionStore) -> NormalizedUser | None: ...

    @abstractmethod
    async def ensure_authenticated(
        self, request: AuthRequest, session: SessionStore
    ) -> AuthDecision: ...

    @abstractmethod
    def logout(self, session: SessionStore) -> None:
        """Remove this strategy's session fields. Must be safe to call repeatedly."""
