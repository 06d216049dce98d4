"""Strategy dispatcher.

The ``AUTH_METHOD`` value is resolved once at startup into a bound strategy;
per-request calls never look at the raw configuration again.
"""

from __future__ import annotations

import importlib.util
import time

from auth_gateway.auth.base import AuthStrategy, Clock
from auth_gateway.auth.decisions import AuthDecision, AuthRequest, Continue, Fatal
from auth_gateway.auth.errors import ConfigError, MissingCapability
from auth_gateway.auth.federated import FederatedStrategy
from auth_gateway.auth.models import GUEST_USER, NormalizedUser
from auth_gateway.auth.provider_config import (
    DISPLAY_NAMES,
    AuthMethod,
    DirectoryConfig,
    FederatedConfig,
    ProviderConfig,
    load_provider_config,
)
from auth_gateway.config import Settings
from auth_gateway.logger import get_logger
from auth_gateway.sessions.store import SessionStore

logger = get_logger(__name__)


class DisabledStrategy(AuthStrategy):
    """No authentication: every request continues as the guest user."""

    method = AuthMethod.DISABLED

    @property
    def is_enabled(self) -> bool:
        return True

    def is_authenticated(self, session: SessionStore) -> bool:
        return True

    def current_user(self, session: SessionStore) -> NormalizedUser | None:
        return GUEST_USER

    async def ensure_authenticated(
        self, request: AuthRequest, session: SessionStore
    ) -> AuthDecision:
        return Continue(GUEST_USER)

    def logout(self, session: SessionStore) -> None:
        return None


def _require_ldap3() -> None:
    if importlib.util.find_spec("ldap3") is None:
        raise MissingCapability(
            "AUTH_METHOD is ldap but the ldap3 package is not installed. "
            "Install it with: pip install ldap3"
        )


def build_strategy(
    method: AuthMethod, config: ProviderConfig, *, clock: Clock = time.time
) -> AuthStrategy:
    if method is AuthMethod.FEDERATED:
        assert isinstance(config, FederatedConfig)
        return FederatedStrategy(config, clock=clock)
    if method is AuthMethod.DIRECTORY:
        assert isinstance(config, DirectoryConfig)
        _require_ldap3()
        from auth_gateway.auth.directory import DirectoryStrategy

        return DirectoryStrategy(config, clock=clock)
    return DisabledStrategy(clock=clock)


class AuthRouter:
    """Uniform authentication contract over the active strategy."""

    def __init__(self, strategy: AuthStrategy) -> None:
        self.strategy = strategy
        self._log_startup_state()

    @classmethod
    def from_settings(cls, settings: Settings, *, clock: Clock = time.time) -> AuthRouter:
        """Bind the configured strategy. Raises ``ConfigError`` on invalid configuration."""
        method, config = load_provider_config(settings)
        return cls(build_strategy(method, config, clock=clock))

    def _log_startup_state(self) -> None:
        method = self.strategy.method
        if method is AuthMethod.DISABLED:
            logger.warning(
                "auth_disabled",
                message="Authentication is disabled. Do not use this setting in production.",
            )
        elif not self.strategy.is_enabled:
            logger.critical(
                "auth_not_enforced",
                auth_method=str(method),
                message=(
                    f"{self.strategy.display_name} authentication is selected but required "
                    "settings are missing; requests are NOT being authenticated."
                ),
            )
        else:
            logger.info("auth_strategy_bound", auth_method=str(method))

    @property
    def method(self) -> AuthMethod:
        return self.strategy.method

    @property
    def accepts_login_form(self) -> bool:
        return self.strategy.accepts_login_form and self.strategy.is_enabled

    def is_authenticated(self, session: SessionStore) -> bool:
        return self.strategy.is_authenticated(session)

    def current_user(self, session: SessionStore) -> NormalizedUser | None:
        return self.strategy.current_user(session)

    def auth_method_display_name(self) -> str:
        return DISPLAY_NAMES[self.strategy.method]

    def logout(self, session: SessionStore) -> None:
        self.strategy.logout(session)

    async def require_auth(self, request: AuthRequest, session: SessionStore) -> AuthDecision:
        try:
            return await self.strategy.ensure_authenticated(request, session)
        except ConfigError as exc:
            logger.critical("auth_config_error", code=exc.code, detail=exc.detail)
            return Fatal(message=exc.public_message, code=exc.code)
