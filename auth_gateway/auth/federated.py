"""Azure AD (Entra ID) authentication using the OAuth2 authorization-code flow.

The browser is redirected to the Microsoft identity platform with a single-use
``state`` nonce; the callback's ``code`` is exchanged server-to-server for an
access token, which is then used against Microsoft Graph for the profile and,
when an allow-list is configured, the user's group memberships.
"""

from __future__ import annotations

import secrets
import time
from collections.abc import Mapping
from typing import Any
from urllib.parse import urlencode

import httpx

from auth_gateway.auth.base import AuthStrategy, Clock
from auth_gateway.auth.decisions import AuthDecision, AuthRequest, Continue, Deny, Redirect
from auth_gateway.auth.errors import (
    AccessDenied,
    CsrfMismatch,
    GatewayError,
    InvalidCallback,
    ProfileFetchFailed,
    TokenExchangeFailed,
)
from auth_gateway.auth.groups import federated_authorizer
from auth_gateway.auth.models import FederatedUser, NormalizedUser
from auth_gateway.auth.provider_config import AuthMethod, FederatedConfig
from auth_gateway.http_client import get_http_client
from auth_gateway.logger import get_logger
from auth_gateway.observability.auth_metrics import get_auth_metrics
from auth_gateway.sessions.store import SessionStore

logger = get_logger(__name__)

DEFAULT_TOKEN_LIFETIME_SECONDS = 3600
# Upper bound on @odata.nextLink pages followed for group memberships.
_MAX_GROUP_PAGES = 50


def _provider_error(response: httpx.Response) -> str | None:
    """Best-effort extraction of the OAuth/Graph error code (never the full body)."""
    try:
        payload = response.json()
    except ValueError:
        return None
    if not isinstance(payload, dict):
        return None
    error = payload.get("error")
    if isinstance(error, dict):  # Graph wraps errors as {"error": {"code": ...}}
        return str(error.get("code") or "") or None
    return str(error) if error else None


class FederatedOAuthClient:
    """Client side of the authorization-code exchange against Azure AD and Graph."""

    def __init__(self, config: FederatedConfig, *, clock: Clock = time.time) -> None:
        self.config = config
        self._clock = clock

    def build_authorization_url(self, session: SessionStore) -> str:
        """Create a fresh CSRF nonce, remember it in the session and return the login URL."""
        state = secrets.token_hex(16)
        session.set_oauth_state(state)
        params = {
            "client_id": self.config.client_id,
            "response_type": "code",
            "redirect_uri": self.config.redirect_uri,
            "response_mode": "query",
            "scope": self.config.scopes,
            "state": state,
        }
        return f"{self.config.authorize_endpoint}?{urlencode(params)}"

    async def handle_callback(
        self, query: Mapping[str, str], session: SessionStore
    ) -> FederatedUser:
        """Validate the callback, exchange the code and persist the login.

        The pending nonce is consumed before anything else, so a state value can
        never be accepted twice.
        """
        expected_state = session.pop_oauth_state()
        code = query.get("code")
        state = query.get("state")

        if not code or not state:
            raise InvalidCallback(
                f"Invalid callback parameters (provider error: {query.get('error') or 'none'})"
            )
        if not expected_state or not secrets.compare_digest(state, expected_state):
            raise CsrfMismatch("Invalid state parameter")

        token_data = await self.exchange_code(code)
        access_token = str(token_data["access_token"])

        profile = await self.fetch_profile(access_token)

        if self.config.allowed_groups:
            group_ids = await self.fetch_group_ids(access_token)
            if not federated_authorizer.is_authorized(group_ids, self.config.allowed_groups):
                raise AccessDenied(
                    f"User {profile.get('userPrincipalName') or profile.get('id')} "
                    "not in allowed groups"
                )

        user = FederatedUser.from_graph_profile(profile)
        try:
            lifetime = int(token_data.get("expires_in") or DEFAULT_TOKEN_LIFETIME_SECONDS)
        except (TypeError, ValueError):
            lifetime = DEFAULT_TOKEN_LIFETIME_SECONDS
        session.save_federated_login(user, access_token, self._clock() + lifetime)
        return user

    async def exchange_code(self, code: str) -> dict[str, Any]:
        data = {
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
            "code": code,
            "redirect_uri": self.config.redirect_uri,
            "grant_type": "authorization_code",
        }
        client = await get_http_client()
        try:
            response = await client.post(
                self.config.token_endpoint,
                data=data,
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise TokenExchangeFailed(f"Token endpoint request failed: {type(exc).__name__}") from exc

        if response.status_code != 200:
            logger.error(
                "azure_token_error",
                status=response.status_code,
                provider_error=_provider_error(response),
            )
            raise TokenExchangeFailed(f"Token endpoint returned HTTP {response.status_code}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise TokenExchangeFailed("Token endpoint returned a non-JSON body") from exc
        if not isinstance(payload, dict) or not payload.get("access_token"):
            raise TokenExchangeFailed("Token response has no access_token")
        return payload

    async def _graph_get(self, url: str, access_token: str) -> httpx.Response:
        client = await get_http_client()
        return await client.get(
            url,
            headers={
                "Authorization": f"Bearer {access_token}",
                "Accept": "application/json",
            },
        )

    async def fetch_profile(self, access_token: str) -> dict[str, Any]:
        try:
            response = await self._graph_get(f"{self.config.graph_url}/me", access_token)
        except httpx.HTTPError as exc:
            raise ProfileFetchFailed(f"Profile request failed: {type(exc).__name__}") from exc

        if response.status_code != 200:
            logger.error(
                "azure_user_info_error",
                status=response.status_code,
                provider_error=_provider_error(response),
            )
            raise ProfileFetchFailed(f"Profile endpoint returned HTTP {response.status_code}")

        try:
            profile = response.json()
        except ValueError as exc:
            raise ProfileFetchFailed("Profile endpoint returned a non-JSON body") from exc
        if not isinstance(profile, dict):
            raise ProfileFetchFailed("Profile endpoint returned an unexpected payload")
        return profile

    async def fetch_group_ids(self, access_token: str) -> list[str]:
        """Collect group object ids across ``@odata.nextLink`` pages.

        A failed page ends collection; the ids gathered so far are returned, which
        at worst denies access.
        """
        group_ids: list[str] = []
        url: str | None = f"{self.config.graph_url}/me/memberOf?$select=id"
        pages = 0
        while url and pages < _MAX_GROUP_PAGES:
            pages += 1
            try:
                response = await self._graph_get(url, access_token)
            except httpx.HTTPError as exc:
                logger.error("azure_groups_error", error_type=type(exc).__name__, page=pages)
                break
            if response.status_code != 200:
                logger.error(
                    "azure_groups_error",
                    status=response.status_code,
                    provider_error=_provider_error(response),
                    page=pages,
                )
                break
            try:
                payload = response.json()
            except ValueError:
                logger.error("azure_groups_error", reason="non_json_body", page=pages)
                break
            if not isinstance(payload, dict):
                break

            for group in payload.get("value") or []:
                if isinstance(group, dict) and group.get("id"):
                    group_ids.append(str(group["id"]))
            url = payload.get("@odata.nextLink")

        return group_ids


def _is_callback(query: Mapping[str, str]) -> bool:
    return "state" in query and ("code" in query or "error" in query)


class FederatedStrategy(AuthStrategy):
    """Enforces an Azure AD login on every request."""

    method = AuthMethod.FEDERATED

    def __init__(
        self,
        config: FederatedConfig,
        *,
        client: FederatedOAuthClient | None = None,
        clock: Clock = time.time,
    ) -> None:
        super().__init__(clock=clock)
        self.config = config
        self.client = client or FederatedOAuthClient(config, clock=clock)

    @property
    def is_enabled(self) -> bool:
        return self.config.is_enabled

    def _has_login(self, session: SessionStore) -> bool:
        return session.federated_user is not None and bool(session.access_token)

    def _is_expired(self, session: SessionStore) -> bool:
        expires_at = session.token_expires_at
        return expires_at is not None and expires_at < self._clock()

    def is_authenticated(self, session: SessionStore) -> bool:
        return self._has_login(session) and not self._is_expired(session)

    def current_user(self, session: SessionStore) -> NormalizedUser | None:
        if not self.is_authenticated(session):
            return None
        user = session.federated_user
        return user.to_normalized() if user else None

    async def ensure_authenticated(
        self, request: AuthRequest, session: SessionStore
    ) -> AuthDecision:
        if not self.is_enabled:
            return Continue()

        if _is_callback(request.query):
            return await self._complete_callback(request, session)

        if not self._has_login(session):
            return Redirect(self.client.build_authorization_url(session))

        if self._is_expired(session):
            # No refresh-token flow: a full round trip to the provider.
            logger.info("azure_token_expired", path=request.path)
            session.clear_federated()
            return Redirect(self.client.build_authorization_url(session))

        return Continue(self.current_user(session))

    async def _complete_callback(
        self, request: AuthRequest, session: SessionStore
    ) -> AuthDecision:
        metrics = get_auth_metrics()
        start = time.perf_counter()
        try:
            user = await self.client.handle_callback(request.query, session)
        except AccessDenied as exc:
            duration_ms = (time.perf_counter() - start) * 1000
            metrics.inc_access_denied(provider="azure")
            metrics.observe_authentication_duration_ms(
                provider="azure", outcome="denied", duration_ms=duration_ms
            )
            logger.warning("auth_access_denied", provider="azure", code=exc.code, detail=exc.detail)
            return Deny(message=exc.public_message, code=exc.code)
        except GatewayError as exc:
            duration_ms = (time.perf_counter() - start) * 1000
            metrics.inc_auth_failure(reason="azure_callback_failed", code=exc.code)
            metrics.observe_authentication_duration_ms(
                provider="azure", outcome="failure", duration_ms=duration_ms
            )
            logger.warning("auth_failed", provider="azure", code=exc.code, detail=exc.detail)
            return Deny(message=exc.public_message, code=exc.code)

        duration_ms = (time.perf_counter() - start) * 1000
        metrics.inc_auth_success(provider="azure")
        metrics.observe_authentication_duration_ms(
            provider="azure", outcome="success", duration_ms=duration_ms
        )
        logger.info(
            "auth_success",
            provider="azure",
            subject=user.id,
            username=user.user_principal_name,
            duration_ms=round(duration_ms, 2),
        )
        # Strip code/state from the URL before any page renders.
        return Redirect(request.path)

    def logout(self, session: SessionStore) -> None:
        session.clear_federated()
