"""Typed accessor over the per-user session mapping.

Federated and directory logins use disjoint keys, so a session written under
one ``AUTH_METHOD`` is invisible to the other.
"""

from __future__ import annotations

from collections.abc import MutableMapping
from typing import Any

from pydantic import ValidationError
from starlette.requests import Request

from auth_gateway.auth.models import DirectoryUser, FederatedUser

# Federated (Azure AD) keys
AZURE_USER = "azure_user"
AZURE_TOKEN = "azure_token"
AZURE_TOKEN_EXPIRES = "azure_token_expires"
OAUTH_STATE = "oauth_state"

# Directory (LDAP) keys
LDAP_USER = "ldap_user"
LDAP_AUTHENTICATED = "ldap_authenticated"
LDAP_LOGIN_TIME = "ldap_login_time"

# Set on login; the session middleware issues a fresh id and drops the flag.
ROTATE_SESSION_ID = "_rotate_session_id"


class SessionStore:
    def __init__(self, data: MutableMapping[str, Any]) -> None:
        self._data = data

    @classmethod
    def from_request(cls, request: Request) -> SessionStore:
        return cls(request.session)

    # Federated

    @property
    def federated_user(self) -> FederatedUser | None:
        raw = self._data.get(AZURE_USER)
        if not isinstance(raw, dict):
            return None
        try:
            return FederatedUser.model_validate(raw)
        except ValidationError:
            return None

    @property
    def access_token(self) -> str | None:
        return self._data.get(AZURE_TOKEN)

    @property
    def token_expires_at(self) -> float | None:
        value = self._data.get(AZURE_TOKEN_EXPIRES)
        return float(value) if value is not None else None

    def save_federated_login(
        self, user: FederatedUser, access_token: str, expires_at: float
    ) -> None:
        self._data[AZURE_USER] = user.model_dump()
        self._data[AZURE_TOKEN] = access_token
        self._data[AZURE_TOKEN_EXPIRES] = expires_at
        self.request_new_id()

    def set_oauth_state(self, state: str) -> None:
        self._data[OAUTH_STATE] = state

    def pop_oauth_state(self) -> str | None:
        """Consume the pending CSRF nonce; it can be read at most once."""
        return self._data.pop(OAUTH_STATE, None)

    def clear_federated(self) -> None:
        for key in (AZURE_USER, AZURE_TOKEN, AZURE_TOKEN_EXPIRES):
            self._data.pop(key, None)

    # Directory

    @property
    def directory_user(self) -> DirectoryUser | None:
        raw = self._data.get(LDAP_USER)
        if not isinstance(raw, dict):
            return None
        try:
            return DirectoryUser.model_validate(raw)
        except ValidationError:
            return None

    @property
    def is_directory_authenticated(self) -> bool:
        return LDAP_USER in self._data and bool(self._data.get(LDAP_AUTHENTICATED))

    @property
    def login_timestamp(self) -> float | None:
        value = self._data.get(LDAP_LOGIN_TIME)
        return float(value) if value is not None else None

    def save_directory_login(self, user: DirectoryUser, login_time: float) -> None:
        self._data[LDAP_USER] = user.model_dump()
        self._data[LDAP_AUTHENTICATED] = True
        self._data[LDAP_LOGIN_TIME] = login_time
        self.request_new_id()

    def clear_directory(self) -> None:
        for key in (LDAP_USER, LDAP_AUTHENTICATED, LDAP_LOGIN_TIME):
            self._data.pop(key, None)

    # Whole session

    def request_new_id(self) -> None:
        """Ask for the session to be re-keyed so a pre-login id cannot be reused."""
        self._data[ROTATE_SESSION_ID] = True

    def invalidate(self) -> None:
        """Drop everything; the session middleware then deletes the stored entry and cookie."""
        self._data.clear()

    def is_empty(self) -> bool:
        return not self._data
