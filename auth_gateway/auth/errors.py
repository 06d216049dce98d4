"""Auth-specific error types and helpers.

Provider clients convert every network or protocol fault into one of the
typed errors below. Only ``public_message`` is ever shown to the client;
``detail`` carries the internal reason and is logged.

``AuthError`` is kept for JSON endpoints so the API returns consistent
structured error bodies for authentication failures.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from fastapi import HTTPException

GENERIC_DENIAL = "Authentication failed. Please try again or contact your administrator."


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class GatewayError(Exception):
    """Base class for all authentication gateway failures."""

    code: str = "auth.error"
    public_message: str = GENERIC_DENIAL

    def __init__(self, detail: str | None = None) -> None:
        self.detail = detail or self.__class__.__name__
        super().__init__(self.detail)


# Configuration: fatal, halts startup.


class ConfigError(GatewayError):
    code = "auth.config_error"
    public_message = "Authentication is not configured correctly."


class MissingCapability(ConfigError):
    code = "auth.missing_capability"


# Protocol: provider or transport faults, shown as a generic denial.


class ProtocolError(GatewayError):
    code = "auth.protocol_error"


class InvalidCallback(ProtocolError):
    code = "auth.invalid_callback"


class CsrfMismatch(ProtocolError):
    code = "auth.csrf_mismatch"


class TokenExchangeFailed(ProtocolError):
    code = "auth.token_exchange_failed"


class ProfileFetchFailed(ProtocolError):
    code = "auth.profile_fetch_failed"


class ConnectFailed(ProtocolError):
    code = "auth.connect_failed"
    public_message = "Failed to connect to the directory server. Please try again later."

    def __init__(self, detail: str | None = None, *, last_error: str = "") -> None:
        super().__init__(detail or f"All directory hosts failed. Last error: {last_error}")
        self.last_error = last_error


class ServiceBindFailed(ProtocolError):
    code = "auth.service_bind_failed"


class SearchFailed(ProtocolError):
    code = "auth.search_failed"


# Credentials: re-prompt with a form validation message.


class CredentialError(GatewayError):
    code = "auth.credential_error"
    public_message = "Invalid username or password"


class InvalidCredentials(CredentialError):
    code = "auth.invalid_credentials"


class MissingCredentials(CredentialError):
    code = "auth.missing_credentials"
    public_message = "Username and password are required"


# Authorization: logged separately for audit.


class AuthorizationError(GatewayError):
    code = "auth.authorization_error"


class AccessDenied(AuthorizationError):
    code = "auth.access_denied"
    public_message = "Access denied: User not in allowed groups"


class SessionError(GatewayError):
    code = "auth.session_error"


class SessionExpired(SessionError):
    code = "auth.session_expired"
    public_message = "Session expired. Please log in again."


# Directory lookup outcomes. Never surfaced directly: authenticate() turns them
# into InvalidCredentials so usernames cannot be enumerated.


class DirectoryLookupError(GatewayError):
    code = "auth.lookup_failed"


class UserNotFound(DirectoryLookupError):
    code = "auth.user_not_found"


class AmbiguousUser(DirectoryLookupError):
    code = "auth.ambiguous_user"


@dataclass(frozen=True)
class AuthErrorBody:
    detail: str
    code: str
    timestamp: str

    def to_dict(self) -> dict[str, str]:
        return {"detail": self.detail, "code": self.code, "timestamp": self.timestamp}


class AuthError(HTTPException):
    """HTTPException with a stable error code and timestamped payload."""

    def __init__(
        self,
        *,
        status_code: int,
        detail: str,
        code: str,
        headers: dict[str, str] | None = None,
    ) -> None:
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.code = code
        self.timestamp = _utc_now_iso()

    def to_payload(self) -> dict[str, str]:
        return AuthErrorBody(
            detail=str(self.detail), code=self.code, timestamp=self.timestamp
        ).to_dict()


def auth_error_payload(*, detail: str, code: str) -> dict[str, str]:
    """Create a structured error payload (for middleware-controlled responses)."""

    return AuthErrorBody(detail=detail, code=code, timestamp=_utc_now_iso()).to_dict()
