"""Authentication models and types."""

from typing import Any, Literal

from pydantic import BaseModel

ProviderName = Literal["azure", "ldap", "none"]


class NormalizedUser(BaseModel):
    """Identity exposed to the wrapped application, whatever strategy is active."""

    name: str
    email: str = ""
    username: str

    provider: ProviderName = "none"

    # Provider specific identifiers, when known.
    id: str | None = None
    user_principal_name: str | None = None
    distinguished_name: str | None = None


GUEST_USER = NormalizedUser(name="Guest", email="", username="guest", provider="none")


class FederatedUser(BaseModel):
    """User record stored in the session after an Azure AD login."""

    id: str = ""
    display_name: str = ""
    email: str = ""
    user_principal_name: str = ""

    @classmethod
    def from_graph_profile(cls, profile: dict[str, Any]) -> "FederatedUser":
        """Map a Microsoft Graph ``/me`` payload."""
        upn = profile.get("userPrincipalName") or ""
        return cls(
            id=str(profile.get("id") or ""),
            display_name=profile.get("displayName") or "",
            email=profile.get("mail") or upn,
            user_principal_name=upn,
        )

    def to_normalized(self) -> NormalizedUser:
        return NormalizedUser(
            name=self.display_name,
            email=self.email,
            username=self.user_principal_name or self.email or self.id,
            provider="azure",
            id=self.id or None,
            user_principal_name=self.user_principal_name or None,
        )


class DirectoryUser(BaseModel):
    """User record stored in the session after a successful directory bind."""

    distinguished_name: str
    username: str
    display_name: str = ""
    email: str = ""
    user_principal_name: str = ""

    def to_normalized(self) -> NormalizedUser:
        return NormalizedUser(
            name=self.display_name or self.username,
            email=self.email,
            username=self.username,
            provider="ldap",
            user_principal_name=self.user_principal_name or None,
            distinguished_name=self.distinguished_name,
        )
