"""Typed provider configuration, resolved once from ``Settings``."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from auth_gateway.auth.errors import ConfigError
from auth_gateway.auth.groups import parse_group_list
from auth_gateway.config import Settings


class AuthMethod(StrEnum):
    FEDERATED = "federated"
    DIRECTORY = "directory"
    DISABLED = "disabled"


_METHOD_ALIASES: dict[str, AuthMethod] = {
    "azure": AuthMethod.FEDERATED,
    "entra": AuthMethod.FEDERATED,
    "federated": AuthMethod.FEDERATED,
    "oauth": AuthMethod.FEDERATED,
    "ldap": AuthMethod.DIRECTORY,
    "ad": AuthMethod.DIRECTORY,
    "directory": AuthMethod.DIRECTORY,
    "none": AuthMethod.DISABLED,
    "disabled": AuthMethod.DISABLED,
    "off": AuthMethod.DISABLED,
}

DISPLAY_NAMES: dict[AuthMethod, str] = {
    AuthMethod.FEDERATED: "Azure AD",
    AuthMethod.DIRECTORY: "Active Directory",
    AuthMethod.DISABLED: "None (Development)",
}


def resolve_auth_method(value: str | None) -> AuthMethod:
    """Map the ``AUTH_METHOD`` value (case-insensitive, with aliases) to a strategy."""

    key = (value or "none").strip().lower() or "none"
    try:
        return _METHOD_ALIASES[key]
    except KeyError:
        raise ConfigError(
            f'Invalid AUTH_METHOD {value!r}. Must be "azure", "ldap", or "none".'
        ) from None


class LdapTransport(StrEnum):
    PLAIN = "plain"
    START_TLS = "start_tls"
    LDAPS = "ldaps"


@dataclass(frozen=True, slots=True)
class FederatedConfig:
    tenant_id: str
    client_id: str
    client_secret: str
    redirect_uri: str
    allowed_groups: tuple[str, ...] = ()
    authority_host: str = "https://login.microsoftonline.com"
    graph_url: str = "https://graph.microsoft.com/v1.0"
    scopes: str = "openid profile email User.Read"

    @property
    def is_enabled(self) -> bool:
        return bool(self.tenant_id and self.client_id and self.client_secret)

    @property
    def authorize_endpoint(self) -> str:
        return f"{self.authority_host.rstrip('/')}/{self.tenant_id}/oauth2/v2.0/authorize"

    @property
    def token_endpoint(self) -> str:
        return f"{self.authority_host.rstrip('/')}/{self.tenant_id}/oauth2/v2.0/token"

    @classmethod
    def from_settings(cls, settings: Settings) -> FederatedConfig:
        return cls(
            tenant_id=settings.azure_ad_tenant_id.strip(),
            client_id=settings.azure_ad_client_id.strip(),
            client_secret=settings.azure_ad_client_secret,
            redirect_uri=settings.azure_ad_redirect_uri.strip(),
            allowed_groups=parse_group_list(settings.azure_ad_allowed_groups),
            authority_host=settings.azure_ad_authority_host,
            graph_url=settings.azure_ad_graph_url.rstrip("/"),
            scopes=settings.azure_ad_scopes,
        )


@dataclass(frozen=True, slots=True)
class DirectoryConfig:
    hosts: tuple[str, ...]
    base_dn: str
    port: int | None = None
    use_tls: bool = False
    start_tls: bool = False
    bind_dn: str = ""
    bind_password: str = ""
    user_filter: str = "(sAMAccountName={username})"
    group_filter: str = "(member={dn})"
    allowed_groups: tuple[str, ...] = ()
    timeout_seconds: int = 10
    session_timeout_seconds: int = 28800

    @property
    def is_enabled(self) -> bool:
        return bool(self.hosts and self.base_dn)

    @property
    def transport(self) -> LdapTransport:
        if self.use_tls:
            return LdapTransport.LDAPS
        if self.start_tls:
            return LdapTransport.START_TLS
        return LdapTransport.PLAIN

    @property
    def effective_port(self) -> int:
        if self.port:
            return self.port
        return 636 if self.transport is LdapTransport.LDAPS else 389

    def uri_for(self, host: str) -> str:
        scheme = "ldaps" if self.transport is LdapTransport.LDAPS else "ldap"
        return f"{scheme}://{host}:{self.effective_port}"

    @classmethod
    def from_settings(cls, settings: Settings) -> DirectoryConfig:
        hosts = tuple(host.strip() for host in settings.ldap_host.split(",") if host.strip())
        return cls(
            hosts=hosts,
            base_dn=settings.ldap_base_dn.strip(),
            port=settings.ldap_port,
            use_tls=settings.ldap_use_tls,
            start_tls=settings.ldap_start_tls,
            bind_dn=settings.ldap_bind_dn.strip(),
            bind_password=settings.ldap_bind_password,
            user_filter=settings.ldap_user_filter,
            group_filter=settings.ldap_group_filter,
            allowed_groups=parse_group_list(settings.ldap_allowed_groups),
            timeout_seconds=settings.ldap_timeout,
            session_timeout_seconds=settings.ldap_session_timeout,
        )


@dataclass(frozen=True, slots=True)
class DisabledConfig:
    @property
    def is_enabled(self) -> bool:
        return True


type ProviderConfig = FederatedConfig | DirectoryConfig | DisabledConfig


def load_provider_config(settings: Settings) -> tuple[AuthMethod, ProviderConfig]:
    """Resolve the active strategy and its configuration, failing on an unknown method."""

    method = resolve_auth_method(settings.auth_method)
    if method is AuthMethod.FEDERATED:
        return method, FederatedConfig.from_settings(settings)
    if method is AuthMethod.DIRECTORY:
        return method, DirectoryConfig.from_settings(settings)
    return method, DisabledConfig()
