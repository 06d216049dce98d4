"""Application settings using pydantic-settings."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Gateway configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application settings
    app_name: str = "Auth Gateway"
    debug: bool = False
    environment: str = "local"  # local, development, production
    host: str = "0.0.0.0"
    port: int = 8000

    # Strategy selector: azure/entra, ldap/ad, none/disabled
    auth_method: str = "none"

    # Azure AD / Entra ID settings
    # NOTE: Defaults intentionally blank; the federated strategy is only enforced
    # once tenant, client id and secret are all present.
    azure_ad_tenant_id: str = ""
    azure_ad_client_id: str = ""
    azure_ad_client_secret: str = ""
    azure_ad_redirect_uri: str = ""
    azure_ad_allowed_groups: str = ""  # Comma-separated group object ids
    azure_ad_authority_host: str = "https://login.microsoftonline.com"
    azure_ad_graph_url: str = "https://graph.microsoft.com/v1.0"
    azure_ad_scopes: str = "openid profile email User.Read"

    # LDAP / Active Directory settings
    ldap_host: str = ""  # Comma-separated, tried in order
    ldap_port: int | None = None  # Defaults to 636 for LDAPS, 389 otherwise
    ldap_use_tls: bool = False  # Implicit TLS (ldaps://)
    ldap_start_tls: bool = False  # Plaintext upgraded with STARTTLS
    ldap_base_dn: str = ""
    ldap_bind_dn: str = ""
    ldap_bind_password: str = ""
    ldap_user_filter: str = "(sAMAccountName={username})"
    ldap_group_filter: str = "(member={dn})"
    ldap_allowed_groups: str = ""  # Comma-separated CNs or DN fragments
    ldap_timeout: int = 10  # Network timeout per host (seconds)
    ldap_session_timeout: int = 28800  # Inactivity limit for directory sessions (8 hours)

    # Session cookie and server-side store
    # An empty secret generates a per-process key (sessions do not survive restarts).
    session_secret_key: str = ""
    session_cookie_name: str = "auth_gateway_session"
    session_max_age_seconds: int = 86400
    session_https_only: bool = True
    session_same_site: str = "lax"
    session_max_entries: int = 10000

    # Outbound HTTP (token, profile and group calls) must never hang a request.
    http_timeout_seconds: float = 10.0

    # Logout handling
    logout_redirect_url: str = "/"
    logout_clear_cookies: str = "tenantId,clientId"

    @property
    def logout_cookie_names(self) -> list[str]:
        """Auxiliary credential cookies expired on logout."""
        return [name.strip() for name in self.logout_clear_cookies.split(",") if name.strip()]


settings = Settings()
