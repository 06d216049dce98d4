import pytest

from auth_gateway.auth.errors import ConfigError
from auth_gateway.auth.provider_config import (
    AuthMethod,
    DirectoryConfig,
    DisabledConfig,
    FederatedConfig,
    LdapTransport,
    load_provider_config,
    resolve_auth_method,
)
from support import directory_config, federated_config, make_settings


@pytest.mark.parametrize(
    "value, expected",
    [
        ("azure", AuthMethod.FEDERATED),
        ("Entra", AuthMethod.FEDERATED),
        ("OAUTH", AuthMethod.FEDERATED),
        ("ldap", AuthMethod.DIRECTORY),
        (" AD ", AuthMethod.DIRECTORY),
        ("directory", AuthMethod.DIRECTORY),
        ("none", AuthMethod.DISABLED),
        ("Disabled", AuthMethod.DISABLED),
        ("off", AuthMethod.DISABLED),
        ("", AuthMethod.DISABLED),
        (None, AuthMethod.DISABLED),
    ],
)
def test_resolve_auth_method_aliases(value: str | None, expected: AuthMethod) -> None:
    assert resolve_auth_method(value) is expected


def test_unknown_auth_method_is_a_config_error() -> None:
    with pytest.raises(ConfigError) as excinfo:
        resolve_auth_method("kerberos")
    assert "kerberos" in excinfo.value.detail


def test_federated_config_enabled_requires_tenant_client_and_secret() -> None:
    assert federated_config().is_enabled is True
    assert federated_config(client_secret="").is_enabled is False
    assert federated_config(tenant_id="").is_enabled is False


def test_federated_endpoints() -> None:
    config = federated_config(authority_host="https://login.microsoftonline.com/")
    assert config.authorize_endpoint == (
        "https://login.microsoftonline.com/tenant-1/oauth2/v2.0/authorize"
    )
    assert config.token_endpoint == "https://login.microsoftonline.com/tenant-1/oauth2/v2.0/token"


def test_directory_transport_and_default_ports() -> None:
    plain = directory_config()
    assert plain.transport is LdapTransport.PLAIN
    assert plain.effective_port == 389
    assert plain.uri_for("dc1") == "ldap://dc1:389"

    ldaps = directory_config(use_tls=True)
    assert ldaps.transport is LdapTransport.LDAPS
    assert ldaps.effective_port == 636
    assert ldaps.uri_for("dc1") == "ldaps://dc1:636"

    start_tls = directory_config(start_tls=True, port=1389)
    assert start_tls.transport is LdapTransport.START_TLS
    assert start_tls.uri_for("dc1") == "ldap://dc1:1389"


def test_directory_config_enabled_requires_host_and_base_dn() -> None:
    assert directory_config().is_enabled is True
    assert directory_config(hosts=()).is_enabled is False
    assert directory_config(base_dn="").is_enabled is False


def test_load_provider_config_parses_lists_from_settings() -> None:
    settings = make_settings(
        auth_method="LDAP",
        ldap_host="dc1.example.com, dc2.example.com,",
        ldap_base_dn="DC=x",
        ldap_allowed_groups="Admins, Ops",
    )
    method, config = load_provider_config(settings)
    assert method is AuthMethod.DIRECTORY
    assert isinstance(config, DirectoryConfig)
    assert config.hosts == ("dc1.example.com", "dc2.example.com")
    assert config.allowed_groups == ("Admins", "Ops")
    assert config.timeout_seconds == 10
    assert config.session_timeout_seconds == 28800


def test_load_provider_config_federated_and_disabled() -> None:
    method, config = load_provider_config(
        make_settings(
            auth_method="azure",
            azure_ad_tenant_id="t",
            azure_ad_client_id="c",
            azure_ad_client_secret="s",
            azure_ad_allowed_groups="g1,g2",
        )
    )
    assert method is AuthMethod.FEDERATED
    assert isinstance(config, FederatedConfig)
    assert config.allowed_groups == ("g1", "g2")
    assert config.scopes == "openid profile email User.Read"

    method, config = load_provider_config(make_settings())
    assert method is AuthMethod.DISABLED
    assert isinstance(config, DisabledConfig)
