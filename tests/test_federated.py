from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from auth_gateway.auth.decisions import AuthRequest, Continue, Deny, Redirect
from auth_gateway.auth.errors import (
    AccessDenied,
    CsrfMismatch,
    InvalidCallback,
    ProfileFetchFailed,
    TokenExchangeFailed,
)
from auth_gateway.auth.federated import FederatedOAuthClient, FederatedStrategy
from auth_gateway.sessions.store import OAUTH_STATE, SessionStore
from support import GRAPH_URL, NOW, TOKEN_URL, federated_config

PROFILE = {
    "id": "1",
    "displayName": "Jane",
    "mail": "jane@x.com",
    "userPrincipalName": "jane@x.onmicrosoft.com",
}


def _ok_token(http_client, **extra) -> None:
    http_client.add(
        "POST", TOKEN_URL, httpx.Response(200, json={"access_token": "abc", **extra})
    )


def _ok_profile(http_client, profile: dict | None = None) -> None:
    http_client.add("GET", f"{GRAPH_URL}/me", httpx.Response(200, json=profile or PROFILE))


def test_authorization_url_carries_state_and_scopes(session: SessionStore) -> None:
    client = FederatedOAuthClient(federated_config())
    url = client.build_authorization_url(session)

    parsed = urlparse(url)
    params = {k: v[0] for k, v in parse_qs(parsed.query).items()}
    assert f"{parsed.scheme}://{parsed.netloc}{parsed.path}" == (
        "https://login.microsoftonline.com/tenant-1/oauth2/v2.0/authorize"
    )
    assert params["client_id"] == "client-1"
    assert params["response_type"] == "code"
    assert params["redirect_uri"] == "https://app.example.com/"
    assert params["response_mode"] == "query"
    assert params["scope"] == "openid profile email User.Read"
    assert params["state"] == session._data[OAUTH_STATE]
    # 16 random bytes, hex encoded
    assert len(params["state"]) == 32


def test_each_authorization_url_gets_a_fresh_state(session: SessionStore) -> None:
    client = FederatedOAuthClient(federated_config())
    client.build_authorization_url(session)
    first = session._data[OAUTH_STATE]
    client.build_authorization_url(session)
    assert session._data[OAUTH_STATE] != first


@pytest.mark.asyncio
async def test_callback_success_populates_session(http_client, session, clock) -> None:
    _ok_token(http_client, expires_in=1000)
    _ok_profile(http_client)
    session.set_oauth_state("nonce")

    client = FederatedOAuthClient(federated_config(), clock=clock)
    user = await client.handle_callback({"code": "the-code", "state": "nonce"}, session)

    assert user.display_name == "Jane"
    assert session.federated_user == user
    assert session.access_token == "abc"
    assert session.token_expires_at == pytest.approx(NOW + 1000)
    assert session._data.get(OAUTH_STATE) is None

    method, url, kwargs = http_client.calls[0]
    assert (method, url) == ("POST", TOKEN_URL)
    assert kwargs["data"]["grant_type"] == "authorization_code"
    assert kwargs["data"]["code"] == "the-code"
    # No allow-list configured: group memberships are not requested.
    assert http_client.urls("GET") == [f"{GRAPH_URL}/me"]


@pytest.mark.asyncio
async def test_token_lifetime_defaults_to_one_hour(http_client, session, clock) -> None:
    _ok_token(http_client)
    _ok_profile(http_client)
    session.set_oauth_state("nonce")

    client = FederatedOAuthClient(federated_config(), clock=clock)
    await client.handle_callback({"code": "c", "state": "nonce"}, session)

    assert session.token_expires_at == pytest.approx(NOW + 3600)


@pytest.mark.asyncio
async def test_email_falls_back_to_user_principal_name(http_client, session) -> None:
    _ok_token(http_client)
    _ok_profile(http_client, {"id": "2", "displayName": "Bob", "userPrincipalName": "bob@x.com"})
    session.set_oauth_state("nonce")

    user = await FederatedOAuthClient(federated_config()).handle_callback(
        {"code": "c", "state": "nonce"}, session
    )

    assert user.email == "bob@x.com"
    assert user.to_normalized().username == "bob@x.com"


@pytest.mark.asyncio
async def test_state_mismatch_is_rejected_and_nonce_cleared(http_client, session) -> None:
    session.set_oauth_state("expected")
    client = FederatedOAuthClient(federated_config())

    with pytest.raises(CsrfMismatch):
        await client.handle_callback({"code": "c", "state": "forged"}, session)

    assert session._data.get(OAUTH_STATE) is None
    assert http_client.calls == []


@pytest.mark.asyncio
async def test_replayed_state_fails_the_second_time(http_client, session) -> None:
    _ok_token(http_client)
    _ok_profile(http_client)
    session.set_oauth_state("nonce")
    client = FederatedOAuthClient(federated_config())

    await client.handle_callback({"code": "c", "state": "nonce"}, session)
    with pytest.raises(CsrfMismatch):
        await client.handle_callback({"code": "c", "state": "nonce"}, session)


@pytest.mark.asyncio
@pytest.mark.parametrize("query", [{"state": "nonce"}, {"code": "c"}, {}])
async def test_missing_code_or_state_is_invalid_callback(http_client, session, query) -> None:
    session.set_oauth_state("nonce")

    with pytest.raises(InvalidCallback):
        await FederatedOAuthClient(federated_config()).handle_callback(query, session)

    assert session._data.get(OAUTH_STATE) is None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(400, json={"error": "invalid_grant"}),
        httpx.Response(200, json={"token_type": "Bearer"}),
        httpx.Response(200, text="<html>oops</html>"),
        httpx.ConnectTimeout("timed out"),
    ],
)
async def test_token_exchange_failures(http_client, session, response) -> None:
    http_client.add("POST", TOKEN_URL, response)
    session.set_oauth_state("nonce")

    with pytest.raises(TokenExchangeFailed):
        await FederatedOAuthClient(federated_config()).handle_callback(
            {"code": "c", "state": "nonce"}, session
        )

    assert session.federated_user is None


@pytest.mark.asyncio
async def test_profile_failure(http_client, session) -> None:
    _ok_token(http_client)
    http_client.add("GET", f"{GRAPH_URL}/me", httpx.Response(401, json={"error": {"code": "x"}}))
    session.set_oauth_state("nonce")

    with pytest.raises(ProfileFetchFailed):
        await FederatedOAuthClient(federated_config()).handle_callback(
            {"code": "c", "state": "nonce"}, session
        )

    assert session.access_token is None


@pytest.mark.asyncio
async def test_allow_list_follows_group_pages(http_client, session) -> None:
    _ok_token(http_client)
    _ok_profile(http_client)
    next_page = f"{GRAPH_URL}/me/memberOf?$skiptoken=abc"
    http_client.add(
        "GET",
        f"{GRAPH_URL}/me/memberOf?$select=id",
        httpx.Response(200, json={"value": [{"id": "g1"}], "@odata.nextLink": next_page}),
    )
    http_client.add("GET", next_page, httpx.Response(200, json={"value": [{"id": "g-admins"}]}))
    session.set_oauth_state("nonce")

    client = FederatedOAuthClient(federated_config(allowed_groups=("g-admins",)))
    user = await client.handle_callback({"code": "c", "state": "nonce"}, session)

    assert user.id == "1"
    assert next_page in http_client.urls("GET")


@pytest.mark.asyncio
async def test_allow_list_denies_non_members(http_client, session) -> None:
    _ok_token(http_client)
    _ok_profile(http_client)
    http_client.add(
        "GET",
        f"{GRAPH_URL}/me/memberOf?$select=id",
        httpx.Response(200, json={"value": [{"id": "g1"}]}),
    )
    session.set_oauth_state("nonce")

    with pytest.raises(AccessDenied):
        await FederatedOAuthClient(federated_config(allowed_groups=("g-admins",))).handle_callback(
            {"code": "c", "state": "nonce"}, session
        )

    assert session.federated_user is None


@pytest.mark.asyncio
async def test_group_lookup_failure_denies(http_client, session) -> None:
    _ok_token(http_client)
    _ok_profile(http_client)
    http_client.add("GET", f"{GRAPH_URL}/me/memberOf?$select=id", httpx.Response(503))
    session.set_oauth_state("nonce")

    with pytest.raises(AccessDenied):
        await FederatedOAuthClient(federated_config(allowed_groups=("g1",))).handle_callback(
            {"code": "c", "state": "nonce"}, session
        )


@pytest.mark.asyncio
async def test_strategy_redirects_unauthenticated_to_provider(session, clock) -> None:
    strategy = FederatedStrategy(federated_config(), clock=clock)

    decision = await strategy.ensure_authenticated(AuthRequest(path="/reports"), session)

    assert isinstance(decision, Redirect)
    assert decision.url.startswith("https://login.microsoftonline.com/tenant-1/")
    assert session._data[OAUTH_STATE] in decision.url


@pytest.mark.asyncio
async def test_strategy_callback_redirects_to_path_without_query(http_client, session, clock) -> None:
    _ok_token(http_client, expires_in=1000)
    _ok_profile(http_client)
    session.set_oauth_state("nonce")
    strategy = FederatedStrategy(federated_config(), clock=clock)

    decision = await strategy.ensure_authenticated(
        AuthRequest(path="/reports", query={"code": "c", "state": "nonce"}), session
    )

    assert decision == Redirect("/reports")
    assert strategy.is_authenticated(session)

    decision = await strategy.ensure_authenticated(AuthRequest(path="/reports"), session)
    assert isinstance(decision, Continue)
    assert decision.user is not None
    assert decision.user.name == "Jane"
    assert decision.user.provider == "azure"


@pytest.mark.asyncio
async def test_strategy_denies_failed_callback_with_generic_message(http_client, session) -> None:
    http_client.add("POST", TOKEN_URL, httpx.Response(500, json={"error": "server_error"}))
    session.set_oauth_state("nonce")
    strategy = FederatedStrategy(federated_config())

    decision = await strategy.ensure_authenticated(
        AuthRequest(path="/", query={"code": "c", "state": "nonce"}), session
    )

    assert isinstance(decision, Deny)
    assert decision.code == TokenExchangeFailed.code
    assert "server_error" not in decision.message


@pytest.mark.asyncio
async def test_strategy_denies_provider_error_callback(http_client, session) -> None:
    session.set_oauth_state("nonce")
    strategy = FederatedStrategy(federated_config())

    decision = await strategy.ensure_authenticated(
        AuthRequest(path="/", query={"error": "access_denied", "state": "nonce"}), session
    )

    assert isinstance(decision, Deny)
    assert decision.code == InvalidCallback.code
    assert session._data.get(OAUTH_STATE) is None


@pytest.mark.asyncio
async def test_strategy_reauthenticates_expired_token(http_client, session, clock) -> None:
    _ok_token(http_client, expires_in=1000)
    _ok_profile(http_client)
    session.set_oauth_state("nonce")
    strategy = FederatedStrategy(federated_config(), clock=clock)
    await strategy.ensure_authenticated(
        AuthRequest(path="/", query={"code": "c", "state": "nonce"}), session
    )

    clock.now += 1001
    decision = await strategy.ensure_authenticated(AuthRequest(path="/"), session)

    assert isinstance(decision, Redirect)
    assert decision.url.startswith("https://login.microsoftonline.com/")
    assert session.federated_user is None
    assert session.access_token is None
    assert not strategy.is_authenticated(session)


@pytest.mark.asyncio
async def test_unconfigured_strategy_fails_open(session) -> None:
    strategy = FederatedStrategy(federated_config(client_secret=""))

    decision = await strategy.ensure_authenticated(AuthRequest(path="/"), session)

    assert decision == Continue()
    assert session.is_empty()


def test_logout_is_idempotent(session) -> None:
    strategy = FederatedStrategy(federated_config())
    session._data.update({"azure_user": {"id": "1"}, "azure_token": "abc"})

    strategy.logout(session)
    strategy.logout(session)

    assert session.federated_user is None
    assert session.access_token is None
