"""Active Directory / LDAP authentication.

Credentials are verified by binding as the user: the service account (or an
anonymous bind) finds the user's DN, then a bind with that DN and the supplied
password is the actual password check. ldap3 is synchronous, so the strategy
runs the whole exchange in the default executor.
"""

from __future__ import annotations

import asyncio
import functools
import ssl
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from ldap3 import BASE, NONE, SUBTREE, Connection, Server, Tls
from ldap3.core.exceptions import LDAPException
from ldap3.utils.conv import escape_filter_chars

from auth_gateway.auth.base import AuthStrategy, Clock
from auth_gateway.auth.decisions import (
    AuthDecision,
    AuthRequest,
    Continue,
    Redirect,
    RenderLoginForm,
)
from auth_gateway.auth.errors import (
    AccessDenied,
    AmbiguousUser,
    ConnectFailed,
    CredentialError,
    GatewayError,
    InvalidCredentials,
    MissingCredentials,
    SearchFailed,
    ServiceBindFailed,
    SessionExpired,
    UserNotFound,
)
from auth_gateway.auth.groups import directory_authorizer, expand_member_of
from auth_gateway.auth.models import DirectoryUser, NormalizedUser
from auth_gateway.auth.provider_config import AuthMethod, DirectoryConfig, LdapTransport
from auth_gateway.logger import get_logger
from auth_gateway.observability.auth_metrics import get_auth_metrics
from auth_gateway.sessions.store import SessionStore

logger = get_logger(__name__)

USER_ATTRIBUTES = [
    "cn",
    "displayName",
    "mail",
    "sAMAccountName",
    "memberOf",
    "userPrincipalName",
]

# 0 = success, 4 = sizeLimitExceeded (still an ambiguous match, not a failure)
_SEARCH_OK_CODES = (0, 4)

ConnectionFactory = Callable[[str], Connection]


def _as_text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


@dataclass(frozen=True)
class DirectoryEntry:
    """A search result with case-insensitive attribute access."""

    dn: str
    attributes: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_response(cls, item: Mapping[str, Any]) -> DirectoryEntry:
        attributes = {str(k).lower(): v for k, v in (item.get("attributes") or {}).items()}
        return cls(dn=str(item.get("dn") or ""), attributes=attributes)

    def values(self, name: str) -> list[str]:
        value = self.attributes.get(name.lower())
        if value is None:
            return []
        if isinstance(value, (list, tuple)):
            return [_as_text(v) for v in value if v not in (None, "")]
        return [_as_text(value)] if value != "" else []

    def first(self, name: str) -> str | None:
        values = self.values(name)
        return values[0] if values else None

    def to_user(self, fallback_username: str) -> DirectoryUser:
        username = self.first("sAMAccountName") or fallback_username
        upn = self.first("userPrincipalName") or ""
        return DirectoryUser(
            distinguished_name=self.dn,
            username=username,
            display_name=self.first("displayName") or self.first("cn") or username,
            email=self.first("mail") or upn,
            user_principal_name=upn,
        )


class DirectoryClient:
    """ldap3 client: host failover, user lookup, bind-as-user and group lookup."""

    def __init__(
        self,
        config: DirectoryConfig,
        *,
        connection_factory: ConnectionFactory | None = None,
    ) -> None:
        self.config = config
        self.connection_factory = connection_factory or self._build_connection

    def _build_connection(self, host: str) -> Connection:
        transport = self.config.transport
        tls = None
        if transport is LdapTransport.LDAPS:
            # Self-signed directory certificates are accepted on the ldaps:// path.
            tls = Tls(validate=ssl.CERT_NONE)
        elif transport is LdapTransport.START_TLS:
            tls = Tls(validate=ssl.CERT_REQUIRED)

        server = Server(
            host,
            port=self.config.effective_port,
            use_ssl=transport is LdapTransport.LDAPS,
            tls=tls,
            get_info=NONE,
            connect_timeout=self.config.timeout_seconds,
        )
        return Connection(
            server,
            version=3,
            auto_referrals=False,
            read_only=True,
            raise_exceptions=False,
            receive_timeout=self.config.timeout_seconds,
        )

    def connect(self) -> Connection:
        """Open a connection to the first reachable host, in configured order."""
        last_error = "no hosts configured"
        for host in self.config.hosts:
            uri = self.config.uri_for(host)
            try:
                connection = self.connection_factory(host)
                connection.open()
            except LDAPException as exc:
                last_error = f"Failed to connect to {uri}: {exc}"
                logger.warning("ldap_host_failed", uri=uri, error=str(exc))
                continue

            if self.config.transport is LdapTransport.START_TLS:
                try:
                    upgraded = connection.start_tls()
                except LDAPException as exc:
                    logger.debug("ldap_start_tls_error", uri=uri, error=str(exc))
                    upgraded = False
                if not upgraded:
                    last_error = f"Failed to start TLS on {uri}"
                    logger.warning("ldap_host_failed", uri=uri, error="start_tls_failed")
                    self.release(connection)
                    continue

            logger.info("ldap_connected", uri=uri)
            return connection

        logger.error("ldap_all_hosts_failed", last_error=last_error)
        raise ConnectFailed(last_error=last_error)

    def release(self, connection: Connection) -> None:
        try:
            connection.unbind()
        except LDAPException as exc:
            logger.debug("ldap_unbind_error", error=str(exc))

    def _bind(self, connection: Connection, user: str, password: str) -> bool:
        try:
            return bool(connection.rebind(user=user, password=password))
        except LDAPException as exc:
            logger.debug("ldap_bind_error", user=user, error=str(exc))
            return False

    def _search(
        self,
        connection: Connection,
        base: str,
        search_filter: str,
        *,
        scope: str,
        attributes: list[str],
    ) -> list[DirectoryEntry]:
        try:
            connection.search(
                search_base=base,
                search_filter=search_filter,
                search_scope=scope,
                attributes=attributes,
                time_limit=self.config.timeout_seconds,
            )
        except LDAPException as exc:
            raise SearchFailed(f"Search under {base} failed: {exc}") from exc

        result_code = (connection.result or {}).get("result", 0)
        if result_code not in _SEARCH_OK_CODES:
            raise SearchFailed(
                f"Search under {base} failed: {(connection.result or {}).get('description')}"
            )
        return [
            DirectoryEntry.from_response(item)
            for item in connection.response or []
            if item.get("type") == "searchResEntry"
        ]

    def lookup_user(self, connection: Connection, username: str) -> DirectoryEntry:
        if self.config.bind_dn:
            if not self._bind(connection, self.config.bind_dn, self.config.bind_password):
                logger.error("ldap_service_bind_failed", bind_dn=self.config.bind_dn)
                raise ServiceBindFailed(f"Failed to bind with service account {self.config.bind_dn}")

        search_filter = self.config.user_filter.replace("{username}", escape_filter_chars(username))
        entries = self._search(
            connection,
            self.config.base_dn,
            search_filter,
            scope=SUBTREE,
            attributes=USER_ATTRIBUTES,
        )

        if not entries:
            raise UserNotFound(f"User not found: {username}")
        if len(entries) > 1:
            raise AmbiguousUser(f"Multiple users found for: {username}")
        return entries[0]

    def fetch_groups(self, connection: Connection, entry: DirectoryEntry) -> list[str]:
        """Group CNs and full DNs for the user, read with the current (user) bind."""
        member_of: list[str] = []
        try:
            own = self._search(
                connection, entry.dn, "(objectClass=*)", scope=BASE, attributes=["memberOf"]
            )
        except SearchFailed as exc:
            logger.warning("ldap_member_of_read_failed", dn=entry.dn, error=exc.detail)
            own = []
        for item in own:
            member_of.extend(item.values("memberOf"))
        if not member_of:
            member_of = entry.values("memberOf")
        if member_of:
            return expand_member_of(member_of)

        # Directories without memberOf: search groups that list the user as a member.
        if not self.config.group_filter:
            return []
        group_filter = self.config.group_filter.replace("{dn}", escape_filter_chars(entry.dn))
        try:
            found = self._search(
                connection, self.config.base_dn, group_filter, scope=SUBTREE, attributes=["cn"]
            )
        except SearchFailed as exc:
            logger.warning("ldap_group_search_failed", dn=entry.dn, error=exc.detail)
            return []
        groups: list[str] = []
        for group in found:
            cn = group.first("cn")
            if cn:
                groups.append(cn)
            groups.append(group.dn)
        return groups

    def authenticate(self, username: str, password: str) -> DirectoryUser:
        """Verify credentials (and group membership) against the directory."""
        if not username or not password:
            raise MissingCredentials()

        connection = self.connect()
        try:
            try:
                entry = self.lookup_user(connection, username)
            except (UserNotFound, AmbiguousUser) as exc:
                logger.warning("ldap_lookup_rejected", code=exc.code, detail=exc.detail)
                raise InvalidCredentials(exc.detail) from exc

            if not self._bind(connection, entry.dn, password):
                logger.warning(
                    "ldap_user_bind_failed",
                    dn=entry.dn,
                    error=getattr(connection, "last_error", None),
                )
                raise InvalidCredentials(f"Bind failed for {entry.dn}")

            if self.config.allowed_groups:
                groups = self.fetch_groups(connection, entry)
                if not directory_authorizer.is_authorized(groups, self.config.allowed_groups):
                    raise AccessDenied(f"User {username} not in allowed groups")

            return entry.to_user(fallback_username=username)
        except LDAPException as exc:
            raise SearchFailed(f"Directory operation failed: {exc}") from exc
        finally:
            self.release(connection)


class DirectoryStrategy(AuthStrategy):
    """Enforces a directory login (login form + bind) on every request."""

    method = AuthMethod.DIRECTORY
    accepts_login_form = True

    def __init__(
        self,
        config: DirectoryConfig,
        *,
        client: DirectoryClient | None = None,
        clock: Clock = time.time,
    ) -> None:
        super().__init__(clock=clock)
        self.config = config
        self.client = client or DirectoryClient(config)

    @property
    def is_enabled(self) -> bool:
        return self.config.is_enabled

    def _is_expired(self, session: SessionStore) -> bool:
        login_time = session.login_timestamp
        if login_time is None:
            return False
        return self._clock() - login_time > self.config.session_timeout_seconds

    def is_authenticated(self, session: SessionStore) -> bool:
        return session.is_directory_authenticated and not self._is_expired(session)

    def current_user(self, session: SessionStore) -> NormalizedUser | None:
        if not self.is_authenticated(session):
            return None
        user = session.directory_user
        return user.to_normalized() if user else None

    async def ensure_authenticated(
        self, request: AuthRequest, session: SessionStore
    ) -> AuthDecision:
        if not self.is_enabled:
            return Continue()

        if request.login_form is not None:
            return await self._handle_login(request, session)

        if not session.is_directory_authenticated:
            return RenderLoginForm()

        if self._is_expired(session):
            logger.info("ldap_session_expired", path=request.path)
            session.clear_directory()
            return RenderLoginForm(error=SessionExpired.public_message)

        return Continue(self.current_user(session))

    async def _handle_login(self, request: AuthRequest, session: SessionStore) -> AuthDecision:
        form = request.login_form or {}
        username = (form.get("username") or "").strip()
        password = form.get("password") or ""

        metrics = get_auth_metrics()
        start = time.perf_counter()
        loop = asyncio.get_running_loop()
        try:
            user = await loop.run_in_executor(
                None, functools.partial(self.client.authenticate, username, password)
            )
        except AccessDenied as exc:
            duration_ms = (time.perf_counter() - start) * 1000
            metrics.inc_access_denied(provider="ldap")
            metrics.observe_authentication_duration_ms(
                provider="ldap", outcome="denied", duration_ms=duration_ms
            )
            logger.warning("auth_access_denied", provider="ldap", username=username, detail=exc.detail)
            return RenderLoginForm(error=exc.public_message)
        except GatewayError as exc:
            duration_ms = (time.perf_counter() - start) * 1000
            reason = "invalid_credentials" if isinstance(exc, CredentialError) else "directory_error"
            metrics.inc_auth_failure(reason=reason, code=exc.code)
            metrics.observe_authentication_duration_ms(
                provider="ldap", outcome="failure", duration_ms=duration_ms
            )
            logger.warning(
                "auth_failed",
                provider="ldap",
                username=username,
                reason=reason,
                code=exc.code,
                detail=exc.detail,
            )
            return RenderLoginForm(error=exc.public_message)

        duration_ms = (time.perf_counter() - start) * 1000
        metrics.inc_auth_success(provider="ldap")
        metrics.observe_authentication_duration_ms(
            provider="ldap", outcome="success", duration_ms=duration_ms
        )
        session.save_directory_login(user, self._clock())
        logger.info(
            "auth_success",
            provider="ldap",
            username=user.username,
            dn=user.distinguished_name,
            duration_ms=round(duration_ms, 2),
        )
        # 303 so a reload does not re-post the credentials.
        return Redirect(request.path, status_code=303)

    def logout(self, session: SessionStore) -> None:
        session.clear_directory()
