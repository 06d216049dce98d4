"""Fakes and builders shared by the test modules (fixtures live in conftest.py)."""

import re
from typing import Any

import httpx
from ldap3 import BASE, MOCK_SYNC, NONE, Connection, Server
from ldap3.core.exceptions import LDAPSocketOpenError

from auth_gateway.auth.provider_config import DirectoryConfig, FederatedConfig
from auth_gateway.config import Settings

NOW = 1_700_000_000.0

TOKEN_URL = "https://login.microsoftonline.com/tenant-1/oauth2/v2.0/token"
GRAPH_URL = "https://graph.microsoft.com/v1.0"


def make_settings(**overrides: Any) -> Settings:
    """Settings isolated from the environment and any local .env file."""
    values: dict[str, Any] = {
        "session_secret_key": "test-secret",
        "session_https_only": False,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


class FakeClock:
    def __init__(self, now: float = NOW) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


# Federated (Azure AD / Graph)


class FakeHttpClient:
    """Stands in for the shared httpx.AsyncClient.

    ``routes`` maps ``(method, url)`` to a queue of responses (or exceptions to raise).
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], list[httpx.Response | Exception]] = {}
        self.calls: list[tuple[str, str, dict[str, Any]]] = []

    def add(self, method: str, url: str, response: httpx.Response | Exception) -> None:
        self.routes.setdefault((method, url), []).append(response)

    def _next(self, method: str, url: str, kwargs: dict[str, Any]) -> httpx.Response:
        self.calls.append((method, url, kwargs))
        queue = self.routes.get((method, url))
        if not queue:
            return httpx.Response(404, json={"error": {"code": "NotFound"}})
        result = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(result, Exception):
            raise result
        return result

    async def post(self, url: str, **kwargs: Any) -> httpx.Response:
        return self._next("POST", url, kwargs)

    async def get(self, url: str, **kwargs: Any) -> httpx.Response:
        return self._next("GET", url, kwargs)

    def urls(self, method: str) -> list[str]:
        return [url for m, url, _ in self.calls if m == method]


def federated_config(**overrides: Any) -> FederatedConfig:
    values: dict[str, Any] = {
        "tenant_id": "tenant-1",
        "client_id": "client-1",
        "client_secret": "s3cret",
        "redirect_uri": "https://app.example.com/",
    }
    values.update(overrides)
    return FederatedConfig(**values)


# Directory (LDAP)

_FILTER_PATTERN = re.compile(r"^\((\w+)=(.*)\)$")


class FakeDirectory:
    """In-memory directory shared by the fake connections of one test."""

    def __init__(self) -> None:
        self.entries: dict[str, dict[str, Any]] = {}
        self.passwords: dict[str, str] = {}
        self.unreachable: set[str] = set()
        self.start_tls_fails: set[str] = set()
        self.opened: list[str] = []
        self.connections: list["FakeConnection"] = []
        self.filters: list[str] = []
        self.failing_filters: set[str] = set()

    def add_entry(self, dn: str, password: str | None = None, **attributes: Any) -> None:
        self.entries[dn] = attributes
        if password is not None:
            self.passwords[dn] = password

    def connection_factory(self, host: str) -> "FakeConnection":
        connection = FakeConnection(self, host)
        self.connections.append(connection)
        return connection

    def search(self, base: str, search_filter: str, scope: str) -> list[tuple[str, dict[str, Any]]]:
        self.filters.append(search_filter)
        if scope == BASE:
            entry = self.entries.get(base)
            return [(base, entry)] if entry is not None else []

        match = _FILTER_PATTERN.match(search_filter)
        if not match:
            return []
        name, value = match.group(1).lower(), match.group(2)
        found = []
        for dn, attributes in self.entries.items():
            for key, attr_value in attributes.items():
                if key.lower() != name:
                    continue
                values = attr_value if isinstance(attr_value, list) else [attr_value]
                if value in values:
                    found.append((dn, attributes))
        return found


class FakeConnection:
    """The subset of ldap3.Connection the directory client relies on."""

    def __init__(self, directory: FakeDirectory, host: str) -> None:
        self.directory = directory
        self.host = host
        self.bound_as: str | None = None
        self.unbound = False
        self.result: dict[str, Any] = {"result": 0, "description": "success"}
        self.response: list[dict[str, Any]] = []
        self.last_error: str | None = None
        self.search_result_code = 0

    def open(self) -> None:
        self.directory.opened.append(self.host)
        if self.host in self.directory.unreachable:
            raise LDAPSocketOpenError(f"socket connection error while opening: {self.host}")

    def start_tls(self) -> bool:
        return self.host not in self.directory.start_tls_fails

    def rebind(self, user: str | None = None, password: str | None = None) -> bool:
        if user and self.directory.passwords.get(user) == password:
            self.bound_as = user
            return True
        self.last_error = "invalidCredentials"
        return False

    def search(
        self,
        search_base: str,
        search_filter: str,
        search_scope: str,
        attributes: list[str] | None = None,
        time_limit: int = 0,
    ) -> bool:
        if self.search_result_code or search_filter in self.directory.failing_filters:
            self.result = {"result": self.search_result_code or 1, "description": "operationsError"}
            self.response = []
            return False
        found = self.directory.search(search_base, search_filter, search_scope)
        self.response = [
            {"type": "searchResEntry", "dn": dn, "attributes": dict(attrs)} for dn, attrs in found
        ]
        self.result = {"result": 0, "description": "success"}
        return bool(found)

    def unbind(self) -> bool:
        self.unbound = True
        return True


def directory_config(**overrides: Any) -> DirectoryConfig:
    values: dict[str, Any] = {
        "hosts": ("dc1.example.com",),
        "base_dn": "DC=x",
    }
    values.update(overrides)
    return DirectoryConfig(**values)


def add_jdoe(directory: FakeDirectory) -> str:
    dn = "CN=John Doe,OU=People,DC=x"
    directory.add_entry(
        dn,
        password="correct",
        cn="John Doe",
        displayName="John Doe",
        mail="jdoe@x.com",
        sAMAccountName="jdoe",
        userPrincipalName="jdoe@x.com",
        memberOf=["CN=Admins,OU=Groups,DC=x", "CN=Users,OU=Groups,DC=x"],
    )
    return dn


def mock_ldap_server(*entries: tuple[str, dict[str, Any]]) -> Server:
    """A real ldap3 Server whose DIT is served by the MOCK_SYNC strategy."""
    server = Server("dc1.example.com", get_info=NONE)
    seed = Connection(server, client_strategy=MOCK_SYNC)
    for dn, attributes in entries:
        seed.strategy.add_entry(dn, attributes)
    return server


def mock_connection_factory(server: Server):
    def factory(host: str) -> Connection:
        return Connection(server, client_strategy=MOCK_SYNC, raise_exceptions=False)

    return factory
