"""Test fixtures for the identity providers."""

import pytest

from auth_gateway.sessions.store import SessionStore
from support import FakeClock, FakeDirectory, FakeHttpClient


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def session() -> SessionStore:
    return SessionStore({})


@pytest.fixture
def http_client(monkeypatch) -> FakeHttpClient:
    client = FakeHttpClient()

    async def fake_get_http_client():
        return client

    monkeypatch.setattr("auth_gateway.auth.federated.get_http_client", fake_get_http_client)
    return client


@pytest.fixture
def directory() -> FakeDirectory:
    return FakeDirectory()
