# tests/conftest.py
"""
Pytest configuration and fixtures for the dashboard backend tests.
"""
import time
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx
import pytest

from api.app import create_app
from api.deps import get_current_user_id
from api.schemes import UserUpsert
from auth.oidc import OidcError, TokenSet
from backend.storage.database import DatabaseStorage
from backend.storage.memory import MemoryStorage


TEST_PARTNER_CODE = "119776"


class FakeOidc:
    """Stands in for OidcClient; every code maps to the claims registered for it."""

    authorize_endpoint = "https://id.example.test/auth"

    def __init__(self) -> None:
        self.claims_by_code: Dict[str, Dict[str, Any]] = {}
        self.closed = False

    def register(self, code: str, sub: str, **claims: Any) -> None:
        self.claims_by_code[code] = {"sub": sub, "exp": int(time.time()) + 3600, **claims}

    async def authorization_url(self, redirect_uri: str, state: str) -> str:
        return f"{self.authorize_endpoint}?{urlencode({'redirect_uri': redirect_uri, 'state': state})}"

    async def exchange_code(self, code: str, redirect_uri: str) -> TokenSet:
        if code not in self.claims_by_code:
            raise OidcError("unknown code")
        return TokenSet(access_token="access", id_token=code, refresh_token="refresh")

    async def claims(self, id_token: Optional[str]) -> Dict[str, Any]:
        return self.claims_by_code[id_token]

    async def refresh(self, refresh_token: str) -> TokenSet:
        raise OidcError("refresh disabled in tests")

    async def end_session_url(self, post_logout_redirect_uri: str) -> Optional[str]:
        return None

    async def close(self) -> None:
        self.closed = True


@pytest.fixture(params=["memory", "database"])
async def storage(request, tmp_path):
    """Every storage test runs against both backends."""
    if request.param == "memory":
        store = MemoryStorage(bybit_partner_code=TEST_PARTNER_CODE)
    else:
        store = DatabaseStorage(
            f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
            bybit_partner_code=TEST_PARTNER_CODE,
        )
    await store.setup()
    try:
        yield store
    finally:
        await store.close()


@pytest.fixture
async def memory_storage():
    store = MemoryStorage(bybit_partner_code=TEST_PARTNER_CODE)
    await store.setup()
    return store


@pytest.fixture
def fake_oidc():
    return FakeOidc()


@pytest.fixture
def app(memory_storage, fake_oidc):
    return create_app(storage=memory_storage, oidc=fake_oidc, session_secret="test-secret")


@pytest.fixture
async def user(memory_storage):
    return await memory_storage.upsert_user(UserUpsert(id="user-1", email="one@example.com", first_name="Ann"))


@pytest.fixture
async def other_user(memory_storage):
    return await memory_storage.upsert_user(UserUpsert(id="user-2", email="two@example.com"))


@pytest.fixture
async def anon_client(app):
    """Client without an authenticated session."""
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver") as client:
        yield client


@pytest.fixture
async def client(app, user):
    """Client authenticated as `user`."""
    app.dependency_overrides[get_current_user_id] = lambda: user.id
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver") as client:
        yield client
    app.dependency_overrides.clear()
