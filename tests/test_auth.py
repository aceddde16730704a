# tests/test_auth.py
"""
Login / callback / logout against a fake identity provider.
"""
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from auth.oidc import OidcClient, OidcError


async def _login(client, *, params=None) -> str:
    """Start a login and return the state the provider would echo back."""
    response = await client.get("/api/login", params=params)
    assert response.status_code == 302
    location = urlparse(response.headers["location"])
    query = parse_qs(location.query)
    assert query["redirect_uri"] == ["http://testserver/api/callback"]
    return query["state"][0]


async def test_login_callback_creates_session(anon_client, fake_oidc, memory_storage):
    fake_oidc.register("code-1", sub="sub-1", email="new@example.com", first_name="Nia")

    state = await _login(anon_client)
    response = await anon_client.get("/api/callback", params={"code": "code-1", "state": state})

    assert response.status_code == 302
    assert response.headers["location"] == "/"

    response = await anon_client.get("/api/auth/user")
    assert response.status_code == 200
    body = response.json()
    assert body["id"] == "sub-1"
    assert body["email"] == "new@example.com"
    assert body["firstName"] == "Nia"
    assert body["referredBy"] is None
    assert len(await memory_storage.get_referral_links("sub-1")) == 3


async def test_login_with_referral_code(anon_client, fake_oidc, memory_storage, user):
    fake_oidc.register("code-2", sub="sub-2")

    state = await _login(anon_client, params={"ref": user.referral_code})
    await anon_client.get("/api/callback", params={"code": "code-2", "state": state})

    referred = await memory_storage.get_user("sub-2")
    assert referred.referred_by == user.id


async def test_self_referral_is_ignored(anon_client, fake_oidc, memory_storage, user):
    fake_oidc.register("code-3", sub=user.id)

    state = await _login(anon_client, params={"ref": user.referral_code})
    await anon_client.get("/api/callback", params={"code": "code-3", "state": state})

    assert (await memory_storage.get_user(user.id)).referred_by is None


async def test_callback_rejects_bad_state(anon_client, fake_oidc):
    fake_oidc.register("code-4", sub="sub-4")
    await _login(anon_client)

    response = await anon_client.get("/api/callback", params={"code": "code-4", "state": "forged"})

    assert response.status_code == 403
    assert response.json() == {"message": "Invalid login state"}


async def test_callback_with_provider_failure_restarts_login(anon_client, memory_storage):
    state = await _login(anon_client)

    response = await anon_client.get("/api/callback", params={"code": "unknown", "state": state})

    assert response.status_code == 302
    assert response.headers["location"] == "/api/login"
    assert (await anon_client.get("/api/auth/user")).status_code == 401


async def test_logout_clears_session(anon_client, fake_oidc):
    fake_oidc.register("code-5", sub="sub-5")
    state = await _login(anon_client)
    await anon_client.get("/api/callback", params={"code": "code-5", "state": state})
    assert (await anon_client.get("/api/auth/user")).status_code == 200

    response = await anon_client.get("/api/logout")

    assert response.status_code == 302
    assert response.headers["location"] == "/"
    assert (await anon_client.get("/api/auth/user")).status_code == 401


async def test_discovery_requires_jwks():
    metadata = {"authorization_endpoint": "https://id.example.test/auth", "token_endpoint": "https://id.example.test/token"}

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=metadata)

    client = OidcClient(
        "https://id.example.test/", "client-id",
        http=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    with pytest.raises(OidcError):
        await client.discover()
    await client.close()


async def test_authorization_url():
    metadata = {
        "issuer": "https://id.example.test",
        "authorization_endpoint": "https://id.example.test/auth",
        "token_endpoint": "https://id.example.test/token",
        "jwks_uri": "https://id.example.test/jwks",
    }
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(str(request.url))
        return httpx.Response(200, json=metadata)

    client = OidcClient(
        "https://id.example.test/", "client-id",
        http=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    url = await client.authorization_url("http://testserver/api/callback", state="abc")
    await client.authorization_url("http://testserver/api/callback", state="def")
    await client.close()

    query = parse_qs(urlparse(url).query)
    assert url.startswith("https://id.example.test/auth?")
    assert query["client_id"] == ["client-id"]
    assert query["state"] == ["abc"]
    assert query["response_type"] == ["code"]
    # metadata is cached
    assert seen == ["https://id.example.test/.well-known/openid-configuration"]
