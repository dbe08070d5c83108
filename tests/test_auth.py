"""End-to-end auth flow: register → login → session token → API key credential."""

from unittest.mock import patch

import pytest
from httpx import AsyncClient


async def _register(client: AsyncClient, email: str, password: str = "supersecret123") -> dict:
    resp = await client.post("/v1/auth/register", json={
        "email": email,
        "password": password,
        "display_name": email.split("@")[0],
    })
    assert resp.status_code == 201, resp.text
    return resp.json()


async def _login(client: AsyncClient, email: str, password: str = "supersecret123") -> dict:
    resp = await client.post("/v1/auth/login", json={"email": email, "password": password})
    assert resp.status_code == 200, resp.text
    return {"Authorization": f"Bearer {resp.json()['access_token']}"}


@pytest.mark.asyncio
async def test_register_login_and_me(client: AsyncClient):
    user = await _register(client, "alice@acme.com")
    assert "password_hash" not in user

    headers = await _login(client, "Alice@Acme.com")

    resp = await client.post("/v1/accounts", json={"name": "Acme", "slug": "acme"}, headers=headers)
    assert resp.status_code == 201, resp.text
    assert resp.json()["role"] == "owner"

    resp = await client.get("/v1/auth/me", headers=headers)
    assert resp.status_code == 200
    data = resp.json()
    assert data["user"]["id"] == user["id"]
    assert [a["slug"] for a in data["accounts"]] == ["acme"]


@pytest.mark.asyncio
async def test_duplicate_email_rejected(client: AsyncClient):
    await _register(client, "dup@acme.com")
    resp = await client.post("/v1/auth/register", json={
        "email": "DUP@acme.com", "password": "anotherpass1",
    })
    assert resp.status_code == 409
    assert resp.json()["code"] == "email_taken"


@pytest.mark.asyncio
async def test_wrong_password_rejected(client: AsyncClient):
    await _register(client, "bob@acme.com")
    resp = await client.post("/v1/auth/login", json={
        "email": "bob@acme.com", "password": "wrong-password",
    })
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_unknown_email_still_spends_a_hash(client: AsyncClient):
    with patch("tenantgate.api.v1.auth.dummy_verify_password") as dummy:
        resp = await client.post("/v1/auth/login", json={
            "email": "nobody@acme.com", "password": "whatever-123",
        })
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Invalid email or password"
    dummy.assert_called_once_with()


@pytest.mark.asyncio
async def test_login_is_rate_limited_per_ip(client: AsyncClient):
    await _register(client, "carol@acme.com")
    for _ in range(10):
        resp = await client.post("/v1/auth/login", json={
            "email": "carol@acme.com", "password": "wrong-password",
        })
        assert resp.status_code == 401

    # Correct credentials no longer help until the window passes
    resp = await client.post("/v1/auth/login", json={
        "email": "carol@acme.com", "password": "supersecret123",
    })
    assert resp.status_code == 429
    assert resp.json()["code"] == "rate_limited"


@pytest.mark.asyncio
@pytest.mark.parametrize("token", ["totally-fake-token", "nokey:nosecret"])
async def test_invalid_credentials_rejected(client: AsyncClient, token: str):
    resp = await client.get("/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_missing_credentials_rejected(client: AsyncClient):
    resp = await client.get("/v1/accounts")
    assert resp.status_code == 401
    assert resp.json()["code"] == "unauthenticated"


@pytest.mark.asyncio
async def test_api_key_cannot_use_user_endpoints(client: AsyncClient):
    await _register(client, "dave@acme.com")
    headers = await _login(client, "dave@acme.com")
    account = (await client.post("/v1/accounts", json={"name": "Dave Co"}, headers=headers)).json()

    resp = await client.post(
        f"/v1/accounts/{account['id']}/api-keys",
        json={"name": "ci", "scopes": ["links:read"]},
        headers=headers,
    )
    assert resp.status_code == 201, resp.text
    key_headers = {"Authorization": f"Bearer {resp.json()['api_key']}"}

    resp = await client.get("/v1/auth/me", headers=key_headers)
    assert resp.status_code == 403
