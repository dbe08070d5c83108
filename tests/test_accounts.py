"""Account endpoints: settings document, login page settings, tier, stats."""

import pytest
from httpx import AsyncClient


async def _login(client: AsyncClient, email: str) -> dict:
    await client.post("/v1/auth/register", json={"email": email, "password": "password1234"})
    resp = await client.post("/v1/auth/login", json={"email": email, "password": "password1234"})
    return {"Authorization": f"Bearer {resp.json()['access_token']}"}


async def _account(client: AsyncClient, slug: str) -> tuple[str, dict]:
    headers = await _login(client, f"owner@{slug}.com")
    resp = await client.post("/v1/accounts", json={"name": f"{slug} Co", "slug": slug}, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()["id"], headers


async def _add(client: AsyncClient, account_id: str, owner: dict, email: str, role: str) -> dict:
    headers = await _login(client, email)
    resp = await client.post(
        f"/v1/accounts/{account_id}/members",
        json={"email": email, "role": role},
        headers=owner,
    )
    assert resp.status_code == 201, resp.text
    return headers


@pytest.mark.asyncio
async def test_duplicate_slug_rejected(client: AsyncClient):
    await _account(client, "taken")
    headers = await _login(client, "second@taken.com")
    resp = await client.post("/v1/accounts", json={"name": "Other", "slug": "taken"}, headers=headers)
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_settings_merge_keeps_unknown_keys(client: AsyncClient):
    account_id, headers = await _account(client, "settings")
    url = f"/v1/accounts/{account_id}"

    resp = await client.patch(url, json={"settings": {"report_day": "monday"}}, headers=headers)
    assert resp.status_code == 200, resp.text

    resp = await client.patch(
        url, json={"settings": {"team_login": {"title": "Sign in to Acme"}}}, headers=headers
    )
    settings = resp.json()["settings"]
    assert settings["report_day"] == "monday"
    assert settings["team_login"]["title"] == "Sign in to Acme"


@pytest.mark.asyncio
async def test_invalid_settings_rejected(client: AsyncClient):
    account_id, headers = await _account(client, "bad-settings")
    resp = await client.patch(
        f"/v1/accounts/{account_id}",
        json={"settings": {"team_login": {"page_id": "not-a-number"}}},
        headers=headers,
    )
    assert resp.status_code == 400
    assert resp.json()["code"] == "invalid_settings"


@pytest.mark.asyncio
async def test_login_settings_round_trip(client: AsyncClient):
    account_id, headers = await _account(client, "login-page")
    url = f"/v1/accounts/{account_id}/login-settings"

    resp = await client.get(url, headers=headers)
    assert resp.json()["title"] == "Team Login"

    resp = await client.put(url, json={"title": "Acme Team", "logo_url": "https://cdn/logo.png"}, headers=headers)
    assert resp.status_code == 200
    resp = await client.get(url, headers=headers)
    assert resp.json()["logo_url"] == "https://cdn/logo.png"


@pytest.mark.asyncio
async def test_tier_change_requires_admin(client: AsyncClient):
    account_id, owner = await _account(client, "tiers")
    admin = await _add(client, account_id, owner, "a@tiers.com", "admin")
    member = await _add(client, account_id, owner, "m@tiers.com", "member")
    url = f"/v1/accounts/{account_id}/tier"

    resp = await client.put(url, json={"tier": "agency"}, headers=member)
    assert resp.status_code == 403

    resp = await client.put(url, json={"tier": "agency"}, headers=admin)
    assert resp.status_code == 200
    assert resp.json()["tier"] == "agency"

    resp = await client.get(
        f"/v1/accounts/{account_id}/audit-log", params={"resource_type": "account"}, headers=owner
    )
    details = [e["details"] for e in resp.json()["items"] if e["action"] == "update"]
    assert {"tier": "agency", "previous_tier": "free"} in details


@pytest.mark.asyncio
async def test_features_and_my_permissions(client: AsyncClient):
    account_id, owner = await _account(client, "perms")
    member = await _add(client, account_id, owner, "m@perms.com", "member")

    resp = await client.get(f"/v1/accounts/{account_id}/features", headers=member)
    features = resp.json()["features"]
    assert features["links"]["available"] is True
    assert features["visitors"]["available"] is False

    resp = await client.get(f"/v1/accounts/{account_id}/my-permissions", headers=member)
    data = resp.json()
    assert data["role"] == "member"
    assert data["permissions"]["links"]["access"] is True
    assert data["permissions"]["visitors"]["access"] is False


@pytest.mark.asyncio
async def test_stats(client: AsyncClient):
    account_id, owner = await _account(client, "stats")
    await client.post(
        f"/v1/accounts/{account_id}/api-keys",
        json={"name": "ci", "scopes": ["links:read"]},
        headers=owner,
    )

    resp = await client.get(f"/v1/accounts/{account_id}/stats", headers=owner)
    assert resp.status_code == 200
    data = resp.json()
    assert data["tier"] == "free"
    assert data["members"] == 1
    assert data["active_api_keys"] == 1
