"""Credential store: issuance, validation, scopes, revocation, regeneration."""

from datetime import timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from tenantgate.core.catalog import API_SCOPES
from tenantgate.core.errors import ConflictError, NotFoundError, ValidationError
from tenantgate.core.security import hash_key_secret, hash_password, verify_key_secret
from tenantgate.models.api_key import ApiKey
from tenantgate.models.base import utcnow
from tenantgate.models.user import User
from tenantgate.services import accounts, api_keys


async def _setup(session: AsyncSession, slug: str):
    owner = User(email=f"owner@{slug}.test", password_hash=hash_password("password123"))
    session.add(owner)
    await session.flush()
    account, _ = await accounts.bootstrap_account(session, owner, slug, slug=slug)
    return account, owner


def test_secret_hash_is_salted():
    first = hash_key_secret("s3cret")
    second = hash_key_secret("s3cret")
    assert first != second
    assert verify_key_secret("s3cret", first)
    assert verify_key_secret("s3cret", second)
    assert not verify_key_secret("s3cret!", first)
    assert not verify_key_secret("s3cret", "no-separator")


@pytest.mark.parametrize("scope", API_SCOPES)
def test_scope_exactness(scope):
    key = ApiKey(scopes=f'["{scope}"]')
    assert api_keys.has_scope(key, scope)
    for other in API_SCOPES:
        if other != scope:
            assert not api_keys.has_scope(key, other)


def test_read_does_not_imply_write():
    key = ApiKey(scopes='["links:read"]')
    assert not api_keys.has_scope(key, "links:write")
    assert not api_keys.has_scope(key, "links:*")


def test_parse_credential():
    assert api_keys.parse_credential("abc:def") == ("abc", "def")
    assert api_keys.parse_credential("abc") is None
    assert api_keys.parse_credential(":def") is None
    assert api_keys.parse_credential("abc:") is None


@pytest.mark.asyncio
async def test_create_and_validate(session: AsyncSession):
    account, owner = await _setup(session, "keys-create")
    key, plaintext = await api_keys.create_key(
        session, account.id, owner.id, "zapier", ["links:read", "links:read", "contacts:write"]
    )

    key_id, secret = plaintext.split(":")
    assert key_id == key.key_id
    # Only the hash is stored
    assert secret not in key.secret_hash
    assert sorted(key.scope_set) == ["contacts:write", "links:read"]

    found = await api_keys.validate(session, plaintext)
    assert found is not None and found.id == key.id
    assert await api_keys.validate(session, f"{key_id}:wrong") is None
    assert await api_keys.validate(session, f"unknown:{secret}") is None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "name,scopes,code",
    [
        ("", ["links:read"], "missing_name"),
        ("   ", ["links:read"], "missing_name"),
        ("ci", [], "missing_scopes"),
        ("ci", ["links:delete"], "invalid_scope"),
    ],
)
async def test_create_rejects_bad_input(session: AsyncSession, name, scopes, code):
    account, owner = await _setup(session, "keys-bad")
    with pytest.raises(ValidationError) as exc:
        await api_keys.create_key(session, account.id, owner.id, name, scopes)
    assert exc.value.code == code


@pytest.mark.asyncio
async def test_create_rejects_past_expiry(session: AsyncSession):
    account, owner = await _setup(session, "keys-past")
    with pytest.raises(ValidationError):
        await api_keys.create_key(
            session, account.id, owner.id, "ci", ["links:read"], utcnow() - timedelta(minutes=1)
        )


@pytest.mark.asyncio
async def test_expired_key_is_rejected(session: AsyncSession):
    account, owner = await _setup(session, "keys-expired")
    key, plaintext = await api_keys.create_key(
        session, account.id, owner.id, "ci", ["links:read"], utcnow() + timedelta(hours=1)
    )
    key.expires_at = utcnow() - timedelta(seconds=1)
    session.add(key)
    await session.flush()

    assert await api_keys.validate(session, plaintext) is None


@pytest.mark.asyncio
async def test_revoke_is_idempotent(session: AsyncSession):
    account, owner = await _setup(session, "keys-revoke")
    key, plaintext = await api_keys.create_key(session, account.id, owner.id, "ci", ["links:read"])

    assert await api_keys.revoke(session, account.id, key.key_id, owner.id) is True
    assert await api_keys.revoke(session, account.id, key.key_id, owner.id) is False
    assert await api_keys.validate(session, plaintext) is None
    assert key.revoked_by == owner.id


@pytest.mark.asyncio
async def test_keys_are_scoped_to_their_account(session: AsyncSession):
    account, owner = await _setup(session, "keys-own")
    other, _ = await _setup(session, "keys-other")
    key, _ = await api_keys.create_key(session, account.id, owner.id, "ci", ["links:read"])

    with pytest.raises(NotFoundError):
        await api_keys.revoke(session, other.id, key.key_id, owner.id)


@pytest.mark.asyncio
async def test_regenerate_invalidates_predecessor(session: AsyncSession):
    account, owner = await _setup(session, "keys-regen")
    expires = utcnow() + timedelta(days=30)
    old, old_plain = await api_keys.create_key(
        session, account.id, owner.id, "sync", ["links:read", "utms:write"], expires
    )

    new, new_plain = await api_keys.regenerate(session, account.id, old.key_id, owner.id)

    assert new.key_id != old.key_id
    assert new.name == old.name
    assert new.scope_set == old.scope_set
    assert new.expires_at == old.expires_at
    assert await api_keys.validate(session, old_plain) is None
    assert (await api_keys.validate(session, new_plain)).id == new.id

    with pytest.raises(ConflictError):
        await api_keys.regenerate(session, account.id, old.key_id, owner.id)


@pytest.mark.asyncio
async def test_list_keys_hides_revoked_by_default(session: AsyncSession):
    account, owner = await _setup(session, "keys-list")
    keep, _ = await api_keys.create_key(session, account.id, owner.id, "keep", ["links:read"])
    gone, _ = await api_keys.create_key(session, account.id, owner.id, "gone", ["links:read"])
    await api_keys.revoke(session, account.id, gone.key_id, owner.id)

    assert [k.id for k in await api_keys.list_keys(session, account.id)] == [keep.id]
    assert len(await api_keys.list_keys(session, account.id, include_revoked=True)) == 2


@pytest.mark.asyncio
async def test_record_usage(session: AsyncSession):
    account, owner = await _setup(session, "keys-usage")
    key, _ = await api_keys.create_key(session, account.id, owner.id, "ci", ["links:read"])

    await api_keys.record_usage(session, key.id, "203.0.113.7")

    assert key.last_used_at is not None
    assert key.last_used_ip == "203.0.113.7"
