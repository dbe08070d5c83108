"""Credential store for API keys: issue, validate, scope-check, revoke, regenerate.

A key is presented as ``<key_id>:<secret>``. Only a salted hash of the
secret is stored; the plaintext leaves this module exactly once, as the
return value of :func:`create_key` or :func:`regenerate`.
"""

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from tenantgate.core.catalog import API_SCOPES
from tenantgate.core.errors import ConflictError, NotFoundError, ValidationError
from tenantgate.core.security import (
    generate_key_id,
    generate_key_secret,
    hash_key_secret,
    verify_key_secret,
)
from tenantgate.models.api_key import ApiKey
from tenantgate.models.base import dump_json, utcnow

logger = logging.getLogger(__name__)


def parse_credential(presented: str) -> tuple[str, str] | None:
    """Split ``key_id:secret``; anything else is not an API key."""
    key_id, sep, secret = presented.partition(":")
    if not sep or not key_id or not secret:
        return None
    return key_id, secret


def _normalize_expiry(expires_at: datetime | None) -> datetime | None:
    """Store naive UTC, like every other timestamp column."""
    if expires_at is None or expires_at.tzinfo is None:
        return expires_at
    return expires_at.astimezone(timezone.utc).replace(tzinfo=None)


def _validate_scopes(scopes: list[str]) -> list[str]:
    cleaned = sorted({s.strip() for s in scopes if s and s.strip()})
    if not cleaned:
        raise ValidationError("At least one scope is required", code="missing_scopes")
    unknown = [s for s in cleaned if s not in API_SCOPES]
    if unknown:
        raise ValidationError(
            f"Unknown scope(s): {', '.join(unknown)}", code="invalid_scope"
        )
    return cleaned


def is_usable(key: ApiKey, now: datetime | None = None) -> bool:
    now = now or utcnow()
    if key.revoked_at is not None:
        return False
    return key.expires_at is None or key.expires_at > now


async def _issue(
    session: AsyncSession,
    account_id: uuid.UUID,
    created_by: uuid.UUID,
    name: str,
    scopes: list[str],
    expires_at: datetime | None,
) -> tuple[ApiKey, str]:
    secret = generate_key_secret()
    key = ApiKey(
        account_id=account_id,
        key_id=generate_key_id(),
        secret_hash=hash_key_secret(secret),
        name=name,
        scopes=dump_json(scopes),
        created_by=created_by,
        expires_at=expires_at,
    )
    session.add(key)
    await session.flush()
    return key, f"{key.key_id}:{secret}"


async def create_key(
    session: AsyncSession,
    account_id: uuid.UUID,
    created_by: uuid.UUID,
    name: str,
    scopes: list[str],
    expires_at: datetime | None = None,
) -> tuple[ApiKey, str]:
    """Issue a new key. Returns the record and the one-time plaintext credential."""
    name = (name or "").strip()
    if not name:
        raise ValidationError("API key name is required", code="missing_name")
    cleaned = _validate_scopes(scopes)

    expires_at = _normalize_expiry(expires_at)
    if expires_at is not None and expires_at <= utcnow():
        raise ValidationError("Expiry must be in the future", code="invalid_expiry")

    key, plaintext = await _issue(session, account_id, created_by, name, cleaned, expires_at)
    logger.info("Issued API key %s for account %s", key.key_id, account_id)
    return key, plaintext


async def get_key(
    session: AsyncSession, account_id: uuid.UUID, key_id: str
) -> ApiKey:
    stmt = select(ApiKey).where(ApiKey.key_id == key_id, ApiKey.account_id == account_id)
    key = (await session.execute(stmt)).scalar_one_or_none()
    if key is None:
        raise NotFoundError("API key not found")
    return key


async def list_keys(
    session: AsyncSession, account_id: uuid.UUID, include_revoked: bool = False
) -> list[ApiKey]:
    stmt = select(ApiKey).where(ApiKey.account_id == account_id)
    if not include_revoked:
        stmt = stmt.where(ApiKey.revoked_at.is_(None))  # type: ignore[union-attr]
    stmt = stmt.order_by(ApiKey.created_at.desc())  # type: ignore[union-attr]
    return list((await session.execute(stmt)).scalars().all())


async def validate(session: AsyncSession, presented: str) -> ApiKey | None:
    """Resolve a presented credential to a usable key, or None.

    Revoked, expired, unknown and mismatched credentials all come back as
    None so callers cannot tell them apart.
    """
    parsed = parse_credential(presented)
    if parsed is None:
        return None
    key_id, secret = parsed

    stmt = select(ApiKey).where(ApiKey.key_id == key_id)
    key = (await session.execute(stmt)).scalar_one_or_none()
    if key is None:
        return None
    if not verify_key_secret(secret, key.secret_hash):
        return None
    if not is_usable(key):
        return None
    return key


def has_scope(key: ApiKey, required: str) -> bool:
    """Exact membership; no wildcards and no read/write implication."""
    return required in key.scope_set


async def revoke(
    session: AsyncSession,
    account_id: uuid.UUID,
    key_id: str,
    revoked_by: uuid.UUID | None,
) -> bool:
    """Revoke a key. False when it was already revoked."""
    key = await get_key(session, account_id, key_id)
    if key.revoked_at is not None:
        return False
    key.revoked_at = utcnow()
    key.revoked_by = revoked_by
    key.updated_at = key.revoked_at
    session.add(key)
    await session.flush()
    logger.info("Revoked API key %s", key.key_id)
    return True


async def regenerate(
    session: AsyncSession,
    account_id: uuid.UUID,
    key_id: str,
    actor_id: uuid.UUID,
) -> tuple[ApiKey, str]:
    """Revoke a key and issue its replacement with the same name, scopes and expiry.

    Both writes are flushed in the caller's transaction, so they commit or
    roll back together.
    """
    old = await get_key(session, account_id, key_id)
    if not is_usable(old):
        raise ConflictError(
            "Only active keys can be regenerated; create a new key instead",
            code="key_inactive",
        )

    now = utcnow()
    old.revoked_at = now
    old.revoked_by = actor_id
    old.updated_at = now
    session.add(old)

    new, plaintext = await _issue(
        session,
        account_id,
        actor_id,
        old.name,
        sorted(old.scope_set),
        old.expires_at,
    )
    logger.info("Regenerated API key %s as %s", old.key_id, new.key_id)
    return new, plaintext


async def record_usage(session: AsyncSession, key_pk: uuid.UUID, ip_address: str | None) -> None:
    """Stamp last_used_at / last_used_ip. Best-effort: failures are logged and dropped."""
    try:
        key = await session.get(ApiKey, key_pk)
        if key is None:
            return
        key.last_used_at = utcnow()
        key.last_used_ip = ip_address
        session.add(key)
        await session.commit()
    except SQLAlchemyError:
        logger.warning("Failed to record usage for API key %s", key_pk, exc_info=True)
        await session.rollback()
