"""Accounts: bootstrap, settings, tier changes and per-account stats."""

import logging
import uuid
from datetime import timedelta

import pydantic
from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from tenantgate.core.catalog import Tier, max_members, max_projects
from tenantgate.core.errors import ConflictError, ValidationError
from tenantgate.models.account import Account, AccountSettings, TeamLoginSettings
from tenantgate.models.api_key import ApiKey
from tenantgate.models.audit_log import AuditAction, AuditLogEntry
from tenantgate.models.base import utcnow
from tenantgate.models.member import AccountMember, AccountRole
from tenantgate.models.user import User
from tenantgate.services.projects import count_projects, slugify
from tenantgate.services.roles import count_members

logger = logging.getLogger(__name__)


async def _unique_account_slug(session: AsyncSession, base: str) -> str:
    stmt = select(Account.slug).where(Account.slug.startswith(base))  # type: ignore[union-attr]
    taken = set((await session.execute(stmt)).scalars().all())
    slug, n = base, 2
    while slug in taken:
        slug = f"{base}-{n}"
        n += 1
    return slug


async def bootstrap_account(
    session: AsyncSession,
    owner: User,
    name: str,
    slug: str | None = None,
    tier: Tier = Tier.FREE,
) -> tuple[Account, AccountMember]:
    """Create an account with ``owner`` as its sole, already-accepted owner."""
    name = name.strip()
    if not name:
        raise ValidationError("Account name is required", code="missing_name")

    if slug:
        existing = await session.execute(select(Account).where(Account.slug == slug))
        if existing.scalar_one_or_none() is not None:
            raise ConflictError(f"Slug '{slug}' is already taken", code="slug_taken")
    else:
        slug = await _unique_account_slug(session, slugify(name))

    account = Account(name=name, slug=slug, tier=tier)
    session.add(account)
    await session.flush()

    now = utcnow()
    member = AccountMember(
        account_id=account.id,
        user_id=owner.id,
        role=AccountRole.OWNER,
        joined_at=now,
        accepted_at=now,
    )
    session.add(member)
    await session.flush()
    logger.info("Bootstrapped account %s owned by %s", account.id, owner.id)
    return account, member


async def list_accounts_for_user(
    session: AsyncSession, user_id: uuid.UUID
) -> list[tuple[Account, AccountMember]]:
    """Every account the user belongs to, pending invitations included."""
    stmt = (
        select(Account, AccountMember)
        .join(AccountMember, AccountMember.account_id == Account.id)
        .where(AccountMember.user_id == user_id)
        .order_by(Account.name.asc())  # type: ignore[union-attr]
    )
    return [(a, m) for a, m in (await session.execute(stmt)).all()]


def merge_settings(current: AccountSettings, changes: dict) -> AccountSettings:
    """Shallow-merge ``changes`` over the stored document and re-validate."""
    merged = current.model_dump(mode="json", exclude_none=True)
    merged.update(changes)
    try:
        return AccountSettings.model_validate(merged)
    except pydantic.ValidationError as exc:
        raise ValidationError(
            f"Invalid account settings: {exc.errors()[0]['msg']}", code="invalid_settings"
        ) from exc


async def update_account(
    session: AsyncSession,
    account: Account,
    name: str | None = None,
    settings: dict | None = None,
) -> Account:
    if name is not None:
        name = name.strip()
        if not name:
            raise ValidationError("Account name is required", code="missing_name")
        account.name = name
    if settings is not None:
        account.set_settings(merge_settings(account.get_settings(), settings))

    account.updated_at = utcnow()
    session.add(account)
    await session.flush()
    return account


async def change_tier(session: AsyncSession, account: Account, tier: Tier) -> Account:
    """Set the subscription tier. Member records are untouched; gating follows the tier."""
    previous = account.tier
    account.tier = tier
    account.updated_at = utcnow()
    session.add(account)
    await session.flush()
    logger.info("Account %s tier changed %s -> %s", account.id, previous, tier)
    return account


def get_login_settings(account: Account) -> TeamLoginSettings:
    return account.get_settings().team_login or TeamLoginSettings()


async def update_login_settings(
    session: AsyncSession, account: Account, login: TeamLoginSettings
) -> TeamLoginSettings:
    current = account.get_settings()
    current.team_login = login
    account.set_settings(current)
    account.updated_at = utcnow()
    session.add(account)
    await session.flush()
    return login


async def account_stats(session: AsyncSession, account: Account) -> dict:
    """Usage against tier limits plus recent audit activity."""
    now = utcnow()
    active_keys = select(func.count()).select_from(ApiKey).where(
        ApiKey.account_id == account.id,
        ApiKey.revoked_at.is_(None),  # type: ignore[union-attr]
    )
    recent_events = select(func.count()).select_from(AuditLogEntry).where(
        AuditLogEntry.account_id == account.id,
        AuditLogEntry.created_at >= now - timedelta(days=30),
    )
    recent_denials = recent_events.where(AuditLogEntry.action == AuditAction.ACCESS_DENIED)

    return {
        "tier": account.tier,
        "members": await count_members(session, account.id),
        "max_members": max_members(account.tier),
        "projects": await count_projects(session, account.id),
        "max_projects": max_projects(account.tier),
        "active_api_keys": (await session.execute(active_keys)).scalar_one(),
        "audit_events_30d": (await session.execute(recent_events)).scalar_one(),
        "access_denied_30d": (await session.execute(recent_denials)).scalar_one(),
    }
