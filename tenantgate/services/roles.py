"""Role & tier resolver: account membership, role hierarchy, feature gating.

The precedence for a feature decision lives in one place,
:func:`resolve_permission`: tier gate, then the member's override, then the
role default. Everything else (routes, the gate, the "my permissions" view)
goes through it.
"""

import logging
import uuid

from pydantic import BaseModel
from sqlalchemy import delete, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from tenantgate.core.catalog import FEATURES, Tier, max_members, tier_rank
from tenantgate.core.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from tenantgate.core.security import hash_password
from tenantgate.models.account import Account
from tenantgate.models.base import utcnow
from tenantgate.models.member import (
    ASSIGNABLE_ROLES,
    AccountMember,
    AccountRole,
    FeaturePermission,
)
from tenantgate.models.project import Project, ProjectMember, ProjectRole
from tenantgate.models.user import User

logger = logging.getLogger(__name__)

# viewer < member < admin = owner
ROLE_RANK: dict[str, int] = {
    AccountRole.VIEWER: 1,
    AccountRole.MEMBER: 2,
    AccountRole.ADMIN: 3,
    AccountRole.OWNER: 3,
}

_LISTING_ORDER: dict[str, int] = {
    AccountRole.OWNER: 0,
    AccountRole.ADMIN: 1,
    AccountRole.MEMBER: 2,
    AccountRole.VIEWER: 3,
}

# Project roles, and the highest project role each account role allows
PROJECT_ROLE_RANK: dict[str, int] = {
    ProjectRole.VIEWER: 1,
    ProjectRole.MEMBER: 2,
    ProjectRole.ADMIN: 3,
}

_PROJECT_ROLE_CAP: dict[str, ProjectRole] = {
    AccountRole.VIEWER: ProjectRole.VIEWER,
    AccountRole.MEMBER: ProjectRole.MEMBER,
    AccountRole.ADMIN: ProjectRole.ADMIN,
    AccountRole.OWNER: ProjectRole.ADMIN,
}

# Same message for "no such user" and "already a member"
ADD_MEMBER_FAILED = "Unable to add member. Please verify the email address and try again."


class FeatureAvailability(BaseModel):
    available: bool
    name: str
    tier: str


def role_rank(role: str | None) -> int:
    return ROLE_RANK.get(role or "", 0)


def project_role_rank(role: str | None) -> int:
    return PROJECT_ROLE_RANK.get(role or "", 0)


def project_role_cap(account_role: str | None) -> ProjectRole | None:
    """Highest project role a member with this account role may hold."""
    return _PROJECT_ROLE_CAP.get(account_role or "")


def role_satisfies(role: str | None, minimum: str) -> bool:
    """Owner-only checks need the owner role itself, not an equal rank."""
    if role is None:
        return False
    if minimum == AccountRole.OWNER:
        return role == AccountRole.OWNER
    return role_rank(role) >= role_rank(minimum)


def default_permissions_for_role(role: str | None) -> dict[str, FeaturePermission]:
    """Owner/admin reach every feature; anyone else only free-tier features."""
    full_access = role in (AccountRole.OWNER, AccountRole.ADMIN)
    return {
        feature: FeaturePermission(access=full_access or required == Tier.FREE)
        for feature, (_, required) in FEATURES.items()
    }


def available_features(tier: str) -> dict[str, FeatureAvailability]:
    account_rank = tier_rank(tier)
    return {
        feature: FeatureAvailability(
            available=tier_rank(required) <= account_rank,
            name=name,
            tier=required,
        )
        for feature, (name, required) in FEATURES.items()
    }


def resolve_permission(
    tier: str,
    role: str | None,
    overrides: dict[str, FeaturePermission],
    feature: str,
) -> bool:
    """Tier gate → per-member override → role default."""
    if feature not in FEATURES:
        return False
    if not available_features(tier)[feature].available:
        return False
    if feature in overrides:
        return overrides[feature].access
    return default_permissions_for_role(role)[feature].access


def validate_overrides(
    permissions: dict[str, FeaturePermission] | None,
) -> dict[str, FeaturePermission] | None:
    """Reject overrides for features outside the catalog."""
    if permissions is None:
        return None
    unknown = sorted(set(permissions) - set(FEATURES))
    if unknown:
        raise ValidationError(
            f"Unknown feature(s) in permissions: {', '.join(unknown)}",
            code="invalid_permissions",
        )
    return dict(permissions)


# ── Lookups ───────────────────────────────────────────────────

async def get_membership(
    session: AsyncSession, account_id: uuid.UUID, user_id: uuid.UUID
) -> AccountMember | None:
    stmt = select(AccountMember).where(
        AccountMember.account_id == account_id,
        AccountMember.user_id == user_id,
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_role(
    session: AsyncSession, account_id: uuid.UUID, user_id: uuid.UUID
) -> AccountRole | None:
    """The member's role, or None for non-members and pending invitations."""
    member = await get_membership(session, account_id, user_id)
    if member is None or member.is_pending:
        return None
    return AccountRole(member.role)


async def has_role_at_least(
    session: AsyncSession,
    account_id: uuid.UUID,
    user_id: uuid.UUID,
    minimum: AccountRole,
) -> bool:
    return role_satisfies(await get_role(session, account_id, user_id), minimum)


async def effective_permission(
    session: AsyncSession,
    account_id: uuid.UUID,
    user_id: uuid.UUID,
    feature: str,
) -> bool:
    account = await session.get(Account, account_id)
    member = await get_membership(session, account_id, user_id)
    if account is None or member is None or member.is_pending:
        return False
    return resolve_permission(account.tier, member.role, member.get_overrides(), feature)


def member_permissions(account: Account, member: AccountMember) -> dict[str, FeaturePermission]:
    """Effective access for every catalog feature."""
    overrides = member.get_overrides()
    return {
        feature: FeaturePermission(
            access=resolve_permission(account.tier, member.role, overrides, feature)
        )
        for feature in FEATURES
    }


async def list_members(
    session: AsyncSession, account_id: uuid.UUID
) -> list[tuple[AccountMember, User]]:
    stmt = (
        select(AccountMember, User)
        .join(User, User.id == AccountMember.user_id)
        .where(AccountMember.account_id == account_id)
        .order_by(AccountMember.joined_at.asc())  # type: ignore[union-attr]
    )
    result = await session.execute(stmt)
    rows = [(member, user) for member, user in result.all()]
    rows.sort(key=lambda row: _LISTING_ORDER.get(row[0].role, len(_LISTING_ORDER)))
    return rows


async def count_members(session: AsyncSession, account_id: uuid.UUID) -> int:
    stmt = select(func.count()).select_from(AccountMember).where(
        AccountMember.account_id == account_id
    )
    return (await session.execute(stmt)).scalar_one()


async def count_owners(session: AsyncSession, account_id: uuid.UUID) -> int:
    stmt = select(func.count()).select_from(AccountMember).where(
        AccountMember.account_id == account_id,
        AccountMember.role == AccountRole.OWNER,
    )
    return (await session.execute(stmt)).scalar_one()


async def _require_member(
    session: AsyncSession, account_id: uuid.UUID, user_id: uuid.UUID
) -> AccountMember:
    member = await get_membership(session, account_id, user_id)
    if member is None:
        raise NotFoundError("Member not found in this account")
    return member


# ── Mutations (flush only; the caller owns the transaction) ──

async def add_member(
    session: AsyncSession,
    account: Account,
    email: str,
    role: AccountRole,
    invited_by: uuid.UUID | None,
    permissions: dict[str, FeaturePermission] | None = None,
    auto_accept: bool = True,
) -> tuple[AccountMember, User]:
    if role not in ASSIGNABLE_ROLES:
        raise ValidationError("Role must be one of admin, member or viewer", code="invalid_role")
    overrides = validate_overrides(permissions)

    # Seat check before the email lookup
    if await count_members(session, account.id) >= max_members(account.tier):
        raise ConflictError(
            f"The {account.tier} tier allows at most {max_members(account.tier)} members",
            code="member_limit",
        )

    stmt = select(User).where(func.lower(User.email) == email.strip().lower())
    user = (await session.execute(stmt)).scalar_one_or_none()
    if user is None or not user.is_active:
        raise ValidationError(ADD_MEMBER_FAILED, code="add_failed")
    if await get_membership(session, account.id, user.id) is not None:
        raise ValidationError(ADD_MEMBER_FAILED, code="add_failed")

    now = utcnow()
    member = AccountMember(
        account_id=account.id,
        user_id=user.id,
        role=role,
        invited_by=invited_by,
        joined_at=now,
        accepted_at=now if auto_accept else None,
    )
    member.set_overrides(overrides)
    session.add(member)
    await session.flush()
    logger.info("Added user %s to account %s as %s", user.id, account.id, role)
    return member, user


async def accept_invitation(
    session: AsyncSession, account_id: uuid.UUID, user_id: uuid.UUID
) -> AccountMember:
    member = await _require_member(session, account_id, user_id)
    if member.is_pending:
        member.accepted_at = utcnow()
        member.updated_at = utcnow()
        session.add(member)
        await session.flush()
    return member


async def update_member(
    session: AsyncSession,
    account_id: uuid.UUID,
    user_id: uuid.UUID,
    role: AccountRole | None = None,
    permissions: dict[str, FeaturePermission] | None = None,
) -> AccountMember:
    member = await _require_member(session, account_id, user_id)

    if member.role == AccountRole.OWNER:
        raise ConflictError(
            "The owner's role and permissions change only through an ownership transfer",
            code="owner_immutable",
        )
    if role is not None:
        if role not in ASSIGNABLE_ROLES:
            raise ValidationError(
                "Use an ownership transfer to make someone the owner", code="invalid_role"
            )
        member.role = role
        await _cap_project_roles(session, account_id, user_id, role)
    if permissions is not None:
        member.set_overrides(validate_overrides(permissions))

    member.updated_at = utcnow()
    session.add(member)
    await session.flush()
    return member


async def remove_member(
    session: AsyncSession, account_id: uuid.UUID, user_id: uuid.UUID
) -> None:
    member = await _require_member(session, account_id, user_id)
    if member.role == AccountRole.OWNER:
        raise ConflictError(
            "Transfer ownership before removing the account owner",
            code="owner_required",
        )

    project_ids = select(Project.id).where(Project.account_id == account_id)
    await session.execute(
        delete(ProjectMember).where(
            ProjectMember.user_id == user_id,
            ProjectMember.project_id.in_(project_ids),  # type: ignore[union-attr]
        )
    )
    await session.delete(member)
    await session.flush()


async def transfer_ownership(
    session: AsyncSession,
    account_id: uuid.UUID,
    current_owner_id: uuid.UUID,
    new_owner_id: uuid.UUID,
) -> None:
    """Demote the owner to admin and promote the target, as one unit.

    Both rows are flushed together and the owner count re-checked before
    returning; any failure rolls the session back so neither write lands.
    """
    current = await _require_member(session, account_id, current_owner_id)
    if current.role != AccountRole.OWNER:
        raise ForbiddenError("Only the owner can transfer ownership", code="owner_only")
    if new_owner_id == current_owner_id:
        raise ValidationError("You already own this account", code="invalid_target")

    target = await get_membership(session, account_id, new_owner_id)
    if target is None or target.is_pending:
        raise ValidationError(
            "The new owner must be an active member of this account",
            code="invalid_target",
        )

    try:
        now = utcnow()
        current.role = AccountRole.ADMIN
        current.updated_at = now
        target.role = AccountRole.OWNER
        target.updated_at = now
        session.add_all([current, target])
        await session.flush()

        if await count_owners(session, account_id) != 1:
            raise ConflictError("An account must have exactly one owner", code="owner_invariant")
    except Exception:
        await session.rollback()
        raise
    logger.info(
        "Ownership of account %s transferred from %s to %s",
        account_id, current_owner_id, new_owner_id,
    )


async def set_member_password(
    session: AsyncSession,
    account_id: uuid.UUID,
    actor_user_id: uuid.UUID,
    target_user_id: uuid.UUID,
    password: str,
) -> User:
    target = await _require_member(session, account_id, target_user_id)
    if target.role == AccountRole.OWNER and actor_user_id != target_user_id:
        actor_role = await get_role(session, account_id, actor_user_id)
        if actor_role != AccountRole.OWNER:
            raise ForbiddenError("Only the owner can reset the owner's credentials", code="owner_protected")

    user = await session.get(User, target_user_id)
    if user is None:
        raise NotFoundError("Member not found in this account")
    user.password_hash = hash_password(password)
    user.updated_at = utcnow()
    session.add(user)
    await session.flush()
    return user


async def _cap_project_roles(
    session: AsyncSession,
    account_id: uuid.UUID,
    user_id: uuid.UUID,
    account_role: AccountRole,
) -> None:
    """Lower project roles that a demoted account role no longer allows."""
    cap = project_role_cap(account_role)
    stmt = (
        select(ProjectMember)
        .join(Project, Project.id == ProjectMember.project_id)
        .where(Project.account_id == account_id, ProjectMember.user_id == user_id)
    )
    for pm in (await session.execute(stmt)).scalars().all():
        if project_role_rank(pm.role) > project_role_rank(cap):
            pm.role = cap
            pm.updated_at = utcnow()
            session.add(pm)
