"""Account members: invite, accept, role / permission changes, removal."""

import uuid

from fastapi import APIRouter, status
from pydantic import BaseModel, Field

from tenantgate.api.deps import GateDep, Session
from tenantgate.core.config import get_settings
from tenantgate.models.audit_log import AuditAction, ResourceType
from tenantgate.models.member import AccountMember, AccountRole, MemberInvite, MemberRead, MemberUpdate
from tenantgate.models.user import User
from tenantgate.services import roles
from tenantgate.services.gate import Access
from tenantgate.services.rate_limit import invite_rule

router = APIRouter(prefix="/accounts/{account_id}/members", tags=["members"])


class PasswordReset(BaseModel):
    password: str = Field(min_length=8, max_length=128)


def _member_read(member: AccountMember, user: User) -> MemberRead:
    overrides = member.get_overrides()
    return MemberRead(
        user_id=member.user_id,
        email=user.email,
        display_name=user.display_name,
        role=member.role,
        feature_permissions=overrides or None,
        joined_at=member.joined_at,
        accepted_at=member.accepted_at,
    )


@router.get("", response_model=list[MemberRead])
async def list_members(account_id: uuid.UUID, gate: GateDep, session: Session) -> list[MemberRead]:
    async def op(access: Access) -> list[MemberRead]:
        rows = await roles.list_members(session, account_id)
        return [_member_read(member, user) for member, user in rows]

    return await gate.perform(
        account_id, op,
        action=AuditAction.ACCESS, resource_type=ResourceType.MEMBER,
        minimum_role=AccountRole.VIEWER,
    )


@router.post("", response_model=MemberRead, status_code=status.HTTP_201_CREATED)
async def invite_member(
    account_id: uuid.UUID,
    body: MemberInvite,
    gate: GateDep,
    session: Session,
) -> MemberRead:
    """Add an existing user by email.

    Every attempt counts against the invite limit, including ones that fail
    validation, and unknown / already-added emails share one generic error.
    """
    async def op(access: Access) -> MemberRead:
        member, user = await roles.add_member(
            session,
            access.account,
            body.email,
            body.role,
            invited_by=gate.actor.user_id,
            permissions=body.permissions,
            auto_accept=get_settings().auto_accept_invites,
        )
        return _member_read(member, user)

    return await gate.perform(
        account_id, op,
        action=AuditAction.INVITE, resource_type=ResourceType.MEMBER,
        minimum_role=AccountRole.ADMIN, rate_limit=invite_rule(),
        resource_id_of=lambda m: m.user_id,
        describe=lambda m: {"email": m.email, "role": m.role},
    )


@router.post("/accept", response_model=MemberRead)
async def accept_invitation(account_id: uuid.UUID, gate: GateDep, session: Session) -> MemberRead:
    async def op(access: Access) -> MemberRead:
        member = await roles.accept_invitation(session, account_id, gate.actor.user_id)
        user = await session.get(User, member.user_id)
        return _member_read(member, user)

    return await gate.perform(
        account_id, op,
        action=AuditAction.ACCEPT, resource_type=ResourceType.MEMBER,
        resource_id=gate.actor.user_id, allow_pending=True,
    )


@router.patch("/{user_id}", response_model=MemberRead)
async def update_member(
    account_id: uuid.UUID,
    user_id: uuid.UUID,
    body: MemberUpdate,
    gate: GateDep,
    session: Session,
) -> MemberRead:
    async def op(access: Access) -> MemberRead:
        member = await roles.update_member(
            session, account_id, user_id, role=body.role, permissions=body.permissions
        )
        user = await session.get(User, user_id)
        return _member_read(member, user)

    changes: dict = {}
    if body.role is not None:
        changes["role"] = body.role
    if body.permissions is not None:
        changes["permissions"] = {k: v.access for k, v in body.permissions.items()}

    return await gate.perform(
        account_id, op,
        action=AuditAction.UPDATE, resource_type=ResourceType.MEMBER,
        resource_id=user_id, minimum_role=AccountRole.ADMIN, details=changes,
    )


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_member(
    account_id: uuid.UUID,
    user_id: uuid.UUID,
    gate: GateDep,
    session: Session,
) -> None:
    """Remove a member. Any member may leave; removing others needs admin."""
    leaving = gate.actor.user_id == user_id

    async def op(access: Access) -> None:
        await roles.remove_member(session, account_id, user_id)

    await gate.perform(
        account_id, op,
        action=AuditAction.DELETE, resource_type=ResourceType.MEMBER,
        resource_id=user_id,
        minimum_role=AccountRole.VIEWER if leaving else AccountRole.ADMIN,
        details={"self": True} if leaving else None,
    )


@router.put("/{user_id}/password", status_code=status.HTTP_204_NO_CONTENT)
async def set_member_password(
    account_id: uuid.UUID,
    user_id: uuid.UUID,
    body: PasswordReset,
    gate: GateDep,
    session: Session,
) -> None:
    """Set a member's password. Only the owner may reset the owner's."""
    async def op(access: Access) -> None:
        await roles.set_member_password(
            session, account_id, gate.actor.user_id, user_id, body.password
        )

    await gate.perform(
        account_id, op,
        action=AuditAction.UPDATE, resource_type=ResourceType.MEMBER,
        resource_id=user_id, minimum_role=AccountRole.ADMIN,
        details={"field": "password"},
    )
