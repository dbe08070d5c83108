"""Accounts: bootstrap, settings, tier, stats, feature access, ownership transfer."""

import uuid

from fastapi import APIRouter, status
from pydantic import BaseModel, Field

from tenantgate.api.deps import CurrentUser, GateDep, Session
from tenantgate.core.catalog import Tier
from tenantgate.models.account import AccountRead, AccountUpdate, TeamLoginSettings
from tenantgate.models.audit_log import AuditAction, ResourceType
from tenantgate.models.member import AccountRole, FeaturePermission
from tenantgate.services import accounts as account_service
from tenantgate.services import roles
from tenantgate.services.gate import Access
from tenantgate.services.rate_limit import RateRule

router = APIRouter(prefix="/accounts", tags=["accounts"])


# ── Schemas ──────────────────────────────────────────────────

class AccountCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    slug: str | None = Field(default=None, max_length=100, pattern=r"^[a-z0-9][a-z0-9-]*$")


class TierUpdate(BaseModel):
    tier: Tier


class TransferOwnershipRequest(BaseModel):
    new_owner_id: uuid.UUID


class FeaturesResponse(BaseModel):
    tier: str
    features: dict[str, roles.FeatureAvailability]


class MyPermissionsResponse(BaseModel):
    role: str | None
    permissions: dict[str, FeaturePermission]


class AuthorizeRateLimit(BaseModel):
    action: str = Field(min_length=1, max_length=50)
    limit: int = Field(gt=0)
    window_seconds: int = Field(gt=0)


class AuthorizeRequest(BaseModel):
    """A product module asking whether the caller may do something."""

    action: AuditAction
    resource_type: str = Field(min_length=1, max_length=50)
    resource_id: str | None = Field(default=None, max_length=64)
    minimum_role: AccountRole | None = None
    feature: str | None = None
    scope: str | None = None
    rate_limit: AuthorizeRateLimit | None = None
    details: dict | None = None


class AuthorizeResponse(BaseModel):
    allowed: bool
    actor: str
    role: str | None = None


# ── Routes ───────────────────────────────────────────────────

@router.post("", response_model=AccountRead, status_code=status.HTTP_201_CREATED)
async def create_account(
    body: AccountCreateRequest,
    user: CurrentUser,
    gate: GateDep,
    session: Session,
) -> AccountRead:
    """Create an account; the caller becomes its owner."""
    account, member = await account_service.bootstrap_account(
        session, user, body.name, slug=body.slug
    )
    await gate.record(
        account.id, AuditAction.CREATE, ResourceType.ACCOUNT, account.id,
        {"name": account.name, "slug": account.slug},
    )
    await session.commit()
    return AccountRead.from_account(account, member.role)


@router.get("", response_model=list[AccountRead])
async def list_accounts(user: CurrentUser, session: Session) -> list[AccountRead]:
    rows = await account_service.list_accounts_for_user(session, user.id)
    return [
        AccountRead.from_account(account, None if member.is_pending else member.role)
        for account, member in rows
    ]


@router.get("/{account_id}", response_model=AccountRead)
async def get_account(account_id: uuid.UUID, gate: GateDep) -> AccountRead:
    async def op(access: Access) -> AccountRead:
        return AccountRead.from_account(access.account, access.role)

    return await gate.perform(
        account_id, op,
        action=AuditAction.ACCESS, resource_type=ResourceType.ACCOUNT,
        resource_id=account_id, minimum_role=AccountRole.VIEWER,
    )


@router.patch("/{account_id}", response_model=AccountRead)
async def update_account(
    account_id: uuid.UUID,
    body: AccountUpdate,
    gate: GateDep,
    session: Session,
) -> AccountRead:
    async def op(access: Access) -> AccountRead:
        account = await account_service.update_account(
            session, access.account, name=body.name, settings=body.settings
        )
        return AccountRead.from_account(account, access.role)

    return await gate.perform(
        account_id, op,
        action=AuditAction.UPDATE, resource_type=ResourceType.ACCOUNT,
        resource_id=account_id, minimum_role=AccountRole.ADMIN,
        details={"fields": sorted(body.model_dump(exclude_unset=True))},
    )


@router.put("/{account_id}/tier", response_model=AccountRead)
async def change_tier(
    account_id: uuid.UUID,
    body: TierUpdate,
    gate: GateDep,
    session: Session,
) -> AccountRead:
    previous: dict[str, str] = {}

    async def op(access: Access) -> AccountRead:
        previous["tier"] = access.account.tier
        account = await account_service.change_tier(session, access.account, body.tier)
        return AccountRead.from_account(account, access.role)

    return await gate.perform(
        account_id, op,
        action=AuditAction.UPDATE, resource_type=ResourceType.ACCOUNT,
        resource_id=account_id, minimum_role=AccountRole.ADMIN,
        describe=lambda _: {"tier": body.tier.value, "previous_tier": previous["tier"]},
    )


@router.get("/{account_id}/stats")
async def account_stats(account_id: uuid.UUID, gate: GateDep, session: Session) -> dict:
    async def op(access: Access) -> dict:
        return await account_service.account_stats(session, access.account)

    return await gate.perform(
        account_id, op,
        action=AuditAction.ACCESS, resource_type=ResourceType.ACCOUNT,
        resource_id=account_id, minimum_role=AccountRole.ADMIN,
    )


@router.get("/{account_id}/features", response_model=FeaturesResponse)
async def account_features(account_id: uuid.UUID, gate: GateDep) -> FeaturesResponse:
    """Feature availability for the account's tier."""
    async def op(access: Access) -> FeaturesResponse:
        return FeaturesResponse(
            tier=access.account.tier,
            features=roles.available_features(access.account.tier),
        )

    return await gate.perform(
        account_id, op,
        action=AuditAction.ACCESS, resource_type=ResourceType.ACCOUNT,
        resource_id=account_id, minimum_role=AccountRole.VIEWER,
    )


@router.get("/{account_id}/my-permissions", response_model=MyPermissionsResponse)
async def my_permissions(account_id: uuid.UUID, gate: GateDep) -> MyPermissionsResponse:
    """The caller's effective access to every feature (tier gate applied)."""
    async def op(access: Access) -> MyPermissionsResponse:
        return MyPermissionsResponse(
            role=access.role,
            permissions=roles.member_permissions(access.account, access.member),
        )

    return await gate.perform(
        account_id, op,
        action=AuditAction.ACCESS, resource_type=ResourceType.MEMBER,
        resource_id=gate.actor.user_id, minimum_role=AccountRole.VIEWER,
    )


@router.get("/{account_id}/login-settings", response_model=TeamLoginSettings)
async def get_login_settings(account_id: uuid.UUID, gate: GateDep) -> TeamLoginSettings:
    async def op(access: Access) -> TeamLoginSettings:
        return account_service.get_login_settings(access.account)

    return await gate.perform(
        account_id, op,
        action=AuditAction.ACCESS, resource_type=ResourceType.SETTINGS,
        resource_id="team_login", minimum_role=AccountRole.ADMIN,
    )


@router.put("/{account_id}/login-settings", response_model=TeamLoginSettings)
async def update_login_settings(
    account_id: uuid.UUID,
    body: TeamLoginSettings,
    gate: GateDep,
    session: Session,
) -> TeamLoginSettings:
    async def op(access: Access) -> TeamLoginSettings:
        return await account_service.update_login_settings(session, access.account, body)

    return await gate.perform(
        account_id, op,
        action=AuditAction.UPDATE, resource_type=ResourceType.SETTINGS,
        resource_id="team_login", minimum_role=AccountRole.ADMIN,
    )


@router.post("/{account_id}/transfer-ownership", status_code=status.HTTP_204_NO_CONTENT)
async def transfer_ownership(
    account_id: uuid.UUID,
    body: TransferOwnershipRequest,
    gate: GateDep,
    session: Session,
) -> None:
    """Hand the owner role to another accepted member; the caller becomes admin."""
    async def op(access: Access) -> None:
        await roles.transfer_ownership(
            session, account_id, gate.actor.user_id, body.new_owner_id
        )

    await gate.perform(
        account_id, op,
        action=AuditAction.TRANSFER, resource_type=ResourceType.ACCOUNT,
        resource_id=account_id, minimum_role=AccountRole.OWNER,
        details={"from_user_id": str(gate.actor.user_id), "to_user_id": str(body.new_owner_id)},
    )


@router.post("/{account_id}/authorize", response_model=AuthorizeResponse)
async def authorize(
    account_id: uuid.UUID,
    body: AuthorizeRequest,
    gate: GateDep,
) -> AuthorizeResponse:
    """Role / scope / tier check plus audit entry on behalf of a product module.

    Refusals come back as the usual 403 / 429 errors.
    """
    async def op(access: Access) -> AuthorizeResponse:
        return AuthorizeResponse(
            allowed=True,
            actor=access.actor.kind,
            role=access.role,
        )

    rule = None
    if body.rate_limit is not None:
        rule = RateRule(body.rate_limit.action, body.rate_limit.limit, body.rate_limit.window_seconds)

    return await gate.perform(
        account_id, op,
        action=body.action, resource_type=body.resource_type,
        resource_id=body.resource_id, details=body.details,
        minimum_role=body.minimum_role, feature=body.feature, scope=body.scope,
        rate_limit=rule,
    )
