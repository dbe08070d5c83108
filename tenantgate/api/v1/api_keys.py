"""API key management: scopes catalog, create, list, revoke, regenerate."""

import uuid

from fastapi import APIRouter, status
from pydantic import BaseModel

from tenantgate.api.deps import GateDep, Session
from tenantgate.core.catalog import API_SCOPES, SCOPE_CATALOG_VERSION
from tenantgate.models.api_key import ApiKey, ApiKeyCreate, ApiKeyCreated, ApiKeyRead
from tenantgate.models.audit_log import AuditAction, ResourceType
from tenantgate.models.member import AccountRole
from tenantgate.services import api_keys as key_service
from tenantgate.services.gate import Access

router = APIRouter(tags=["api-keys"])


class ScopeCatalog(BaseModel):
    version: int
    scopes: list[str]


class RevokeResponse(BaseModel):
    key_id: str
    revoked: bool


def _created(key: ApiKey, plaintext: str) -> ApiKeyCreated:
    return ApiKeyCreated(**ApiKeyRead.from_key(key).model_dump(), api_key=plaintext)


@router.get("/api-keys/scopes", response_model=ScopeCatalog)
async def list_scopes() -> ScopeCatalog:
    return ScopeCatalog(version=SCOPE_CATALOG_VERSION, scopes=list(API_SCOPES))


@router.get("/accounts/{account_id}/api-keys", response_model=list[ApiKeyRead])
async def list_api_keys(
    account_id: uuid.UUID,
    gate: GateDep,
    session: Session,
    include_revoked: bool = False,
) -> list[ApiKeyRead]:
    async def op(access: Access) -> list[ApiKeyRead]:
        keys = await key_service.list_keys(session, account_id, include_revoked)
        return [ApiKeyRead.from_key(k) for k in keys]

    return await gate.perform(
        account_id, op,
        action=AuditAction.ACCESS, resource_type=ResourceType.API_KEY,
        minimum_role=AccountRole.ADMIN,
    )


@router.post(
    "/accounts/{account_id}/api-keys",
    response_model=ApiKeyCreated,
    status_code=status.HTTP_201_CREATED,
    summary="Create a new API key",
)
async def create_api_key(
    account_id: uuid.UUID,
    body: ApiKeyCreate,
    gate: GateDep,
    session: Session,
) -> ApiKeyCreated:
    """Issue a key for the account.

    The credential (``key_id:secret``) is returned once; store it securely.
    """
    async def op(access: Access) -> ApiKeyCreated:
        key, plaintext = await key_service.create_key(
            session, account_id, gate.actor.user_id, body.name, body.scopes, body.expires_at
        )
        return _created(key, plaintext)

    return await gate.perform(
        account_id, op,
        action=AuditAction.CREATE, resource_type=ResourceType.API_KEY,
        minimum_role=AccountRole.ADMIN,
        resource_id_of=lambda k: k.key_id,
        describe=lambda k: {"name": k.name, "scopes": k.scopes, "expires_at": k.expires_at},
    )


@router.delete("/accounts/{account_id}/api-keys/{key_id}", response_model=RevokeResponse)
async def revoke_api_key(
    account_id: uuid.UUID,
    key_id: str,
    gate: GateDep,
    session: Session,
) -> RevokeResponse:
    """Revoke a key. Revoking an already revoked key reports ``revoked: false``."""
    async def op(access: Access) -> RevokeResponse:
        changed = await key_service.revoke(session, account_id, key_id, gate.actor.user_id)
        return RevokeResponse(key_id=key_id, revoked=changed)

    return await gate.perform(
        account_id, op,
        action=AuditAction.REVOKE, resource_type=ResourceType.API_KEY,
        resource_id=key_id, minimum_role=AccountRole.ADMIN,
        describe=lambda r: {"changed": r.revoked},
    )


@router.post(
    "/accounts/{account_id}/api-keys/{key_id}/regenerate",
    response_model=ApiKeyCreated,
)
async def regenerate_api_key(
    account_id: uuid.UUID,
    key_id: str,
    gate: GateDep,
    session: Session,
) -> ApiKeyCreated:
    """Revoke the key and issue a replacement with the same name, scopes and expiry."""
    async def op(access: Access) -> ApiKeyCreated:
        key, plaintext = await key_service.regenerate(
            session, account_id, key_id, gate.actor.user_id
        )
        return _created(key, plaintext)

    return await gate.perform(
        account_id, op,
        action=AuditAction.REGENERATE, resource_type=ResourceType.API_KEY,
        resource_id=key_id, minimum_role=AccountRole.ADMIN,
        describe=lambda k: {"new_key_id": k.key_id},
    )
