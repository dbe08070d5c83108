"""API key model — scoped bearer credentials for programmatic access."""

import uuid
from datetime import datetime

from sqlalchemy import Text
from sqlmodel import Column, Field, SQLModel

from tenantgate.models.base import TimestampMixin, load_json, new_uuid


class ApiKey(TimestampMixin, SQLModel, table=True):
    __tablename__ = "api_keys"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    account_id: uuid.UUID = Field(foreign_key="accounts.id", nullable=False, index=True)

    # Public half of the credential, presented as "<key_id>:<secret>"
    key_id: str = Field(max_length=32, nullable=False, unique=True, index=True)

    # Salted HMAC of the secret; the raw secret is shown only once
    secret_hash: str = Field(max_length=128, nullable=False)

    # Human-readable label, e.g. "zapier-sync"
    name: str = Field(max_length=255, nullable=False)

    scopes: str = Field(sa_column=Column(Text, nullable=False))  # JSON array of scopes

    created_by: uuid.UUID = Field(foreign_key="users.id", nullable=False)
    expires_at: datetime | None = Field(default=None)
    revoked_at: datetime | None = Field(default=None)
    revoked_by: uuid.UUID | None = Field(default=None, foreign_key="users.id")
    last_used_at: datetime | None = Field(default=None)
    last_used_ip: str | None = Field(default=None, max_length=45)

    @property
    def scope_set(self) -> frozenset[str]:
        return frozenset(load_json(self.scopes, []))


# ── Pydantic schemas ─────────────────────────────────────────

class ApiKeyCreate(SQLModel):
    name: str = Field(max_length=255)
    scopes: list[str]
    expires_at: datetime | None = None


class ApiKeyRead(SQLModel):
    """Returned on list / detail — never includes the secret."""
    id: uuid.UUID
    account_id: uuid.UUID
    key_id: str
    key_preview: str
    name: str
    scopes: list[str]
    created_by: uuid.UUID
    expires_at: datetime | None
    revoked_at: datetime | None
    last_used_at: datetime | None
    last_used_ip: str | None
    created_at: datetime

    @classmethod
    def from_key(cls, key: ApiKey) -> "ApiKeyRead":
        return cls(
            id=key.id,
            account_id=key.account_id,
            key_id=key.key_id,
            key_preview=f"{key.key_id}:****",
            name=key.name,
            scopes=sorted(key.scope_set),
            created_by=key.created_by,
            expires_at=key.expires_at,
            revoked_at=key.revoked_at,
            last_used_at=key.last_used_at,
            last_used_ip=key.last_used_ip,
            created_at=key.created_at,
        )


class ApiKeyCreated(ApiKeyRead):
    """Returned exactly once at creation time — includes the raw credential."""
    api_key: str
