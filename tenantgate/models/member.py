"""Account membership — who belongs to an account, and with which role."""

import uuid
from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel
from sqlalchemy import Text, UniqueConstraint
from sqlmodel import Column, Field, SQLModel

from tenantgate.models.base import TimestampMixin, dump_json, load_json, new_uuid, utcnow


class AccountRole(StrEnum):
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"
    VIEWER = "viewer"


# Roles that can be granted through invite / role change. Owner is only
# ever reached through an ownership transfer.
ASSIGNABLE_ROLES: tuple[AccountRole, ...] = (
    AccountRole.ADMIN,
    AccountRole.MEMBER,
    AccountRole.VIEWER,
)


class FeaturePermission(BaseModel):
    access: bool


class AccountMember(TimestampMixin, SQLModel, table=True):
    __tablename__ = "account_members"
    __table_args__ = (UniqueConstraint("account_id", "user_id", name="uq_account_members_account_user"),)

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    account_id: uuid.UUID = Field(foreign_key="accounts.id", nullable=False, index=True)
    user_id: uuid.UUID = Field(foreign_key="users.id", nullable=False, index=True)
    role: str = Field(default=AccountRole.MEMBER, max_length=20)

    # JSON map feature -> {"access": bool}; NULL means "role defaults"
    feature_permissions: str | None = Field(default=None, sa_column=Column(Text, nullable=True))

    invited_by: uuid.UUID | None = Field(default=None, foreign_key="users.id")
    joined_at: datetime = Field(default_factory=utcnow, nullable=False)
    accepted_at: datetime | None = Field(default=None)

    @property
    def is_pending(self) -> bool:
        return self.accepted_at is None

    def get_overrides(self) -> dict[str, FeaturePermission]:
        raw = load_json(self.feature_permissions, {}) or {}
        return {feature: FeaturePermission.model_validate(cfg) for feature, cfg in raw.items()}

    def set_overrides(self, overrides: dict[str, FeaturePermission] | None) -> None:
        if not overrides:
            self.feature_permissions = None
            return
        self.feature_permissions = dump_json(
            {feature: perm.model_dump() for feature, perm in overrides.items()}
        )


# ── Pydantic schemas ─────────────────────────────────────────

class MemberInvite(SQLModel):
    email: str = Field(max_length=320)
    role: AccountRole = AccountRole.MEMBER
    permissions: dict[str, FeaturePermission] | None = None


class MemberUpdate(SQLModel):
    role: AccountRole | None = None
    permissions: dict[str, FeaturePermission] | None = None


class MemberRead(SQLModel):
    user_id: uuid.UUID
    email: str
    display_name: str
    role: str
    feature_permissions: dict[str, FeaturePermission] | None
    joined_at: datetime
    accepted_at: datetime | None
