"""Account model — the tenant root that owns members, projects, keys and logs."""

import uuid
from enum import StrEnum

from pydantic import BaseModel, ConfigDict
from sqlalchemy import Text
from sqlmodel import Column, Field, SQLModel

from tenantgate.core.catalog import Tier
from tenantgate.models.base import TimestampMixin, dump_json, load_json, new_uuid


class AccountStatus(StrEnum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    CANCELLED = "cancelled"


class TeamLoginSettings(BaseModel):
    """Branding for the team login page."""

    page_id: int | None = None
    page_url: str | None = None
    logo_url: str = ""
    title: str = "Team Login"
    redirect_url: str | None = None


class AccountSettings(BaseModel):
    """Typed view over the stored settings document.

    Unknown top-level keys are kept (``extra="allow"``) so newer writers do
    not lose data when an older reader saves the document back.
    """

    model_config = ConfigDict(extra="allow")

    team_login: TeamLoginSettings | None = None


class Account(TimestampMixin, SQLModel, table=True):
    __tablename__ = "accounts"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    name: str = Field(max_length=255, nullable=False)
    slug: str = Field(max_length=100, unique=True, nullable=False, index=True)
    tier: str = Field(default=Tier.FREE, max_length=20)
    status: str = Field(default=AccountStatus.ACTIVE, max_length=20)

    # JSON document, see AccountSettings
    settings_json: str | None = Field(default=None, sa_column=Column(Text, nullable=True))

    @property
    def is_active(self) -> bool:
        return self.status == AccountStatus.ACTIVE

    def get_settings(self) -> AccountSettings:
        return AccountSettings.model_validate(load_json(self.settings_json, {}))

    def set_settings(self, value: AccountSettings) -> None:
        self.settings_json = dump_json(value.model_dump(mode="json", exclude_none=True))


# ── Pydantic schemas ─────────────────────────────────────────

class AccountUpdate(SQLModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    settings: dict | None = None


class AccountRead(SQLModel):
    id: uuid.UUID
    name: str
    slug: str
    tier: str
    status: str
    settings: dict
    role: str | None = None

    @classmethod
    def from_account(cls, account: Account, role: str | None = None) -> "AccountRead":
        return cls(
            id=account.id,
            name=account.name,
            slug=account.slug,
            tier=account.tier,
            status=account.status,
            settings=account.get_settings().model_dump(mode="json", exclude_none=True),
            role=role,
        )
