"""Audit log — append-only record of privileged actions and denials."""

import uuid
from datetime import datetime
from enum import StrEnum

from sqlalchemy import Index, Text
from sqlmodel import Column, Field, SQLModel

from tenantgate.models.base import load_json, new_uuid, utcnow


class AuditAction(StrEnum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    LOGIN = "login"
    INVITE = "invite"
    ACCEPT = "accept"
    REVOKE = "revoke"
    REGENERATE = "regenerate"
    TRANSFER = "transfer"
    EXPORT = "export"
    ACCESS = "access"
    ACCESS_DENIED = "access_denied"
    RATE_LIMITED = "rate_limited"


class ResourceType(StrEnum):
    ACCOUNT = "account"
    MEMBER = "member"
    PROJECT = "project"
    API_KEY = "api_key"
    AUDIT_LOG = "audit_log"
    SETTINGS = "settings"


class AuditLogEntry(SQLModel, table=True):
    """Immutable once written; only the retention purge deletes rows."""

    __tablename__ = "audit_logs"
    __table_args__ = (Index("ix_audit_logs_account_created", "account_id", "created_at"),)

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    account_id: uuid.UUID = Field(foreign_key="accounts.id", nullable=False, index=True)
    action: str = Field(max_length=50, nullable=False, index=True)
    resource_type: str = Field(max_length=50, nullable=False)
    resource_id: str | None = Field(default=None, max_length=64)

    # Exactly one of these is set for request-triggered entries
    user_id: uuid.UUID | None = Field(default=None, foreign_key="users.id", index=True)
    api_key_id: uuid.UUID | None = Field(default=None, foreign_key="api_keys.id")

    details: str | None = Field(default=None, sa_column=Column(Text, nullable=True))  # JSON object
    ip_address: str | None = Field(default=None, max_length=45)
    user_agent: str | None = Field(default=None, max_length=500)
    created_at: datetime = Field(default_factory=utcnow, nullable=False)


# ── Pydantic schemas ─────────────────────────────────────────

class AuditLogRead(SQLModel):
    id: uuid.UUID
    account_id: uuid.UUID
    action: str
    resource_type: str
    resource_id: str | None
    user_id: uuid.UUID | None
    api_key_id: uuid.UUID | None
    details: dict | None
    ip_address: str | None
    user_agent: str | None
    created_at: datetime

    @classmethod
    def from_entry(cls, entry: AuditLogEntry) -> "AuditLogRead":
        return cls(
            id=entry.id,
            account_id=entry.account_id,
            action=entry.action,
            resource_type=entry.resource_type,
            resource_id=entry.resource_id,
            user_id=entry.user_id,
            api_key_id=entry.api_key_id,
            details=load_json(entry.details),
            ip_address=entry.ip_address,
            user_agent=entry.user_agent,
            created_at=entry.created_at,
        )


class AuditLogPage(SQLModel):
    items: list[AuditLogRead]
    total: int
    page: int
    per_page: int
    total_pages: int
