"""Projects — a per-account tree, with optional per-project membership."""

import uuid
from datetime import datetime
from enum import StrEnum

from sqlalchemy import Text, UniqueConstraint
from sqlmodel import Column, Field, SQLModel

from tenantgate.models.base import TimestampMixin, new_uuid


class ProjectStatus(StrEnum):
    ACTIVE = "active"
    ARCHIVED = "archived"


class ProjectRole(StrEnum):
    ADMIN = "admin"
    MEMBER = "member"
    VIEWER = "viewer"


class Project(TimestampMixin, SQLModel, table=True):
    __tablename__ = "projects"
    __table_args__ = (UniqueConstraint("account_id", "slug", name="uq_projects_account_slug"),)

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    account_id: uuid.UUID = Field(foreign_key="accounts.id", nullable=False, index=True)

    # Self-referential parent for hierarchy (NULL = root)
    parent_id: uuid.UUID | None = Field(default=None, foreign_key="projects.id", index=True)

    name: str = Field(max_length=255, nullable=False)
    slug: str = Field(max_length=120, nullable=False)
    description: str = Field(default="", sa_column=Column(Text, nullable=False, default=""))
    status: str = Field(default=ProjectStatus.ACTIVE, max_length=20)
    created_by: uuid.UUID | None = Field(default=None, foreign_key="users.id")


class ProjectMember(TimestampMixin, SQLModel, table=True):
    __tablename__ = "project_members"
    __table_args__ = (UniqueConstraint("project_id", "user_id", name="uq_project_members_project_user"),)

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    project_id: uuid.UUID = Field(foreign_key="projects.id", nullable=False, index=True)
    user_id: uuid.UUID = Field(foreign_key="users.id", nullable=False, index=True)
    role: str = Field(default=ProjectRole.MEMBER, max_length=20)
    assigned_by: uuid.UUID | None = Field(default=None, foreign_key="users.id")


# ── Pydantic schemas ─────────────────────────────────────────

class ProjectCreate(SQLModel):
    name: str = Field(min_length=1, max_length=255)
    slug: str | None = Field(default=None, max_length=120)
    description: str = ""
    parent_id: uuid.UUID | None = None


class ProjectUpdate(SQLModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    parent_id: uuid.UUID | None = None
    status: ProjectStatus | None = None


class ProjectRead(SQLModel):
    id: uuid.UUID
    account_id: uuid.UUID
    parent_id: uuid.UUID | None
    name: str
    slug: str
    description: str
    status: str
    created_at: datetime


class ProjectNode(ProjectRead):
    children: list["ProjectNode"] = []


class ProjectMemberCreate(SQLModel):
    user_id: uuid.UUID
    role: ProjectRole = ProjectRole.MEMBER


class ProjectMemberUpdate(SQLModel):
    role: ProjectRole


class ProjectMemberRead(SQLModel):
    project_id: uuid.UUID
    user_id: uuid.UUID
    role: str
    created_at: datetime


ProjectNode.model_rebuild()
