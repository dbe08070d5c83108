"""Import all models so SQLModel.metadata picks them up."""

from tenantgate.models.account import (
    Account,
    AccountRead,
    AccountSettings,
    AccountStatus,
    AccountUpdate,
    TeamLoginSettings,
)
from tenantgate.models.api_key import ApiKey, ApiKeyCreate, ApiKeyCreated, ApiKeyRead
from tenantgate.models.audit_log import (
    AuditAction,
    AuditLogEntry,
    AuditLogPage,
    AuditLogRead,
    ResourceType,
)
from tenantgate.models.member import (
    AccountMember,
    AccountRole,
    FeaturePermission,
    MemberInvite,
    MemberRead,
    MemberUpdate,
)
from tenantgate.models.project import (
    Project,
    ProjectCreate,
    ProjectMember,
    ProjectMemberCreate,
    ProjectMemberRead,
    ProjectMemberUpdate,
    ProjectNode,
    ProjectRead,
    ProjectRole,
    ProjectStatus,
    ProjectUpdate,
)
from tenantgate.models.rate_limit import RateLimitCounter
from tenantgate.models.user import User, UserCreate, UserRead

__all__ = [
    "Account",
    "AccountMember",
    "AccountRead",
    "AccountRole",
    "AccountSettings",
    "AccountStatus",
    "AccountUpdate",
    "ApiKey",
    "ApiKeyCreate",
    "ApiKeyCreated",
    "ApiKeyRead",
    "AuditAction",
    "AuditLogEntry",
    "AuditLogPage",
    "AuditLogRead",
    "FeaturePermission",
    "MemberInvite",
    "MemberRead",
    "MemberUpdate",
    "Project",
    "ProjectCreate",
    "ProjectMember",
    "ProjectMemberCreate",
    "ProjectMemberRead",
    "ProjectMemberUpdate",
    "ProjectNode",
    "ProjectRead",
    "ProjectRole",
    "ProjectStatus",
    "ProjectUpdate",
    "RateLimitCounter",
    "ResourceType",
    "TeamLoginSettings",
    "User",
    "UserCreate",
    "UserRead",
]
