"""Projects: CRUD, hierarchy, and per-project membership."""

import uuid

from fastapi import APIRouter, status

from tenantgate.api.deps import GateDep, Session
from tenantgate.core.errors import NotFoundError
from tenantgate.models.audit_log import AuditAction, ResourceType
from tenantgate.models.member import AccountRole
from tenantgate.models.project import (
    Project,
    ProjectCreate,
    ProjectMember,
    ProjectMemberCreate,
    ProjectMemberRead,
    ProjectMemberUpdate,
    ProjectNode,
    ProjectRead,
    ProjectUpdate,
)
from tenantgate.services import projects as project_service
from tenantgate.services.gate import Access

router = APIRouter(prefix="/accounts/{account_id}/projects", tags=["projects"])


def _read(project: Project) -> ProjectRead:
    return ProjectRead.model_validate(project)


def _member_read(pm: ProjectMember) -> ProjectMemberRead:
    return ProjectMemberRead.model_validate(pm)


async def _visible_project(access: Access, session, project_id: uuid.UUID) -> Project:
    """The project, if this member can see it; 404 otherwise."""
    project = await project_service.get_project(session, access.account.id, project_id)
    if not await project_service.user_can_access_project(session, project.id, access.actor.user_id):
        raise NotFoundError("Project not found")
    return project


@router.get("", response_model=list[ProjectRead])
async def list_projects(account_id: uuid.UUID, gate: GateDep, session: Session) -> list[ProjectRead]:
    """Every project for admins; assigned projects for everyone else."""
    async def op(access: Access) -> list[ProjectRead]:
        found = await project_service.accessible_projects(session, account_id, gate.actor.user_id)
        return [_read(p) for p in found]

    return await gate.perform(
        account_id, op,
        action=AuditAction.ACCESS, resource_type=ResourceType.PROJECT,
        minimum_role=AccountRole.VIEWER,
    )


@router.post("", response_model=ProjectRead, status_code=status.HTTP_201_CREATED)
async def create_project(
    account_id: uuid.UUID,
    body: ProjectCreate,
    gate: GateDep,
    session: Session,
) -> ProjectRead:
    async def op(access: Access) -> ProjectRead:
        project = await project_service.create_project(
            session,
            access.account,
            created_by=gate.actor.user_id,
            name=body.name,
            slug=body.slug,
            description=body.description,
            parent_id=body.parent_id,
        )
        return _read(project)

    return await gate.perform(
        account_id, op,
        action=AuditAction.CREATE, resource_type=ResourceType.PROJECT,
        minimum_role=AccountRole.ADMIN,
        resource_id_of=lambda p: p.id,
        describe=lambda p: {"name": p.name, "parent_id": str(p.parent_id) if p.parent_id else None},
    )


@router.get("/tree", response_model=list[ProjectNode])
async def project_tree(account_id: uuid.UUID, gate: GateDep, session: Session) -> list[ProjectNode]:
    async def op(access: Access) -> list[ProjectNode]:
        return await project_service.project_hierarchy(session, account_id, gate.actor.user_id)

    return await gate.perform(
        account_id, op,
        action=AuditAction.ACCESS, resource_type=ResourceType.PROJECT,
        minimum_role=AccountRole.VIEWER,
    )


@router.get("/{project_id}", response_model=ProjectRead)
async def get_project(
    account_id: uuid.UUID,
    project_id: uuid.UUID,
    gate: GateDep,
    session: Session,
) -> ProjectRead:
    async def op(access: Access) -> ProjectRead:
        return _read(await _visible_project(access, session, project_id))

    return await gate.perform(
        account_id, op,
        action=AuditAction.ACCESS, resource_type=ResourceType.PROJECT,
        resource_id=project_id, minimum_role=AccountRole.VIEWER,
    )


@router.patch("/{project_id}", response_model=ProjectRead)
async def update_project(
    account_id: uuid.UUID,
    project_id: uuid.UUID,
    body: ProjectUpdate,
    gate: GateDep,
    session: Session,
) -> ProjectRead:
    changes = body.model_dump(exclude_unset=True)

    async def op(access: Access) -> ProjectRead:
        project = await project_service.update_project(session, account_id, project_id, changes)
        return _read(project)

    return await gate.perform(
        account_id, op,
        action=AuditAction.UPDATE, resource_type=ResourceType.PROJECT,
        resource_id=project_id, minimum_role=AccountRole.ADMIN,
        details={"fields": sorted(changes)},
    )


@router.delete("/{project_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_project(
    account_id: uuid.UUID,
    project_id: uuid.UUID,
    gate: GateDep,
    session: Session,
) -> None:
    """Delete a project; its children move up one level."""
    async def op(access: Access) -> None:
        await project_service.delete_project(session, account_id, project_id)

    await gate.perform(
        account_id, op,
        action=AuditAction.DELETE, resource_type=ResourceType.PROJECT,
        resource_id=project_id, minimum_role=AccountRole.ADMIN,
    )


@router.get("/{project_id}/ancestors", response_model=list[ProjectRead])
async def project_ancestors(
    account_id: uuid.UUID,
    project_id: uuid.UUID,
    gate: GateDep,
    session: Session,
) -> list[ProjectRead]:
    """Breadcrumb from the root down to the direct parent."""
    async def op(access: Access) -> list[ProjectRead]:
        await _visible_project(access, session, project_id)
        chain = await project_service.project_ancestors(session, account_id, project_id)
        return [_read(p) for p in chain]

    return await gate.perform(
        account_id, op,
        action=AuditAction.ACCESS, resource_type=ResourceType.PROJECT,
        resource_id=project_id, minimum_role=AccountRole.VIEWER,
    )


# ── Project members ──────────────────────────────────────────

@router.get("/{project_id}/members", response_model=list[ProjectMemberRead])
async def list_project_members(
    account_id: uuid.UUID,
    project_id: uuid.UUID,
    gate: GateDep,
    session: Session,
) -> list[ProjectMemberRead]:
    async def op(access: Access) -> list[ProjectMemberRead]:
        await _visible_project(access, session, project_id)
        members = await project_service.list_project_members(session, account_id, project_id)
        return [_member_read(pm) for pm in members]

    return await gate.perform(
        account_id, op,
        action=AuditAction.ACCESS, resource_type=ResourceType.PROJECT,
        resource_id=project_id, minimum_role=AccountRole.VIEWER,
    )


@router.post(
    "/{project_id}/members",
    response_model=ProjectMemberRead,
    status_code=status.HTTP_201_CREATED,
)
async def add_project_member(
    account_id: uuid.UUID,
    project_id: uuid.UUID,
    body: ProjectMemberCreate,
    gate: GateDep,
    session: Session,
) -> ProjectMemberRead:
    async def op(access: Access) -> ProjectMemberRead:
        pm = await project_service.add_project_member(
            session, account_id, project_id, body.user_id, body.role,
            assigned_by=gate.actor.user_id,
        )
        return _member_read(pm)

    return await gate.perform(
        account_id, op,
        action=AuditAction.CREATE, resource_type=ResourceType.PROJECT,
        resource_id=project_id, minimum_role=AccountRole.ADMIN,
        details={"member_user_id": str(body.user_id), "role": body.role},
    )


@router.patch("/{project_id}/members/{user_id}", response_model=ProjectMemberRead)
async def update_project_member(
    account_id: uuid.UUID,
    project_id: uuid.UUID,
    user_id: uuid.UUID,
    body: ProjectMemberUpdate,
    gate: GateDep,
    session: Session,
) -> ProjectMemberRead:
    async def op(access: Access) -> ProjectMemberRead:
        pm = await project_service.update_project_member(
            session, account_id, project_id, user_id, body.role
        )
        return _member_read(pm)

    return await gate.perform(
        account_id, op,
        action=AuditAction.UPDATE, resource_type=ResourceType.PROJECT,
        resource_id=project_id, minimum_role=AccountRole.ADMIN,
        details={"member_user_id": str(user_id), "role": body.role},
    )


@router.delete("/{project_id}/members/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_project_member(
    account_id: uuid.UUID,
    project_id: uuid.UUID,
    user_id: uuid.UUID,
    gate: GateDep,
    session: Session,
) -> None:
    async def op(access: Access) -> None:
        await project_service.remove_project_member(session, account_id, project_id, user_id)

    await gate.perform(
        account_id, op,
        action=AuditAction.DELETE, resource_type=ResourceType.PROJECT,
        resource_id=project_id, minimum_role=AccountRole.ADMIN,
        details={"member_user_id": str(user_id)},
    )
