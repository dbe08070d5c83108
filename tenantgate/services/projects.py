"""Projects: the per-account project tree and per-project membership."""

import logging
import re
import uuid

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from tenantgate.core.catalog import max_projects
from tenantgate.core.errors import ConflictError, NotFoundError, ValidationError
from tenantgate.models.account import Account
from tenantgate.models.base import utcnow
from tenantgate.models.member import AccountRole
from tenantgate.models.project import (
    Project,
    ProjectMember,
    ProjectNode,
    ProjectRead,
    ProjectRole,
    ProjectStatus,
)
from tenantgate.services.roles import (
    get_role,
    has_role_at_least,
    project_role_cap,
    project_role_rank,
)

logger = logging.getLogger(__name__)

_SLUG_STRIP = re.compile(r"[^a-z0-9]+")


def slugify(value: str) -> str:
    slug = _SLUG_STRIP.sub("-", value.lower()).strip("-")
    return slug[:100] or "project"


# ── Lookups ───────────────────────────────────────────────────

async def get_project(
    session: AsyncSession, account_id: uuid.UUID, project_id: uuid.UUID
) -> Project:
    """Fetch a project inside an account; other tenants' projects are 404."""
    project = await session.get(Project, project_id)
    if project is None or project.account_id != account_id:
        raise NotFoundError("Project not found")
    return project


async def list_projects(
    session: AsyncSession,
    account_id: uuid.UUID,
    status: ProjectStatus | None = None,
) -> list[Project]:
    stmt = select(Project).where(Project.account_id == account_id)
    if status is not None:
        stmt = stmt.where(Project.status == status)
    stmt = stmt.order_by(Project.name.asc())  # type: ignore[union-attr]
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def count_projects(session: AsyncSession, account_id: uuid.UUID) -> int:
    stmt = select(func.count()).select_from(Project).where(
        Project.account_id == account_id,
        Project.status == ProjectStatus.ACTIVE,
    )
    return (await session.execute(stmt)).scalar_one()


async def accessible_projects(
    session: AsyncSession, account_id: uuid.UUID, user_id: uuid.UUID
) -> list[Project]:
    """Projects the user can see: everything for admins, assigned ones otherwise."""
    if await has_role_at_least(session, account_id, user_id, AccountRole.ADMIN):
        return await list_projects(session, account_id)
    if await get_role(session, account_id, user_id) is None:
        return []

    stmt = (
        select(Project)
        .join(ProjectMember, ProjectMember.project_id == Project.id)
        .where(Project.account_id == account_id, ProjectMember.user_id == user_id)
        .order_by(Project.name.asc())  # type: ignore[union-attr]
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


def build_tree(projects: list[Project]) -> list[ProjectNode]:
    nodes = {
        p.id: ProjectNode(**ProjectRead.model_validate(p, from_attributes=True).model_dump())
        for p in projects
    }
    roots: list[ProjectNode] = []
    for project in projects:
        node = nodes[project.id]
        parent = nodes.get(project.parent_id) if project.parent_id else None
        if parent is None:
            # Parent missing from the visible set: show the node as a root
            roots.append(node)
        else:
            parent.children.append(node)
    return roots


async def project_hierarchy(
    session: AsyncSession, account_id: uuid.UUID, user_id: uuid.UUID
) -> list[ProjectNode]:
    return build_tree(await accessible_projects(session, account_id, user_id))


async def project_ancestors(
    session: AsyncSession, account_id: uuid.UUID, project_id: uuid.UUID
) -> list[Project]:
    """Ancestors from the root down to the direct parent."""
    project = await get_project(session, account_id, project_id)
    chain: list[Project] = []
    seen = {project.id}
    parent_id = project.parent_id
    while parent_id is not None and parent_id not in seen:
        parent = await session.get(Project, parent_id)
        if parent is None or parent.account_id != account_id:
            break
        chain.append(parent)
        seen.add(parent.id)
        parent_id = parent.parent_id
    chain.reverse()
    return chain


async def descendant_ids(
    session: AsyncSession, account_id: uuid.UUID, project_id: uuid.UUID
) -> set[uuid.UUID]:
    stmt = select(Project.id, Project.parent_id).where(Project.account_id == account_id)
    children: dict[uuid.UUID, list[uuid.UUID]] = {}
    for pid, parent_id in (await session.execute(stmt)).all():
        if parent_id is not None:
            children.setdefault(parent_id, []).append(pid)

    found: set[uuid.UUID] = set()
    stack = list(children.get(project_id, []))
    while stack:
        pid = stack.pop()
        if pid in found:
            continue
        found.add(pid)
        stack.extend(children.get(pid, []))
    return found


async def get_project_member(
    session: AsyncSession, project_id: uuid.UUID, user_id: uuid.UUID
) -> ProjectMember | None:
    stmt = select(ProjectMember).where(
        ProjectMember.project_id == project_id,
        ProjectMember.user_id == user_id,
    )
    return (await session.execute(stmt)).scalar_one_or_none()


async def list_project_members(
    session: AsyncSession, account_id: uuid.UUID, project_id: uuid.UUID
) -> list[ProjectMember]:
    await get_project(session, account_id, project_id)
    stmt = (
        select(ProjectMember)
        .where(ProjectMember.project_id == project_id)
        .order_by(ProjectMember.created_at.asc())  # type: ignore[union-attr]
    )
    return list((await session.execute(stmt)).scalars().all())


async def user_can_access_project(
    session: AsyncSession, project_id: uuid.UUID, user_id: uuid.UUID
) -> bool:
    """Assigned to the project, or an admin/owner of its account."""
    project = await session.get(Project, project_id)
    if project is None:
        return False
    if await has_role_at_least(session, project.account_id, user_id, AccountRole.ADMIN):
        return True
    if await get_role(session, project.account_id, user_id) is None:
        return False
    return await get_project_member(session, project_id, user_id) is not None


async def user_has_project_role(
    session: AsyncSession,
    project_id: uuid.UUID,
    user_id: uuid.UUID,
    minimum: ProjectRole,
) -> bool:
    project = await session.get(Project, project_id)
    if project is None:
        return False
    # Account admins act as project admins everywhere
    if await has_role_at_least(session, project.account_id, user_id, AccountRole.ADMIN):
        return True
    if await get_role(session, project.account_id, user_id) is None:
        return False
    pm = await get_project_member(session, project_id, user_id)
    return pm is not None and project_role_rank(pm.role) >= project_role_rank(minimum)


# ── Mutations (flush only) ────────────────────────────────────

async def _unique_slug(session: AsyncSession, account_id: uuid.UUID, base: str) -> str:
    stmt = select(Project.slug).where(Project.account_id == account_id)
    taken = set((await session.execute(stmt)).scalars().all())
    slug, n = base, 2
    while slug in taken:
        slug = f"{base}-{n}"
        n += 1
    return slug


async def _check_project_limit(session: AsyncSession, account: Account) -> None:
    limit = max_projects(account.tier)
    if limit is not None and await count_projects(session, account.id) >= limit:
        raise ConflictError(
            f"The {account.tier} tier allows at most {limit} projects",
            code="project_limit",
        )


async def create_project(
    session: AsyncSession,
    account: Account,
    created_by: uuid.UUID,
    name: str,
    slug: str | None = None,
    description: str = "",
    parent_id: uuid.UUID | None = None,
) -> Project:
    name = name.strip()
    if not name:
        raise ValidationError("Project name is required", code="missing_name")

    await _check_project_limit(session, account)
    if parent_id is not None:
        await get_project(session, account.id, parent_id)

    project = Project(
        account_id=account.id,
        parent_id=parent_id,
        name=name,
        slug=await _unique_slug(session, account.id, slugify(slug or name)),
        description=description,
        created_by=created_by,
    )
    session.add(project)
    await session.flush()

    session.add(
        ProjectMember(
            project_id=project.id,
            user_id=created_by,
            role=ProjectRole.ADMIN,
            assigned_by=created_by,
        )
    )
    await session.flush()
    logger.info("Created project %s in account %s", project.id, account.id)
    return project


async def update_project(
    session: AsyncSession,
    account_id: uuid.UUID,
    project_id: uuid.UUID,
    changes: dict,
) -> Project:
    project = await get_project(session, account_id, project_id)

    if "parent_id" in changes:
        parent_id = changes["parent_id"]
        if parent_id is not None:
            if parent_id == project.id:
                raise ConflictError("A project cannot be its own parent", code="circular_hierarchy")
            await get_project(session, account_id, parent_id)
            if parent_id in await descendant_ids(session, account_id, project.id):
                raise ConflictError(
                    "A project cannot be moved under one of its descendants",
                    code="circular_hierarchy",
                )
        project.parent_id = parent_id

    if changes.get("name") is not None:
        name = changes["name"].strip()
        if not name:
            raise ValidationError("Project name is required", code="missing_name")
        project.name = name
    if changes.get("description") is not None:
        project.description = changes["description"]
    if changes.get("status") is not None:
        status = ProjectStatus(changes["status"])
        # Reactivation takes an active slot again
        if status == ProjectStatus.ACTIVE and project.status != ProjectStatus.ACTIVE:
            account = await session.get(Account, account_id)
            await _check_project_limit(session, account)
        project.status = status

    project.updated_at = utcnow()
    session.add(project)
    await session.flush()
    return project


async def delete_project(
    session: AsyncSession, account_id: uuid.UUID, project_id: uuid.UUID
) -> None:
    """Delete a project; its children move up to the deleted project's parent."""
    project = await get_project(session, account_id, project_id)

    stmt = select(Project).where(Project.parent_id == project.id)
    for child in (await session.execute(stmt)).scalars().all():
        child.parent_id = project.parent_id
        child.updated_at = utcnow()
        session.add(child)

    members = await session.execute(
        select(ProjectMember).where(ProjectMember.project_id == project.id)
    )
    for pm in members.scalars().all():
        await session.delete(pm)
    await session.flush()

    await session.delete(project)
    await session.flush()
    logger.info("Deleted project %s in account %s", project_id, account_id)


async def _check_role_cap(
    session: AsyncSession,
    account_id: uuid.UUID,
    user_id: uuid.UUID,
    role: ProjectRole,
) -> None:
    account_role = await get_role(session, account_id, user_id)
    if account_role is None:
        raise ValidationError(
            "User must be a member of the account before joining a project",
            code="not_account_member",
        )
    cap = project_role_cap(account_role)
    if project_role_rank(role) > project_role_rank(cap):
        raise ValidationError(
            f"An account {account_role} can hold at most the project role '{cap}'",
            code="role_exceeds_account_role",
        )


async def add_project_member(
    session: AsyncSession,
    account_id: uuid.UUID,
    project_id: uuid.UUID,
    user_id: uuid.UUID,
    role: ProjectRole,
    assigned_by: uuid.UUID | None,
) -> ProjectMember:
    await get_project(session, account_id, project_id)
    await _check_role_cap(session, account_id, user_id, role)
    if await get_project_member(session, project_id, user_id) is not None:
        raise ConflictError("User is already a member of this project", code="already_member")

    pm = ProjectMember(
        project_id=project_id,
        user_id=user_id,
        role=role,
        assigned_by=assigned_by,
    )
    session.add(pm)
    await session.flush()
    return pm


async def update_project_member(
    session: AsyncSession,
    account_id: uuid.UUID,
    project_id: uuid.UUID,
    user_id: uuid.UUID,
    role: ProjectRole,
) -> ProjectMember:
    await get_project(session, account_id, project_id)
    pm = await get_project_member(session, project_id, user_id)
    if pm is None:
        raise NotFoundError("Project member not found")
    await _check_role_cap(session, account_id, user_id, role)

    pm.role = role
    pm.updated_at = utcnow()
    session.add(pm)
    await session.flush()
    return pm


async def remove_project_member(
    session: AsyncSession,
    account_id: uuid.UUID,
    project_id: uuid.UUID,
    user_id: uuid.UUID,
) -> None:
    await get_project(session, account_id, project_id)
    pm = await get_project_member(session, project_id, user_id)
    if pm is None:
        raise NotFoundError("Project member not found")
    await session.delete(pm)
    await session.flush()
