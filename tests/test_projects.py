"""Project hierarchy and project membership."""

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from tenantgate.core.catalog import Tier
from tenantgate.core.errors import ConflictError, NotFoundError, ValidationError
from tenantgate.core.security import hash_password
from tenantgate.models.member import AccountRole
from tenantgate.models.project import ProjectRole, ProjectStatus
from tenantgate.models.user import User
from tenantgate.services import accounts, projects, roles


async def _user(session: AsyncSession, email: str) -> User:
    user = User(email=email, password_hash=hash_password("password123"))
    session.add(user)
    await session.flush()
    return user


async def _setup(session: AsyncSession, slug: str, tier: Tier = Tier.PRO):
    owner = await _user(session, f"owner@{slug}.test")
    account, _ = await accounts.bootstrap_account(session, owner, slug, slug=slug, tier=tier)
    return account, owner


@pytest.mark.asyncio
async def test_create_project_makes_creator_admin(session: AsyncSession):
    account, owner = await _setup(session, "proj-create")
    project = await projects.create_project(session, account, owner.id, "Marketing Site")

    assert project.slug == "marketing-site"
    pm = await projects.get_project_member(session, project.id, owner.id)
    assert pm.role == ProjectRole.ADMIN


@pytest.mark.asyncio
async def test_project_slugs_are_unique_per_account(session: AsyncSession):
    account, owner = await _setup(session, "proj-slug")
    first = await projects.create_project(session, account, owner.id, "Blog")
    second = await projects.create_project(session, account, owner.id, "Blog")
    assert first.slug == "blog"
    assert second.slug == "blog-2"


@pytest.mark.asyncio
async def test_project_limit_per_tier(session: AsyncSession):
    account, owner = await _setup(session, "proj-limit", tier=Tier.FREE)
    for i in range(3):
        await projects.create_project(session, account, owner.id, f"P{i}")
    with pytest.raises(ConflictError) as exc:
        await projects.create_project(session, account, owner.id, "One too many")
    assert exc.value.code == "project_limit"


@pytest.mark.asyncio
async def test_reactivating_an_archived_project_respects_the_limit(session: AsyncSession):
    account, owner = await _setup(session, "proj-revive", tier=Tier.FREE)
    first = await projects.create_project(session, account, owner.id, "P0")
    await projects.update_project(session, account.id, first.id, {"status": ProjectStatus.ARCHIVED})
    for i in range(1, 4):
        await projects.create_project(session, account, owner.id, f"P{i}")

    with pytest.raises(ConflictError) as exc:
        await projects.update_project(session, account.id, first.id, {"status": ProjectStatus.ACTIVE})
    assert exc.value.code == "project_limit"
    assert await projects.count_projects(session, account.id) == 3

    # Archiving one frees the slot
    others = [p for p in await projects.list_projects(session, account.id) if p.id != first.id]
    await projects.update_project(session, account.id, others[0].id, {"status": "archived"})
    revived = await projects.update_project(
        session, account.id, first.id, {"status": ProjectStatus.ACTIVE}
    )
    assert revived.status == ProjectStatus.ACTIVE


@pytest.mark.asyncio
async def test_cycles_rejected(session: AsyncSession):
    account, owner = await _setup(session, "proj-cycle")
    root = await projects.create_project(session, account, owner.id, "Root")
    child = await projects.create_project(session, account, owner.id, "Child", parent_id=root.id)
    grandchild = await projects.create_project(
        session, account, owner.id, "Grandchild", parent_id=child.id
    )

    with pytest.raises(ConflictError):
        await projects.update_project(session, account.id, root.id, {"parent_id": root.id})
    with pytest.raises(ConflictError):
        await projects.update_project(session, account.id, root.id, {"parent_id": grandchild.id})

    # Moving a leaf elsewhere is fine
    moved = await projects.update_project(session, account.id, grandchild.id, {"parent_id": root.id})
    assert moved.parent_id == root.id


@pytest.mark.asyncio
async def test_hierarchy_and_ancestors(session: AsyncSession):
    account, owner = await _setup(session, "proj-tree")
    root = await projects.create_project(session, account, owner.id, "Root")
    child = await projects.create_project(session, account, owner.id, "Child", parent_id=root.id)
    leaf = await projects.create_project(session, account, owner.id, "Leaf", parent_id=child.id)

    tree = await projects.project_hierarchy(session, account.id, owner.id)
    assert [n.name for n in tree] == ["Root"]
    assert tree[0].children[0].children[0].id == leaf.id

    chain = await projects.project_ancestors(session, account.id, leaf.id)
    assert [p.id for p in chain] == [root.id, child.id]


@pytest.mark.asyncio
async def test_delete_reparents_children(session: AsyncSession):
    account, owner = await _setup(session, "proj-delete")
    root = await projects.create_project(session, account, owner.id, "Root")
    middle = await projects.create_project(session, account, owner.id, "Middle", parent_id=root.id)
    leaf = await projects.create_project(session, account, owner.id, "Leaf", parent_id=middle.id)

    await projects.delete_project(session, account.id, middle.id)

    refreshed = await projects.get_project(session, account.id, leaf.id)
    assert refreshed.parent_id == root.id
    with pytest.raises(NotFoundError):
        await projects.get_project(session, account.id, middle.id)


@pytest.mark.asyncio
async def test_project_member_requires_account_membership(session: AsyncSession):
    account, owner = await _setup(session, "proj-member")
    project = await projects.create_project(session, account, owner.id, "App")
    outsider = await _user(session, "outsider@proj-member.test")

    with pytest.raises(ValidationError) as exc:
        await projects.add_project_member(
            session, account.id, project.id, outsider.id, ProjectRole.VIEWER, owner.id
        )
    assert exc.value.code == "not_account_member"


@pytest.mark.asyncio
async def test_project_role_capped_by_account_role(session: AsyncSession):
    account, owner = await _setup(session, "proj-cap")
    project = await projects.create_project(session, account, owner.id, "App")
    viewer = await _user(session, "viewer@proj-cap.test")
    await roles.add_member(session, account, viewer.email, AccountRole.VIEWER, owner.id)

    with pytest.raises(ValidationError) as exc:
        await projects.add_project_member(
            session, account.id, project.id, viewer.id, ProjectRole.MEMBER, owner.id
        )
    assert exc.value.code == "role_exceeds_account_role"

    pm = await projects.add_project_member(
        session, account.id, project.id, viewer.id, ProjectRole.VIEWER, owner.id
    )
    assert pm.role == ProjectRole.VIEWER


@pytest.mark.asyncio
async def test_demotion_lowers_project_roles(session: AsyncSession):
    account, owner = await _setup(session, "proj-demote")
    project = await projects.create_project(session, account, owner.id, "App")
    admin = await _user(session, "admin@proj-demote.test")
    await roles.add_member(session, account, admin.email, AccountRole.ADMIN, owner.id)
    await projects.add_project_member(
        session, account.id, project.id, admin.id, ProjectRole.ADMIN, owner.id
    )

    await roles.update_member(session, account.id, admin.id, role=AccountRole.VIEWER)

    pm = await projects.get_project_member(session, project.id, admin.id)
    assert pm.role == ProjectRole.VIEWER


@pytest.mark.asyncio
async def test_project_access(session: AsyncSession):
    account, owner = await _setup(session, "proj-access")
    project = await projects.create_project(session, account, owner.id, "App")
    admin = await _user(session, "admin@proj-access.test")
    member = await _user(session, "member@proj-access.test")
    await roles.add_member(session, account, admin.email, AccountRole.ADMIN, owner.id)
    await roles.add_member(session, account, member.email, AccountRole.MEMBER, owner.id)

    # Account admins reach every project implicitly
    assert await projects.user_can_access_project(session, project.id, admin.id)
    assert not await projects.user_can_access_project(session, project.id, member.id)
    assert await projects.accessible_projects(session, account.id, member.id) == []

    await projects.add_project_member(
        session, account.id, project.id, member.id, ProjectRole.MEMBER, owner.id
    )
    assert await projects.user_can_access_project(session, project.id, member.id)
    assert await projects.user_has_project_role(session, project.id, member.id, ProjectRole.MEMBER)
    assert not await projects.user_has_project_role(session, project.id, member.id, ProjectRole.ADMIN)


@pytest.mark.asyncio
async def test_removing_member_drops_project_memberships(session: AsyncSession):
    account, owner = await _setup(session, "proj-remove")
    project = await projects.create_project(session, account, owner.id, "App")
    member = await _user(session, "member@proj-remove.test")
    await roles.add_member(session, account, member.email, AccountRole.MEMBER, owner.id)
    await projects.add_project_member(
        session, account.id, project.id, member.id, ProjectRole.MEMBER, owner.id
    )

    await roles.remove_member(session, account.id, member.id)

    assert await projects.get_project_member(session, project.id, member.id) is None
    assert not await projects.user_can_access_project(session, project.id, member.id)


# ── HTTP ─────────────────────────────────────────────────────

async def _login(client: AsyncClient, email: str) -> tuple[str, dict]:
    resp = await client.post("/v1/auth/register", json={"email": email, "password": "password1234"})
    user_id = resp.json()["id"]
    resp = await client.post("/v1/auth/login", json={"email": email, "password": "password1234"})
    return user_id, {"Authorization": f"Bearer {resp.json()['access_token']}"}


@pytest.mark.asyncio
async def test_project_visibility_over_http(client: AsyncClient):
    _, owner = await _login(client, "owner@proj-http.com")
    account_id = (await client.post("/v1/accounts", json={"name": "Proj HTTP"}, headers=owner)).json()["id"]
    member_id, member = await _login(client, "m@proj-http.com")
    await client.post(
        f"/v1/accounts/{account_id}/members",
        json={"email": "m@proj-http.com", "role": "member"},
        headers=owner,
    )

    base = f"/v1/accounts/{account_id}/projects"
    resp = await client.post(base, json={"name": "Site"}, headers=owner)
    assert resp.status_code == 201, resp.text
    project_id = resp.json()["id"]

    # Members cannot create projects, and see only assigned ones
    assert (await client.post(base, json={"name": "Mine"}, headers=member)).status_code == 403
    assert (await client.get(base, headers=member)).json() == []
    assert (await client.get(f"{base}/{project_id}", headers=member)).status_code == 404

    resp = await client.post(
        f"{base}/{project_id}/members",
        json={"user_id": member_id, "role": "member"},
        headers=owner,
    )
    assert resp.status_code == 201, resp.text
    assert [p["id"] for p in (await client.get(base, headers=member)).json()] == [project_id]
