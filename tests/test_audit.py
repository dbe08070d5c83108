"""Audit log: append, filtered paging, export and retention purge."""

import uuid
from datetime import date, datetime, timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from tenantgate.core.security import hash_password
from tenantgate.models.audit_log import AuditAction, AuditLogEntry, ResourceType
from tenantgate.models.base import load_json, utcnow
from tenantgate.models.user import User
from tenantgate.services import accounts, audit
from tenantgate.services.audit import AuditFilters


async def _setup(session: AsyncSession, slug: str):
    owner = User(email=f"owner@{slug}.test", password_hash=hash_password("password123"))
    session.add(owner)
    await session.flush()
    account, _ = await accounts.bootstrap_account(session, owner, slug, slug=slug)
    return account, owner


def _entry(account_id, created_at, action=AuditAction.UPDATE, resource_type="link", user_id=None):
    return AuditLogEntry(
        account_id=account_id,
        action=action,
        resource_type=resource_type,
        user_id=user_id,
        created_at=created_at,
    )


@pytest.mark.asyncio
async def test_log_records_actor_and_details(session: AsyncSession):
    account, owner = await _setup(session, "audit-log")
    entry_id = await audit.log(
        session, account.id, AuditAction.CREATE, ResourceType.PROJECT, uuid.uuid4(),
        {"name": "Blog"}, user_id=owner.id, ip_address="192.0.2.1", user_agent="x" * 600,
    )

    entry = await session.get(AuditLogEntry, entry_id)
    assert entry.user_id == owner.id
    assert load_json(entry.details) == {"name": "Blog"}
    assert len(entry.user_agent) == 500


@pytest.mark.asyncio
async def test_log_rejects_two_actors(session: AsyncSession):
    account, owner = await _setup(session, "audit-two")
    with pytest.raises(ValueError):
        await audit.log(
            session, account.id, AuditAction.ACCESS, "link",
            user_id=owner.id, api_key_id=uuid.uuid4(),
        )


@pytest.mark.asyncio
async def test_pages_newest_first_with_total(session: AsyncSession):
    account, owner = await _setup(session, "audit-page")
    base = utcnow() - timedelta(hours=1)
    for i in range(25):
        session.add(_entry(account.id, base + timedelta(seconds=i), user_id=owner.id))
    await session.flush()

    items, total = await audit.get_logs(session, account.id, page=1, per_page=10)
    assert total == 25
    assert len(items) == 10
    assert items[0].created_at == base + timedelta(seconds=24)
    assert all(a.created_at > b.created_at for a, b in zip(items, items[1:]))

    last, _ = await audit.get_logs(session, account.id, page=3, per_page=10)
    assert len(last) == 5
    assert audit.total_pages(total, 10) == 3


@pytest.mark.asyncio
async def test_page_size_is_capped(session: AsyncSession):
    assert audit.clamp_page_size(10_000) == 100
    assert audit.clamp_page_size(0) == 20
    assert audit.clamp_page_size(None) == 20


@pytest.mark.asyncio
async def test_filters(session: AsyncSession):
    account, owner = await _setup(session, "audit-filter")
    other_user = User(email="other@audit-filter.test", password_hash=hash_password("password123"))
    session.add(other_user)
    await session.flush()

    day = datetime(2026, 3, 10, 12, 0)
    session.add_all([
        _entry(account.id, day, AuditAction.CREATE, "project", owner.id),
        _entry(account.id, day + timedelta(days=1), AuditAction.DELETE, "project", owner.id),
        _entry(account.id, day + timedelta(days=2, hours=11), AuditAction.CREATE, "link", other_user.id),
    ])
    await session.flush()

    async def total(**kwargs) -> int:
        _, count = await audit.get_logs(session, account.id, AuditFilters(**kwargs))
        return count

    assert await total(action=AuditAction.CREATE) == 2
    assert await total(resource_type="project") == 2
    assert await total(user_id=other_user.id) == 1
    assert await total(date_from=date(2026, 3, 11)) == 2
    # date_to includes the whole day
    assert await total(date_to=date(2026, 3, 12)) == 3
    assert await total(date_from=date(2026, 3, 11), date_to=date(2026, 3, 11)) == 1


@pytest.mark.asyncio
async def test_entries_are_tenant_isolated(session: AsyncSession):
    first, _ = await _setup(session, "audit-a")
    second, _ = await _setup(session, "audit-b")
    session.add(_entry(first.id, utcnow()))
    await session.flush()

    _, total = await audit.get_logs(session, second.id)
    assert total == 0


@pytest.mark.asyncio
async def test_export_is_not_paged(session: AsyncSession):
    account, _ = await _setup(session, "audit-export")
    base = utcnow() - timedelta(hours=1)
    session.add_all([_entry(account.id, base + timedelta(seconds=i)) for i in range(150)])
    await session.flush()

    rows = await audit.export(session, account.id)
    assert len(rows) == 150
    assert rows[0].created_at > rows[-1].created_at


@pytest.mark.asyncio
async def test_purge_respects_horizon(session: AsyncSession):
    account, _ = await _setup(session, "audit-purge")
    now = utcnow()
    session.add_all([
        _entry(account.id, now - timedelta(days=91)),
        _entry(account.id, now - timedelta(days=89)),
        _entry(account.id, now),
    ])
    await session.flush()

    assert await audit.purge(session, 90) == 1
    _, total = await audit.get_logs(session, account.id)
    assert total == 2


def test_available_filters():
    filters = audit.available_filters()
    assert "access_denied" in filters["actions"]
    assert "api_key" in filters["resource_types"]
