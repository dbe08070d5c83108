"""Audit log: append-only action ledger with filtered query and export.

Rows are only ever inserted here; :func:`purge` (run by the retention job)
is the single deletion path.
"""

import logging
import math
import uuid
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta

from sqlalchemy import delete, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from tenantgate.core.config import get_settings
from tenantgate.models.audit_log import AuditAction, AuditLogEntry, ResourceType
from tenantgate.models.base import dump_json, utcnow

logger = logging.getLogger(__name__)


@dataclass
class AuditFilters:
    action: str | None = None
    resource_type: str | None = None
    user_id: uuid.UUID | None = None
    date_from: date | None = None
    date_to: date | None = None


async def log(
    session: AsyncSession,
    account_id: uuid.UUID,
    action: str,
    resource_type: str,
    resource_id: str | uuid.UUID | None = None,
    details: dict | None = None,
    *,
    user_id: uuid.UUID | None = None,
    api_key_id: uuid.UUID | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> uuid.UUID:
    """Append one entry and flush it. The caller commits."""
    if user_id is not None and api_key_id is not None:
        raise ValueError("An audit entry has either a user or an API key actor, not both")

    entry = AuditLogEntry(
        account_id=account_id,
        action=action,
        resource_type=resource_type,
        resource_id=str(resource_id) if resource_id is not None else None,
        user_id=user_id,
        api_key_id=api_key_id,
        details=dump_json(details) if details else None,
        ip_address=ip_address,
        user_agent=user_agent[:500] if user_agent else None,
    )
    session.add(entry)
    await session.flush()
    return entry.id


def _filtered(account_id: uuid.UUID, filters: AuditFilters | None):
    stmt = select(AuditLogEntry).where(AuditLogEntry.account_id == account_id)
    if filters is None:
        return stmt
    if filters.action:
        stmt = stmt.where(AuditLogEntry.action == filters.action)
    if filters.resource_type:
        stmt = stmt.where(AuditLogEntry.resource_type == filters.resource_type)
    if filters.user_id:
        stmt = stmt.where(AuditLogEntry.user_id == filters.user_id)
    if filters.date_from:
        stmt = stmt.where(AuditLogEntry.created_at >= datetime.combine(filters.date_from, time.min))
    if filters.date_to:
        # Include the whole date_to day
        end = datetime.combine(filters.date_to + timedelta(days=1), time.min)
        stmt = stmt.where(AuditLogEntry.created_at < end)
    return stmt


def clamp_page_size(per_page: int | None) -> int:
    settings = get_settings()
    if not per_page or per_page < 1:
        return settings.audit_default_page_size
    return min(per_page, settings.audit_max_page_size)


async def get_logs(
    session: AsyncSession,
    account_id: uuid.UUID,
    filters: AuditFilters | None = None,
    page: int = 1,
    per_page: int | None = None,
) -> tuple[list[AuditLogEntry], int]:
    """One page of entries, newest first, plus the total matching count."""
    page = max(page, 1)
    per_page = clamp_page_size(per_page)
    stmt = _filtered(account_id, filters)

    count_stmt = select(func.count()).select_from(stmt.subquery())
    total = (await session.execute(count_stmt)).scalar_one()

    stmt = (
        stmt.order_by(AuditLogEntry.created_at.desc(), AuditLogEntry.id.desc())  # type: ignore[union-attr]
        .offset((page - 1) * per_page)
        .limit(per_page)
    )
    items = list((await session.execute(stmt)).scalars().all())
    return items, total


def total_pages(total: int, per_page: int) -> int:
    return math.ceil(total / per_page) if per_page else 0


async def export(
    session: AsyncSession,
    account_id: uuid.UUID,
    filters: AuditFilters | None = None,
) -> list[AuditLogEntry]:
    """Every matching entry, newest first. Bounded only by retention."""
    stmt = _filtered(account_id, filters).order_by(
        AuditLogEntry.created_at.desc(), AuditLogEntry.id.desc()  # type: ignore[union-attr]
    )
    return list((await session.execute(stmt)).scalars().all())


async def purge(session: AsyncSession, older_than_days: int) -> int:
    """Delete entries older than the horizon across all accounts. Commits."""
    cutoff = utcnow() - timedelta(days=older_than_days)
    result = await session.execute(
        delete(AuditLogEntry).where(AuditLogEntry.created_at < cutoff)
    )
    await session.commit()
    deleted = result.rowcount or 0
    logger.info("Purged %d audit entries older than %s", deleted, cutoff.isoformat())
    return deleted


def available_filters() -> dict[str, list[str]]:
    return {
        "actions": [a.value for a in AuditAction],
        "resource_types": [r.value for r in ResourceType],
    }
