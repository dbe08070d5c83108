"""Periodic jobs: purge audit log entries past the retention horizon and
expired database rate limit counters."""

from __future__ import annotations

import logging

from tenantgate.core.config import get_settings
from tenantgate.core.database import async_session_factory
from tenantgate.services import audit, rate_limit

logger = logging.getLogger(__name__)


async def purge_audit_logs(ctx: dict) -> dict:
    """Delete audit entries older than ``audit_retention_days``.

    This is the only code path that removes audit rows.
    """
    days = get_settings().audit_retention_days
    if days <= 0:
        logger.info("Audit retention disabled (audit_retention_days=%d)", days)
        return {"deleted": 0}

    async with async_session_factory() as session:
        deleted = await audit.purge(session, days)

    logger.info("Audit retention: removed %d entries older than %d days", deleted, days)
    return {"deleted": deleted}


async def purge_rate_limit_counters(ctx: dict) -> dict:
    """Delete ``rate_limit_counters`` rows whose window has closed."""
    async with async_session_factory() as session:
        deleted = await rate_limit.purge_expired_counters(session)
    return {"deleted": deleted}
