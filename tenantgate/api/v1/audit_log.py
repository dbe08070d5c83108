"""Audit log: filtered query, full export, and the filter catalog."""

import csv
import io
import uuid
from datetime import date
from typing import Literal

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse, StreamingResponse

from tenantgate.api.deps import ActorDep, GateDep, Session
from tenantgate.models.audit_log import (
    AuditAction,
    AuditLogEntry,
    AuditLogPage,
    AuditLogRead,
    ResourceType,
)
from tenantgate.models.base import utcnow
from tenantgate.models.member import AccountRole
from tenantgate.services import audit
from tenantgate.services.gate import Access

router = APIRouter(tags=["audit-log"])


def _filters(
    action: str | None,
    resource_type: str | None,
    user_id: uuid.UUID | None,
    date_from: date | None,
    date_to: date | None,
) -> audit.AuditFilters:
    return audit.AuditFilters(
        action=action,
        resource_type=resource_type,
        user_id=user_id,
        date_from=date_from,
        date_to=date_to,
    )


@router.get("/audit-log/filters")
async def audit_filters(actor: ActorDep) -> dict[str, list[str]]:
    """Known actions and resource types, for building filter controls."""
    return audit.available_filters()


@router.get("/accounts/{account_id}/audit-log", response_model=AuditLogPage)
async def query_audit_log(
    account_id: uuid.UUID,
    gate: GateDep,
    session: Session,
    action: str | None = None,
    resource_type: str | None = None,
    user_id: uuid.UUID | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    page: int = Query(default=1, ge=1),
    per_page: int | None = Query(default=None, ge=1),
) -> AuditLogPage:
    """Newest first; ``per_page`` is capped server-side."""
    filters = _filters(action, resource_type, user_id, date_from, date_to)
    size = audit.clamp_page_size(per_page)

    async def op(access: Access) -> AuditLogPage:
        items, total = await audit.get_logs(session, account_id, filters, page, size)
        return AuditLogPage(
            items=[AuditLogRead.from_entry(e) for e in items],
            total=total,
            page=page,
            per_page=size,
            total_pages=audit.total_pages(total, size),
        )

    return await gate.perform(
        account_id, op,
        action=AuditAction.ACCESS, resource_type=ResourceType.AUDIT_LOG,
        minimum_role=AccountRole.ADMIN,
    )


@router.get("/accounts/{account_id}/audit-log/export")
async def export_audit_log(
    account_id: uuid.UUID,
    gate: GateDep,
    session: Session,
    action: str | None = None,
    resource_type: str | None = None,
    user_id: uuid.UUID | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    format: Literal["json", "csv"] = "json",
):
    """Every matching entry as a download. Same filters as the query endpoint."""
    filters = _filters(action, resource_type, user_id, date_from, date_to)

    async def op(access: Access) -> list[AuditLogEntry]:
        return await audit.export(session, account_id, filters)

    entries = await gate.perform(
        account_id, op,
        action=AuditAction.EXPORT, resource_type=ResourceType.AUDIT_LOG,
        minimum_role=AccountRole.ADMIN,
        describe=lambda rows: {"format": format, "count": len(rows)},
    )

    stamp = utcnow().strftime("%Y%m%d")
    if format == "csv":
        return _export_csv(entries, f"audit_log_{stamp}.csv")
    return JSONResponse(
        {
            "entries": [AuditLogRead.from_entry(e).model_dump(mode="json") for e in entries],
            "exported_at": utcnow().isoformat(),
        },
        headers={"Content-Disposition": f"attachment; filename=audit_log_{stamp}.json"},
    )


def _export_csv(entries: list[AuditLogEntry], filename: str) -> StreamingResponse:
    """Build a CSV StreamingResponse for the export."""
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow([
        "id", "created_at", "action", "resource_type", "resource_id",
        "user_id", "api_key_id", "ip_address", "user_agent", "details",
    ])
    for e in entries:
        writer.writerow([
            str(e.id), e.created_at.isoformat(), e.action, e.resource_type,
            e.resource_id or "", str(e.user_id or ""), str(e.api_key_id or ""),
            e.ip_address or "", e.user_agent or "", e.details or "",
        ])
    output.seek(0)
    return StreamingResponse(
        iter([output.getvalue()]),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )
