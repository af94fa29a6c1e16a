"""Compliance export of the audit stream."""

import csv
import io
import json
import logging
from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse, Response
from sqlalchemy.orm import Session

from esign_compliance.audit.service import (
    EXPORT_COLUMNS,
    AuditExport,
    AuditTrailWriter,
    entry_to_export_row,
)
from esign_compliance.database.database import get_db
from esign_compliance.models.audit_log import AuditEventType, AuditResourceType
from esign_compliance.security.dependencies import require_anomaly_clearance
from esign_compliance.utils.auth import CurrentUser, require_tenant_admin
from esign_compliance.utils.request_context import RequestContext, get_request_context

logger = logging.getLogger(__name__)


audit_export_router = APIRouter(
    prefix="/api/admin/audit",
    tags=["Audit"],
    dependencies=[Depends(require_anomaly_clearance)],
)


def _rows_to_csv(rows: List[Dict[str, Any]]) -> str:
    output = io.StringIO()
    writer = csv.DictWriter(output, fieldnames=EXPORT_COLUMNS)
    writer.writeheader()
    for row in rows:
        writer.writerow({**row, "metadata": json.dumps(row["metadata"], sort_keys=True)})
    return output.getvalue()


def _export_headers(export: AuditExport) -> Dict[str, str]:
    return {
        "X-Audit-Total": str(export.total),
        "X-Audit-Truncated": "true" if export.truncated else "false",
    }


@audit_export_router.get(
    "/export",
    summary="Export audit entries",
    description="""
    Chronological audit entries of the caller's tenant as JSON or CSV.

    **Filters:** resource type and id, event type, and a created-at range.

    **Truncation:** at most `limit` rows (capped by `AUDIT_EXPORT_MAX_ROWS`)
    are returned. `X-Audit-Total` always carries the full match count and
    `X-Audit-Truncated` says whether rows were left out.
    """,
    responses={
        200: {"description": "Export body", "content": {"text/csv": {}}},
        403: {"description": "Tenant administrator role required"},
    },
)
async def export_audit_log(
    current_user: Annotated[CurrentUser, Depends(require_tenant_admin)],
    db: Annotated[Session, Depends(get_db)],
    context: Annotated[RequestContext, Depends(get_request_context)],
    export_format: Literal["json", "csv"] = Query(default="json", alias="format"),
    resource_type: Optional[str] = Query(default=None),
    resource_id: Optional[str] = Query(default=None),
    event_type: Optional[str] = Query(default=None),
    start: Optional[datetime] = Query(default=None),
    end: Optional[datetime] = Query(default=None),
    limit: Optional[int] = Query(default=None, ge=1),
) -> Response:
    """Export the tenant's audit entries."""
    writer = AuditTrailWriter(db)
    export = writer.export(
        current_user.tenant_id,
        resource_type=resource_type,
        resource_id=resource_id,
        event_type=event_type,
        start=start,
        end=end,
        limit=limit,
    )
    rows = [entry_to_export_row(entry) for entry in export.entries]

    writer.record(
        AuditEventType.AUDIT_EXPORTED,
        tenant_id=current_user.tenant_id,
        resource_type=AuditResourceType.AUDIT_LOG,
        actor=current_user.id,
        context=context,
        metadata={
            "format": export_format,
            "rowCount": len(rows),
            "total": export.total,
            "truncated": export.truncated,
            "filters": {
                "resourceType": resource_type,
                "resourceId": resource_id,
                "eventType": event_type,
                "start": start.isoformat() if start else None,
                "end": end.isoformat() if end else None,
            },
        },
    )
    logger.info(
        f"Audit export ({export_format}) for tenant {current_user.tenant_id} by {current_user.id}: "
        f"{len(rows)} of {export.total} rows"
    )

    headers = _export_headers(export)
    if export_format == "csv":
        headers["Content-Disposition"] = 'attachment; filename="audit-export.csv"'
        return Response(
            content=_rows_to_csv(rows),
            media_type="text/csv",
            headers=headers,
        )

    return JSONResponse(
        content={
            "entries": rows,
            "total": export.total,
            "limit": export.limit,
            "truncated": export.truncated,
        },
        headers=headers,
    )
