"""Audit trail writer and compliance export for signature documents."""

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from esign_compliance.config.settings import get_settings
from esign_compliance.database.database import get_db_context
from esign_compliance.models.audit_log import AuditEventType, AuditLog, AuditResourceType
from esign_compliance.models.base import as_naive_utc, utcnow
from esign_compliance.utils.request_context import RequestContext

logger = logging.getLogger(__name__)


# Columns of the CSV compliance export, in order
EXPORT_COLUMNS = [
    "timestamp",
    "event_type",
    "resource_type",
    "resource_id",
    "actor",
    "ip_address",
    "user_agent",
    "geo_country",
    "geo_region",
    "geo_city",
    "metadata",
]


def _add_years(value: datetime, years: int) -> datetime:
    try:
        return value.replace(year=value.year + years)
    except ValueError:
        # 29 February in a non-leap target year
        return value.replace(year=value.year + years, day=28)


@dataclass
class AuditExport:
    """Result of a compliance export query."""

    entries: List[AuditLog]
    total: int
    limit: int

    @property
    def truncated(self) -> bool:
        return self.total > len(self.entries)


class AuditTrailWriter:
    """
    Writes and reads the append-only audit stream.

    `record` participates in the caller's transaction so an audit entry is
    committed if and only if the state change it describes is committed.
    """

    def __init__(self, session: Session):
        """Initialize with database session."""
        self.session = session
        self.settings = get_settings()

    # =========================================================================
    # Writing
    # =========================================================================

    def record(
        self,
        event_type: Union[AuditEventType, str],
        *,
        tenant_id: Optional[str] = None,
        resource_type: Optional[Union[AuditResourceType, str]] = None,
        resource_id: Optional[str] = None,
        actor: Optional[str] = None,
        context: Optional[RequestContext] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> AuditLog:
        """Append one entry to the audit stream."""
        context = context or RequestContext.system()
        now = utcnow()

        entry = AuditLog(
            sequence=time.time_ns(),
            event_type=_value(event_type),
            tenant_id=tenant_id,
            resource_type=_value(resource_type) if resource_type else None,
            resource_id=resource_id,
            actor=actor,
            event_metadata=metadata or {},
            created_at=now,
            retain_until=_add_years(now, self.settings.audit.retention_years),
            **context.audit_fields(),
        )
        self.session.add(entry)
        self.session.flush()

        logger.debug(f"Audit {entry.event_type} recorded for {resource_type}:{resource_id}")
        return entry

    # =========================================================================
    # Reading
    # =========================================================================

    def document_history(self, document_id: str) -> List[Dict[str, Any]]:
        """
        Chronological history of a single document.

        Serialized as `{event, timestamp, ipAddress, userAgent, details}`
        records, the shape consumers of the embedded per-document log expect.
        """
        entries = self.session.execute(
            select(AuditLog)
            .where(
                AuditLog.resource_type == AuditResourceType.SIGNATURE_DOCUMENT.value,
                AuditLog.resource_id == document_id,
            )
            .order_by(AuditLog.created_at, AuditLog.sequence)
        ).scalars().all()

        return [
            {
                "event": entry.event_type,
                "timestamp": entry.created_at.isoformat(),
                "ipAddress": entry.ip_address,
                "userAgent": entry.user_agent,
                "details": {"actor": entry.actor, **(entry.event_metadata or {})},
            }
            for entry in entries
        ]

    def export(
        self,
        tenant_id: str,
        *,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        event_type: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> AuditExport:
        """
        Chronological audit entries for a tenant, for compliance export.

        At most `limit` rows (capped at the configured maximum) are returned.
        The full match count is always reported so a capped export is never
        mistaken for a complete one.
        """
        max_rows = self.settings.audit.export_max_rows
        effective_limit = min(limit, max_rows) if limit else max_rows

        conditions = [AuditLog.tenant_id == tenant_id]
        if resource_type:
            conditions.append(AuditLog.resource_type == resource_type)
        if resource_id:
            conditions.append(AuditLog.resource_id == resource_id)
        if event_type:
            conditions.append(AuditLog.event_type == event_type)
        if start:
            conditions.append(AuditLog.created_at >= as_naive_utc(start))
        if end:
            conditions.append(AuditLog.created_at <= as_naive_utc(end))

        total = self.session.execute(
            select(func.count()).select_from(AuditLog).where(*conditions)
        ).scalar() or 0

        entries = self.session.execute(
            select(AuditLog)
            .where(*conditions)
            .order_by(AuditLog.created_at, AuditLog.sequence)
            .limit(effective_limit)
        ).scalars().all()

        if total > len(entries):
            logger.warning(
                f"Audit export for tenant {tenant_id} capped at {effective_limit} of {total} rows"
            )

        return AuditExport(entries=list(entries), total=total, limit=effective_limit)


def entry_to_export_row(entry: AuditLog) -> Dict[str, Any]:
    """Flatten an audit entry into the export column layout."""
    return {
        "timestamp": entry.created_at.isoformat(),
        "event_type": entry.event_type,
        "resource_type": entry.resource_type,
        "resource_id": entry.resource_id,
        "actor": entry.actor,
        "ip_address": entry.ip_address,
        "user_agent": entry.user_agent,
        "geo_country": entry.geo_country,
        "geo_region": entry.geo_region,
        "geo_city": entry.geo_city,
        "metadata": entry.event_metadata or {},
    }


def record_security_event(
    event_type: Union[AuditEventType, str],
    *,
    resource_type: Optional[Union[AuditResourceType, str]] = None,
    resource_id: Optional[str] = None,
    actor: Optional[str] = None,
    context: Optional[RequestContext] = None,
    metadata: Optional[Dict[str, Any]] = None,
    tenant_id: Optional[str] = None,
) -> None:
    """
    Write a security event in its own transaction.

    Used by the rate limiter and anomaly detector, which run before any
    request session exists. A failure here is logged and never blocks the
    decision that triggered it.
    """
    try:
        with get_db_context() as session:
            AuditTrailWriter(session).record(
                event_type,
                tenant_id=tenant_id,
                resource_type=resource_type,
                resource_id=resource_id,
                actor=actor,
                context=context,
                metadata=metadata,
            )
    except Exception:
        logger.exception(f"Failed to record security event {_value(event_type)}")


def _value(item: Union[str, Any]) -> str:
    return item.value if hasattr(item, "value") else str(item)
