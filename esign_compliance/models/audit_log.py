"""Append-only compliance audit log."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy import BigInteger, DateTime, Index, String, Text, event
from sqlalchemy.orm import Mapped, mapped_column

from esign_compliance.models.base import Base, JSONType, new_id, utcnow
from esign_compliance.utils.errors import ImmutableRecordError


class AuditEventType(str, Enum):
    """Event types written to the audit stream."""

    # Document lifecycle
    DOCUMENT_CREATED = "DOCUMENT_CREATED"
    DOCUMENT_SENT = "DOCUMENT_SENT"
    DOCUMENT_VIEWED = "DOCUMENT_VIEWED"
    DOCUMENT_SIGNED = "DOCUMENT_SIGNED"
    DOCUMENT_COMPLETED = "DOCUMENT_COMPLETED"
    DOCUMENT_DECLINED = "DOCUMENT_DECLINED"
    DOCUMENT_VOIDED = "DOCUMENT_VOIDED"
    RECIPIENT_ADDED = "RECIPIENT_ADDED"
    FIELD_ADDED = "FIELD_ADDED"
    SUBSCRIPTION_SIGNED = "SUBSCRIPTION_SIGNED"
    COMPLETION_NOTIFICATION_SENT = "COMPLETION_NOTIFICATION_SENT"

    # Webhook pipeline
    WEBHOOK_SIGNATURE_REJECTED = "WEBHOOK_SIGNATURE_REJECTED"
    WEBHOOK_TENANT_MISMATCH = "WEBHOOK_TENANT_MISMATCH"

    # Security
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    SECURITY_ALERT_SENT = "SECURITY_ALERT_SENT"
    ANOMALY_MULTIPLE_IPS = "ANOMALY_MULTIPLE_IPS"
    ANOMALY_SUSPICIOUS_USER_AGENT = "ANOMALY_SUSPICIOUS_USER_AGENT"
    ANOMALY_EXCESSIVE_REQUESTS = "ANOMALY_EXCESSIVE_REQUESTS"
    ANOMALY_UNUSUAL_TIME = "ANOMALY_UNUSUAL_TIME"
    ANOMALY_RAPID_LOCATION_CHANGE = "ANOMALY_RAPID_LOCATION_CHANGE"

    # Compliance
    AUDIT_EXPORTED = "AUDIT_EXPORTED"


class AuditResourceType(str, Enum):
    """Kinds of resources an audit entry can refer to."""

    SIGNATURE_DOCUMENT = "SignatureDocument"
    SUBSCRIPTION = "Subscription"
    USER = "User"
    ENDPOINT = "Endpoint"
    AUDIT_LOG = "AuditLog"


class AuditLog(Base):
    """
    One immutable row per audited event.

    The per-document history is a filtered read of this table, so there is
    exactly one copy of every event.
    """

    __tablename__ = "audit_log"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    # Monotonic tiebreaker for events written within the same clock tick
    sequence: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    event_type: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    tenant_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    resource_type: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    resource_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # User id, recipient email, "webhook" or "system"
    actor: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    ip_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    geo_country: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)
    geo_region: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    geo_city: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    event_metadata: Mapped[Optional[Dict[str, Any]]] = mapped_column(
        "metadata",
        JSONType,
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utcnow,
        index=True,
    )
    retain_until: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        Index("idx_audit_log_resource", "resource_type", "resource_id", "created_at"),
        Index("idx_audit_log_tenant_created", "tenant_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<AuditLog(id={self.id}, event={self.event_type}, resource={self.resource_id})>"


@event.listens_for(AuditLog, "before_update")
def _refuse_audit_update(mapper, connection, target: AuditLog) -> None:
    raise ImmutableRecordError(f"Audit log entry {target.id} is append-only")


@event.listens_for(AuditLog, "before_delete")
def _refuse_audit_delete(mapper, connection, target: AuditLog) -> None:
    raise ImmutableRecordError(f"Audit log entry {target.id} cannot be deleted")
