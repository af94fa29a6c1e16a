"""Audit trail package."""

from esign_compliance.audit.service import (
    AuditExport,
    AuditTrailWriter,
    entry_to_export_row,
    record_security_event,
)

__all__ = [
    "AuditExport",
    "AuditTrailWriter",
    "entry_to_export_row",
    "record_security_event",
]
