"""SQLAlchemy models."""

from esign_compliance.models.audit_log import AuditEventType, AuditLog, AuditResourceType
from esign_compliance.models.base import Base
from esign_compliance.models.signature_document import (
    DocumentType,
    FieldType,
    RecipientRole,
    RecipientStatus,
    SignatureDocument,
    SignatureDocumentStatus,
    SignatureField,
    SignatureRecipient,
)
from esign_compliance.models.tenant import (
    Subscription,
    SubscriptionStatus,
    TenantMember,
    TenantRole,
)
from esign_compliance.models.webhook_receipt import WebhookReceipt

__all__ = [
    "AuditEventType",
    "AuditLog",
    "AuditResourceType",
    "Base",
    "DocumentType",
    "FieldType",
    "RecipientRole",
    "RecipientStatus",
    "SignatureDocument",
    "SignatureDocumentStatus",
    "SignatureField",
    "SignatureRecipient",
    "Subscription",
    "SubscriptionStatus",
    "TenantMember",
    "TenantRole",
    "WebhookReceipt",
]
