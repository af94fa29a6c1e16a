"""Pydantic schemas for API request/response validation."""

from esign_compliance.schemas.signature_document import (
    CreateDocumentRequest,
    DocumentResponse,
    SignRequest,
    SigningSessionResponse,
    TransitionResponse,
    VoidDocumentRequest,
)
from esign_compliance.schemas.webhook_events import (
    WebhookAckResponse,
    WebhookEvent,
    WebhookEventType,
)

__all__ = [
    # Signature documents
    "CreateDocumentRequest",
    "DocumentResponse",
    "SignRequest",
    "SigningSessionResponse",
    "TransitionResponse",
    "VoidDocumentRequest",
    # Webhooks
    "WebhookAckResponse",
    "WebhookEvent",
    "WebhookEventType",
]
