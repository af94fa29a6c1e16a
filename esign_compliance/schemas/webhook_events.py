"""
Pydantic schemas for signing provider webhook payloads.

Payloads form a closed tagged union keyed on `event`. Each variant forbids
unknown keys, so a body either matches one shape exactly or is rejected
before any of its fields is used.
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class WebhookEventType(str, Enum):
    """Events the signing provider may deliver."""
    RECIPIENT_SIGNED = "recipient_signed"
    DOCUMENT_COMPLETED = "document_completed"
    DOCUMENT_DECLINED = "document_declined"
    DOCUMENT_VIEWED = "document_viewed"


KNOWN_EVENT_TYPES = frozenset(e.value for e in WebhookEventType)


class _StrictModel(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)


# =============================================================================
# Event Data
# =============================================================================

class SignerContextData(_StrictModel):
    """Tenant claim plus the original signer's transport context."""

    tenant_id: str = Field(..., alias="tenantId", min_length=1)
    ip_address: Optional[str] = Field(default=None, alias="ipAddress", max_length=64)
    user_agent: Optional[str] = Field(default=None, alias="userAgent", max_length=2000)
    recipient_email: Optional[str] = Field(default=None, alias="recipientEmail")
    recipient_name: Optional[str] = Field(default=None, alias="recipientName")


class RecipientSignedData(SignerContextData):
    field_values: Dict[str, str] = Field(default_factory=dict, alias="fieldValues")


class DocumentViewedData(SignerContextData):
    pass


class DocumentDeclinedData(SignerContextData):
    reason: Optional[str] = Field(default=None, max_length=2000)


class ReportedRecipient(_StrictModel):
    """A recipient's status as reported by the provider on completion."""

    id: Optional[str] = None
    email: Optional[str] = None
    name: Optional[str] = None
    status: str
    signed_at: Optional[datetime] = Field(default=None, alias="signedAt")


class DocumentCompletedData(_StrictModel):
    tenant_id: str = Field(..., alias="tenantId", min_length=1)
    ip_address: Optional[str] = Field(default=None, alias="ipAddress", max_length=64)
    user_agent: Optional[str] = Field(default=None, alias="userAgent", max_length=2000)
    all_recipients: List[ReportedRecipient] = Field(
        default_factory=list,
        alias="allRecipients",
    )


# =============================================================================
# Event Envelopes
# =============================================================================

class _EventEnvelope(_StrictModel):
    id: Optional[str] = Field(default=None, max_length=255, description="Provider delivery id")
    document_id: str = Field(..., alias="documentId", min_length=1)
    timestamp: Optional[datetime] = None


class RecipientSignedEvent(_EventEnvelope):
    event: Literal["recipient_signed"]
    recipient_id: str = Field(..., alias="recipientId", min_length=1)
    data: RecipientSignedData


class DocumentViewedEvent(_EventEnvelope):
    event: Literal["document_viewed"]
    recipient_id: str = Field(..., alias="recipientId", min_length=1)
    data: DocumentViewedData


class DocumentDeclinedEvent(_EventEnvelope):
    event: Literal["document_declined"]
    recipient_id: str = Field(..., alias="recipientId", min_length=1)
    data: DocumentDeclinedData


class DocumentCompletedEvent(_EventEnvelope):
    event: Literal["document_completed"]
    recipient_id: Optional[str] = Field(default=None, alias="recipientId")
    data: DocumentCompletedData


WebhookEvent = Annotated[
    Union[
        RecipientSignedEvent,
        DocumentViewedEvent,
        DocumentDeclinedEvent,
        DocumentCompletedEvent,
    ],
    Field(discriminator="event"),
]

webhook_event_adapter: TypeAdapter = TypeAdapter(WebhookEvent)


class WebhookAckResponse(BaseModel):
    """Acknowledgement returned to the provider."""

    success: bool = True
    status: Literal["processed", "no_op", "duplicate", "ignored"]
    event: Optional[str] = None
    document_id: Optional[str] = Field(default=None, serialization_alias="documentId")
    document_status: Optional[str] = Field(default=None, serialization_alias="documentStatus")
    message: str = ""
