"""Pydantic schemas for signature document administration and signing."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from esign_compliance.models.base import as_naive_utc
from esign_compliance.models.signature_document import (
    DocumentType,
    FieldType,
    RecipientRole,
)


# =============================================================================
# Request Schemas
# =============================================================================

class RecipientCreate(BaseModel):
    """Recipient definition for a new document."""

    email: EmailStr
    name: str = Field(..., min_length=1, max_length=255)
    role: RecipientRole = RecipientRole.SIGNER
    signing_order: int = Field(default=1, ge=1)


class FieldCreate(BaseModel):
    """Field placed on the document for one recipient."""

    recipient_index: Optional[int] = Field(
        default=None,
        ge=0,
        description="Index into the recipients list (create request only)",
    )
    recipient_id: Optional[str] = None
    field_type: FieldType = FieldType.SIGNATURE
    label: Optional[str] = Field(default=None, max_length=100)
    page_number: int = Field(default=1, ge=1)
    x: float = Field(default=0, ge=0)
    y: float = Field(default=0, ge=0)
    width: float = Field(default=200, gt=0)
    height: float = Field(default=50, gt=0)
    required: bool = True


class CreateDocumentRequest(BaseModel):
    """Request to create a draft signature document."""

    title: str = Field(..., min_length=1, max_length=255)
    document_type: DocumentType = DocumentType.GENERIC
    linked_record_id: Optional[str] = None
    expiration_date: Optional[datetime] = None
    sequential_signing: bool = True
    recipients: List[RecipientCreate] = Field(default_factory=list)
    fields: List[FieldCreate] = Field(default_factory=list)

    @field_validator("expiration_date")
    @classmethod
    def expiration_to_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_naive_utc(value)

    @model_validator(mode="after")
    def check_field_assignments(self) -> "CreateDocumentRequest":
        for field_def in self.fields:
            if field_def.recipient_index is None:
                raise ValueError("fields must reference a recipient_index")
            if field_def.recipient_index >= len(self.recipients):
                raise ValueError(
                    f"recipient_index {field_def.recipient_index} is out of range"
                )
        return self


class VoidDocumentRequest(BaseModel):
    """Request to void a document."""

    reason: str = Field(..., min_length=1, max_length=2000)

    @field_validator("reason")
    @classmethod
    def reason_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("reason is required")
        return value.strip()


class SignRequest(BaseModel):
    """Signing page submission: either sign with field values or decline."""

    model_config = ConfigDict(populate_by_name=True)

    fields: Dict[str, str] = Field(
        default_factory=dict,
        description="Field id -> captured value",
    )
    signature_image: Optional[str] = Field(default=None, alias="signatureImage")
    declined: bool = False
    declined_reason: Optional[str] = Field(default=None, alias="declinedReason", max_length=2000)


# =============================================================================
# Response Schemas
# =============================================================================

class FieldResponse(BaseModel):
    """Field as shown to admins and signers."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    recipient_id: str
    field_type: str
    label: Optional[str] = None
    page_number: int
    x: float
    y: float
    width: float
    height: float
    required: bool
    value: Optional[str] = None
    filled_at: Optional[datetime] = None


class RecipientResponse(BaseModel):
    """Recipient progress."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    name: str
    role: str
    signing_order: int
    status: str
    viewed_at: Optional[datetime] = None
    signed_at: Optional[datetime] = None
    declined_at: Optional[datetime] = None
    declined_reason: Optional[str] = None


class AuditTrailEntry(BaseModel):
    """One entry of a document's history."""

    event: str
    timestamp: str
    ipAddress: Optional[str] = None
    userAgent: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)


class DocumentResponse(BaseModel):
    """Full document view with effective status and history."""

    id: str
    tenant_id: str
    title: str
    document_type: str
    status: str
    status_description: str
    linked_record_id: Optional[str] = None
    sequential_signing: bool
    created_at: datetime
    sent_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    declined_at: Optional[datetime] = None
    voided_at: Optional[datetime] = None
    expiration_date: Optional[datetime] = None
    void_reason: Optional[str] = None
    recipients: List[RecipientResponse]
    fields: List[FieldResponse]
    audit_trail: List[AuditTrailEntry] = Field(default_factory=list)


class TransitionResponse(BaseModel):
    """Outcome of a state-changing action."""

    document_id: str
    status: str
    changed: bool
    message: str


class SigningSessionResponse(BaseModel):
    """What a recipient sees when opening their signing link."""

    document_id: str
    title: str
    document_status: str
    recipient: RecipientResponse
    fields: List[FieldResponse]
