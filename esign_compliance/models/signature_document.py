"""SQLAlchemy models for multi-party signature documents."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from esign_compliance.models.base import Base, new_id, utcnow
from esign_compliance.utils.errors import ImmutableRecordError


class SignatureDocumentStatus(str, Enum):
    """Status of a signature document.

    EXPIRED is never stored; it is derived at read time from the expiration date.
    """
    DRAFT = "DRAFT"
    SENT = "SENT"
    VIEWED = "VIEWED"
    PARTIALLY_SIGNED = "PARTIALLY_SIGNED"
    COMPLETED = "COMPLETED"
    DECLINED = "DECLINED"
    VOIDED = "VOIDED"
    EXPIRED = "EXPIRED"


TERMINAL_STATUSES = frozenset({
    SignatureDocumentStatus.COMPLETED,
    SignatureDocumentStatus.DECLINED,
    SignatureDocumentStatus.VOIDED,
    SignatureDocumentStatus.EXPIRED,
})


class DocumentType(str, Enum):
    """Business category of a signature document."""
    GENERIC = "GENERIC"
    SUBSCRIPTION = "SUBSCRIPTION"
    NDA = "NDA"
    SIDE_LETTER = "SIDE_LETTER"


class RecipientRole(str, Enum):
    """Role of a recipient in the signing workflow."""
    SIGNER = "SIGNER"
    APPROVER = "APPROVER"
    VIEWER = "VIEWER"
    CC = "CC"


# Roles whose signature gates completion
SIGNING_ROLES = frozenset({RecipientRole.SIGNER, RecipientRole.APPROVER})


class RecipientStatus(str, Enum):
    """Status of an individual recipient."""
    PENDING = "PENDING"
    VIEWED = "VIEWED"
    SIGNED = "SIGNED"
    DECLINED = "DECLINED"


class FieldType(str, Enum):
    """Types of fields that can be placed on a document."""
    SIGNATURE = "SIGNATURE"
    INITIALS = "INITIALS"
    DATE = "DATE"
    TEXT = "TEXT"
    CHECKBOX = "CHECKBOX"
    NAME = "NAME"
    EMAIL = "EMAIL"


class SignatureDocument(Base):
    """
    A document sent to one or more parties for legally binding signature.

    The stored status only ever moves forward; VOIDED is the single
    administrative escape hatch. Rows are never physically deleted.
    """

    __tablename__ = "signature_document"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    linked_record_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        nullable=True,
        index=True,
        comment="Business record completed by this document, e.g. a subscription",
    )

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    document_type: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default=DocumentType.GENERIC.value,
    )
    status: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default=SignatureDocumentStatus.DRAFT.value,
        index=True,
    )
    sequential_signing: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        comment="Whether recipients must sign in signing_order",
    )
    created_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)

    expiration_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
        nullable=True,
        onupdate=utcnow,
    )
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    declined_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    voided_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Void Information
    void_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    voided_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)

    # Relationships
    recipients: Mapped[List["SignatureRecipient"]] = relationship(
        "SignatureRecipient",
        back_populates="document",
        cascade="all",
        order_by="SignatureRecipient.signing_order",
    )
    fields: Mapped[List["SignatureField"]] = relationship(
        "SignatureField",
        back_populates="document",
        cascade="all",
    )

    __table_args__ = (
        Index("idx_signature_document_tenant_status", "tenant_id", "status"),
    )

    @property
    def signing_recipients(self) -> List["SignatureRecipient"]:
        """Recipients whose signature is required for completion."""
        return [r for r in self.recipients if r.role in {role.value for role in SIGNING_ROLES}]

    def __repr__(self) -> str:
        return f"<SignatureDocument(id={self.id}, title={self.title}, status={self.status})>"


class SignatureRecipient(Base):
    """
    A party attached to a signature document.

    Progresses PENDING -> VIEWED -> SIGNED, or to DECLINED, never backward.
    """

    __tablename__ = "signature_recipient"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    document_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("signature_document.id"),
        nullable=False,
        index=True,
    )

    email: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=RecipientRole.SIGNER.value,
    )
    signing_order: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
        comment="Position in the signing sequence (1-based)",
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=RecipientStatus.PENDING.value,
        index=True,
    )

    # Signing link; re-issuing replaces the previous token
    signing_token: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        unique=True,
    )
    token_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    viewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    signed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    declined_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    declined_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    signature_image: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Data URL of the drawn or typed signature",
    )

    # Context captured at the most recent transition
    ip_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    document: Mapped["SignatureDocument"] = relationship(
        "SignatureDocument",
        back_populates="recipients",
    )
    fields: Mapped[List["SignatureField"]] = relationship(
        "SignatureField",
        back_populates="recipient",
        foreign_keys="SignatureField.recipient_id",
    )

    __table_args__ = (
        Index("idx_signature_recipient_document_order", "document_id", "signing_order"),
    )

    @property
    def can_sign(self) -> bool:
        return self.role in {role.value for role in SIGNING_ROLES}

    def __repr__(self) -> str:
        return f"<SignatureRecipient(id={self.id}, email={self.email}, status={self.status})>"


class SignatureField(Base):
    """A field placed on the document for a specific recipient to fill."""

    __tablename__ = "signature_field"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    document_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("signature_document.id"),
        nullable=False,
        index=True,
    )
    recipient_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("signature_recipient.id"),
        nullable=False,
        index=True,
    )

    field_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=FieldType.SIGNATURE.value,
    )
    label: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Position
    page_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    x: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    y: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    width: Mapped[float] = mapped_column(Float, nullable=False, default=200)
    height: Mapped[float] = mapped_column(Float, nullable=False, default=50)

    required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Written once, when the assigned recipient signs
    value: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    filled_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    document: Mapped["SignatureDocument"] = relationship(
        "SignatureDocument",
        back_populates="fields",
    )
    recipient: Mapped["SignatureRecipient"] = relationship(
        "SignatureRecipient",
        back_populates="fields",
        foreign_keys=[recipient_id],
    )

    def __repr__(self) -> str:
        return f"<SignatureField(id={self.id}, type={self.field_type}, page={self.page_number})>"


@event.listens_for(SignatureDocument, "before_delete")
def _refuse_document_delete(mapper, connection, target: SignatureDocument) -> None:
    raise ImmutableRecordError(
        f"Signature document {target.id} is retained for compliance and cannot be deleted"
    )
