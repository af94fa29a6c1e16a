"""Service for the signature document lifecycle."""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from esign_compliance.audit.service import AuditTrailWriter
from esign_compliance.config.settings import get_settings
from esign_compliance.models.audit_log import AuditEventType, AuditResourceType
from esign_compliance.models.base import utcnow
from esign_compliance.models.signature_document import (
    RecipientStatus,
    SignatureDocument,
    SignatureDocumentStatus,
    SignatureField,
    SignatureRecipient,
)
from esign_compliance.models.tenant import Subscription, SubscriptionStatus
from esign_compliance.schemas.signature_document import (
    CreateDocumentRequest,
    DocumentResponse,
    FieldCreate,
    FieldResponse,
    RecipientCreate,
    RecipientResponse,
)
from esign_compliance.services.signature_state_machine import (
    STATUS_DESCRIPTIONS,
    apply_status,
    assert_document_actionable,
    assert_recipient_not_finished,
    assert_signing_order,
    assert_token_current,
    derive_status,
    document_effective_status,
)
from esign_compliance.utils.errors import (
    FieldError,
    NotFoundError,
    StateConflictError,
    StateConflictReason,
    ValidationError,
    create_not_found_error,
)
from esign_compliance.utils.request_context import RequestContext

logger = logging.getLogger(__name__)


@dataclass
class TransitionResult:
    """Outcome of a state-changing call."""

    document: SignatureDocument
    previous_status: str
    changed: bool
    completed_now: bool = False
    message: str = ""

    @property
    def status(self) -> str:
        return self.document.status


class SignatureDocumentService:
    """
    Owns every mutation of signature documents and their recipients.

    Each mutating method expects the document to have been loaded through
    `lock_document`, so recipient updates, status recomputation and the
    audit entry land in one transaction under one row lock.
    """

    def __init__(self, session: Session, audit: Optional[AuditTrailWriter] = None):
        """Initialize with database session."""
        self.session = session
        self.audit = audit or AuditTrailWriter(session)
        self.settings = get_settings()

    # =========================================================================
    # Loading
    # =========================================================================

    def lock_document(self, document_id: str) -> SignatureDocument:
        """Load a document with SELECT ... FOR UPDATE, refreshing stale state."""
        document = self.session.execute(
            select(SignatureDocument)
            .where(SignatureDocument.id == document_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

        if document is None:
            raise create_not_found_error("Signature document", document_id)
        return document

    def get_document(self, document_id: str, tenant_id: str) -> SignatureDocument:
        """Load a document owned by `tenant_id`; other tenants get a 404."""
        document = self.session.get(SignatureDocument, document_id)
        if document is None or document.tenant_id != tenant_id:
            raise create_not_found_error("Signature document", document_id)
        return document

    def get_recipient_by_token(self, token: str) -> SignatureRecipient:
        recipient = self.session.execute(
            select(SignatureRecipient).where(SignatureRecipient.signing_token == token)
        ).scalar_one_or_none()
        if recipient is None:
            raise NotFoundError("Invalid or expired signing link")
        return recipient

    @staticmethod
    def find_recipient(document: SignatureDocument, recipient_id: str) -> SignatureRecipient:
        for recipient in document.recipients:
            if recipient.id == recipient_id:
                return recipient
        raise NotFoundError(
            "Recipient not found on this document",
            details={"document_id": document.id, "recipient_id": recipient_id},
        )

    # =========================================================================
    # Drafting
    # =========================================================================

    def create_document(
        self,
        tenant_id: str,
        request: CreateDocumentRequest,
        actor: str,
        context: Optional[RequestContext] = None,
    ) -> SignatureDocument:
        """Create a DRAFT document with its recipients and fields."""
        document = SignatureDocument(
            tenant_id=tenant_id,
            title=request.title,
            document_type=request.document_type.value,
            linked_record_id=request.linked_record_id,
            expiration_date=request.expiration_date,
            sequential_signing=request.sequential_signing,
            status=SignatureDocumentStatus.DRAFT.value,
            created_by=actor,
        )
        self.session.add(document)
        self.session.flush()

        recipients = [
            self._build_recipient(document, recipient_def)
            for recipient_def in request.recipients
        ]
        self.session.flush()

        for field_def in request.fields:
            self._build_field(document, recipients[field_def.recipient_index], field_def)
        self.session.flush()

        self.audit.record(
            AuditEventType.DOCUMENT_CREATED,
            tenant_id=tenant_id,
            resource_type=AuditResourceType.SIGNATURE_DOCUMENT,
            resource_id=document.id,
            actor=actor,
            context=context,
            metadata={
                "title": document.title,
                "documentType": document.document_type,
                "recipientCount": len(recipients),
                "fieldCount": len(request.fields),
            },
        )
        logger.info(f"Created signature document {document.id} for tenant {tenant_id}")
        return document

    def add_recipient(
        self,
        document_id: str,
        tenant_id: str,
        recipient_def: RecipientCreate,
        actor: str,
        context: Optional[RequestContext] = None,
    ) -> SignatureRecipient:
        document = self._lock_draft(document_id, tenant_id)
        recipient = self._build_recipient(document, recipient_def)
        self.session.flush()

        self.audit.record(
            AuditEventType.RECIPIENT_ADDED,
            tenant_id=tenant_id,
            resource_type=AuditResourceType.SIGNATURE_DOCUMENT,
            resource_id=document.id,
            actor=actor,
            context=context,
            metadata={
                "recipientId": recipient.id,
                "recipientEmail": recipient.email,
                "role": recipient.role,
                "signingOrder": recipient.signing_order,
            },
        )
        return recipient

    def add_field(
        self,
        document_id: str,
        tenant_id: str,
        field_def: FieldCreate,
        actor: str,
        context: Optional[RequestContext] = None,
    ) -> SignatureField:
        document = self._lock_draft(document_id, tenant_id)
        if not field_def.recipient_id:
            raise ValidationError(
                field_errors=[FieldError("recipient_id", "recipient_id is required", "required")]
            )
        recipient = self.find_recipient(document, field_def.recipient_id)
        field = self._build_field(document, recipient, field_def)
        self.session.flush()

        self.audit.record(
            AuditEventType.FIELD_ADDED,
            tenant_id=tenant_id,
            resource_type=AuditResourceType.SIGNATURE_DOCUMENT,
            resource_id=document.id,
            actor=actor,
            context=context,
            metadata={
                "fieldId": field.id,
                "fieldType": field.field_type,
                "recipientId": recipient.id,
            },
        )
        return field

    def _lock_draft(self, document_id: str, tenant_id: str) -> SignatureDocument:
        document = self.lock_document(document_id)
        if document.tenant_id != tenant_id:
            raise create_not_found_error("Signature document", document_id)
        if document.status != SignatureDocumentStatus.DRAFT.value:
            raise StateConflictError(StateConflictReason.NOT_DRAFT)
        return document

    def _build_recipient(
        self,
        document: SignatureDocument,
        recipient_def: RecipientCreate,
    ) -> SignatureRecipient:
        recipient = SignatureRecipient(
            email=str(recipient_def.email).lower(),
            name=recipient_def.name,
            role=recipient_def.role.value,
            signing_order=recipient_def.signing_order,
            status=RecipientStatus.PENDING.value,
        )
        document.recipients.append(recipient)
        return recipient

    def _build_field(
        self,
        document: SignatureDocument,
        recipient: SignatureRecipient,
        field_def: FieldCreate,
    ) -> SignatureField:
        field = SignatureField(
            recipient=recipient,
            field_type=field_def.field_type.value,
            label=field_def.label,
            page_number=field_def.page_number,
            x=field_def.x,
            y=field_def.y,
            width=field_def.width,
            height=field_def.height,
            required=field_def.required,
        )
        document.fields.append(field)
        return field

    # =========================================================================
    # Sending
    # =========================================================================

    def send_document(
        self,
        document_id: str,
        tenant_id: str,
        actor: str,
        context: Optional[RequestContext] = None,
    ) -> TransitionResult:
        """
        DRAFT -> SENT.

        Issues a fresh signing token to every recipient. A token never
        outlives the document's own expiration date.
        """
        document = self.lock_document(document_id)
        if document.tenant_id != tenant_id:
            raise create_not_found_error("Signature document", document_id)

        if document.status != SignatureDocumentStatus.DRAFT.value:
            raise StateConflictError(
                StateConflictReason.NOT_DRAFT,
                message="Document has already been sent",
                details={"status": document.status},
            )
        if not document.signing_recipients:
            raise StateConflictError(StateConflictReason.NO_SIGNERS)

        now = utcnow()
        if document.expiration_date is not None and document.expiration_date <= now:
            raise StateConflictError(StateConflictReason.DOCUMENT_EXPIRED)

        token_expiry = now + timedelta(days=self.settings.signing.token_ttl_days)
        if document.expiration_date is not None:
            token_expiry = min(token_expiry, document.expiration_date)

        for recipient in document.recipients:
            recipient.signing_token = secrets.token_urlsafe(32)
            recipient.token_expires_at = token_expiry

        previous = document.status
        apply_status(document, SignatureDocumentStatus.SENT)
        document.sent_at = now

        self.audit.record(
            AuditEventType.DOCUMENT_SENT,
            tenant_id=document.tenant_id,
            resource_type=AuditResourceType.SIGNATURE_DOCUMENT,
            resource_id=document.id,
            actor=actor,
            context=context,
            metadata={
                "recipientCount": len(document.recipients),
                "recipients": [r.email for r in document.recipients],
                "tokenExpiresAt": token_expiry.isoformat(),
            },
        )
        logger.info(f"Signature document {document.id} sent to {len(document.recipients)} recipients")
        return TransitionResult(document, previous, changed=True, message="Document sent")

    # =========================================================================
    # Recipient Actions
    # =========================================================================

    def record_view(
        self,
        document: SignatureDocument,
        recipient: SignatureRecipient,
        actor: str,
        context: Optional[RequestContext] = None,
        check_token_expiry: bool = True,
        audit_details: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> TransitionResult:
        """
        Recipient PENDING -> VIEWED, and document SENT -> VIEWED.

        Repeat views are a no-op and write no audit entry.
        """
        now = now or utcnow()
        self._guard_recipient_action(document, recipient, now, check_token_expiry)

        previous = document.status
        if recipient.status != RecipientStatus.PENDING.value:
            return TransitionResult(document, previous, changed=False, message="Already viewed")

        self._stamp(recipient, context)
        recipient.status = RecipientStatus.VIEWED.value
        recipient.viewed_at = now
        apply_status(document, derive_status(document))

        self.audit.record(
            AuditEventType.DOCUMENT_VIEWED,
            tenant_id=document.tenant_id,
            resource_type=AuditResourceType.SIGNATURE_DOCUMENT,
            resource_id=document.id,
            actor=actor,
            context=context,
            metadata={**self._recipient_metadata(recipient), **(audit_details or {})},
        )
        return TransitionResult(document, previous, changed=True, message="Document viewed")

    def sign(
        self,
        document: SignatureDocument,
        recipient: SignatureRecipient,
        actor: str,
        field_values: Optional[Dict[str, str]] = None,
        signature_image: Optional[str] = None,
        context: Optional[RequestContext] = None,
        check_token_expiry: bool = True,
        audit_details: Optional[Dict[str, Any]] = None,
        enforce_required_fields: bool = True,
        now: Optional[datetime] = None,
    ) -> TransitionResult:
        """
        Record a recipient's signature and recompute the document status.

        Every check runs before the first write, so a refused signature
        leaves no partial state behind.
        """
        now = now or utcnow()
        field_values = field_values or {}

        self._guard_recipient_action(document, recipient, now, check_token_expiry)
        if not recipient.can_sign:
            raise StateConflictError(StateConflictReason.ROLE_CANNOT_SIGN)
        assert_signing_order(document, recipient)

        own_fields = {f.id: f for f in document.fields if f.recipient_id == recipient.id}
        self._validate_field_values(own_fields, field_values, enforce_required_fields)

        previous = document.status
        filled = 0
        for field_id, value in field_values.items():
            field = own_fields[field_id]
            if field.value is None:
                field.value = value
                field.filled_at = now
                filled += 1

        self._stamp(recipient, context)
        if recipient.viewed_at is None:
            recipient.viewed_at = now
        recipient.status = RecipientStatus.SIGNED.value
        recipient.signed_at = now
        if signature_image:
            recipient.signature_image = signature_image

        new_status = derive_status(document)
        apply_status(document, new_status)

        self.audit.record(
            AuditEventType.DOCUMENT_SIGNED,
            tenant_id=document.tenant_id,
            resource_type=AuditResourceType.SIGNATURE_DOCUMENT,
            resource_id=document.id,
            actor=actor,
            context=context,
            metadata={
                **self._recipient_metadata(recipient),
                "fieldsCompleted": filled,
                "documentStatus": new_status.value,
                **(audit_details or {}),
            },
        )
        logger.info(
            f"Recipient {recipient.id} signed document {document.id}; status {previous} -> {new_status.value}"
        )

        completed_now = False
        if new_status == SignatureDocumentStatus.COMPLETED:
            self._on_completed(document, actor, context, now, audit_details=audit_details)
            completed_now = True

        return TransitionResult(
            document,
            previous,
            changed=True,
            completed_now=completed_now,
            message="Document signed successfully",
        )

    def decline(
        self,
        document: SignatureDocument,
        recipient: SignatureRecipient,
        actor: str,
        reason: Optional[str] = None,
        context: Optional[RequestContext] = None,
        check_token_expiry: bool = True,
        audit_details: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> TransitionResult:
        """Any recipient declining ends the document as DECLINED."""
        now = now or utcnow()
        self._guard_recipient_action(document, recipient, now, check_token_expiry)

        previous = document.status
        self._stamp(recipient, context)
        recipient.status = RecipientStatus.DECLINED.value
        recipient.declined_at = now
        recipient.declined_reason = reason

        apply_status(document, derive_status(document))
        document.declined_at = now

        self.audit.record(
            AuditEventType.DOCUMENT_DECLINED,
            tenant_id=document.tenant_id,
            resource_type=AuditResourceType.SIGNATURE_DOCUMENT,
            resource_id=document.id,
            actor=actor,
            context=context,
            metadata={
                **self._recipient_metadata(recipient),
                "reason": reason,
                **(audit_details or {}),
            },
        )
        logger.info(f"Recipient {recipient.id} declined document {document.id}")
        return TransitionResult(document, previous, changed=True, message="Document declined")

    def complete(
        self,
        document: SignatureDocument,
        actor: str,
        signed_recipient_ids: Optional[List[str]] = None,
        audit_details: Optional[Dict[str, Any]] = None,
        context: Optional[RequestContext] = None,
        now: Optional[datetime] = None,
    ) -> TransitionResult:
        """
        Apply a provider's assertion that the document is complete.

        Recipients the provider reports as signed are reconciled first; the
        document only completes if every signer and approver is then SIGNED.
        Re-applying to a COMPLETED document changes nothing.
        """
        now = now or utcnow()
        previous = document.status

        if document.status == SignatureDocumentStatus.COMPLETED.value:
            return TransitionResult(document, previous, changed=False, message="Already completed")

        assert_document_actionable(document, now)

        reported = set(signed_recipient_ids or [])
        reconciled = []
        for recipient in document.signing_recipients:
            if recipient.id in reported and recipient.status != RecipientStatus.SIGNED.value:
                if recipient.status == RecipientStatus.DECLINED.value:
                    raise StateConflictError(StateConflictReason.ALREADY_DECLINED)
                recipient.status = RecipientStatus.SIGNED.value
                recipient.signed_at = recipient.signed_at or now
                reconciled.append(recipient.id)

        new_status = derive_status(document)
        if new_status != SignatureDocumentStatus.COMPLETED:
            outstanding = [
                r.id for r in document.signing_recipients
                if r.status != RecipientStatus.SIGNED.value
            ]
            raise StateConflictError(
                StateConflictReason.SIGNERS_OUTSTANDING,
                details={"outstanding_recipient_ids": outstanding},
            )

        apply_status(document, new_status)
        self._on_completed(
            document,
            actor,
            context,
            now,
            reconciled=reconciled,
            audit_details=audit_details,
        )
        return TransitionResult(
            document,
            previous,
            changed=True,
            completed_now=True,
            message="Document completed",
        )

    # =========================================================================
    # Administrative Actions
    # =========================================================================

    def void(
        self,
        document_id: str,
        tenant_id: str,
        reason: str,
        actor: str,
        context: Optional[RequestContext] = None,
    ) -> TransitionResult:
        """Void a document that has not reached a terminal state."""
        if not reason or not reason.strip():
            raise ValidationError(
                field_errors=[FieldError("reason", "A void reason is required", "required")]
            )

        document = self.lock_document(document_id)
        if document.tenant_id != tenant_id:
            raise create_not_found_error("Signature document", document_id)

        now = utcnow()
        previous = document.status
        apply_status(document, SignatureDocumentStatus.VOIDED)
        document.voided_at = now
        document.voided_by = actor
        document.void_reason = reason.strip()

        # Outstanding links stop working immediately
        for recipient in document.recipients:
            if recipient.status in (RecipientStatus.PENDING.value, RecipientStatus.VIEWED.value):
                recipient.token_expires_at = now

        self.audit.record(
            AuditEventType.DOCUMENT_VOIDED,
            tenant_id=document.tenant_id,
            resource_type=AuditResourceType.SIGNATURE_DOCUMENT,
            resource_id=document.id,
            actor=actor,
            context=context,
            metadata={"reason": document.void_reason, "previousStatus": previous},
        )
        logger.info(f"Signature document {document.id} voided by {actor}")
        return TransitionResult(document, previous, changed=True, message="Document voided")

    # =========================================================================
    # Read Views
    # =========================================================================

    def build_document_response(
        self,
        document: SignatureDocument,
        include_history: bool = True,
    ) -> DocumentResponse:
        status = document_effective_status(document)
        return DocumentResponse(
            id=document.id,
            tenant_id=document.tenant_id,
            title=document.title,
            document_type=document.document_type,
            status=status.value,
            status_description=STATUS_DESCRIPTIONS[status],
            linked_record_id=document.linked_record_id,
            sequential_signing=document.sequential_signing,
            created_at=document.created_at,
            sent_at=document.sent_at,
            completed_at=document.completed_at,
            declined_at=document.declined_at,
            voided_at=document.voided_at,
            expiration_date=document.expiration_date,
            void_reason=document.void_reason,
            recipients=[RecipientResponse.model_validate(r) for r in document.recipients],
            fields=[FieldResponse.model_validate(f) for f in document.fields],
            audit_trail=self.audit.document_history(document.id) if include_history else [],
        )

    # =========================================================================
    # Internals
    # =========================================================================

    def _guard_recipient_action(
        self,
        document: SignatureDocument,
        recipient: SignatureRecipient,
        now: datetime,
        check_token_expiry: bool,
    ) -> None:
        """
        Refuse actions by recipients who already acted, on documents that are
        no longer actionable, or through expired links, in that order.
        """
        assert_recipient_not_finished(recipient)
        assert_document_actionable(document, now)
        if check_token_expiry:
            assert_token_current(recipient, now)

    @staticmethod
    def _validate_field_values(
        own_fields: Dict[str, SignatureField],
        field_values: Dict[str, str],
        enforce_required_fields: bool,
    ) -> None:
        errors = [
            FieldError(field_id, "Field is not assigned to this recipient", "invalid_field")
            for field_id in field_values
            if field_id not in own_fields
        ]

        if enforce_required_fields:
            for field in own_fields.values():
                supplied = field_values.get(field.id)
                if field.required and field.value is None and not supplied:
                    errors.append(FieldError(field.id, "Required field is empty", "required"))

        if errors:
            raise ValidationError(field_errors=errors)

    @staticmethod
    def _stamp(recipient: SignatureRecipient, context: Optional[RequestContext]) -> None:
        if context is None:
            return
        if context.ip_address:
            recipient.ip_address = context.ip_address
        if context.user_agent:
            recipient.user_agent = context.user_agent[:500]

    @staticmethod
    def _recipient_metadata(recipient: SignatureRecipient) -> Dict[str, object]:
        return {
            "recipientId": recipient.id,
            "recipientEmail": recipient.email,
            "recipientName": recipient.name,
            "role": recipient.role,
            "signingOrder": recipient.signing_order,
        }

    def _on_completed(
        self,
        document: SignatureDocument,
        actor: str,
        context: Optional[RequestContext],
        now: datetime,
        reconciled: Optional[List[str]] = None,
        audit_details: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Completion bookkeeping; runs exactly once per document."""
        document.completed_at = now

        self.audit.record(
            AuditEventType.DOCUMENT_COMPLETED,
            tenant_id=document.tenant_id,
            resource_type=AuditResourceType.SIGNATURE_DOCUMENT,
            resource_id=document.id,
            actor=actor,
            context=context,
            metadata={
                "signerCount": len(document.signing_recipients),
                "reconciledRecipientIds": reconciled or [],
                **(audit_details or {}),
            },
        )
        self._mark_linked_subscription_signed(document, actor, context, now)
        logger.info(f"Signature document {document.id} completed")

    def _mark_linked_subscription_signed(
        self,
        document: SignatureDocument,
        actor: str,
        context: Optional[RequestContext],
        now: datetime,
    ) -> None:
        conditions = [Subscription.signature_document_id == document.id]
        if document.linked_record_id:
            conditions.append(Subscription.id == document.linked_record_id)

        subscription = self.session.execute(
            select(Subscription)
            .where(Subscription.tenant_id == document.tenant_id, or_(*conditions))
            .with_for_update()
        ).scalars().first()

        if subscription is None or subscription.status == SubscriptionStatus.SIGNED.value:
            return

        subscription.status = SubscriptionStatus.SIGNED.value
        subscription.signed_at = now
        if subscription.signature_document_id is None:
            subscription.signature_document_id = document.id

        self.audit.record(
            AuditEventType.SUBSCRIPTION_SIGNED,
            tenant_id=document.tenant_id,
            resource_type=AuditResourceType.SUBSCRIPTION,
            resource_id=subscription.id,
            actor=actor,
            context=context,
            metadata={"documentId": document.id},
        )
        logger.info(f"Subscription {subscription.id} marked signed by document {document.id}")
