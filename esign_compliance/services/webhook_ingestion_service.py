"""
Webhook ingestion pipeline for the external signing provider.

Processing order is fixed: authenticity, payload validation, resource
authorization, de-duplication, then one locked transaction holding the state
change, its audit entry and the delivery receipt.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from esign_compliance.audit.service import record_security_event
from esign_compliance.config.settings import Settings, get_settings
from esign_compliance.models.audit_log import AuditEventType, AuditResourceType
from esign_compliance.models.signature_document import (
    RecipientStatus,
    SignatureDocument,
    SignatureDocumentStatus,
    SignatureRecipient,
)
from esign_compliance.models.webhook_receipt import WebhookReceipt
from esign_compliance.schemas.webhook_events import (
    KNOWN_EVENT_TYPES,
    DocumentCompletedEvent,
    DocumentDeclinedEvent,
    DocumentViewedEvent,
    RecipientSignedEvent,
    WebhookEvent,
    webhook_event_adapter,
)
from esign_compliance.services.signature_document_service import (
    SignatureDocumentService,
    TransitionResult,
)
from esign_compliance.services.webhook_signature import WebhookSignature
from esign_compliance.utils.errors import (
    ConfigurationError,
    FieldError,
    ForbiddenError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
    create_not_found_error,
)
from esign_compliance.utils.request_context import RequestContext

logger = logging.getLogger(__name__)

WEBHOOK_ACTOR = "webhook"


@dataclass
class WebhookOutcome:
    """Result of processing one delivery."""

    status: str
    event: Optional[str] = None
    document_id: Optional[str] = None
    document_status: Optional[str] = None
    message: str = ""
    completed_now: bool = False

    @property
    def should_notify(self) -> bool:
        return self.completed_now and self.document_id is not None


def ensure_webhook_configured(settings: Settings) -> None:
    """
    Refuse to run with an unusable webhook configuration.

    A secret is always required, except under the explicit test-mode flag,
    which production never honours.
    """
    webhook = settings.webhook
    if webhook.test_mode and settings.is_production:
        raise ConfigurationError(
            "Webhook test mode cannot be enabled in production",
            error_code="webhook_not_configured",
        )
    if not webhook.secret and not webhook.test_mode:
        raise ConfigurationError(
            "Webhook not configured",
            error_code="webhook_not_configured",
        )


class WebhookIngestionService:
    """Applies signing provider events to signature documents."""

    def __init__(self, session: Session, settings: Optional[Settings] = None):
        """Initialize with database session."""
        self.session = session
        self.settings = settings or get_settings()
        self.documents = SignatureDocumentService(session)

    def process(
        self,
        raw_body: bytes,
        signature_header: Optional[str],
        context: RequestContext,
    ) -> WebhookOutcome:
        """Run one delivery through the pipeline."""
        self.verify_authenticity(raw_body, signature_header, context)

        event = self.parse(raw_body)
        if event is None:
            return WebhookOutcome(status="ignored", message="Unknown event type ignored")

        document, recipient = self.authorize(event, context)

        document = self.documents.lock_document(document.id)
        if recipient is not None:
            recipient = self.documents.find_recipient(document, recipient.id)

        if event.id and self.session.get(WebhookReceipt, event.id) is not None:
            logger.info(f"Duplicate webhook delivery {event.id} for document {document.id}")
            return WebhookOutcome(
                status="duplicate",
                event=event.event,
                document_id=document.id,
                document_status=document.status,
                message="Event already processed",
            )

        result = self.apply(event, document, recipient, context)

        if event.id:
            self.session.add(WebhookReceipt(
                event_id=event.id,
                event_type=event.event,
                document_id=document.id,
            ))
            self.session.flush()

        status = "processed" if result.changed else "no_op"
        logger.info(
            f"Webhook {event.event} for document {document.id}: {status} "
            f"({result.previous_status} -> {result.status})"
        )
        return WebhookOutcome(
            status=status,
            event=event.event,
            document_id=document.id,
            document_status=result.status,
            message=result.message,
            completed_now=result.completed_now,
        )

    # =========================================================================
    # Pipeline Steps
    # =========================================================================

    def verify_authenticity(
        self,
        raw_body: bytes,
        signature_header: Optional[str],
        context: RequestContext,
    ) -> None:
        ensure_webhook_configured(self.settings)

        secret = self.settings.webhook.secret
        if not secret:
            logger.warning("Accepting unsigned webhook: ESIGN_WEBHOOK_TEST_MODE is enabled")
            return

        if WebhookSignature(secret).verify(raw_body, signature_header):
            return

        reason = "missing" if not signature_header else "invalid"
        logger.warning(f"Rejected webhook with {reason} signature from {context.ip_address}")
        record_security_event(
            AuditEventType.WEBHOOK_SIGNATURE_REJECTED,
            resource_type=AuditResourceType.ENDPOINT,
            resource_id="/api/webhooks/esign",
            actor=WEBHOOK_ACTOR,
            context=context,
            metadata={"reason": reason, "bodyLength": len(raw_body)},
        )
        if reason == "missing":
            raise UnauthorizedError("Missing signature header", error_code="invalid_signature")
        raise UnauthorizedError("Invalid webhook signature", error_code="invalid_signature")

    def parse(self, raw_body: bytes) -> Optional[WebhookEvent]:
        """
        Decode and validate the payload.

        Returns None for event types this service does not know, so newer
        provider events are acknowledged without being applied.
        """
        try:
            payload = json.loads(raw_body)
        except (UnicodeDecodeError, ValueError):
            raise ValidationError("Malformed JSON payload", error_code="malformed_payload")

        if not isinstance(payload, dict):
            raise ValidationError("Webhook payload must be a JSON object", error_code="malformed_payload")

        event_type = payload.get("event")
        if event_type not in KNOWN_EVENT_TYPES:
            logger.warning(f"Ignoring unknown webhook event: {event_type!r}")
            return None

        try:
            return webhook_event_adapter.validate_python(payload)
        except PydanticValidationError as e:
            field_errors = [
                FieldError(
                    field=".".join(str(loc) for loc in err["loc"]),
                    message=err["msg"],
                    code=err["type"],
                )
                for err in e.errors()
            ]
            raise ValidationError(
                f"Payload does not match the {event_type} event schema",
                field_errors=field_errors,
                error_code="malformed_payload",
            )

    def authorize(
        self,
        event: WebhookEvent,
        context: RequestContext,
    ) -> tuple:
        """Check the document exists, belongs to the claimed tenant and owns the recipient."""
        document = self.session.get(SignatureDocument, event.document_id)
        if document is None:
            raise create_not_found_error("Signature document", event.document_id)

        if document.tenant_id != event.data.tenant_id:
            logger.error(
                f"Webhook tenant mismatch for document {document.id}: "
                f"claimed {event.data.tenant_id}"
            )
            record_security_event(
                AuditEventType.WEBHOOK_TENANT_MISMATCH,
                tenant_id=document.tenant_id,
                resource_type=AuditResourceType.SIGNATURE_DOCUMENT,
                resource_id=document.id,
                actor=WEBHOOK_ACTOR,
                context=context,
                metadata={"claimedTenantId": event.data.tenant_id, "event": event.event},
            )
            raise ForbiddenError("Access denied", error_code="tenant_mismatch")

        recipient = None
        if event.recipient_id:
            recipient = next(
                (r for r in document.recipients if r.id == event.recipient_id),
                None,
            )
            if recipient is None:
                raise NotFoundError(
                    "Recipient not found",
                    details={"document_id": document.id, "recipient_id": event.recipient_id},
                )
        return document, recipient

    def apply(
        self,
        event: WebhookEvent,
        document: SignatureDocument,
        recipient: Optional[SignatureRecipient],
        context: RequestContext,
    ) -> TransitionResult:
        """Apply the event; repeats of an already-applied event are no-ops."""
        context = context.prefer(event.data.ip_address, event.data.user_agent)
        details = self._audit_details(event)

        if isinstance(event, RecipientSignedEvent):
            if recipient.status == RecipientStatus.SIGNED.value:
                return self._no_op(document, "Recipient already signed")
            if event.data.recipient_name:
                details["recipientName"] = event.data.recipient_name
            return self.documents.sign(
                document,
                recipient,
                actor=WEBHOOK_ACTOR,
                field_values=event.data.field_values,
                context=context,
                check_token_expiry=False,
                enforce_required_fields=False,
                audit_details=details,
            )

        if isinstance(event, DocumentViewedEvent):
            if recipient.status != RecipientStatus.PENDING.value:
                return self._no_op(document, "Recipient already viewed")
            return self.documents.record_view(
                document,
                recipient,
                actor=WEBHOOK_ACTOR,
                context=context,
                check_token_expiry=False,
                audit_details=details,
            )

        if isinstance(event, DocumentDeclinedEvent):
            if recipient.status == RecipientStatus.DECLINED.value:
                return self._no_op(document, "Recipient already declined")
            return self.documents.decline(
                document,
                recipient,
                actor=WEBHOOK_ACTOR,
                reason=event.data.reason,
                context=context,
                check_token_expiry=False,
                audit_details=details,
            )

        if isinstance(event, DocumentCompletedEvent):
            if document.status == SignatureDocumentStatus.COMPLETED.value:
                return self._no_op(document, "Document already completed")
            details["allRecipients"] = [
                r.model_dump(mode="json", by_alias=True, exclude_none=True)
                for r in event.data.all_recipients
            ]
            return self.documents.complete(
                document,
                actor=WEBHOOK_ACTOR,
                signed_recipient_ids=self._reported_signers(document, event),
                context=context,
                audit_details=details,
            )

        raise ValidationError(f"Unsupported event {event.event}", error_code="malformed_payload")

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _no_op(document: SignatureDocument, message: str) -> TransitionResult:
        return TransitionResult(
            document=document,
            previous_status=document.status,
            changed=False,
            message=message,
        )

    @staticmethod
    def _audit_details(event: WebhookEvent) -> Dict[str, Any]:
        details: Dict[str, Any] = {"source": "webhook", "webhookEvent": event.event}
        if event.id:
            details["webhookId"] = event.id
        if event.timestamp:
            details["originalTimestamp"] = event.timestamp.isoformat()
        return details

    @staticmethod
    def _reported_signers(
        document: SignatureDocument,
        event: DocumentCompletedEvent,
    ) -> List[str]:
        """Map provider-reported SIGNED recipients onto this document's recipients."""
        by_id = {r.id: r for r in document.recipients}
        by_email = {r.email.lower(): r for r in document.recipients}

        signed_ids = []
        for reported in event.data.all_recipients:
            if reported.status.upper() != RecipientStatus.SIGNED.value:
                continue
            match = by_id.get(reported.id) if reported.id else None
            if match is None and reported.email:
                match = by_email.get(reported.email.lower())
            if match is None:
                logger.warning(
                    f"Completion for document {document.id} reports unknown recipient "
                    f"{reported.id or reported.email}"
                )
                continue
            signed_ids.append(match.id)
        return signed_ids
