"""Tests for the webhook ingestion pipeline."""

import json
from dataclasses import replace

import pytest
from sqlalchemy import select

from esign_compliance.models.audit_log import AuditEventType, AuditLog
from esign_compliance.models.signature_document import (
    RecipientStatus,
    SignatureDocumentStatus,
)
from esign_compliance.models.webhook_receipt import WebhookReceipt
from esign_compliance.services.signature_document_service import SignatureDocumentService
from esign_compliance.services.webhook_ingestion_service import (
    WebhookIngestionService,
    ensure_webhook_configured,
)
from esign_compliance.services.webhook_signature import WebhookSignature
from esign_compliance.utils.errors import (
    ConfigurationError,
    ForbiddenError,
    NotFoundError,
    StateConflictError,
    StateConflictReason,
    UnauthorizedError,
    ValidationError,
)
from esign_compliance.utils.request_context import RequestContext

CONTEXT = RequestContext(ip_address="198.51.100.20", user_agent="provider-webhooks/2.0")


def events_of_type(session, event_type):
    return session.execute(
        select(AuditLog).where(AuditLog.event_type == event_type.value)
    ).scalars().all()


def completed_payload(document, event_id="evt-complete-1"):
    return {
        "event": "document_completed",
        "id": event_id,
        "documentId": document.id,
        "data": {
            "tenantId": document.tenant_id,
            "allRecipients": [
                {"id": r.id, "email": r.email, "status": "signed"}
                for r in document.recipients
            ],
        },
    }


@pytest.fixture
def ingest(db_session, settings, sign_payload):
    """Runs a payload through the pipeline with a valid signature."""
    service = WebhookIngestionService(db_session, settings)

    def run(payload):
        signed = sign_payload(payload)
        outcome = service.process(signed["body"], signed["signature"], CONTEXT)
        db_session.commit()
        return outcome

    return run


# =============================================================================
# Authenticity Tests
# =============================================================================

class TestAuthenticity:
    """Test cases for signature verification."""

    def test_missing_signature_rejected(self, db_session, settings, make_document):
        """Test that a delivery without a signature is rejected and audited."""
        document = make_document()
        body = json.dumps(completed_payload(document)).encode()

        with pytest.raises(UnauthorizedError) as exc_info:
            WebhookIngestionService(db_session, settings).process(body, None, CONTEXT)

        assert exc_info.value.error_code == "invalid_signature"
        rejected = events_of_type(db_session, AuditEventType.WEBHOOK_SIGNATURE_REJECTED)
        assert rejected[0].event_metadata["reason"] == "missing"

    def test_tampered_body_rejected(self, db_session, settings, make_document, sign_payload):
        """Test that a body altered after signing is rejected."""
        document = make_document()
        signed = sign_payload(completed_payload(document))
        tampered = signed["body"].replace(b"signed", b"SIGNED")

        with pytest.raises(UnauthorizedError):
            WebhookIngestionService(db_session, settings).process(
                tampered, signed["signature"], CONTEXT
            )

        db_session.expire_all()
        assert document.status == SignatureDocumentStatus.SENT.value

    def test_wrong_secret_rejected(self, db_session, settings, make_document, sign_payload):
        """Test that a signature made with another secret is rejected."""
        document = make_document()
        signed = sign_payload(completed_payload(document), secret="not-the-secret")

        with pytest.raises(UnauthorizedError):
            WebhookIngestionService(db_session, settings).process(
                signed["body"], signed["signature"], CONTEXT
            )

    def test_test_mode_skips_verification(self, db_session, settings, make_document):
        """Test that test mode accepts unsigned deliveries outside production."""
        document = make_document()
        settings.webhook.secret = None
        settings.webhook.test_mode = True
        body = json.dumps(completed_payload(document)).encode()

        outcome = WebhookIngestionService(db_session, settings).process(body, None, CONTEXT)

        assert outcome.status == "processed"


class TestEnsureWebhookConfigured:
    """Test cases for webhook configuration checks."""

    def test_missing_secret_is_configuration_error(self, settings):
        """Test that no secret and no test mode is refused."""
        settings.webhook.secret = None

        with pytest.raises(ConfigurationError) as exc_info:
            ensure_webhook_configured(settings)
        assert exc_info.value.error_code == "webhook_not_configured"

    def test_test_mode_refused_in_production(self, settings):
        """Test that production never honours test mode."""
        settings.webhook.test_mode = True
        production = replace(settings, environment="production")

        with pytest.raises(ConfigurationError):
            ensure_webhook_configured(production)

    def test_secret_configured_passes(self, settings):
        """Test that a configured secret passes."""
        ensure_webhook_configured(settings)


# =============================================================================
# Payload Tests
# =============================================================================

class TestPayloadValidation:
    """Test cases for payload parsing."""

    def test_malformed_json_rejected(self, db_session, settings):
        """Test that a non-JSON body is a validation error."""
        body = b"{not json"
        signature = WebhookSignature(settings.webhook.secret).generate(body)

        with pytest.raises(ValidationError) as exc_info:
            WebhookIngestionService(db_session, settings).process(body, signature, CONTEXT)
        assert exc_info.value.error_code == "malformed_payload"

    def test_unknown_keys_rejected(self, ingest, make_document):
        """Test that unexpected keys fail schema validation."""
        document = make_document()
        payload = completed_payload(document)
        payload["data"]["surprise"] = True

        with pytest.raises(ValidationError) as exc_info:
            ingest(payload)
        assert any("surprise" in e.field for e in exc_info.value.field_errors)

    def test_missing_recipient_id_rejected(self, ingest, make_document):
        """Test that recipient events require a recipient id."""
        document = make_document()

        with pytest.raises(ValidationError):
            ingest({
                "event": "recipient_signed",
                "documentId": document.id,
                "data": {"tenantId": document.tenant_id},
            })

    def test_unknown_event_ignored(self, ingest, make_document):
        """Test that unknown event types are acknowledged and ignored."""
        document = make_document()

        outcome = ingest({"event": "envelope_corrected", "documentId": document.id})

        assert outcome.status == "ignored"
        assert outcome.should_notify is False


# =============================================================================
# Authorization Tests
# =============================================================================

class TestAuthorization:
    """Test cases for resource authorization."""

    def test_unknown_document_not_found(self, ingest, make_document):
        """Test that an unknown document id is a 404."""
        document = make_document()
        payload = completed_payload(document)
        payload["documentId"] = "does-not-exist"

        with pytest.raises(NotFoundError):
            ingest(payload)

    def test_tenant_mismatch_forbidden(self, db_session, ingest, make_document):
        """Test that a claimed tenant other than the owner is refused and audited."""
        document = make_document()
        payload = completed_payload(document)
        payload["data"]["tenantId"] = "other-tenant"

        with pytest.raises(ForbiddenError) as exc_info:
            ingest(payload)

        assert exc_info.value.error_code == "tenant_mismatch"
        mismatches = events_of_type(db_session, AuditEventType.WEBHOOK_TENANT_MISMATCH)
        assert mismatches[0].event_metadata["claimedTenantId"] == "other-tenant"
        db_session.expire_all()
        assert document.status == SignatureDocumentStatus.SENT.value

    def test_recipient_of_other_document_not_found(self, ingest, make_document):
        """Test that a recipient from another document is refused."""
        document = make_document()
        other = make_document(title="Side Letter")

        with pytest.raises(NotFoundError):
            ingest({
                "event": "document_viewed",
                "documentId": document.id,
                "recipientId": other.recipients[0].id,
                "data": {"tenantId": document.tenant_id},
            })


# =============================================================================
# Event Application Tests
# =============================================================================

class TestEventApplication:
    """Test cases for applying events."""

    def test_recipient_signed_uses_original_signer_context(self, db_session, ingest, make_document):
        """Test that the signer's IP from the payload is recorded."""
        document = make_document()
        alice = document.recipients[0]

        outcome = ingest({
            "event": "recipient_signed",
            "id": "evt-sign-1",
            "documentId": document.id,
            "recipientId": alice.id,
            "data": {
                "tenantId": document.tenant_id,
                "ipAddress": "192.0.2.44",
                "userAgent": "Safari/17",
            },
        })

        assert outcome.status == "processed"
        assert outcome.document_status == SignatureDocumentStatus.PARTIALLY_SIGNED.value
        signed = events_of_type(db_session, AuditEventType.DOCUMENT_SIGNED)[0]
        assert signed.ip_address == "192.0.2.44"
        assert signed.event_metadata["source"] == "webhook"
        assert signed.event_metadata["webhookId"] == "evt-sign-1"

    def test_signed_event_respects_signing_order(self, ingest, make_document):
        """Test that webhooks cannot bypass sequential signing."""
        document = make_document()
        bob = document.recipients[1]

        with pytest.raises(StateConflictError) as exc_info:
            ingest({
                "event": "recipient_signed",
                "documentId": document.id,
                "recipientId": bob.id,
                "data": {"tenantId": document.tenant_id},
            })
        assert exc_info.value.reason == StateConflictReason.OUT_OF_ORDER

    def test_repeat_signed_event_is_no_op(self, ingest, make_document):
        """Test that a second signed event for the same recipient changes nothing."""
        document = make_document()
        alice = document.recipients[0]
        payload = {
            "event": "recipient_signed",
            "documentId": document.id,
            "recipientId": alice.id,
            "data": {"tenantId": document.tenant_id},
        }

        ingest(payload)
        outcome = ingest(payload)

        assert outcome.status == "no_op"

    def test_viewed_then_declined(self, db_session, ingest, make_document):
        """Test viewed and declined events."""
        document = make_document()
        alice = document.recipients[0]
        base = {"documentId": document.id, "recipientId": alice.id}

        viewed = ingest({**base, "event": "document_viewed", "data": {"tenantId": document.tenant_id}})
        declined = ingest({
            **base,
            "event": "document_declined",
            "data": {"tenantId": document.tenant_id, "reason": "Terms changed"},
        })

        assert viewed.document_status == SignatureDocumentStatus.VIEWED.value
        assert declined.document_status == SignatureDocumentStatus.DECLINED.value
        db_session.expire_all()
        assert alice.status == RecipientStatus.DECLINED.value
        assert alice.declined_reason == "Terms changed"

    def test_completed_event_completes_once(self, db_session, ingest, make_document):
        """Test that a duplicated completion causes one transition and one notification."""
        document = make_document()
        payload = completed_payload(document)

        first = ingest(payload)
        second = ingest(payload)

        assert first.status == "processed"
        assert first.should_notify is True
        assert second.status == "duplicate"
        assert second.should_notify is False
        assert len(events_of_type(db_session, AuditEventType.DOCUMENT_COMPLETED)) == 1
        assert db_session.get(WebhookReceipt, "evt-complete-1") is not None

    def test_completed_event_without_id_is_no_op_on_repeat(self, db_session, ingest, make_document):
        """Test that a repeat completion without a delivery id is a no-op."""
        document = make_document()
        payload = completed_payload(document, event_id=None)
        del payload["id"]

        first = ingest(payload)
        second = ingest(payload)

        assert first.completed_now is True
        assert second.status == "no_op"
        assert second.should_notify is False
        assert len(events_of_type(db_session, AuditEventType.DOCUMENT_COMPLETED)) == 1

    def test_completed_event_matches_recipients_by_email(self, ingest, make_document):
        """Test that reported recipients without ids are matched by email."""
        document = make_document()
        payload = completed_payload(document)
        payload["data"]["allRecipients"] = [
            {"email": r.email.upper(), "status": "SIGNED"} for r in document.recipients
        ]

        outcome = ingest(payload)

        assert outcome.document_status == SignatureDocumentStatus.COMPLETED.value

    def test_completed_event_with_unsigned_recipient_refused(self, db_session, ingest, make_document):
        """Test that completion is refused while a signer is outstanding."""
        document = make_document()
        payload = completed_payload(document)
        payload["data"]["allRecipients"][1]["status"] = "pending"

        with pytest.raises(StateConflictError) as exc_info:
            ingest(payload)

        assert exc_info.value.reason == StateConflictReason.SIGNERS_OUTSTANDING
        db_session.rollback()
        assert db_session.get(WebhookReceipt, "evt-complete-1") is None

    def test_events_on_voided_document_conflict(self, db_session, ingest, make_document, tenant_id):
        """Test that a voided document refuses provider events."""
        document = make_document()
        SignatureDocumentService(db_session).void(document.id, tenant_id, "Withdrawn", actor="admin")
        db_session.commit()

        with pytest.raises(StateConflictError) as exc_info:
            ingest(completed_payload(document))
        assert exc_info.value.reason == StateConflictReason.DOCUMENT_VOIDED
