"""Tests for the recipient signing endpoints."""

from datetime import timedelta

import pytest
from sqlalchemy import select

from esign_compliance.models.audit_log import AuditEventType, AuditLog
from esign_compliance.models.base import utcnow
from esign_compliance.models.signature_document import (
    RecipientStatus,
    SignatureDocumentStatus,
)

pytestmark = pytest.mark.usefixtures("daytime_detector")


def sign_url(recipient):
    return f"/api/sign/{recipient.signing_token}"


def document_events(session, document_id, event_type):
    return session.execute(
        select(AuditLog).where(
            AuditLog.resource_id == document_id,
            AuditLog.event_type == event_type.value,
        )
    ).scalars().all()


# =============================================================================
# Signing Link Tests
# =============================================================================

class TestOpenSigningLink:
    """Test cases for opening a signing link."""

    def test_view_returns_own_fields(self, client, db_session, make_document):
        """Test that the recipient sees only their own fields and the view is recorded."""
        document = make_document()
        alice = document.recipients[0]

        response = client.get(sign_url(alice))

        assert response.status_code == 200
        body = response.json()
        assert body["document_id"] == document.id
        assert body["document_status"] == SignatureDocumentStatus.VIEWED.value
        assert body["recipient"]["email"] == "alice@investors.fundco.com"
        assert [f["recipient_id"] for f in body["fields"]] == [alice.id]
        assert len(document_events(db_session, document.id, AuditEventType.DOCUMENT_VIEWED)) == 1

    def test_unknown_token_not_found(self, client, make_document):
        """Test that an unknown token returns 404."""
        make_document()

        response = client.get("/api/sign/not-a-real-token")

        assert response.status_code == 404

    def test_expired_document_refuses_view(self, client, db_session, make_document):
        """Test that an expired document returns 409 and records no view."""
        document = make_document(expiration_date=utcnow() + timedelta(days=1))
        document.expiration_date = utcnow() - timedelta(minutes=1)
        db_session.commit()
        alice = document.recipients[0]

        response = client.get(sign_url(alice))

        assert response.status_code == 409
        assert response.json()["error"]["reason"] == "document_expired"
        db_session.expire_all()
        assert alice.status == RecipientStatus.PENDING.value
        assert document_events(db_session, document.id, AuditEventType.DOCUMENT_VIEWED) == []


# =============================================================================
# Signing Tests
# =============================================================================

class TestSubmitSignature:
    """Test cases for signing and declining."""

    def test_two_signers_complete_and_notify(
        self, client, db_session, make_document, field_values_for, email_provider, tenant_admin
    ):
        """Test the full sequential flow ends COMPLETED and emails every party."""
        document = make_document()
        alice, bob = document.recipients

        first = client.post(sign_url(alice), json={"fields": field_values_for(document, alice)})
        second = client.post(sign_url(bob), json={"fields": field_values_for(document, bob)})

        assert first.status_code == 200
        assert first.json()["status"] == SignatureDocumentStatus.PARTIALLY_SIGNED.value
        assert second.status_code == 200
        assert second.json()["status"] == SignatureDocumentStatus.COMPLETED.value
        assert second.json()["changed"] is True

        db_session.expire_all()
        assert document.status == SignatureDocumentStatus.COMPLETED.value
        assert document.completed_at is not None
        assert len(document_events(db_session, document.id, AuditEventType.DOCUMENT_COMPLETED)) == 1

        notified = {m.to[0].email for m in email_provider.sent_messages}
        assert notified == {"alice@investors.fundco.com", "bob@fundco.com", "Compliance@FundCo.com"}
        assert all(m.subject == f"Document Signed: {document.title}" for m in email_provider.sent_messages)

    def test_out_of_order_signature_refused(self, client, make_document, field_values_for):
        """Test that the second signer cannot sign before the first."""
        document = make_document()
        bob = document.recipients[1]

        response = client.post(sign_url(bob), json={"fields": field_values_for(document, bob)})

        assert response.status_code == 409
        error = response.json()["error"]
        assert error["code"] == "signing_order_violation"
        assert error["reason"] == "out_of_order"
        assert error["details"]["waiting_on_orders"] == [1]

    def test_parallel_document_accepts_any_order(self, client, make_document, field_values_for):
        """Test that non-sequential documents accept signatures in any order."""
        document = make_document(sequential=False)
        bob = document.recipients[1]

        response = client.post(sign_url(bob), json={"fields": field_values_for(document, bob)})

        assert response.status_code == 200

    def test_missing_required_field_refused(self, client, make_document):
        """Test that an empty submission returns 400 with field errors."""
        document = make_document()
        alice = document.recipients[0]

        response = client.post(sign_url(alice), json={"fields": {}})

        assert response.status_code == 400
        assert response.json()["error"]["field_errors"]

    def test_second_signature_refused(self, client, make_document, field_values_for):
        """Test that signing twice returns 409."""
        document = make_document()
        alice = document.recipients[0]
        values = {"fields": field_values_for(document, alice)}

        client.post(sign_url(alice), json=values)
        response = client.post(sign_url(alice), json=values)

        assert response.status_code == 409
        assert response.json()["error"]["reason"] == "already_signed"

    def test_decline_is_terminal(self, client, db_session, make_document, email_provider):
        """Test that a decline ends the document and sends no completion email."""
        document = make_document()
        alice, bob = document.recipients

        response = client.post(
            sign_url(alice),
            json={"declined": True, "declinedReason": "Terms changed"},
        )

        assert response.status_code == 200
        assert response.json()["status"] == SignatureDocumentStatus.DECLINED.value
        db_session.expire_all()
        assert alice.declined_reason == "Terms changed"

        followup = client.get(sign_url(bob))
        assert followup.status_code == 409
        assert followup.json()["error"]["reason"] == "document_declined"
        assert email_provider.sent_messages == []
