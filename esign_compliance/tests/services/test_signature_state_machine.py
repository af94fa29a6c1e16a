"""Tests for signature document status rules."""

from datetime import datetime, timedelta

import pytest

from esign_compliance.models.signature_document import (
    RecipientRole,
    RecipientStatus,
    SignatureDocument,
    SignatureDocumentStatus,
    SignatureRecipient,
)
from esign_compliance.services.signature_state_machine import (
    apply_status,
    assert_document_actionable,
    assert_recipient_not_finished,
    assert_signing_order,
    assert_token_current,
    can_transition,
    derive_status,
    effective_status,
)
from esign_compliance.utils.errors import (
    SigningOrderViolation,
    StateConflictError,
    StateConflictReason,
)

NOW = datetime(2025, 3, 1, 12, 0, 0)


def recipient(order=1, status=RecipientStatus.PENDING, role=RecipientRole.SIGNER, rid=None):
    return SignatureRecipient(
        id=rid or f"r{order}-{role.value}",
        email=f"r{order}@fundco.com",
        name=f"Recipient {order}",
        role=role.value,
        signing_order=order,
        status=status.value,
    )


def document(status=SignatureDocumentStatus.SENT, recipients=None, sequential=True, expires=None):
    return SignatureDocument(
        id="doc-1",
        tenant_id="tenant-1",
        title="LPA",
        status=status.value,
        sequential_signing=sequential,
        expiration_date=expires,
        recipients=recipients or [],
    )


class TestTransitions:
    """Tests for the stored transition table."""

    def test_draft_can_only_be_sent_or_voided(self):
        assert can_transition(SignatureDocumentStatus.DRAFT, SignatureDocumentStatus.SENT)
        assert can_transition(SignatureDocumentStatus.DRAFT, SignatureDocumentStatus.VOIDED)
        assert not can_transition(SignatureDocumentStatus.DRAFT, SignatureDocumentStatus.COMPLETED)

    @pytest.mark.parametrize("terminal", [
        SignatureDocumentStatus.COMPLETED,
        SignatureDocumentStatus.DECLINED,
        SignatureDocumentStatus.VOIDED,
    ])
    def test_terminal_states_have_no_exits(self, terminal):
        for target in SignatureDocumentStatus:
            assert not can_transition(terminal, target)

    def test_no_backward_transition(self):
        assert not can_transition(
            SignatureDocumentStatus.PARTIALLY_SIGNED,
            SignatureDocumentStatus.VIEWED,
        )

    def test_apply_status_moves_forward(self):
        doc = document(status=SignatureDocumentStatus.DRAFT)

        apply_status(doc, SignatureDocumentStatus.SENT)

        assert doc.status == SignatureDocumentStatus.SENT.value

    def test_apply_status_same_status_is_noop(self):
        doc = document(status=SignatureDocumentStatus.VIEWED)

        apply_status(doc, SignatureDocumentStatus.VIEWED)

        assert doc.status == SignatureDocumentStatus.VIEWED.value

    def test_apply_status_refuses_leaving_terminal_state(self):
        doc = document(status=SignatureDocumentStatus.COMPLETED)

        with pytest.raises(StateConflictError) as exc:
            apply_status(doc, SignatureDocumentStatus.VOIDED)

        assert exc.value.reason == StateConflictReason.DOCUMENT_COMPLETED
        assert doc.status == SignatureDocumentStatus.COMPLETED.value

    def test_apply_status_refuses_skipping_send(self):
        doc = document(status=SignatureDocumentStatus.DRAFT)

        with pytest.raises(StateConflictError) as exc:
            apply_status(doc, SignatureDocumentStatus.COMPLETED)

        assert exc.value.reason == StateConflictReason.INVALID_TRANSITION


class TestEffectiveStatus:
    """EXPIRED is derived at read time."""

    def test_past_expiration_reads_as_expired(self):
        status = effective_status("SENT", NOW - timedelta(minutes=1), now=NOW)
        assert status == SignatureDocumentStatus.EXPIRED

    def test_future_expiration_keeps_stored_status(self):
        status = effective_status("VIEWED", NOW + timedelta(days=1), now=NOW)
        assert status == SignatureDocumentStatus.VIEWED

    def test_terminal_status_never_reads_as_expired(self):
        status = effective_status("COMPLETED", NOW - timedelta(days=30), now=NOW)
        assert status == SignatureDocumentStatus.COMPLETED


class TestDeriveStatus:
    """Document status follows from its recipients."""

    def test_all_signers_signed_is_completed(self):
        doc = document(recipients=[
            recipient(1, RecipientStatus.SIGNED),
            recipient(2, RecipientStatus.SIGNED, role=RecipientRole.APPROVER),
            recipient(3, RecipientStatus.PENDING, role=RecipientRole.CC),
        ])
        assert derive_status(doc) == SignatureDocumentStatus.COMPLETED

    def test_viewer_does_not_gate_completion(self):
        doc = document(recipients=[
            recipient(1, RecipientStatus.SIGNED),
            recipient(2, RecipientStatus.PENDING, role=RecipientRole.VIEWER),
        ])
        assert derive_status(doc) == SignatureDocumentStatus.COMPLETED

    def test_some_signed_is_partially_signed(self):
        doc = document(recipients=[
            recipient(1, RecipientStatus.SIGNED),
            recipient(2, RecipientStatus.PENDING),
        ])
        assert derive_status(doc) == SignatureDocumentStatus.PARTIALLY_SIGNED

    def test_any_decline_is_declined(self):
        doc = document(recipients=[
            recipient(1, RecipientStatus.SIGNED),
            recipient(2, RecipientStatus.DECLINED),
        ])
        assert derive_status(doc) == SignatureDocumentStatus.DECLINED

    def test_view_moves_sent_to_viewed(self):
        doc = document(recipients=[recipient(1, RecipientStatus.VIEWED)])
        assert derive_status(doc) == SignatureDocumentStatus.VIEWED

    def test_voided_is_kept(self):
        doc = document(
            status=SignatureDocumentStatus.VOIDED,
            recipients=[recipient(1, RecipientStatus.SIGNED)],
        )
        assert derive_status(doc) == SignatureDocumentStatus.VOIDED


class TestGuards:
    """Tests for recipient and document guards."""

    def test_draft_is_not_actionable(self):
        with pytest.raises(StateConflictError) as exc_info:
            assert_document_actionable(document(status=SignatureDocumentStatus.DRAFT), NOW)
        assert exc_info.value.reason == StateConflictReason.NOT_SENT

    def test_expired_document_is_not_actionable(self):
        doc = document(expires=NOW - timedelta(seconds=1))
        with pytest.raises(StateConflictError) as exc_info:
            assert_document_actionable(doc, NOW)
        assert exc_info.value.reason == StateConflictReason.DOCUMENT_EXPIRED

    @pytest.mark.parametrize("status,reason", [
        (SignatureDocumentStatus.VOIDED, StateConflictReason.DOCUMENT_VOIDED),
        (SignatureDocumentStatus.DECLINED, StateConflictReason.DOCUMENT_DECLINED),
        (SignatureDocumentStatus.COMPLETED, StateConflictReason.DOCUMENT_COMPLETED),
    ])
    def test_terminal_documents_are_not_actionable(self, status, reason):
        with pytest.raises(StateConflictError) as exc_info:
            assert_document_actionable(document(status=status), NOW)
        assert exc_info.value.reason == reason

    def test_signed_recipient_is_finished(self):
        with pytest.raises(StateConflictError) as exc_info:
            assert_recipient_not_finished(recipient(1, RecipientStatus.SIGNED))
        assert exc_info.value.reason == StateConflictReason.ALREADY_SIGNED

    def test_expired_token_is_refused(self):
        r = recipient(1)
        r.token_expires_at = NOW - timedelta(seconds=1)
        with pytest.raises(StateConflictError) as exc_info:
            assert_token_current(r, NOW)
        assert exc_info.value.reason == StateConflictReason.SIGNING_LINK_EXPIRED


class TestSigningOrder:
    """Sequential documents only accept the lowest outstanding order."""

    def test_order_two_cannot_sign_before_order_one(self):
        first, second = recipient(1), recipient(2)
        doc = document(recipients=[first, second])

        with pytest.raises(SigningOrderViolation) as exc_info:
            assert_signing_order(doc, second)

        assert exc_info.value.status_code == 409
        assert exc_info.value.details == {"waiting_on_orders": [1]}

    def test_order_two_can_sign_after_order_one(self):
        first, second = recipient(1, RecipientStatus.SIGNED), recipient(2)
        assert_signing_order(document(recipients=[first, second]), second)

    def test_same_order_signs_in_parallel(self):
        a, b = recipient(1, rid="a"), recipient(1, rid="b")
        assert_signing_order(document(recipients=[a, b]), b)

    def test_parallel_document_ignores_order(self):
        first, second = recipient(1), recipient(2)
        assert_signing_order(document(recipients=[first, second], sequential=False), second)

    def test_cc_does_not_block_later_signers(self):
        cc = recipient(1, role=RecipientRole.CC)
        signer = recipient(2)
        assert_signing_order(document(recipients=[cc, signer]), signer)
