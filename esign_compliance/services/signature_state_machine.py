"""
Status rules for signature documents and their recipients.

Pure functions over loaded model instances; callers are responsible for
holding the document row lock while they mutate.
"""

from datetime import datetime
from typing import Dict, List, Optional

from esign_compliance.models.base import utcnow
from esign_compliance.models.signature_document import (
    RecipientStatus,
    SignatureDocument,
    SignatureDocumentStatus,
    SignatureRecipient,
    TERMINAL_STATUSES,
)
from esign_compliance.utils.errors import (
    SigningOrderViolation,
    StateConflictError,
    StateConflictReason,
)


# =============================================================================
# Status Descriptions
# =============================================================================

STATUS_DESCRIPTIONS = {
    SignatureDocumentStatus.DRAFT: "Draft - not yet sent",
    SignatureDocumentStatus.SENT: "Sent to recipients",
    SignatureDocumentStatus.VIEWED: "Viewed by at least one recipient",
    SignatureDocumentStatus.PARTIALLY_SIGNED: "Signing in progress",
    SignatureDocumentStatus.COMPLETED: "All signers have signed",
    SignatureDocumentStatus.DECLINED: "Declined by a recipient",
    SignatureDocumentStatus.VOIDED: "Voided by an administrator",
    SignatureDocumentStatus.EXPIRED: "Expired before completion",
}

# Valid stored status transitions. EXPIRED is derived, never stored.
VALID_STATUS_TRANSITIONS: Dict[SignatureDocumentStatus, List[SignatureDocumentStatus]] = {
    SignatureDocumentStatus.DRAFT: [
        SignatureDocumentStatus.SENT,
        SignatureDocumentStatus.VOIDED,
    ],
    SignatureDocumentStatus.SENT: [
        SignatureDocumentStatus.VIEWED,
        SignatureDocumentStatus.PARTIALLY_SIGNED,
        SignatureDocumentStatus.COMPLETED,
        SignatureDocumentStatus.DECLINED,
        SignatureDocumentStatus.VOIDED,
    ],
    SignatureDocumentStatus.VIEWED: [
        SignatureDocumentStatus.PARTIALLY_SIGNED,
        SignatureDocumentStatus.COMPLETED,
        SignatureDocumentStatus.DECLINED,
        SignatureDocumentStatus.VOIDED,
    ],
    SignatureDocumentStatus.PARTIALLY_SIGNED: [
        SignatureDocumentStatus.COMPLETED,
        SignatureDocumentStatus.DECLINED,
        SignatureDocumentStatus.VOIDED,
    ],
    SignatureDocumentStatus.COMPLETED: [],  # Terminal state
    SignatureDocumentStatus.DECLINED: [],  # Terminal state
    SignatureDocumentStatus.VOIDED: [],  # Terminal state
}

_TERMINAL_REASONS = {
    SignatureDocumentStatus.COMPLETED: StateConflictReason.DOCUMENT_COMPLETED,
    SignatureDocumentStatus.DECLINED: StateConflictReason.DOCUMENT_DECLINED,
    SignatureDocumentStatus.VOIDED: StateConflictReason.DOCUMENT_VOIDED,
    SignatureDocumentStatus.EXPIRED: StateConflictReason.DOCUMENT_EXPIRED,
}


def can_transition(
    current: SignatureDocumentStatus,
    target: SignatureDocumentStatus,
) -> bool:
    """Whether a stored status may move from `current` to `target`."""
    return target in VALID_STATUS_TRANSITIONS.get(current, [])


def apply_status(
    document: SignatureDocument,
    target: SignatureDocumentStatus,
) -> None:
    """
    Move the stored status to `target`, refusing moves the transition table forbids.

    Re-applying the current status is a no-op. Leaving a terminal state
    raises the reason for that state.
    """
    current = SignatureDocumentStatus(document.status)
    if target == current:
        return
    if not can_transition(current, target):
        raise StateConflictError(
            _TERMINAL_REASONS.get(current, StateConflictReason.INVALID_TRANSITION),
            details={"status": current.value, "target": target.value},
        )
    document.status = target.value


def effective_status(
    stored_status: str,
    expiration_date: Optional[datetime],
    now: Optional[datetime] = None,
) -> SignatureDocumentStatus:
    """
    Status as seen by readers.

    A non-terminal document whose expiration date has passed reads as
    EXPIRED; nothing is written back.
    """
    status = SignatureDocumentStatus(stored_status)
    if status in TERMINAL_STATUSES or expiration_date is None:
        return status

    now = now or utcnow()
    if expiration_date <= now:
        return SignatureDocumentStatus.EXPIRED
    return status


def document_effective_status(
    document: SignatureDocument,
    now: Optional[datetime] = None,
) -> SignatureDocumentStatus:
    return effective_status(document.status, document.expiration_date, now)


def derive_status(document: SignatureDocument) -> SignatureDocumentStatus:
    """
    Stored status implied by the recipients' statuses.

    Administrative terminal states (VOIDED) and DRAFT are kept as-is;
    otherwise the result depends only on recipients plus the
    SENT -> VIEWED refinement, which never downgrades.
    """
    current = SignatureDocumentStatus(document.status)
    if current in (SignatureDocumentStatus.DRAFT, SignatureDocumentStatus.VOIDED):
        return current

    if any(r.status == RecipientStatus.DECLINED.value for r in document.recipients):
        return SignatureDocumentStatus.DECLINED

    signers = document.signing_recipients
    signed = [r for r in signers if r.status == RecipientStatus.SIGNED.value]

    if signers and len(signed) == len(signers):
        return SignatureDocumentStatus.COMPLETED
    if signed:
        return SignatureDocumentStatus.PARTIALLY_SIGNED

    viewed = any(r.status == RecipientStatus.VIEWED.value for r in document.recipients)
    if viewed and current == SignatureDocumentStatus.SENT:
        return SignatureDocumentStatus.VIEWED
    return current


# =============================================================================
# Guards
# =============================================================================

def assert_document_actionable(
    document: SignatureDocument,
    now: Optional[datetime] = None,
) -> None:
    """Raise StateConflictError unless recipients may act on the document."""
    status = document_effective_status(document, now)

    if status == SignatureDocumentStatus.DRAFT:
        raise StateConflictError(StateConflictReason.NOT_SENT)

    reason = _TERMINAL_REASONS.get(status)
    if reason:
        raise StateConflictError(reason, details={"status": status.value})


def assert_recipient_not_finished(recipient: SignatureRecipient) -> None:
    """
    Raise StateConflictError if the recipient already signed or declined.

    "Already signed" is reported separately from document-level refusals so
    the signing UI can show the right message.
    """
    if recipient.status == RecipientStatus.SIGNED.value:
        raise StateConflictError(StateConflictReason.ALREADY_SIGNED)
    if recipient.status == RecipientStatus.DECLINED.value:
        raise StateConflictError(StateConflictReason.ALREADY_DECLINED)


def assert_token_current(
    recipient: SignatureRecipient,
    now: Optional[datetime] = None,
) -> None:
    if recipient.token_expires_at is None:
        return
    now = now or utcnow()
    if recipient.token_expires_at <= now:
        raise StateConflictError(StateConflictReason.SIGNING_LINK_EXPIRED)


def assert_signing_order(
    document: SignatureDocument,
    recipient: SignatureRecipient,
) -> None:
    """
    Enforce ordered consent.

    With sequential signing enabled, a recipient may sign only after every
    lower-order signer or approver has signed.
    """
    if not document.sequential_signing:
        return

    waiting_on = [
        other.signing_order
        for other in document.signing_recipients
        if other.id != recipient.id
        and other.signing_order < recipient.signing_order
        and other.status != RecipientStatus.SIGNED.value
    ]
    if waiting_on:
        raise SigningOrderViolation(waiting_on)

