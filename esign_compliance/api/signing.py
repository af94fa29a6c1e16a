"""Recipient-facing signing endpoints, addressed by signing token."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from esign_compliance.database.database import get_db
from esign_compliance.models.signature_document import SignatureRecipient
from esign_compliance.schemas.signature_document import (
    FieldResponse,
    RecipientResponse,
    SignRequest,
    SigningSessionResponse,
    TransitionResponse,
)
from esign_compliance.security.anomaly_detection import get_anomaly_detector
from esign_compliance.services.notifications import get_notification_dispatcher
from esign_compliance.services.signature_document_service import SignatureDocumentService
from esign_compliance.services.signature_state_machine import document_effective_status
from esign_compliance.utils.request_context import RequestContext, get_request_context

logger = logging.getLogger(__name__)


signing_router = APIRouter(
    prefix="/api/sign",
    tags=["Signing"],
)


# =============================================================================
# Dependencies
# =============================================================================

def get_document_service(
    session: Annotated[Session, Depends(get_db)],
) -> SignatureDocumentService:
    """Get signature document service instance."""
    return SignatureDocumentService(session)


def get_signing_recipient(
    token: str,
    service: Annotated[SignatureDocumentService, Depends(get_document_service)],
    context: Annotated[RequestContext, Depends(get_request_context)],
) -> SignatureRecipient:
    """Resolve the signing token and clear the recipient's access pattern."""
    recipient = service.get_recipient_by_token(token)
    get_anomaly_detector().enforce(f"recipient:{recipient.id}", context)
    return recipient


# =============================================================================
# Endpoints
# =============================================================================

@signing_router.get(
    "/{token}",
    response_model=SigningSessionResponse,
    summary="Open a signing link",
    description="""
    Returns the document and the recipient's own fields, and records the
    first view. Expired, voided, declined and completed documents refuse
    the view with 409 and record nothing.
    """,
    responses={
        403: {"description": "Access blocked after suspicious activity"},
        404: {"description": "Invalid or expired signing link"},
        409: {"description": "Document no longer accepts this recipient"},
        429: {"description": "Too many requests"},
    },
)
async def open_signing_link(
    recipient: Annotated[SignatureRecipient, Depends(get_signing_recipient)],
    service: Annotated[SignatureDocumentService, Depends(get_document_service)],
    context: Annotated[RequestContext, Depends(get_request_context)],
) -> SigningSessionResponse:
    """Record the view and return the signing session."""
    document = service.lock_document(recipient.document_id)
    recipient = service.find_recipient(document, recipient.id)

    service.record_view(document, recipient, actor=recipient.email, context=context)
    service.session.commit()

    return SigningSessionResponse(
        document_id=document.id,
        title=document.title,
        document_status=document_effective_status(document).value,
        recipient=RecipientResponse.model_validate(recipient),
        fields=[
            FieldResponse.model_validate(f)
            for f in document.fields
            if f.recipient_id == recipient.id
        ],
    )


@signing_router.post(
    "/{token}",
    response_model=TransitionResponse,
    summary="Sign or decline",
    description="""
    Signs with the supplied field values, or declines when `declined` is
    true. Sequential documents only accept the lowest outstanding signing
    order. Completing the last signature notifies every party.
    """,
    responses={
        400: {"description": "Missing required fields or fields not assigned to the recipient"},
        403: {"description": "Access blocked after suspicious activity"},
        404: {"description": "Invalid or expired signing link"},
        409: {"description": "Already acted, out of order, or document not actionable"},
        429: {"description": "Too many requests"},
    },
)
async def submit_signature(
    request_body: SignRequest,
    recipient: Annotated[SignatureRecipient, Depends(get_signing_recipient)],
    service: Annotated[SignatureDocumentService, Depends(get_document_service)],
    context: Annotated[RequestContext, Depends(get_request_context)],
    dispatcher=Depends(get_notification_dispatcher),
) -> TransitionResponse:
    """Apply the recipient's signature or decline."""
    document = service.lock_document(recipient.document_id)
    recipient = service.find_recipient(document, recipient.id)

    if request_body.declined:
        result = service.decline(
            document,
            recipient,
            actor=recipient.email,
            reason=request_body.declined_reason,
            context=context,
        )
    else:
        result = service.sign(
            document,
            recipient,
            actor=recipient.email,
            field_values=request_body.fields,
            signature_image=request_body.signature_image,
            context=context,
        )
    service.session.commit()

    if result.completed_now:
        dispatcher.dispatch(document.id)

    return TransitionResponse(
        document_id=document.id,
        status=result.status,
        changed=result.changed,
        message=result.message,
    )
