"""Tenant admin endpoints for drafting, sending and voiding documents."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from esign_compliance.database.database import get_db
from esign_compliance.schemas.signature_document import (
    CreateDocumentRequest,
    DocumentResponse,
    FieldCreate,
    FieldResponse,
    RecipientCreate,
    RecipientResponse,
    TransitionResponse,
    VoidDocumentRequest,
)
from esign_compliance.security.dependencies import rate_limit, require_anomaly_clearance
from esign_compliance.security.rate_limiter import RateLimitTier
from esign_compliance.services.signature_document_service import (
    SignatureDocumentService,
    TransitionResult,
)
from esign_compliance.utils.auth import CurrentUser, require_tenant_admin
from esign_compliance.utils.request_context import RequestContext, get_request_context

logger = logging.getLogger(__name__)


# =============================================================================
# Router Setup
# =============================================================================

documents_router = APIRouter(
    prefix="/api/admin/documents",
    tags=["Signature Documents"],
    dependencies=[Depends(require_anomaly_clearance)],
)


def get_document_service(
    session: Annotated[Session, Depends(get_db)],
) -> SignatureDocumentService:
    """Get signature document service instance."""
    return SignatureDocumentService(session)


def _transition_response(result: TransitionResult) -> TransitionResponse:
    return TransitionResponse(
        document_id=result.document.id,
        status=result.status,
        changed=result.changed,
        message=result.message,
    )


# =============================================================================
# Endpoints
# =============================================================================

@documents_router.post(
    "",
    response_model=DocumentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a draft document",
    description="""
    Creates a DRAFT document with optional recipients and fields.

    Fields reference recipients by their index in `recipients`. Recipients
    and fields can still be added while the document is a draft.
    """,
    responses={
        400: {"description": "Validation error"},
        401: {"description": "Authentication required"},
        403: {"description": "Tenant administrator role required"},
    },
)
async def create_document(
    request_body: CreateDocumentRequest,
    current_user: Annotated[CurrentUser, Depends(require_tenant_admin)],
    service: Annotated[SignatureDocumentService, Depends(get_document_service)],
    context: Annotated[RequestContext, Depends(get_request_context)],
) -> DocumentResponse:
    """Create a new signature document."""
    document = service.create_document(
        tenant_id=current_user.tenant_id,
        request=request_body,
        actor=current_user.id,
        context=context,
    )
    logger.info(f"Signature document {document.id} created by {current_user.id}")
    return service.build_document_response(document)


@documents_router.get(
    "/{document_id}",
    response_model=DocumentResponse,
    summary="Get document details",
    description="""
    Document with its effective status (EXPIRED is derived at read time),
    recipient progress, fields and chronological audit history.
    """,
    responses={404: {"description": "Document not found"}},
)
async def get_document(
    document_id: str,
    current_user: Annotated[CurrentUser, Depends(require_tenant_admin)],
    service: Annotated[SignatureDocumentService, Depends(get_document_service)],
) -> DocumentResponse:
    """Get one document of the caller's tenant."""
    document = service.get_document(document_id, current_user.tenant_id)
    return service.build_document_response(document)


@documents_router.post(
    "/{document_id}/recipients",
    response_model=RecipientResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add a recipient to a draft",
    responses={
        404: {"description": "Document not found"},
        409: {"description": "Document is no longer a draft"},
    },
)
async def add_recipient(
    document_id: str,
    request_body: RecipientCreate,
    current_user: Annotated[CurrentUser, Depends(require_tenant_admin)],
    service: Annotated[SignatureDocumentService, Depends(get_document_service)],
    context: Annotated[RequestContext, Depends(get_request_context)],
) -> RecipientResponse:
    recipient = service.add_recipient(
        document_id,
        current_user.tenant_id,
        request_body,
        actor=current_user.id,
        context=context,
    )
    return RecipientResponse.model_validate(recipient)


@documents_router.post(
    "/{document_id}/fields",
    response_model=FieldResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add a field to a draft",
    responses={
        400: {"description": "recipient_id missing"},
        404: {"description": "Document or recipient not found"},
        409: {"description": "Document is no longer a draft"},
    },
)
async def add_field(
    document_id: str,
    request_body: FieldCreate,
    current_user: Annotated[CurrentUser, Depends(require_tenant_admin)],
    service: Annotated[SignatureDocumentService, Depends(get_document_service)],
    context: Annotated[RequestContext, Depends(get_request_context)],
) -> FieldResponse:
    field = service.add_field(
        document_id,
        current_user.tenant_id,
        request_body,
        actor=current_user.id,
        context=context,
    )
    return FieldResponse.model_validate(field)


@documents_router.post(
    "/{document_id}/send",
    response_model=TransitionResponse,
    summary="Send a draft for signature",
    description="Issues signing links to every recipient and moves the document to SENT.",
    responses={
        404: {"description": "Document not found"},
        409: {"description": "Not a draft, no signers, or already expired"},
    },
)
async def send_document(
    document_id: str,
    current_user: Annotated[CurrentUser, Depends(require_tenant_admin)],
    service: Annotated[SignatureDocumentService, Depends(get_document_service)],
    context: Annotated[RequestContext, Depends(get_request_context)],
) -> TransitionResponse:
    result = service.send_document(
        document_id,
        current_user.tenant_id,
        actor=current_user.id,
        context=context,
    )
    return _transition_response(result)


@documents_router.post(
    "/{document_id}/void",
    response_model=TransitionResponse,
    summary="Void a document",
    description="""
    Voids a document that has not completed, been declined or been voided.
    Outstanding signing links stop working immediately.

    Limited to 3 calls per hour per client on top of the general API tier.
    """,
    responses={
        404: {"description": "Document not found"},
        409: {"description": "Document already in a terminal state"},
        429: {"description": "Too many requests"},
    },
    dependencies=[Depends(rate_limit(RateLimitTier.STRICT))],
)
async def void_document(
    document_id: str,
    request_body: VoidDocumentRequest,
    current_user: Annotated[CurrentUser, Depends(require_tenant_admin)],
    service: Annotated[SignatureDocumentService, Depends(get_document_service)],
    context: Annotated[RequestContext, Depends(get_request_context)],
) -> TransitionResponse:
    result = service.void(
        document_id,
        current_user.tenant_id,
        reason=request_body.reason,
        actor=current_user.id,
        context=context,
    )
    return _transition_response(result)
