"""Inbound webhook endpoint for the signing provider."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from esign_compliance.config.settings import get_settings
from esign_compliance.database.database import get_db
from esign_compliance.schemas.webhook_events import WebhookAckResponse
from esign_compliance.services.notifications import get_notification_dispatcher
from esign_compliance.services.webhook_ingestion_service import WebhookIngestionService
from esign_compliance.utils.request_context import RequestContext, get_request_context

logger = logging.getLogger(__name__)


webhooks_router = APIRouter(
    prefix="/api/webhooks",
    tags=["Webhooks"],
)


@webhooks_router.post(
    "/esign",
    response_model=WebhookAckResponse,
    status_code=status.HTTP_200_OK,
    summary="Receive signing provider events",
    description="""
    Applies `recipient_signed`, `document_viewed`, `document_declined` and
    `document_completed` events to the referenced signature document.

    **Authenticity:** the raw body must carry a valid HMAC-SHA256 signature
    in the configured signature header (`sha256=` prefix optional).

    **Idempotency:** re-delivered events and events already reflected in the
    document's state are acknowledged with `duplicate` or `no_op` and change
    nothing. Unknown event types are acknowledged as `ignored`.
    """,
    responses={
        400: {"description": "Malformed payload"},
        401: {"description": "Missing or invalid signature"},
        403: {"description": "Document belongs to another tenant"},
        404: {"description": "Document or recipient not found"},
        409: {"description": "Document state does not allow the event"},
        500: {"description": "Webhook secret not configured"},
    },
)
async def receive_esign_webhook(
    request: Request,
    db: Annotated[Session, Depends(get_db)],
    context: Annotated[RequestContext, Depends(get_request_context)],
    dispatcher=Depends(get_notification_dispatcher),
) -> WebhookAckResponse:
    """Verify, validate and apply one provider delivery."""
    settings = get_settings()
    raw_body = await request.body()
    signature = request.headers.get(settings.webhook.signature_header)

    outcome = WebhookIngestionService(db, settings).process(raw_body, signature, context)
    db.commit()

    if outcome.should_notify:
        dispatcher.dispatch(outcome.document_id)

    return WebhookAckResponse(
        status=outcome.status,
        event=outcome.event,
        document_id=outcome.document_id,
        document_status=outcome.document_status,
        message=outcome.message,
    )
