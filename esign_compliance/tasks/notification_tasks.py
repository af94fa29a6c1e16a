"""Queued completion notifications."""

import asyncio
import logging
from typing import Any, Dict

from sqlalchemy.exc import SQLAlchemyError

from esign_compliance.database.database import get_db_context
from esign_compliance.services.notifications import CompletionNotifier
from esign_compliance.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


async def _notify(document_id: str) -> Dict[str, Any]:
    with get_db_context() as session:
        report = await CompletionNotifier(session).notify(document_id)
    return {
        "document_id": document_id,
        "sent": report.sent,
        "failed": report.failed,
        "skipped": report.skipped,
    }


@celery_app.task(
    name="tasks.send_completion_notification",
    queue="notifications",
    autoretry_for=(SQLAlchemyError,),
    max_retries=5,
    default_retry_delay=60,
    retry_backoff=True,
    retry_backoff_max=3600,
    retry_jitter=True,
    acks_late=True,
)
def send_completion_notification(document_id: str) -> Dict[str, Any]:
    """
    Send completion emails for a document.

    Database errors are retried with backoff. Recipients already claimed by an
    earlier attempt are skipped; per-recipient delivery failures are absorbed
    by the notifier and reported in the result.
    """
    logger.info(f"Sending completion notifications for document {document_id}")
    return asyncio.run(_notify(document_id))
