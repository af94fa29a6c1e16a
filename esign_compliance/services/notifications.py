"""
Completion notifications for signature documents.

Notifications run after the completing transaction has committed. Delivery
failures are logged per recipient and never reach the caller.
"""

import logging
from dataclasses import dataclass, field
from html import escape
from typing import Any, Dict, List, Optional, Set

from fastapi import BackgroundTasks
from sqlalchemy import select
from sqlalchemy.orm import Session

from esign_compliance.audit.service import AuditTrailWriter
from esign_compliance.config.settings import Settings, get_settings
from esign_compliance.database.database import get_db_context
from esign_compliance.models.audit_log import AuditEventType, AuditLog, AuditResourceType
from esign_compliance.models.signature_document import (
    RecipientRole,
    RecipientStatus,
    SignatureDocument,
)
from esign_compliance.models.tenant import TENANT_ADMIN_ROLES, TenantMember
from esign_compliance.services.email import (
    EmailAddress,
    EmailMessage,
    EmailProvider,
    MockEmailProvider,
    SendGridProvider,
)
from esign_compliance.utils.errors import UpstreamNotificationError

logger = logging.getLogger(__name__)

# Recipient roles told about completion; VIEWER links are informational only
NOTIFIED_ROLES = frozenset({
    RecipientRole.SIGNER.value,
    RecipientRole.APPROVER.value,
    RecipientRole.CC.value,
})

# Delivery states recorded per recipient in the audit stream
DELIVERY_CLAIMED = "sending"
DELIVERY_FAILED = "failed"


# =============================================================================
# Provider Selection
# =============================================================================

_provider: Optional[EmailProvider] = None


def get_email_provider(settings: Optional[Settings] = None) -> EmailProvider:
    """Get the configured email provider (cached)."""
    global _provider

    if _provider is None:
        settings = settings or get_settings()
        config = settings.notifications
        if config.email_provider == "sendgrid":
            _provider = SendGridProvider({
                "api_key": config.sendgrid_api_key,
                "default_from_email": config.from_address,
                "default_from_name": config.from_name,
            })
        else:
            _provider = MockEmailProvider()

    return _provider


def set_email_provider(provider: Optional[EmailProvider]) -> None:
    """Replace the cached provider; None resets to configuration."""
    global _provider
    _provider = provider


# =============================================================================
# Notifier
# =============================================================================

@dataclass
class NotificationReport:
    """Per-recipient outcome of a completion fan-out."""

    document_id: str
    sent: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)


class CompletionNotifier:
    """Tells every party and the tenant's administrators that a document completed."""

    def __init__(
        self,
        session: Session,
        provider: Optional[EmailProvider] = None,
        settings: Optional[Settings] = None,
    ):
        self.session = session
        self.settings = settings or get_settings()
        self.provider = provider or get_email_provider(self.settings)

    def collect_recipients(self, document: SignatureDocument) -> List[EmailAddress]:
        """Document parties plus active tenant admins, de-duplicated case-insensitively."""
        addresses: List[EmailAddress] = []
        seen = set()

        def add(email: str, name: Optional[str]) -> None:
            key = email.strip().lower()
            if key and key not in seen:
                seen.add(key)
                addresses.append(EmailAddress(email=email.strip(), name=name))

        for recipient in document.recipients:
            if recipient.role in NOTIFIED_ROLES:
                add(recipient.email, recipient.name)

        admins = self.session.execute(
            select(TenantMember).where(
                TenantMember.tenant_id == document.tenant_id,
                TenantMember.is_active.is_(True),
                TenantMember.role.in_([role.value for role in TENANT_ADMIN_ROLES]),
            ).order_by(TenantMember.created_at)
        ).scalars().all()
        for admin in admins:
            add(admin.email, admin.name)

        return addresses

    def certificate_url(self, document: SignatureDocument) -> str:
        return f"{self.settings.base_url}/sign/certificate/{document.id}"

    def build_message(self, document: SignatureDocument, to: EmailAddress) -> EmailMessage:
        signers = [
            f"{r.name} ({r.email})"
            for r in document.signing_recipients
            if r.status == RecipientStatus.SIGNED.value
        ]
        completed = document.completed_at.strftime("%B %d, %Y %H:%M UTC") if document.completed_at else ""
        certificate_url = self.certificate_url(document)
        greeting = to.name or to.email

        text_lines = [
            f"Hello {greeting},",
            "",
            f'"{document.title}" has been signed by all parties on {completed}.',
            "",
            "Signed by:",
            *[f"  - {s}" for s in signers],
            "",
            f"Signing certificate: {certificate_url}",
        ]
        html_items = "".join(f"<li>{escape(s)}</li>" for s in signers)
        html = (
            f"<p>Hello {escape(greeting)},</p>"
            f"<p><strong>{escape(document.title)}</strong> has been signed by all parties"
            f" on {escape(completed)}.</p>"
            f"<p>Signed by:</p><ul>{html_items}</ul>"
            f'<p><a href="{escape(certificate_url)}">View signing certificate</a></p>'
        )

        return EmailMessage(
            to=[to],
            subject=f"Document Signed: {document.title}",
            html_content=html,
            text_content="\n".join(text_lines),
            from_address=EmailAddress(
                email=self.settings.notifications.from_address,
                name=self.settings.notifications.from_name,
            ),
            tags=["signature-completed"],
            tracking_id=document.id,
        )

    def delivered_addresses(self, document_id: str) -> Set[str]:
        """
        Addresses (lower-cased) already handed to the provider for this document.

        A send is claimed in the audit stream before it goes out; a later
        failure entry releases the claim so the address can be retried.
        """
        entries = self.session.execute(
            select(AuditLog.event_metadata)
            .where(
                AuditLog.resource_id == document_id,
                AuditLog.event_type == AuditEventType.COMPLETION_NOTIFICATION_SENT.value,
            )
            .order_by(AuditLog.created_at, AuditLog.sequence)
        ).scalars().all()

        claims: Dict[str, int] = {}
        for metadata in entries:
            metadata = metadata or {}
            address = (metadata.get("recipient") or "").lower()
            if metadata.get("status") == DELIVERY_CLAIMED:
                claims[address] = claims.get(address, 0) + 1
            elif metadata.get("status") == DELIVERY_FAILED:
                claims[address] = claims.get(address, 0) - 1
        return {address for address, count in claims.items() if count > 0}

    def _record_delivery(self, document: SignatureDocument, metadata: Dict[str, Any]) -> None:
        AuditTrailWriter(self.session).record(
            AuditEventType.COMPLETION_NOTIFICATION_SENT,
            tenant_id=document.tenant_id,
            resource_type=AuditResourceType.SIGNATURE_DOCUMENT,
            resource_id=document.id,
            actor="system",
            metadata=metadata,
        )
        self.session.commit()

    async def notify(self, document_id: str) -> NotificationReport:
        """
        Send the completion email to every collected recipient.

        Each send is claimed and committed before the provider is called, and
        claimed addresses are skipped, so re-running after a database error
        never emails anyone twice.
        """
        report = NotificationReport(document_id=document_id)

        document = self.session.get(SignatureDocument, document_id)
        if document is None:
            logger.error(f"Completion notification skipped: document {document_id} not found")
            return report

        already_claimed = self.delivered_addresses(document.id)

        for address in self.collect_recipients(document):
            if address.email.lower() in already_claimed:
                report.skipped.append(address.email)
                continue

            message = self.build_message(document, address)
            self._record_delivery(document, {"recipient": address.email, "status": DELIVERY_CLAIMED})
            try:
                await self._deliver(message)
                report.sent.append(address.email)
            except UpstreamNotificationError as e:
                logger.error(f"Failed to send completion email to {address.email}: {e}")
                report.failed.append(address.email)
                self._record_delivery(
                    document,
                    {"recipient": address.email, "status": DELIVERY_FAILED, "error": str(e)},
                )

        logger.info(
            f"Completion notifications for document {document.id}: "
            f"{len(report.sent)} sent, {len(report.failed)} failed, "
            f"{len(report.skipped)} already delivered"
        )
        return report

    async def _deliver(self, message: EmailMessage) -> None:
        try:
            result = await self.provider.send(message)
        except Exception as e:
            raise UpstreamNotificationError(str(e)) from e
        if not result.success:
            raise UpstreamNotificationError(result.error_message or "delivery failed")


async def notify_document_completed(document_id: str) -> Optional[NotificationReport]:
    """Entry point for background tasks and queue workers; never raises."""
    try:
        with get_db_context() as session:
            return await CompletionNotifier(session).notify(document_id)
    except Exception:
        logger.exception(f"Completion notification for document {document_id} failed")
        return None


# =============================================================================
# Dispatch
# =============================================================================

class BackgroundTaskDispatcher:
    """Runs the fan-out in-process after the response is sent."""

    def __init__(self, background_tasks: BackgroundTasks):
        self.background_tasks = background_tasks

    def dispatch(self, document_id: str) -> None:
        self.background_tasks.add_task(notify_document_completed, document_id)


class CeleryDispatcher:
    """Hands the fan-out to the notifications queue."""

    def dispatch(self, document_id: str) -> None:
        from esign_compliance.tasks.notification_tasks import send_completion_notification

        try:
            send_completion_notification.delay(document_id)
        except Exception:
            logger.exception(f"Could not queue completion notification for document {document_id}")
            return
        logger.info(f"Queued completion notification for document {document_id}")


def get_notification_dispatcher(background_tasks: BackgroundTasks):
    """FastAPI dependency choosing the dispatcher from configuration."""
    if get_settings().notifications.use_queue:
        return CeleryDispatcher()
    return BackgroundTaskDispatcher(background_tasks)
