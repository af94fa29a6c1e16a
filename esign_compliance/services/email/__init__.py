"""Email delivery providers."""

from esign_compliance.services.email.base import (
    DeliveryResult,
    EmailAddress,
    EmailMessage,
    EmailProvider,
    EmailProviderType,
    MockEmailProvider,
)
from esign_compliance.services.email.sendgrid import SendGridProvider

__all__ = [
    "DeliveryResult",
    "EmailAddress",
    "EmailMessage",
    "EmailProvider",
    "EmailProviderType",
    "MockEmailProvider",
    "SendGridProvider",
]
