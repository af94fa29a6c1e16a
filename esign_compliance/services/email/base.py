"""Base email provider interface."""

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class EmailProviderType(str, Enum):
    """Supported email provider types."""
    SENDGRID = "sendgrid"
    MOCK = "mock"


class DeliveryStatus(str, Enum):
    """Email delivery status."""
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


@dataclass
class EmailAddress:
    """Email address with optional name."""
    email: str
    name: Optional[str] = None

    def __str__(self) -> str:
        if self.name:
            return f"{self.name} <{self.email}>"
        return self.email


@dataclass
class EmailMessage:
    """Email message to be sent."""
    to: List[EmailAddress]
    subject: str
    html_content: Optional[str] = None
    text_content: Optional[str] = None
    from_address: Optional[EmailAddress] = None
    tags: List[str] = field(default_factory=list)
    tracking_id: Optional[str] = None

    def __post_init__(self):
        # Ensure at least one content type
        if not self.html_content and not self.text_content:
            raise ValueError("Email must have either HTML or text content")


@dataclass
class DeliveryResult:
    """Result of email delivery attempt."""
    success: bool
    message_id: Optional[str] = None
    provider: Optional[EmailProviderType] = None
    status: DeliveryStatus = DeliveryStatus.PENDING
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.utcnow)

    @classmethod
    def success_result(
        cls,
        message_id: str,
        provider: EmailProviderType
    ) -> "DeliveryResult":
        return cls(
            success=True,
            message_id=message_id,
            provider=provider,
            status=DeliveryStatus.SENT,
        )

    @classmethod
    def failure_result(
        cls,
        error_message: str,
        provider: Optional[EmailProviderType] = None,
        error_code: Optional[str] = None
    ) -> "DeliveryResult":
        return cls(
            success=False,
            provider=provider,
            status=DeliveryStatus.FAILED,
            error_code=error_code,
            error_message=error_message,
        )


class EmailProvider(ABC):
    """
    Abstract base class for email providers.

    Implementations report delivery problems through a failed
    DeliveryResult rather than raising.
    """

    provider_type: EmailProviderType

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize the email provider.

        Args:
            config: Provider-specific configuration
        """
        self.config = config
        self._validate_config()

    @abstractmethod
    def _validate_config(self) -> None:
        """Validate provider configuration."""
        pass

    @abstractmethod
    async def send(self, message: EmailMessage) -> DeliveryResult:
        """
        Send an email message.

        Args:
            message: Email message to send

        Returns:
            DeliveryResult with success/failure information
        """
        pass

    async def health_check(self) -> bool:
        return True


class MockEmailProvider(EmailProvider):
    """Mock email provider for development and tests."""

    provider_type = EmailProviderType.MOCK

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config or {}
        self.sent_messages: List[EmailMessage] = []
        # Addresses that should fail, for exercising failure paths
        self.failing_addresses = {a.lower() for a in self.config.get("failing_addresses", [])}

    def _validate_config(self) -> None:
        pass

    async def send(self, message: EmailMessage) -> DeliveryResult:
        if any(a.email.lower() in self.failing_addresses for a in message.to):
            return DeliveryResult.failure_result(
                error_message="Mock delivery failure",
                provider=self.provider_type,
                error_code="mock_failure",
            )

        message_id = str(uuid.uuid4())
        self.sent_messages.append(message)

        logger.info(f"Mock email sent: {message.subject} to {[str(a) for a in message.to]}")

        return DeliveryResult.success_result(message_id, self.provider_type)
