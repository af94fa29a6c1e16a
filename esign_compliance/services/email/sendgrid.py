"""SendGrid email provider implementation."""

import logging
from typing import Any, Dict, Optional

import httpx

from esign_compliance.services.email.base import (
    DeliveryResult,
    EmailMessage,
    EmailProvider,
    EmailProviderType,
)

logger = logging.getLogger(__name__)


class SendGridProvider(EmailProvider):
    """
    SendGrid v3 mail send API over httpx.

    Config options:
    - api_key: SendGrid API key (required)
    - default_from_email / default_from_name: sender used when a message has none
    - sandbox_mode: validate requests without delivering
    - transport: optional httpx transport, used by tests
    """

    provider_type = EmailProviderType.SENDGRID
    API_BASE_URL = "https://api.sendgrid.com/v3"

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config or {}
        self._validate_config()

    def _validate_config(self) -> None:
        """Validate SendGrid configuration."""
        self.api_key = self.config.get("api_key")
        if not self.api_key:
            raise ValueError("SendGrid API key is required")

        self.default_from_email = self.config.get("default_from_email")
        self.default_from_name = self.config.get("default_from_name", "")
        self.sandbox_mode = self.config.get("sandbox_mode", False)
        self.timeout = self.config.get("timeout", 30.0)
        self.transport = self.config.get("transport")

    async def send(self, message: EmailMessage) -> DeliveryResult:
        """Send an email via SendGrid."""
        try:
            async with httpx.AsyncClient(transport=self.transport) as client:
                response = await client.post(
                    f"{self.API_BASE_URL}/mail/send",
                    headers=self._get_headers(),
                    json=self._build_payload(message),
                    timeout=self.timeout,
                )
        except httpx.HTTPError as e:
            logger.error(f"SendGrid request failed: {e}")
            return DeliveryResult.failure_result(
                error_message=str(e),
                provider=self.provider_type,
                error_code="transport_error",
            )

        if response.status_code in (200, 201, 202):
            # SendGrid returns message ID in X-Message-Id header
            message_id = response.headers.get("x-message-id", "")
            return DeliveryResult.success_result(message_id, self.provider_type)

        try:
            errors = response.json().get("errors", [])
        except ValueError:
            errors = []
        error_msg = errors[0].get("message") if errors else f"HTTP {response.status_code}"
        return DeliveryResult.failure_result(
            error_message=error_msg,
            provider=self.provider_type,
            error_code=str(response.status_code),
        )

    async def health_check(self) -> bool:
        """Check SendGrid API availability."""
        try:
            async with httpx.AsyncClient(transport=self.transport) as client:
                response = await client.get(
                    f"{self.API_BASE_URL}/scopes",
                    headers=self._get_headers(),
                    timeout=10.0,
                )
            return response.status_code == 200
        except httpx.HTTPError:
            return False

    def _get_headers(self) -> Dict[str, str]:
        """Get API headers."""
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _build_payload(self, message: EmailMessage) -> Dict[str, Any]:
        """Build SendGrid API payload."""
        if message.from_address:
            sender = {"email": message.from_address.email, "name": message.from_address.name or ""}
        else:
            sender = {"email": self.default_from_email, "name": self.default_from_name or ""}

        personalization: Dict[str, Any] = {
            "to": [{"email": addr.email, "name": addr.name} for addr in message.to],
        }
        if message.tracking_id:
            personalization["custom_args"] = {"tracking_id": message.tracking_id}

        content = []
        if message.text_content:
            content.append({"type": "text/plain", "value": message.text_content})
        if message.html_content:
            content.append({"type": "text/html", "value": message.html_content})

        payload: Dict[str, Any] = {
            "personalizations": [personalization],
            "from": sender,
            "subject": message.subject,
            "content": content,
        }

        if message.tags:
            payload["categories"] = message.tags[:10]  # SendGrid limit

        if self.sandbox_mode:
            payload["mail_settings"] = {"sandbox_mode": {"enable": True}}

        return payload
