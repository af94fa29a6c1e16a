"""HMAC signature generation and verification for provider webhooks."""

import hashlib
import hmac
from typing import Optional, Union


class WebhookSignature:
    """
    HMAC-SHA256 over the raw request body.

    Header format: lowercase hex digest, optionally prefixed with `sha256=`.
    """

    PREFIX = "sha256="

    def __init__(self, secret: str):
        self.secret = secret

    def generate(self, payload: Union[bytes, str]) -> str:
        """Generate the hex signature for a payload."""
        if isinstance(payload, str):
            payload = payload.encode("utf-8")

        return hmac.new(
            self.secret.encode("utf-8"),
            payload,
            hashlib.sha256,
        ).hexdigest()

    def verify(self, payload: bytes, signature_header: Optional[str]) -> bool:
        """
        Verify webhook signature.

        Returns False for a missing or malformed header as well as a wrong
        digest; the comparison is constant-time.
        """
        if not signature_header:
            return False

        received = signature_header.strip()
        if received.lower().startswith(self.PREFIX):
            received = received[len(self.PREFIX):]

        expected = self.generate(payload)
        return hmac.compare_digest(
            expected.encode("ascii"),
            received.lower().encode("utf-8"),
        )
