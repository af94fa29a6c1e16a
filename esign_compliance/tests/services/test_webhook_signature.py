"""Tests for webhook HMAC signatures."""

import hashlib
import hmac

import pytest

from esign_compliance.services.webhook_signature import WebhookSignature

SECRET = "whsec_test"
BODY = b'{"event":"document_completed","documentId":"doc-1"}'


class TestWebhookSignature:
    """Test cases for signature generation and verification."""

    def test_generate_matches_hmac_sha256(self):
        """Test that the signature is the hex HMAC-SHA256 of the body."""
        expected = hmac.new(SECRET.encode(), BODY, hashlib.sha256).hexdigest()
        assert WebhookSignature(SECRET).generate(BODY) == expected

    def test_generate_accepts_str(self):
        """Test that str payloads are encoded as UTF-8."""
        signer = WebhookSignature(SECRET)
        assert signer.generate(BODY.decode()) == signer.generate(BODY)

    def test_verify_accepts_valid_signature(self):
        """Test that the correct signature verifies."""
        signer = WebhookSignature(SECRET)
        assert signer.verify(BODY, signer.generate(BODY))

    @pytest.mark.parametrize("prefix", ["sha256=", "SHA256="])
    def test_verify_accepts_prefix(self, prefix):
        """Test that a sha256= prefix is tolerated."""
        signer = WebhookSignature(SECRET)
        assert signer.verify(BODY, prefix + signer.generate(BODY))

    def test_verify_accepts_uppercase_hex(self):
        """Test that hex case does not matter."""
        signer = WebhookSignature(SECRET)
        assert signer.verify(BODY, signer.generate(BODY).upper())

    @pytest.mark.parametrize("header", [None, "", "   ", "sha256=", "not-hex-at-all"])
    def test_verify_rejects_missing_or_malformed(self, header):
        """Test that missing and malformed headers fail."""
        assert not WebhookSignature(SECRET).verify(BODY, header)

    def test_verify_rejects_modified_body(self):
        """Test that a single changed byte fails verification."""
        signer = WebhookSignature(SECRET)
        signature = signer.generate(BODY)
        assert not signer.verify(BODY.replace(b"doc-1", b"doc-2"), signature)

    def test_verify_rejects_other_secret(self):
        """Test that a signature made with another secret fails."""
        signature = WebhookSignature("other").generate(BODY)
        assert not WebhookSignature(SECRET).verify(BODY, signature)

    def test_verify_rejects_non_ascii_header(self):
        """Test that non-ASCII header values are rejected rather than raising."""
        assert not WebhookSignature(SECRET).verify(BODY, "é" * 64)
