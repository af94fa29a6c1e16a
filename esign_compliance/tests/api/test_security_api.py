"""Tests for rate limiting middleware and anomaly blocking over HTTP."""

from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy import select

from esign_compliance.middleware.rate_limiting import get_tier_for_path
from esign_compliance.models.audit_log import AuditLog
from esign_compliance.security.rate_limiter import RateLimitTier

pytestmark = pytest.mark.usefixtures("daytime_detector")


# =============================================================================
# Tier Mapping Tests
# =============================================================================

class TestTierMapping:
    """Test cases for path to tier mapping."""

    @pytest.mark.parametrize(
        "path,tier",
        [
            ("/api/sign/abc123", RateLimitTier.SIGNATURE),
            ("/api/sign", RateLimitTier.SIGNATURE),
            ("/api/auth/login", RateLimitTier.AUTH),
            ("/api/webhooks/esign", RateLimitTier.API),
            ("/api/admin/documents/d-1/void", RateLimitTier.API),
            ("/api/other", RateLimitTier.API),
        ],
    )
    def test_known_prefixes(self, path, tier):
        assert get_tier_for_path(path) == tier

    def test_prefix_must_end_at_segment(self):
        """Test that /api/signature is not mistaken for /api/sign."""
        assert get_tier_for_path("/api/signature") == RateLimitTier.API

    def test_non_api_paths_unlimited(self):
        assert get_tier_for_path("/metrics") is None


# =============================================================================
# Middleware Tests
# =============================================================================

class TestRateLimitMiddleware:
    """Test cases for the HTTP rate limit layer."""

    def test_health_is_excluded(self, client):
        """Test that health checks carry no quota headers."""
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert "X-RateLimit-Limit" not in response.headers

    def test_health_reports_redis_when_shared_backend(self, client, settings):
        """Test that health includes the Redis ping when the stores use Redis."""
        settings.rate_limit.backend = "redis"
        manager = MagicMock()
        manager.health_check.return_value = {"status": "unhealthy", "latency_ms": None, "error": "refused"}

        with patch(
            "esign_compliance.main.RedisClientManager.get_instance",
            return_value=manager,
        ):
            response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "degraded"
        assert response.json()["redis"]["error"] == "refused"

    def test_quota_headers_on_responses(self, client):
        """Test that limited paths report their quota, even on errors."""
        response = client.get("/api/sign/unknown-token")

        assert response.status_code == 404
        assert response.headers["X-RateLimit-Limit"] == "5"
        assert response.headers["X-RateLimit-Remaining"] == "4"
        assert int(response.headers["X-RateLimit-Reset"]) <= 900

    def test_sixth_signing_request_refused(self, client, db_session):
        """Test that the signature tier refuses the sixth request and audits it."""
        responses = [client.get("/api/sign/unknown-token") for _ in range(6)]

        assert [r.status_code for r in responses] == [404] * 5 + [429]
        refused = responses[-1]
        assert refused.json()["error"]["code"] == "rate_limit_exceeded"
        assert refused.json()["error"]["details"]["retryAfter"] > 0
        assert refused.headers["Retry-After"] == refused.headers["X-RateLimit-Reset"]
        assert refused.headers["X-RateLimit-Remaining"] == "0"

        entry = db_session.execute(
            select(AuditLog).where(AuditLog.event_type == "RATE_LIMIT_EXCEEDED")
        ).scalar_one()
        assert entry.resource_id == "/api/sign/unknown-token"
        assert entry.event_metadata["tier"] == "signature"

    def test_clients_counted_separately(self, client):
        """Test that each forwarded client IP has its own quota."""
        for _ in range(5):
            client.get("/api/sign/unknown-token", headers={"X-Forwarded-For": "198.51.100.1"})

        other = client.get("/api/sign/unknown-token", headers={"X-Forwarded-For": "198.51.100.2"})

        assert other.status_code == 404
        assert other.headers["X-RateLimit-Remaining"] == "4"


# =============================================================================
# Anomaly Blocking Tests
# =============================================================================

class TestAnomalyBlocking:
    """Test cases for anomaly checks on authenticated routes."""

    def test_many_addresses_block_admin(self, client, admin_headers, db_session):
        """Test that an admin seen from more than ten IPs is blocked with 403."""
        responses = [
            client.get(
                "/api/admin/documents/missing",
                headers={**admin_headers, "X-Forwarded-For": f"203.0.113.{i}"},
            )
            for i in range(11)
        ]

        assert [r.status_code for r in responses[:10]] == [404] * 10
        blocked = responses[10]
        assert blocked.status_code == 403
        assert blocked.json()["error"]["code"] == "anomaly_blocked"
        assert "MULTIPLE_IPS" in blocked.json()["error"]["details"]["alerts"]

        alerts = db_session.execute(
            select(AuditLog).where(AuditLog.event_type == "ANOMALY_MULTIPLE_IPS")
        ).scalars().all()
        assert len(alerts) == 6
        assert alerts[-1].event_metadata["severity"] == "CRITICAL"

    def test_signing_link_blocked_per_recipient(self, client, make_document):
        """Test that a signing link opened from too many places is blocked."""
        document = make_document()
        alice = document.recipients[0]
        url = f"/api/sign/{alice.signing_token}"

        statuses = [
            client.get(url, headers={"X-Forwarded-For": f"203.0.113.{i}"}).status_code
            for i in range(11)
        ]

        assert statuses == [200] * 10 + [403]
