"""Shared fixtures: in-memory database, fresh singletons and test clients."""

import hashlib
import hmac
import json
import os
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["APP_ENV"] = "test"
os.environ["ESIGN_WEBHOOK_SECRET"] = "test-webhook-secret"
os.environ["EMAIL_PROVIDER"] = "mock"
os.environ["RATE_LIMIT_BACKEND"] = "memory"
os.environ["APP_BASE_URL"] = "https://sign.fundco.com"

import pytest
from fastapi.testclient import TestClient

from esign_compliance.config.settings import get_settings, reset_settings
from esign_compliance.database.database import dispose_engine, get_session_factory, init_db
from esign_compliance.main import create_app
from esign_compliance.models.tenant import TenantMember, TenantRole
from esign_compliance.schemas.signature_document import (
    CreateDocumentRequest,
    FieldCreate,
    RecipientCreate,
)
from esign_compliance.security.anomaly_detection import AnomalyDetector, set_anomaly_detector
from esign_compliance.security.rate_limiter import set_rate_limiter
from esign_compliance.security.stores import InMemoryAccessPatternStore
from esign_compliance.services.email import MockEmailProvider
from esign_compliance.services.notifications import set_email_provider
from esign_compliance.services.signature_document_service import SignatureDocumentService

WEBHOOK_SECRET = "test-webhook-secret"


@pytest.fixture(autouse=True)
def fresh_state():
    """Every test gets its own empty database and security singletons."""
    reset_settings()
    dispose_engine()
    init_db()
    set_rate_limiter(None)
    set_anomaly_detector(None)
    set_email_provider(None)
    yield
    set_email_provider(None)
    set_anomaly_detector(None)
    set_rate_limiter(None)
    dispose_engine()
    reset_settings()


@pytest.fixture
def db_session():
    """Session on the test database."""
    session = get_session_factory()()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def email_provider():
    """Mock provider installed as the process-wide email provider."""
    provider = MockEmailProvider()
    set_email_provider(provider)
    return provider


@pytest.fixture
def client(email_provider):
    """Create test client."""
    return TestClient(create_app())


@pytest.fixture
def tenant_id() -> str:
    return str(uuid.uuid4())


@pytest.fixture
def admin_headers(tenant_id) -> Dict[str, str]:
    """Headers for a tenant administrator."""
    return {
        "X-User-ID": str(uuid.uuid4()),
        "X-Tenant-ID": tenant_id,
        "X-User-Role": "ADMIN",
        "X-User-Email": "ops@fundco.com",
    }


@pytest.fixture
def tenant_admin(db_session, tenant_id) -> TenantMember:
    """An active administrator who is told about completions."""
    member = TenantMember(
        tenant_id=tenant_id,
        user_id=str(uuid.uuid4()),
        email="Compliance@FundCo.com",
        name="Compliance Desk",
        role=TenantRole.ADMIN.value,
        is_active=True,
    )
    db_session.add(member)
    db_session.commit()
    return member


@pytest.fixture
def make_document(db_session, tenant_id) -> Callable[..., Any]:
    """
    Factory for documents.

    Each recipient gets one required signature field. Documents are sent
    unless `send=False`.
    """

    def factory(
        recipients: Optional[List[Dict[str, Any]]] = None,
        sequential: bool = True,
        expiration_date: Optional[datetime] = None,
        linked_record_id: Optional[str] = None,
        send: bool = True,
        title: str = "Fund IV Subscription Agreement",
    ):
        recipients = recipients or [
            {"email": "alice@investors.fundco.com", "name": "Alice Investor", "signing_order": 1},
            {"email": "bob@fundco.com", "name": "Bob GP", "signing_order": 2},
        ]
        request = CreateDocumentRequest(
            title=title,
            sequential_signing=sequential,
            expiration_date=expiration_date,
            linked_record_id=linked_record_id,
            recipients=[RecipientCreate(**r) for r in recipients],
            fields=[
                FieldCreate(recipient_index=i, label=f"Signature {i + 1}")
                for i, r in enumerate(recipients)
                if r.get("role", "SIGNER") in ("SIGNER", "APPROVER")
            ],
        )
        service = SignatureDocumentService(db_session)
        document = service.create_document(tenant_id, request, actor="admin-user")
        if send:
            service.send_document(document.id, tenant_id, actor="admin-user")
        db_session.commit()
        return document

    return factory


@pytest.fixture
def field_values_for() -> Callable[..., Dict[str, str]]:
    """Builds values for every field assigned to a recipient."""

    def build(document, recipient) -> Dict[str, str]:
        return {
            f.id: f"/s/ {recipient.name}"
            for f in document.fields
            if f.recipient_id == recipient.id
        }

    return build


@pytest.fixture
def sign_payload() -> Callable[..., Dict[str, Any]]:
    """Serializes a webhook payload and computes its signature header."""

    def build(payload: Dict[str, Any], secret: str = WEBHOOK_SECRET) -> Dict[str, Any]:
        body = json.dumps(payload).encode()
        signature = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
        return {"body": body, "signature": signature}

    return build


@pytest.fixture
def daytime_detector():
    """Anomaly detector pinned to midday UTC so the hour rule stays quiet."""
    midday = datetime(2025, 7, 15, 12, 0, tzinfo=timezone.utc)
    detector = AnomalyDetector(
        InMemoryAccessPatternStore(),
        get_settings().anomaly,
        clock=lambda: midday,
    )
    set_anomaly_detector(detector)
    return detector
