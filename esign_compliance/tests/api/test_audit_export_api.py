"""Tests for the audit export endpoint."""

import csv
import io
import json

import pytest

pytestmark = pytest.mark.usefixtures("daytime_detector")

EXPORT_URL = "/api/admin/audit/export"


class TestAuditExport:
    """Test cases for exporting the audit stream."""

    def test_json_export(self, client, admin_headers, make_document):
        """Test that JSON export lists the tenant's entries chronologically."""
        document = make_document()

        response = client.get(EXPORT_URL, headers=admin_headers)

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 2
        assert body["truncated"] is False
        assert [e["event_type"] for e in body["entries"]] == ["DOCUMENT_CREATED", "DOCUMENT_SENT"]
        assert all(e["resource_id"] == document.id for e in body["entries"])
        assert response.headers["X-Audit-Total"] == "2"
        assert response.headers["X-Audit-Truncated"] == "false"

    def test_csv_export(self, client, admin_headers, make_document):
        """Test that CSV export has the fixed header and JSON-encoded metadata."""
        make_document()

        response = client.get(EXPORT_URL, params={"format": "csv"}, headers=admin_headers)

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert "audit-export.csv" in response.headers["Content-Disposition"]
        rows = list(csv.DictReader(io.StringIO(response.text)))
        assert list(rows[0].keys())[:3] == ["timestamp", "event_type", "resource_type"]
        assert rows[1]["event_type"] == "DOCUMENT_SENT"
        assert isinstance(json.loads(rows[1]["metadata"]), dict)

    def test_truncation_reported(self, client, admin_headers, make_document):
        """Test that a limited export reports the full count."""
        make_document()

        response = client.get(EXPORT_URL, params={"limit": 1}, headers=admin_headers)

        assert len(response.json()["entries"]) == 1
        assert response.headers["X-Audit-Total"] == "2"
        assert response.headers["X-Audit-Truncated"] == "true"

    def test_event_type_filter(self, client, admin_headers, make_document):
        """Test filtering by event type."""
        make_document()

        response = client.get(
            EXPORT_URL,
            params={"event_type": "DOCUMENT_SENT"},
            headers=admin_headers,
        )

        assert [e["event_type"] for e in response.json()["entries"]] == ["DOCUMENT_SENT"]

    def test_timezone_aware_range_filters(self, client, admin_headers, make_document):
        """Test that offset start/end filters are compared in UTC."""
        make_document()

        inside = client.get(
            EXPORT_URL,
            params={"start": "2000-01-01T00:00:00Z", "end": "2100-01-01T00:00:00+05:00"},
            headers=admin_headers,
        )
        after = client.get(
            EXPORT_URL,
            params={"start": "2100-01-01T00:00:00Z"},
            headers=admin_headers,
        )

        assert inside.status_code == 200
        assert inside.json()["total"] == 2
        assert after.json()["total"] == 0

    def test_other_tenants_excluded(self, client, admin_headers, make_document):
        """Test that another tenant's entries are not exported."""
        make_document()
        headers = {**admin_headers, "X-Tenant-ID": "another-tenant"}

        response = client.get(EXPORT_URL, headers=headers)

        assert response.json()["total"] == 0

    def test_export_is_itself_audited(self, client, admin_headers, make_document):
        """Test that each export leaves an AUDIT_EXPORTED entry."""
        make_document()
        client.get(EXPORT_URL, params={"format": "csv"}, headers=admin_headers)

        response = client.get(
            EXPORT_URL,
            params={"event_type": "AUDIT_EXPORTED"},
            headers=admin_headers,
        )

        entries = response.json()["entries"]
        assert len(entries) == 1
        assert entries[0]["actor"] == admin_headers["X-User-ID"]
        assert entries[0]["metadata"]["format"] == "csv"

    def test_members_refused(self, client, admin_headers):
        """Test that non-admin members cannot export."""
        headers = {**admin_headers, "X-User-Role": "MEMBER"}

        response = client.get(EXPORT_URL, headers=headers)

        assert response.status_code == 403
