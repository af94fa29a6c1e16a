"""Create signature document, audit log, webhook receipt and tenant tables.

Revision ID: 001
Create Date: 2025-01-15 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create signature lifecycle and compliance tables."""

    # =========================================================================
    # Create signature_document table
    # =========================================================================
    op.create_table(
        "signature_document",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("tenant_id", sa.String(36), nullable=False),
        sa.Column(
            "linked_record_id",
            sa.String(36),
            nullable=True,
            comment="Business record completed by this document, e.g. a subscription",
        ),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("document_type", sa.String(30), nullable=False, server_default="GENERIC"),
        sa.Column("status", sa.String(30), nullable=False, server_default="DRAFT"),
        sa.Column(
            "sequential_signing",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("true"),
            comment="Whether recipients must sign in signing_order",
        ),
        sa.Column("created_by", sa.String(36), nullable=True),
        sa.Column("expiration_date", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.Column("sent_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("declined_at", sa.DateTime(), nullable=True),
        sa.Column("voided_at", sa.DateTime(), nullable=True),
        sa.Column("void_reason", sa.Text(), nullable=True),
        sa.Column("voided_by", sa.String(36), nullable=True),
    )
    op.create_index("ix_signature_document_tenant_id", "signature_document", ["tenant_id"])
    op.create_index("ix_signature_document_linked_record_id", "signature_document", ["linked_record_id"])
    op.create_index("ix_signature_document_status", "signature_document", ["status"])
    op.create_index(
        "idx_signature_document_tenant_status",
        "signature_document",
        ["tenant_id", "status"],
    )

    # =========================================================================
    # Create signature_recipient table
    # =========================================================================
    op.create_table(
        "signature_recipient",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "document_id",
            sa.String(36),
            sa.ForeignKey("signature_document.id"),
            nullable=False,
        ),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("role", sa.String(20), nullable=False, server_default="SIGNER"),
        sa.Column(
            "signing_order",
            sa.Integer(),
            nullable=False,
            server_default="1",
            comment="Position in the signing sequence (1-based)",
        ),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("signing_token", sa.String(255), nullable=True, unique=True),
        sa.Column("token_expires_at", sa.DateTime(), nullable=True),
        sa.Column("viewed_at", sa.DateTime(), nullable=True),
        sa.Column("signed_at", sa.DateTime(), nullable=True),
        sa.Column("declined_at", sa.DateTime(), nullable=True),
        sa.Column("declined_reason", sa.Text(), nullable=True),
        sa.Column(
            "signature_image",
            sa.Text(),
            nullable=True,
            comment="Data URL of the drawn or typed signature",
        ),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.String(500), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_signature_recipient_document_id", "signature_recipient", ["document_id"])
    op.create_index("ix_signature_recipient_status", "signature_recipient", ["status"])
    op.create_index(
        "idx_signature_recipient_document_order",
        "signature_recipient",
        ["document_id", "signing_order"],
    )

    # =========================================================================
    # Create signature_field table
    # =========================================================================
    op.create_table(
        "signature_field",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "document_id",
            sa.String(36),
            sa.ForeignKey("signature_document.id"),
            nullable=False,
        ),
        sa.Column(
            "recipient_id",
            sa.String(36),
            sa.ForeignKey("signature_recipient.id"),
            nullable=False,
        ),
        sa.Column("field_type", sa.String(20), nullable=False, server_default="SIGNATURE"),
        sa.Column("label", sa.String(100), nullable=True),
        sa.Column("page_number", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("x", sa.Float(), nullable=False, server_default="0"),
        sa.Column("y", sa.Float(), nullable=False, server_default="0"),
        sa.Column("width", sa.Float(), nullable=False, server_default="200"),
        sa.Column("height", sa.Float(), nullable=False, server_default="50"),
        sa.Column("required", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("value", sa.Text(), nullable=True),
        sa.Column("filled_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_signature_field_document_id", "signature_field", ["document_id"])
    op.create_index("ix_signature_field_recipient_id", "signature_field", ["recipient_id"])

    # =========================================================================
    # Create audit_log table
    # =========================================================================
    op.create_table(
        "audit_log",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("sequence", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("event_type", sa.String(64), nullable=False),
        sa.Column("tenant_id", sa.String(36), nullable=True),
        sa.Column("resource_type", sa.String(64), nullable=True),
        sa.Column("resource_id", sa.String(255), nullable=True),
        sa.Column("actor", sa.String(255), nullable=True),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("geo_country", sa.String(8), nullable=True),
        sa.Column("geo_region", sa.String(64), nullable=True),
        sa.Column("geo_city", sa.String(128), nullable=True),
        sa.Column("metadata", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("retain_until", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_audit_log_event_type", "audit_log", ["event_type"])
    op.create_index("ix_audit_log_tenant_id", "audit_log", ["tenant_id"])
    op.create_index("ix_audit_log_created_at", "audit_log", ["created_at"])
    op.create_index(
        "idx_audit_log_resource",
        "audit_log",
        ["resource_type", "resource_id", "created_at"],
    )
    op.create_index("idx_audit_log_tenant_created", "audit_log", ["tenant_id", "created_at"])

    # Rows are immutable at the database level too
    op.execute(
        """
        CREATE OR REPLACE FUNCTION audit_log_refuse_change() RETURNS trigger AS $$
        BEGIN
            RAISE EXCEPTION 'audit_log is append-only';
        END;
        $$ LANGUAGE plpgsql;
        """
    )
    op.execute(
        """
        CREATE TRIGGER audit_log_append_only
        BEFORE UPDATE OR DELETE ON audit_log
        FOR EACH ROW EXECUTE FUNCTION audit_log_refuse_change();
        """
    )

    # =========================================================================
    # Create webhook_receipt table
    # =========================================================================
    op.create_table(
        "webhook_receipt",
        sa.Column("event_id", sa.String(255), primary_key=True),
        sa.Column("event_type", sa.String(64), nullable=False),
        sa.Column("document_id", sa.String(36), nullable=True),
        sa.Column("received_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_webhook_receipt_document_id", "webhook_receipt", ["document_id"])

    # =========================================================================
    # Create tenant_member and subscription tables
    # =========================================================================
    op.create_table(
        "tenant_member",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("tenant_id", sa.String(36), nullable=False),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("role", sa.String(20), nullable=False, server_default="MEMBER"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_tenant_member_tenant_id", "tenant_member", ["tenant_id"])
    op.create_index(
        "idx_tenant_member_tenant_user",
        "tenant_member",
        ["tenant_id", "user_id"],
        unique=True,
    )

    op.create_table(
        "subscription",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("tenant_id", sa.String(36), nullable=False),
        sa.Column("investor_email", sa.String(255), nullable=False),
        sa.Column("investor_name", sa.String(255), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("signature_document_id", sa.String(36), nullable=True),
        sa.Column("signed_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_subscription_tenant_id", "subscription", ["tenant_id"])
    op.create_index("ix_subscription_signature_document_id", "subscription", ["signature_document_id"])


def downgrade() -> None:
    """Drop signature lifecycle and compliance tables."""

    op.drop_index("ix_subscription_signature_document_id", table_name="subscription")
    op.drop_index("ix_subscription_tenant_id", table_name="subscription")
    op.drop_table("subscription")

    op.drop_index("idx_tenant_member_tenant_user", table_name="tenant_member")
    op.drop_index("ix_tenant_member_tenant_id", table_name="tenant_member")
    op.drop_table("tenant_member")

    op.drop_index("ix_webhook_receipt_document_id", table_name="webhook_receipt")
    op.drop_table("webhook_receipt")

    op.execute("DROP TRIGGER IF EXISTS audit_log_append_only ON audit_log")
    op.execute("DROP FUNCTION IF EXISTS audit_log_refuse_change()")
    op.drop_index("idx_audit_log_tenant_created", table_name="audit_log")
    op.drop_index("idx_audit_log_resource", table_name="audit_log")
    op.drop_index("ix_audit_log_created_at", table_name="audit_log")
    op.drop_index("ix_audit_log_tenant_id", table_name="audit_log")
    op.drop_index("ix_audit_log_event_type", table_name="audit_log")
    op.drop_table("audit_log")

    op.drop_index("ix_signature_field_recipient_id", table_name="signature_field")
    op.drop_index("ix_signature_field_document_id", table_name="signature_field")
    op.drop_table("signature_field")

    op.drop_index("idx_signature_recipient_document_order", table_name="signature_recipient")
    op.drop_index("ix_signature_recipient_status", table_name="signature_recipient")
    op.drop_index("ix_signature_recipient_document_id", table_name="signature_recipient")
    op.drop_table("signature_recipient")

    op.drop_index("idx_signature_document_tenant_status", table_name="signature_document")
    op.drop_index("ix_signature_document_status", table_name="signature_document")
    op.drop_index("ix_signature_document_linked_record_id", table_name="signature_document")
    op.drop_index("ix_signature_document_tenant_id", table_name="signature_document")
    op.drop_table("signature_document")
