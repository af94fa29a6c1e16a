"""Tenant membership and the subscription record completed by signature."""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import Boolean, DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from esign_compliance.models.base import Base, new_id, utcnow


class TenantRole(str, Enum):
    """Role of a user within a tenant."""
    OWNER = "OWNER"
    SUPER_ADMIN = "SUPER_ADMIN"
    ADMIN = "ADMIN"
    MEMBER = "MEMBER"


# Members who receive completion notifications and may export audit data
TENANT_ADMIN_ROLES = frozenset({
    TenantRole.OWNER,
    TenantRole.SUPER_ADMIN,
    TenantRole.ADMIN,
})


class TenantMember(Base):
    """A user belonging to a tenant."""

    __tablename__ = "tenant_member"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    role: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=TenantRole.MEMBER.value,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_tenant_member_tenant_user", "tenant_id", "user_id", unique=True),
    )

    def __repr__(self) -> str:
        return f"<TenantMember(tenant={self.tenant_id}, email={self.email}, role={self.role})>"


class SubscriptionStatus(str, Enum):
    """Lifecycle of an investor subscription as far as signing is concerned."""
    PENDING = "PENDING"
    SIGNED = "SIGNED"


class Subscription(Base):
    """Investor subscription whose paperwork is executed via a signature document."""

    __tablename__ = "subscription"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    tenant_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    investor_email: Mapped[str] = mapped_column(String(255), nullable=False)
    investor_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=SubscriptionStatus.PENDING.value,
    )
    signature_document_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        nullable=True,
        index=True,
    )
    signed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<Subscription(id={self.id}, status={self.status})>"
