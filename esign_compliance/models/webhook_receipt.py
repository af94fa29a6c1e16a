"""Receipts for processed provider webhook deliveries."""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from esign_compliance.models.base import Base, utcnow


class WebhookReceipt(Base):
    """
    One row per provider delivery id that changed state.

    Inserted in the same transaction as the state change, so a redelivery
    either sees the receipt or races into the primary key constraint.
    """

    __tablename__ = "webhook_receipt"

    event_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    document_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    received_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<WebhookReceipt(event_id={self.event_id}, type={self.event_type})>"
