"""
Webhook Event Model - idempotency table for payment gateway deliveries.

Each callback is recorded under its delivery id. Only deliveries with
status=completed block a retry; a failed delivery can be redelivered.
"""
from datetime import datetime, timezone

from sqlalchemy import Column, String, DateTime, Index

from bitpay_ingest.db.database import Base


class WebhookEvent(Base):
    """Idempotency record for one inbound webhook delivery"""

    __tablename__ = "webhook_events"

    delivery_id = Column(String(200), primary_key=True)
    source = Column(String(20), nullable=False)  # "stackspay"
    status = Column(String(20), nullable=False, default="processing")
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        Index("ix_webhook_events_status_created", "status", "created_at"),
    )
