"""
Notification Model - durable per-user feed written by the fan-out notifier
"""
import enum
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, DateTime, JSON, Boolean, Enum as SQLEnum, Index

from bitpay_ingest.db.database import Base


class NotificationPriority(str, enum.Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class NotificationStatus(str, enum.Enum):
    UNREAD = "unread"
    READ = "read"
    ARCHIVED = "archived"


class Notification(Base):
    """One notification in a user's feed (user = Stacks principal)"""

    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)

    user_id = Column(String(150), nullable=False)
    type = Column(String(50), nullable=False)  # e.g. "stream_received", "withdrawal_approved"
    priority = Column(SQLEnum(NotificationPriority), nullable=False, default=NotificationPriority.NORMAL)
    status = Column(SQLEnum(NotificationStatus), nullable=False, default=NotificationStatus.UNREAD)

    title = Column(String(200), nullable=False)
    message = Column(String(1000), nullable=False)
    data = Column(JSON, nullable=False, default=dict)

    action_url = Column(String(500), nullable=True)
    action_text = Column(String(100), nullable=True)
    email_sent = Column(Boolean, nullable=False, default=False)

    source_tx_hash = Column(String(100), nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        Index("ix_notifications_user_status", "user_id", "status"),
    )
