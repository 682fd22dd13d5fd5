"""
Payment Confirmation Model - StacksPay payment lifecycle for gateway purchases
"""
import enum
from datetime import datetime, timezone

from sqlalchemy import Column, BigInteger, String, DateTime, Enum as SQLEnum

from bitpay_ingest.db.database import Base


class PaymentStatus(str, enum.Enum):
    CREATED = "created"
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class SettlementStatus(str, enum.Enum):
    NOT_STARTED = "not_started"
    PENDING = "pending"  # complete-purchase submitted through the relay
    FAILED = "blockchain_failed"


class PaymentConfirmation(Base):
    """Off-chain payment for a marketplace purchase, keyed by the StacksPay payment id"""

    __tablename__ = "payment_confirmations"

    stackspay_id = Column(String(100), primary_key=True)

    payment_id = Column(String(100), nullable=True, index=True)  # marketplace payment id
    stream_id = Column(BigInteger, nullable=True, index=True)
    buyer = Column(String(150), nullable=True)
    seller = Column(String(150), nullable=True)
    amount = Column(BigInteger, nullable=True)
    currency = Column(String(10), nullable=True)

    status = Column(SQLEnum(PaymentStatus), nullable=False, default=PaymentStatus.CREATED)
    transaction_id = Column(String(100), nullable=True)  # gateway-side chain tx
    completed_at = Column(DateTime, nullable=True)

    settlement_status = Column(SQLEnum(SettlementStatus), nullable=False, default=SettlementStatus.NOT_STARTED)
    settlement_tx_id = Column(String(100), nullable=True)
    error = Column(String(1000), nullable=True)

    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
