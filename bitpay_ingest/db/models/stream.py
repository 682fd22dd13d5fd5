"""
Stream Models - sBTC payment streams as projected from bitpay-core events
"""
import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Column, Integer, BigInteger, String, DateTime, JSON, Enum as SQLEnum, UniqueConstraint,
)

from bitpay_ingest.db.database import Base


class StreamStatus(str, enum.Enum):
    ACTIVE = "active"
    CANCELLED = "cancelled"
    ROLLED_BACK = "rolled_back"  # creating block was retracted by a reorg


class Stream(Base):
    """Payment stream keyed by its on-chain stream id"""

    __tablename__ = "streams"

    stream_id = Column(BigInteger, primary_key=True, autoincrement=False)

    sender = Column(String(150), nullable=False, index=True)
    recipient = Column(String(150), nullable=False, index=True)
    amount = Column(BigInteger, nullable=False)  # micro-sBTC
    start_block = Column(BigInteger, nullable=False)
    end_block = Column(BigInteger, nullable=False)

    withdrawn_amount = Column(BigInteger, nullable=False, default=0)
    status = Column(SQLEnum(StreamStatus), nullable=False, default=StreamStatus.ACTIVE, index=True)

    # Previous senders, oldest first: [{"sender", "replaced_at_block", "tx_hash"}]
    sender_history = Column(JSON, nullable=False, default=list)

    cancelled_at_block = Column(BigInteger, nullable=True)
    unvested_returned = Column(BigInteger, nullable=True)
    vested_paid = Column(BigInteger, nullable=True)

    created_tx_hash = Column(String(100), nullable=True)
    created_at_block = Column(BigInteger, nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    @property
    def remaining_amount(self) -> int:
        """Amount not yet withdrawn by the recipient"""
        return (self.amount or 0) - (self.withdrawn_amount or 0)


class StreamWithdrawal(Base):
    """One recipient withdrawal, keyed by the event that reported it"""

    __tablename__ = "stream_withdrawals"

    id = Column(Integer, primary_key=True, index=True)
    stream_id = Column(BigInteger, nullable=False, index=True)
    recipient = Column(String(150), nullable=False)
    amount = Column(BigInteger, nullable=False)

    tx_hash = Column(String(100), nullable=False)
    event_index = Column(Integer, nullable=False)
    block_height = Column(BigInteger, nullable=False)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        UniqueConstraint("tx_hash", "event_index", name="uq_stream_withdrawal_event"),
    )
