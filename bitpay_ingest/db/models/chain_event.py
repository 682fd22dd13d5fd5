"""
Chain Event Journal - one row per decoded event that reached a projection.

The unique key (domain, tx_hash, event_index) is the "first application"
guard: handlers run only when the insert succeeds. Reorg reconciliation reads
the journal by block to find what to revert, and flips rows to rolled_back.
"""
import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Column, Integer, BigInteger, String, DateTime, JSON, Enum as SQLEnum,
    UniqueConstraint, Index,
)

from bitpay_ingest.db.database import Base


class JournalStatus(str, enum.Enum):
    APPLIED = "applied"
    ROLLED_BACK = "rolled_back"


class ChainEventRecord(Base):
    """Applied-event journal entry"""

    __tablename__ = "chain_events"

    id = Column(Integer, primary_key=True, index=True)

    domain = Column(String(30), nullable=False)
    tx_hash = Column(String(100), nullable=False)
    event_index = Column(Integer, nullable=False)
    event_tag = Column(String(80), nullable=False)

    block_height = Column(BigInteger, nullable=False)
    block_hash = Column(String(100), nullable=False)
    contract_identifier = Column(String(200), nullable=True)
    sender = Column(String(150), nullable=True)
    block_timestamp = Column(BigInteger, nullable=True)

    # Event as decoded, dumped by alias; re-decoded on rollback
    payload = Column(JSON, nullable=False)

    status = Column(SQLEnum(JournalStatus), nullable=False, default=JournalStatus.APPLIED)
    applied_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    rolled_back_at = Column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("domain", "tx_hash", "event_index", name="uq_chain_event_identity"),
        Index("ix_chain_events_domain_block", "domain", "block_hash"),
        Index("ix_chain_events_domain_height", "domain", "block_height"),
    )
