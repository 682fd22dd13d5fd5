"""
Obligation NFT Model - ownership of the transferable claim on a stream's payouts
"""
import enum
from datetime import datetime, timezone

from sqlalchemy import Column, BigInteger, String, DateTime, JSON, Enum as SQLEnum

from bitpay_ingest.db.database import Base


class NFTStatus(str, enum.Enum):
    ACTIVE = "active"
    ROLLED_BACK = "rolled_back"


class ObligationNFT(Base):
    """Obligation NFT keyed by token id (token id equals the stream id it was minted for)"""

    __tablename__ = "obligation_nfts"

    token_id = Column(BigInteger, primary_key=True, autoincrement=False)

    stream_id = Column(BigInteger, nullable=True, index=True)
    owner = Column(String(150), nullable=False, index=True)
    original_recipient = Column(String(150), nullable=True)
    status = Column(SQLEnum(NFTStatus), nullable=False, default=NFTStatus.ACTIVE)

    # [{"from", "to", "block_height", "tx_hash"}], oldest first
    transfer_history = Column(JSON, nullable=False, default=list)

    minted_at_block = Column(BigInteger, nullable=True)
    minted_tx_hash = Column(String(100), nullable=True)
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    @property
    def listing_key(self) -> int:
        """Stream id the marketplace lists this token under"""
        return self.stream_id if self.stream_id is not None else self.token_id
