"""
Marketplace Models - obligation NFT listings, pending gateway purchases and sales
"""
import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Column, BigInteger, Boolean, String, DateTime, JSON, Enum as SQLEnum,
)

from bitpay_ingest.db.database import Base


class ListingStatus(str, enum.Enum):
    ACTIVE = "active"
    PENDING_PAYMENT = "pending_payment"
    SOLD = "sold"
    CANCELLED = "cancelled"
    ROLLED_BACK = "rolled_back"


class PurchaseStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    EXPIRED = "expired"
    FAILED = "failed"
    CANCELLED = "cancelled"
    ROLLED_BACK = "rolled_back"


class SaleType(str, enum.Enum):
    DIRECT = "direct"
    GATEWAY = "gateway"


class MarketplaceListing(Base):
    """Listing of a stream's obligation NFT, one per stream id"""

    __tablename__ = "marketplace_listings"

    stream_id = Column(BigInteger, primary_key=True, autoincrement=False)

    seller = Column(String(150), nullable=False, index=True)
    price = Column(BigInteger, nullable=False)
    status = Column(SQLEnum(ListingStatus), nullable=False, default=ListingStatus.ACTIVE, index=True)
    buyer = Column(String(150), nullable=True)

    # [{"price", "block_height", "tx_hash"}], oldest first
    price_history = Column(JSON, nullable=False, default=list)

    listed_at_block = Column(BigInteger, nullable=True)
    listed_tx_hash = Column(String(100), nullable=True)
    sold_at_block = Column(BigInteger, nullable=True)
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )


class PendingPurchase(Base):
    """Gateway purchase between market-purchase-initiated and completion/expiry"""

    __tablename__ = "pending_purchases"

    payment_id = Column(String(100), primary_key=True)

    stream_id = Column(BigInteger, nullable=False, index=True)
    seller = Column(String(150), nullable=False)
    buyer = Column(String(150), nullable=False, index=True)
    price = Column(BigInteger, nullable=True)
    status = Column(SQLEnum(PurchaseStatus), nullable=False, default=PurchaseStatus.PENDING, index=True)

    initiated_at_block = Column(BigInteger, nullable=True)
    expires_at_block = Column(BigInteger, nullable=True)

    payment_url = Column(String(500), nullable=True)
    gateway_payment_id = Column(String(100), nullable=True, index=True)

    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )


class MarketplaceSale(Base):
    """Completed sale, keyed by the contract's sale id"""

    __tablename__ = "marketplace_sales"

    sale_id = Column(BigInteger, primary_key=True, autoincrement=False)

    stream_id = Column(BigInteger, nullable=False, index=True)
    seller = Column(String(150), nullable=False)
    buyer = Column(String(150), nullable=False)
    price = Column(BigInteger, nullable=False)
    marketplace_fee = Column(BigInteger, nullable=False, default=0)
    sale_type = Column(SQLEnum(SaleType), nullable=False)
    payment_id = Column(String(100), nullable=True)

    tx_hash = Column(String(100), nullable=False)
    block_height = Column(BigInteger, nullable=False)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))

    @property
    def seller_proceeds(self) -> int:
        return self.price - (self.marketplace_fee or 0)


class AuthorizedBackend(Base):
    """Backend principals allowed to complete gateway purchases"""

    __tablename__ = "marketplace_backends"

    backend = Column(String(150), primary_key=True)
    is_authorized = Column(Boolean, nullable=False, default=True)
    changed_by = Column(String(150), nullable=True)
    changed_at_block = Column(BigInteger, nullable=True)
