"""
Treasury Models - fee ledger, payouts, multi-sig withdrawal and admin proposals
"""
import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Column, Integer, BigInteger, String, DateTime, Enum as SQLEnum, UniqueConstraint, Index,
)

from bitpay_ingest.db.database import Base


class FeeType(str, enum.Enum):
    GENERAL = "general"
    CANCELLATION = "cancellation"
    MARKETPLACE = "marketplace"


class PayoutKind(str, enum.Enum):
    WITHDRAWAL = "withdrawal"
    DISTRIBUTION = "distribution"


class ProposalStatus(str, enum.Enum):
    PROPOSED = "proposed"
    APPROVING = "approving"
    READY = "ready"
    EXECUTED = "executed"
    EXPIRED = "expired"
    ROLLED_BACK = "rolled_back"


OPEN_PROPOSAL_STATUSES = (ProposalStatus.PROPOSED, ProposalStatus.APPROVING)


class AdminProposalType(str, enum.Enum):
    ADD_ADMIN = "add-admin"
    REMOVE_ADMIN = "remove-admin"


class TreasuryFee(Base):
    """Fee credited to the treasury (immutable ledger row)"""

    __tablename__ = "treasury_fees"

    id = Column(Integer, primary_key=True, index=True)
    fee_type = Column(SQLEnum(FeeType), nullable=False, index=True)
    amount = Column(BigInteger, nullable=False)
    caller = Column(String(150), nullable=False)
    new_balance = Column(BigInteger, nullable=False)

    tx_hash = Column(String(100), nullable=False)
    event_index = Column(Integer, nullable=False)
    block_height = Column(BigInteger, nullable=False)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        UniqueConstraint("tx_hash", "event_index", name="uq_treasury_fee_event"),
    )


class TreasuryPayout(Base):
    """Withdrawal or distribution out of the treasury (immutable ledger row)"""

    __tablename__ = "treasury_payouts"

    id = Column(Integer, primary_key=True, index=True)
    kind = Column(SQLEnum(PayoutKind), nullable=False)
    amount = Column(BigInteger, nullable=False)
    recipient = Column(String(150), nullable=False, index=True)
    admin = Column(String(150), nullable=False)
    new_balance = Column(BigInteger, nullable=False)

    tx_hash = Column(String(100), nullable=False)
    event_index = Column(Integer, nullable=False)
    block_height = Column(BigInteger, nullable=False)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        UniqueConstraint("tx_hash", "event_index", name="uq_treasury_payout_event"),
    )


class TreasuryConfigChange(Base):
    """Protocol fee change made by a treasury admin"""

    __tablename__ = "treasury_config_changes"

    id = Column(Integer, primary_key=True, index=True)
    old_fee_bps = Column(Integer, nullable=False)
    new_fee_bps = Column(Integer, nullable=False)
    admin = Column(String(150), nullable=False)

    tx_hash = Column(String(100), nullable=False)
    event_index = Column(Integer, nullable=False)
    block_height = Column(BigInteger, nullable=False)

    __table_args__ = (
        UniqueConstraint("tx_hash", "event_index", name="uq_treasury_config_event"),
    )


class WithdrawalProposal(Base):
    """Multi-sig withdrawal proposal, keyed by the contract's proposal id"""

    __tablename__ = "treasury_withdrawal_proposals"

    proposal_id = Column(BigInteger, primary_key=True, autoincrement=False)

    proposer = Column(String(150), nullable=False)
    recipient = Column(String(150), nullable=False)
    amount = Column(BigInteger, nullable=False)

    proposed_at_block = Column(BigInteger, nullable=False)
    timelock_expires = Column(BigInteger, nullable=True)
    expires_at_block = Column(BigInteger, nullable=True)

    approval_count = Column(Integer, nullable=False, default=0)
    required_approvals = Column(Integer, nullable=True)
    status = Column(SQLEnum(ProposalStatus), nullable=False, default=ProposalStatus.PROPOSED)

    executed_at_block = Column(BigInteger, nullable=True)
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        Index("ix_treasury_proposals_status_expiry", "status", "expires_at_block"),
    )


class ProposalApproval(Base):
    """One admin's approval of a withdrawal proposal"""

    __tablename__ = "treasury_proposal_approvals"

    id = Column(Integer, primary_key=True, index=True)
    proposal_id = Column(BigInteger, nullable=False, index=True)
    approver = Column(String(150), nullable=False)
    approval_count = Column(Integer, nullable=False)

    tx_hash = Column(String(100), nullable=False)
    block_height = Column(BigInteger, nullable=False)

    __table_args__ = (
        UniqueConstraint("proposal_id", "approver", name="uq_proposal_approver"),
    )


class AdminProposal(Base):
    """Multi-sig proposal to add or remove a treasury admin"""

    __tablename__ = "treasury_admin_proposals"

    proposal_id = Column(BigInteger, primary_key=True, autoincrement=False)

    proposal_type = Column(SQLEnum(AdminProposalType), nullable=False)
    proposer = Column(String(150), nullable=False)
    target = Column(String(150), nullable=False)
    proposed_at_block = Column(BigInteger, nullable=False)

    approval_count = Column(Integer, nullable=False, default=0)
    status = Column(SQLEnum(ProposalStatus), nullable=False, default=ProposalStatus.PROPOSED)
    executed_at_block = Column(BigInteger, nullable=True)
