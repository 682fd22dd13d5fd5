"""
Database Models
"""
from bitpay_ingest.db.models.chain_event import ChainEventRecord, JournalStatus
from bitpay_ingest.db.models.stream import Stream, StreamWithdrawal, StreamStatus
from bitpay_ingest.db.models.marketplace import (
    MarketplaceListing,
    PendingPurchase,
    MarketplaceSale,
    AuthorizedBackend,
    ListingStatus,
    PurchaseStatus,
    SaleType,
)
from bitpay_ingest.db.models.nft import ObligationNFT, NFTStatus
from bitpay_ingest.db.models.treasury import (
    TreasuryFee,
    TreasuryPayout,
    TreasuryConfigChange,
    WithdrawalProposal,
    ProposalApproval,
    AdminProposal,
    FeeType,
    PayoutKind,
    ProposalStatus,
    AdminProposalType,
)
from bitpay_ingest.db.models.access_control import (
    RoleAssignment,
    AuthorizedContract,
    AccessControlEvent,
    AdminHistory,
    SystemStatus,
    Role,
    ContractStatus,
    AdminScope,
)
from bitpay_ingest.db.models.notification import Notification, NotificationPriority, NotificationStatus
from bitpay_ingest.db.models.payment import PaymentConfirmation, PaymentStatus, SettlementStatus
from bitpay_ingest.db.models.webhook_event import WebhookEvent

__all__ = [
    "ChainEventRecord",
    "JournalStatus",
    "Stream",
    "StreamWithdrawal",
    "StreamStatus",
    "MarketplaceListing",
    "PendingPurchase",
    "MarketplaceSale",
    "AuthorizedBackend",
    "ListingStatus",
    "PurchaseStatus",
    "SaleType",
    "ObligationNFT",
    "NFTStatus",
    "TreasuryFee",
    "TreasuryPayout",
    "TreasuryConfigChange",
    "WithdrawalProposal",
    "ProposalApproval",
    "AdminProposal",
    "FeeType",
    "PayoutKind",
    "ProposalStatus",
    "AdminProposalType",
    "RoleAssignment",
    "AuthorizedContract",
    "AccessControlEvent",
    "AdminHistory",
    "SystemStatus",
    "Role",
    "ContractStatus",
    "AdminScope",
    "Notification",
    "NotificationPriority",
    "NotificationStatus",
    "PaymentConfirmation",
    "PaymentStatus",
    "SettlementStatus",
    "WebhookEvent",
]
