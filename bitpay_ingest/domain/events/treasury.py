"""
Treasury events (bitpay-treasury).
"""
from typing import Annotated, Literal, Union

from pydantic import Field

from bitpay_ingest.domain.events.base import DomainEvent, Principal, Text, Uint


class FeeCollected(DomainEvent):
    event: Literal["treasury-fee-collected"] = "treasury-fee-collected"
    amount: Uint
    caller: Principal
    new_balance: Uint


class CancellationFeeCollected(DomainEvent):
    event: Literal["treasury-cancellation-fee-collected"] = "treasury-cancellation-fee-collected"
    amount: Uint
    caller: Principal
    new_balance: Uint


class MarketplaceFeeCollected(DomainEvent):
    event: Literal["treasury-marketplace-fee-collected"] = "treasury-marketplace-fee-collected"
    amount: Uint
    caller: Principal
    new_balance: Uint


class TreasuryWithdrawal(DomainEvent):
    event: Literal["treasury-withdrawal"] = "treasury-withdrawal"
    amount: Uint
    recipient: Principal
    admin: Principal
    new_balance: Uint


class TreasuryDistribution(DomainEvent):
    event: Literal["treasury-distribution"] = "treasury-distribution"
    amount: Uint
    recipient: Principal
    admin: Principal
    new_balance: Uint


class TreasuryFeeUpdated(DomainEvent):
    event: Literal["treasury-fee-updated"] = "treasury-fee-updated"
    old_fee_bps: Uint
    new_fee_bps: Uint
    admin: Principal


class AdminTransferProposed(DomainEvent):
    event: Literal["treasury-admin-transfer-proposed"] = "treasury-admin-transfer-proposed"
    current_admin: Principal
    new_admin: Principal
    proposed_at: Uint


class AdminTransferCompleted(DomainEvent):
    event: Literal["treasury-admin-transfer-completed"] = "treasury-admin-transfer-completed"
    old_admin: Principal
    new_admin: Principal
    completed_at: Uint


class AdminTransferCancelled(DomainEvent):
    event: Literal["treasury-admin-transfer-cancelled"] = "treasury-admin-transfer-cancelled"
    admin: Principal
    cancelled_at: Uint


class WithdrawalProposed(DomainEvent):
    event: Literal["treasury-withdrawal-proposed"] = "treasury-withdrawal-proposed"
    proposal_id: Uint
    proposer: Principal
    recipient: Principal
    amount: Uint
    proposed_at: Uint
    timelock_expires: Uint


class WithdrawalApproved(DomainEvent):
    event: Literal["treasury-withdrawal-approved"] = "treasury-withdrawal-approved"
    proposal_id: Uint
    approver: Principal
    approval_count: Uint


class WithdrawalExecuted(DomainEvent):
    event: Literal["treasury-withdrawal-executed"] = "treasury-withdrawal-executed"
    proposal_id: Uint
    recipient: Principal
    amount: Uint
    executed_at: Uint


class AddAdminProposed(DomainEvent):
    event: Literal["treasury-add-admin-proposed"] = "treasury-add-admin-proposed"
    proposal_id: Uint
    proposer: Principal
    new_admin: Principal
    proposed_at: Uint


class RemoveAdminProposed(DomainEvent):
    event: Literal["treasury-remove-admin-proposed"] = "treasury-remove-admin-proposed"
    proposal_id: Uint
    proposer: Principal
    admin_to_remove: Principal
    proposed_at: Uint


class AdminProposalApproved(DomainEvent):
    event: Literal["treasury-admin-proposal-approved"] = "treasury-admin-proposal-approved"
    proposal_id: Uint
    approver: Principal
    approval_count: Uint


class AdminProposalExecuted(DomainEvent):
    event: Literal["treasury-admin-proposal-executed"] = "treasury-admin-proposal-executed"
    proposal_id: Uint
    proposal_type: Text
    executed_at: Uint


TreasuryEvent = Annotated[
    Union[
        FeeCollected,
        CancellationFeeCollected,
        MarketplaceFeeCollected,
        TreasuryWithdrawal,
        TreasuryDistribution,
        TreasuryFeeUpdated,
        AdminTransferProposed,
        AdminTransferCompleted,
        AdminTransferCancelled,
        WithdrawalProposed,
        WithdrawalApproved,
        WithdrawalExecuted,
        AddAdminProposed,
        RemoveAdminProposed,
        AdminProposalApproved,
        AdminProposalExecuted,
    ],
    Field(discriminator="event"),
]
