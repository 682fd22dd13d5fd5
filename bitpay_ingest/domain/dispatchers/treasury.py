"""
Treasury dispatcher (bitpay-treasury)

Fee ledger, payouts, multi-sig withdrawal proposals and admin proposals.
Admin fan-out goes to the chain-backed admin set; the approval threshold is
read fresh for every approval.
"""
from typing import Any

from sqlalchemy import and_, func, select, update

from bitpay_ingest.core.config import settings
from bitpay_ingest.core.logging import get_logger
from bitpay_ingest.db.models.access_control import AdminHistory, AdminScope, SystemStatus
from bitpay_ingest.db.models.chain_event import ChainEventRecord, JournalStatus
from bitpay_ingest.db.models.notification import NotificationPriority
from bitpay_ingest.db.models.treasury import (
    OPEN_PROPOSAL_STATUSES,
    AdminProposal,
    AdminProposalType,
    FeeType,
    PayoutKind,
    ProposalApproval,
    ProposalStatus,
    TreasuryConfigChange,
    TreasuryFee,
    TreasuryPayout,
    WithdrawalProposal,
)
from bitpay_ingest.domain.dispatchers.base import DomainDispatcher, handles, reverts
from bitpay_ingest.domain.events import DomainEvent
from bitpay_ingest.domain.events import treasury as ev
from bitpay_ingest.domain.services.notifier import short_principal
from bitpay_ingest.ingest.walker import ProcessingContext

logger = get_logger(__name__)

TREASURY_BALANCE_KEY = "treasury_balance"
TREASURY_FEE_KEY = "treasury_fee_bps"

FEE_TYPES = {
    ev.FeeCollected.tag(): FeeType.GENERAL,
    ev.CancellationFeeCollected.tag(): FeeType.CANCELLATION,
    ev.MarketplaceFeeCollected.tag(): FeeType.MARKETPLACE,
}


def _proposal_url(proposal_id: int) -> str:
    return f"/dashboard/treasury/proposals/{proposal_id}"


class TreasuryDispatcher(DomainDispatcher):
    domain = "treasury"
    event_type = "treasury-events"
    service_name = "BitPay Treasury Events"
    events = ev.TreasuryEvent

    async def dispatch(self, event: DomainEvent, ctx: ProcessingContext) -> bool:
        await self.expire_proposals(ctx.block_height)
        return await super().dispatch(event, ctx)

    async def expire_proposals(self, current_block: int) -> int:
        """Move open withdrawal proposals past their expiry block to expired."""
        result = await self.store.db.execute(
            update(WithdrawalProposal)
            .where(
                WithdrawalProposal.status.in_(OPEN_PROPOSAL_STATUSES),
                WithdrawalProposal.expires_at_block <= current_block,
            )
            .values(status=ProposalStatus.EXPIRED)
            .execution_options(synchronize_session="fetch")
        )
        expired = result.rowcount or 0
        if expired:
            logger.info(
                "Expired withdrawal proposals",
                extra_data={"count": expired, "block_height": current_block},
            )
        return expired

    # ==================== fan-out helpers ====================

    async def _notify_admins(
        self,
        type: str,
        title: str,
        message: str,
        ctx: ProcessingContext,
        *,
        data: dict[str, Any],
        priority: NotificationPriority = NotificationPriority.NORMAL,
        action_url: str | None = None,
        exclude: str | None = None,
        also: tuple[str, ...] = (),
    ) -> list[str]:
        recipients = [admin for admin in await self.admin_principals() if admin != exclude]
        recipients += [user for user in also if user not in recipients]
        for admin in recipients:
            await self.notifier.notify(
                admin,
                type,
                title,
                message,
                data=data,
                priority=priority,
                action_url=action_url,
                source_tx_hash=ctx.tx_hash,
            )
        return recipients

    async def _push_admins(self, event_name: str, data: dict[str, Any]) -> None:
        for admin in await self.admin_principals():
            self.notifier.push_to_user(admin, event_name, data)

    async def _set_balance(self, balance: int, ctx: ProcessingContext, actor: str | None) -> None:
        await self.store.upsert(
            SystemStatus,
            {"key": TREASURY_BALANCE_KEY},
            {"value": {"balance": balance}, "updated_by": actor, "updated_at_block": ctx.block_height},
        )

    # ==================== ledger ====================

    @handles(ev.FeeCollected, ev.CancellationFeeCollected, ev.MarketplaceFeeCollected)
    async def on_fee_collected(
        self,
        event: ev.FeeCollected | ev.CancellationFeeCollected | ev.MarketplaceFeeCollected,
        ctx: ProcessingContext,
    ) -> None:
        fee_type = FEE_TYPES[event.event]
        await self.store.insert_once(TreasuryFee(
            fee_type=fee_type,
            amount=event.amount,
            caller=event.caller,
            new_balance=event.new_balance,
            tx_hash=ctx.tx_hash,
            event_index=ctx.event_index,
            block_height=ctx.block_height,
        ))
        await self._set_balance(event.new_balance, ctx, event.caller)

        await self._push_admins("treasury:fee-collected", {
            "feeType": fee_type.value,
            "amount": str(event.amount),
            "caller": event.caller,
            "newBalance": str(event.new_balance),
            "txHash": ctx.tx_hash,
        })

    @handles(ev.TreasuryWithdrawal, ev.TreasuryDistribution)
    async def on_payout(
        self,
        event: ev.TreasuryWithdrawal | ev.TreasuryDistribution,
        ctx: ProcessingContext,
    ) -> None:
        is_withdrawal = isinstance(event, ev.TreasuryWithdrawal)
        kind = PayoutKind.WITHDRAWAL if is_withdrawal else PayoutKind.DISTRIBUTION
        await self.store.insert_once(TreasuryPayout(
            kind=kind,
            amount=event.amount,
            recipient=event.recipient,
            admin=event.admin,
            new_balance=event.new_balance,
            tx_hash=ctx.tx_hash,
            event_index=ctx.event_index,
            block_height=ctx.block_height,
        ))
        await self._set_balance(event.new_balance, ctx, event.admin)

        if is_withdrawal:
            await self.notifier.notify(
                event.recipient,
                "treasury_withdrawal",
                "Treasury Withdrawal Received",
                f"You received {event.amount} sBTC from the treasury.",
                data={"amount": str(event.amount), "admin": event.admin},
                source_tx_hash=ctx.tx_hash,
            )
        else:
            await self.notifier.notify(
                event.recipient,
                "treasury_distribution",
                "Treasury Distribution Received",
                f"You received a treasury distribution of {event.amount} sBTC.",
                data={"amount": str(event.amount), "admin": event.admin},
                source_tx_hash=ctx.tx_hash,
            )

        await self._push_admins(f"treasury:{kind.value}", {
            "amount": str(event.amount),
            "recipient": event.recipient,
            "admin": event.admin,
            "newBalance": str(event.new_balance),
            "txHash": ctx.tx_hash,
        })

    @handles(ev.TreasuryFeeUpdated)
    async def on_fee_updated(self, event: ev.TreasuryFeeUpdated, ctx: ProcessingContext) -> None:
        await self.store.insert_once(TreasuryConfigChange(
            old_fee_bps=event.old_fee_bps,
            new_fee_bps=event.new_fee_bps,
            admin=event.admin,
            tx_hash=ctx.tx_hash,
            event_index=ctx.event_index,
            block_height=ctx.block_height,
        ))
        await self.store.upsert(
            SystemStatus,
            {"key": TREASURY_FEE_KEY},
            {"value": {"fee_bps": event.new_fee_bps}, "updated_by": event.admin, "updated_at_block": ctx.block_height},
        )

        data = {"oldFeeBps": str(event.old_fee_bps), "newFeeBps": str(event.new_fee_bps), "admin": event.admin}
        await self._notify_admins(
            "treasury_config_updated",
            "Treasury Fee Updated",
            f"Protocol fee changed from {event.old_fee_bps} to {event.new_fee_bps} bps by {short_principal(event.admin)}",
            ctx,
            data=data,
        )
        await self._push_admins("treasury:config-updated", {**data, "txHash": ctx.tx_hash})

    # ==================== admin transfer ====================

    async def _admin_history(self, action: str, subject: str | None, actor: str | None, ctx: ProcessingContext) -> None:
        await self.store.insert_once(AdminHistory(
            scope=AdminScope.TREASURY,
            action=action,
            subject=subject,
            actor=actor,
            tx_hash=ctx.tx_hash,
            event_index=ctx.event_index,
            block_height=ctx.block_height,
        ))

    @handles(ev.AdminTransferProposed)
    async def on_admin_transfer_proposed(self, event: ev.AdminTransferProposed, ctx: ProcessingContext) -> None:
        await self._admin_history("transfer-proposed", event.new_admin, event.current_admin, ctx)
        data = {"currentAdmin": event.current_admin, "newAdmin": event.new_admin, "status": "proposed"}
        await self._notify_admins(
            "admin_transfer",
            "Admin Transfer Proposed",
            f"{short_principal(event.current_admin)} proposed handing admin rights to {short_principal(event.new_admin)}",
            ctx,
            data=data,
            priority=NotificationPriority.URGENT,
            also=(event.new_admin,),
        )
        await self._push_admins("treasury:admin-transfer", {**data, "txHash": ctx.tx_hash})

    @handles(ev.AdminTransferCompleted)
    async def on_admin_transfer_completed(self, event: ev.AdminTransferCompleted, ctx: ProcessingContext) -> None:
        await self._admin_history("transfer-completed", event.new_admin, event.old_admin, ctx)
        data = {"oldAdmin": event.old_admin, "newAdmin": event.new_admin, "status": "completed"}
        await self._notify_admins(
            "admin_transfer",
            "Admin Transfer Completed",
            f"Admin rights moved from {short_principal(event.old_admin)} to {short_principal(event.new_admin)}",
            ctx,
            data=data,
            priority=NotificationPriority.URGENT,
            also=(event.new_admin,),
        )
        await self._push_admins("treasury:admin-transfer", {**data, "txHash": ctx.tx_hash})

    @handles(ev.AdminTransferCancelled)
    async def on_admin_transfer_cancelled(self, event: ev.AdminTransferCancelled, ctx: ProcessingContext) -> None:
        await self._admin_history("transfer-cancelled", None, event.admin, ctx)
        data = {"admin": event.admin, "status": "cancelled"}
        await self._notify_admins(
            "admin_transfer",
            "Admin Transfer Cancelled",
            f"The pending admin transfer was cancelled by {short_principal(event.admin)}",
            ctx,
            data=data,
            priority=NotificationPriority.URGENT,
        )
        await self._push_admins("treasury:admin-transfer", {**data, "txHash": ctx.tx_hash})

    # ==================== withdrawal proposals ====================

    @handles(ev.WithdrawalProposed)
    async def on_withdrawal_proposed(self, event: ev.WithdrawalProposed, ctx: ProcessingContext) -> None:
        await self.store.upsert(
            WithdrawalProposal,
            {"proposal_id": event.proposal_id},
            {
                "proposer": event.proposer,
                "recipient": event.recipient,
                "amount": event.amount,
                "proposed_at_block": event.proposed_at,
                "timelock_expires": event.timelock_expires,
                "expires_at_block": event.proposed_at + settings.PROPOSAL_EXPIRY_BLOCKS,
                "approval_count": 0,
                "status": ProposalStatus.PROPOSED,
                "executed_at_block": None,
            },
        )

        threshold = await self.admins.approval_threshold() if self.admins else settings.FALLBACK_APPROVAL_THRESHOLD
        data = {
            "proposalId": str(event.proposal_id),
            "proposer": event.proposer,
            "recipient": event.recipient,
            "amount": str(event.amount),
            "timelockExpires": str(event.timelock_expires),
            "requiredApprovals": threshold,
        }
        await self._notify_admins(
            "admin_action_required",
            "New Withdrawal Proposal",
            f"{short_principal(event.proposer)} proposed withdrawing {event.amount} sBTC to "
            f"{short_principal(event.recipient)}. {threshold} approvals required.",
            ctx,
            data=data,
            priority=NotificationPriority.URGENT,
            action_url=_proposal_url(event.proposal_id),
            exclude=event.proposer,
        )
        await self._push_admins("treasury:proposal", {**data, "txHash": ctx.tx_hash})

    @handles(ev.WithdrawalApproved)
    async def on_withdrawal_approved(self, event: ev.WithdrawalApproved, ctx: ProcessingContext) -> None:
        await self.store.insert_once(ProposalApproval(
            proposal_id=event.proposal_id,
            approver=event.approver,
            approval_count=event.approval_count,
            tx_hash=ctx.tx_hash,
            block_height=ctx.block_height,
        ))

        threshold = await self.admins.approval_threshold() if self.admins else settings.FALLBACK_APPROVAL_THRESHOLD
        ready = event.approval_count >= threshold
        proposal = await self.store.update(WithdrawalProposal, event.proposal_id, {
            "approval_count": event.approval_count,
            "required_approvals": threshold,
            "status": ProposalStatus.READY if ready else ProposalStatus.APPROVING,
        })
        if proposal is None:
            logger.warning("Approval for unknown proposal", extra_data={"proposal_id": event.proposal_id})

        data = {
            "proposalId": str(event.proposal_id),
            "approver": event.approver,
            "approvalCount": event.approval_count,
            "requiredApprovals": threshold,
        }
        if ready:
            await self.notifier.notify(
                proposal.proposer if proposal is not None else None,
                "withdrawal_approved",
                "Withdrawal Ready to Execute",
                f"Proposal #{event.proposal_id} reached {event.approval_count}/{threshold} approvals and can be executed.",
                data=data,
                priority=NotificationPriority.HIGH,
                action_url=_proposal_url(event.proposal_id),
                action_text="Execute Withdrawal",
                source_tx_hash=ctx.tx_hash,
            )
            await self._push_admins("treasury:proposal-ready", {**data, "txHash": ctx.tx_hash})
        else:
            await self.notifier.notify(
                event.approver,
                "withdrawal_approved",
                "Approval Recorded",
                f"Your approval for proposal #{event.proposal_id} was recorded ({event.approval_count}/{threshold}).",
                data=data,
                action_url=_proposal_url(event.proposal_id),
                source_tx_hash=ctx.tx_hash,
            )
        await self._push_admins("treasury:approval", {**data, "txHash": ctx.tx_hash})

    @handles(ev.WithdrawalExecuted)
    async def on_withdrawal_executed(self, event: ev.WithdrawalExecuted, ctx: ProcessingContext) -> None:
        await self.store.update(WithdrawalProposal, event.proposal_id, {
            "status": ProposalStatus.EXECUTED,
            "executed_at_block": event.executed_at,
        })

        data = {
            "proposalId": str(event.proposal_id),
            "recipient": event.recipient,
            "amount": str(event.amount),
            "executedAt": str(event.executed_at),
        }
        await self._notify_admins(
            "withdrawal_executed",
            "Withdrawal Executed",
            f"Proposal #{event.proposal_id} executed: {event.amount} sBTC sent to {short_principal(event.recipient)}",
            ctx,
            data=data,
            priority=NotificationPriority.HIGH,
            action_url=_proposal_url(event.proposal_id),
        )
        await self._push_admins("treasury:executed", {**data, "txHash": ctx.tx_hash})

    # ==================== admin proposals ====================

    async def _announce_admin_proposal(self, title: str, message: str, data: dict[str, Any], ctx: ProcessingContext) -> None:
        await self._notify_admins(
            "admin_action_required",
            title,
            message,
            ctx,
            data=data,
            priority=NotificationPriority.HIGH,
            action_url=_proposal_url(data["proposalId"]),
        )
        await self._push_admins("treasury:admin-proposal", {**data, "txHash": ctx.tx_hash})

    @handles(ev.AddAdminProposed)
    async def on_add_admin_proposed(self, event: ev.AddAdminProposed, ctx: ProcessingContext) -> None:
        await self.store.upsert(
            AdminProposal,
            {"proposal_id": event.proposal_id},
            {
                "proposal_type": AdminProposalType.ADD_ADMIN,
                "proposer": event.proposer,
                "target": event.new_admin,
                "proposed_at_block": event.proposed_at,
                "approval_count": 0,
                "status": ProposalStatus.PROPOSED,
                "executed_at_block": None,
            },
        )
        await self._announce_admin_proposal(
            "Add Admin Proposed",
            f"{short_principal(event.proposer)} proposed adding {short_principal(event.new_admin)} as admin.",
            {"proposalId": str(event.proposal_id), "type": AdminProposalType.ADD_ADMIN.value, "target": event.new_admin},
            ctx,
        )

    @handles(ev.RemoveAdminProposed)
    async def on_remove_admin_proposed(self, event: ev.RemoveAdminProposed, ctx: ProcessingContext) -> None:
        await self.store.upsert(
            AdminProposal,
            {"proposal_id": event.proposal_id},
            {
                "proposal_type": AdminProposalType.REMOVE_ADMIN,
                "proposer": event.proposer,
                "target": event.admin_to_remove,
                "proposed_at_block": event.proposed_at,
                "approval_count": 0,
                "status": ProposalStatus.PROPOSED,
                "executed_at_block": None,
            },
        )
        await self._announce_admin_proposal(
            "Remove Admin Proposed",
            f"{short_principal(event.proposer)} proposed removing admin {short_principal(event.admin_to_remove)}.",
            {"proposalId": str(event.proposal_id), "type": AdminProposalType.REMOVE_ADMIN.value, "target": event.admin_to_remove},
            ctx,
        )

    @handles(ev.AdminProposalApproved)
    async def on_admin_proposal_approved(self, event: ev.AdminProposalApproved, ctx: ProcessingContext) -> None:
        await self.store.update(AdminProposal, event.proposal_id, {
            "approval_count": event.approval_count,
            "status": ProposalStatus.APPROVING,
        })
        await self._announce_admin_proposal(
            "Admin Proposal Approved",
            f"{short_principal(event.approver)} approved admin proposal #{event.proposal_id} ({event.approval_count} approvals).",
            {"proposalId": str(event.proposal_id), "approver": event.approver, "approvalCount": event.approval_count},
            ctx,
        )

    @handles(ev.AdminProposalExecuted)
    async def on_admin_proposal_executed(self, event: ev.AdminProposalExecuted, ctx: ProcessingContext) -> None:
        await self.store.update(AdminProposal, event.proposal_id, {
            "status": ProposalStatus.EXECUTED,
            "executed_at_block": event.executed_at,
        })
        await self._announce_admin_proposal(
            "Admin Proposal Executed",
            f"Admin proposal #{event.proposal_id} ({event.proposal_type}) was executed.",
            {"proposalId": str(event.proposal_id), "type": event.proposal_type},
            ctx,
        )

    # ==================== revert ====================

    async def _restore_balance(self) -> None:
        """Balance back to the most recently applied remaining ledger row, or zero."""
        candidates = []
        for model in (TreasuryFee, TreasuryPayout):
            result = await self.store.db.execute(
                select(
                    ChainEventRecord.block_height,
                    ChainEventRecord.applied_at,
                    ChainEventRecord.id,
                    model.new_balance,
                )
                .join(ChainEventRecord, and_(
                    ChainEventRecord.domain == self.domain,
                    ChainEventRecord.tx_hash == model.tx_hash,
                    ChainEventRecord.event_index == model.event_index,
                ))
                .where(ChainEventRecord.status == JournalStatus.APPLIED)
                .order_by(
                    ChainEventRecord.block_height.desc(),
                    ChainEventRecord.applied_at.desc(),
                    ChainEventRecord.id.desc(),
                )
                .limit(1)
            )
            row = result.first()
            if row is not None:
                candidates.append(tuple(row))
        balance = max(candidates)[3] if candidates else 0
        await self.store.update(SystemStatus, TREASURY_BALANCE_KEY, {"value": {"balance": balance}})

    @reverts(ev.FeeCollected, ev.CancellationFeeCollected, ev.MarketplaceFeeCollected)
    async def undo_fee_collected(self, event: DomainEvent, ctx: ProcessingContext) -> None:
        await self.store.delete_where(TreasuryFee, tx_hash=ctx.tx_hash, event_index=ctx.event_index)
        await self._restore_balance()

    @reverts(ev.TreasuryWithdrawal, ev.TreasuryDistribution)
    async def undo_payout(self, event: DomainEvent, ctx: ProcessingContext) -> None:
        await self.store.delete_where(TreasuryPayout, tx_hash=ctx.tx_hash, event_index=ctx.event_index)
        await self._restore_balance()

    @reverts(ev.TreasuryFeeUpdated)
    async def undo_fee_updated(self, event: ev.TreasuryFeeUpdated, ctx: ProcessingContext) -> None:
        await self.store.delete_where(TreasuryConfigChange, tx_hash=ctx.tx_hash, event_index=ctx.event_index)
        await self.store.update(SystemStatus, TREASURY_FEE_KEY, {"value": {"fee_bps": event.old_fee_bps}})

    @reverts(ev.AdminTransferProposed, ev.AdminTransferCompleted, ev.AdminTransferCancelled)
    async def undo_admin_transfer(self, event: DomainEvent, ctx: ProcessingContext) -> None:
        await self.store.delete_where(AdminHistory, tx_hash=ctx.tx_hash, event_index=ctx.event_index)

    @reverts(ev.WithdrawalProposed)
    async def undo_withdrawal_proposed(self, event: ev.WithdrawalProposed, ctx: ProcessingContext) -> None:
        await self.store.update(WithdrawalProposal, event.proposal_id, {"status": ProposalStatus.ROLLED_BACK})

    @reverts(ev.WithdrawalApproved)
    async def undo_withdrawal_approved(self, event: ev.WithdrawalApproved, ctx: ProcessingContext) -> None:
        await self.store.delete_where(ProposalApproval, proposal_id=event.proposal_id, approver=event.approver)
        proposal = await self.store.find(WithdrawalProposal, event.proposal_id)
        if proposal is None:
            return

        result = await self.store.db.execute(
            select(func.count(ProposalApproval.id))
            .where(ProposalApproval.proposal_id == event.proposal_id)
        )
        count = result.scalar_one()
        required = proposal.required_approvals or settings.FALLBACK_APPROVAL_THRESHOLD
        proposal.approval_count = count
        if count == 0:
            proposal.status = ProposalStatus.PROPOSED
        elif count >= required:
            proposal.status = ProposalStatus.READY
        else:
            proposal.status = ProposalStatus.APPROVING
        await self.store.db.flush()

    @reverts(ev.WithdrawalExecuted)
    async def undo_withdrawal_executed(self, event: ev.WithdrawalExecuted, ctx: ProcessingContext) -> None:
        await self.store.update(WithdrawalProposal, event.proposal_id, {
            "status": ProposalStatus.READY,
            "executed_at_block": None,
        })

    @reverts(ev.AddAdminProposed, ev.RemoveAdminProposed)
    async def undo_admin_proposed(self, event: ev.AddAdminProposed | ev.RemoveAdminProposed, ctx: ProcessingContext) -> None:
        await self.store.update(AdminProposal, event.proposal_id, {"status": ProposalStatus.ROLLED_BACK})

    @reverts(ev.AdminProposalApproved)
    async def undo_admin_proposal_approved(self, event: ev.AdminProposalApproved, ctx: ProcessingContext) -> None:
        count = max(0, event.approval_count - 1)
        await self.store.update(AdminProposal, event.proposal_id, {
            "approval_count": count,
            "status": ProposalStatus.APPROVING if count else ProposalStatus.PROPOSED,
        })

    @reverts(ev.AdminProposalExecuted)
    async def undo_admin_proposal_executed(self, event: ev.AdminProposalExecuted, ctx: ProcessingContext) -> None:
        await self.store.update(AdminProposal, event.proposal_id, {
            "status": ProposalStatus.READY,
            "executed_at_block": None,
        })
