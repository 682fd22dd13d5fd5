"""
Streams dispatcher (bitpay-core)
"""
from bitpay_ingest.core.logging import get_logger
from bitpay_ingest.db.models.notification import NotificationPriority
from bitpay_ingest.db.models.stream import Stream, StreamStatus, StreamWithdrawal
from bitpay_ingest.domain.dispatchers.base import DomainDispatcher, handles, reverts
from bitpay_ingest.domain.events import streams as ev
from bitpay_ingest.domain.services.notifier import short_principal
from bitpay_ingest.ingest.walker import ProcessingContext

logger = get_logger(__name__)


def _stream_url(stream_id: int) -> str:
    return f"/dashboard/streams/{stream_id}"


class StreamsDispatcher(DomainDispatcher):
    domain = "streams"
    event_type = "stream-events"
    service_name = "BitPay Stream Events"
    events = ev.StreamEvent

    # ==================== apply ====================

    @handles(ev.StreamCreated)
    async def on_created(self, event: ev.StreamCreated, ctx: ProcessingContext) -> None:
        await self.store.upsert(
            Stream,
            {"stream_id": event.stream_id},
            {
                "sender": event.sender,
                "recipient": event.recipient,
                "amount": event.amount,
                "start_block": event.start_block,
                "end_block": event.end_block,
                "withdrawn_amount": 0,
                "status": StreamStatus.ACTIVE,
                "sender_history": [],
                "cancelled_at_block": None,
                "unvested_returned": None,
                "vested_paid": None,
                "created_tx_hash": ctx.tx_hash,
                "created_at_block": ctx.block_height,
            },
        )

        await self.notifier.notify(
            event.recipient,
            "stream_received",
            "New Payment Stream Received",
            f"You've received a new payment stream of {event.amount} sBTC from {short_principal(event.sender)}",
            data={"streamId": str(event.stream_id), "sender": event.sender, "amount": str(event.amount)},
            priority=NotificationPriority.HIGH,
            action_url=_stream_url(event.stream_id),
            action_text="View Stream",
            source_tx_hash=ctx.tx_hash,
        )
        await self.notifier.notify(
            event.sender,
            "stream_created",
            "Stream Created Successfully",
            f"Your payment stream of {event.amount} sBTC to {short_principal(event.recipient)} is now active.",
            data={"streamId": str(event.stream_id), "recipient": event.recipient, "amount": str(event.amount)},
            action_url=_stream_url(event.stream_id),
            action_text="View Stream",
            source_tx_hash=ctx.tx_hash,
        )

        stream_data = {
            "streamId": str(event.stream_id),
            "sender": event.sender,
            "recipient": event.recipient,
            "amount": str(event.amount),
            "startBlock": str(event.start_block),
            "endBlock": str(event.end_block),
            "txHash": ctx.tx_hash,
            "blockHeight": ctx.block_height,
            "timestamp": ctx.block_timestamp,
        }
        self.notifier.push_to_user(event.sender, "stream:created", {"type": "stream-created", "role": "sender", "data": stream_data})
        self.notifier.push_to_user(event.recipient, "stream:created", {"type": "stream-created", "role": "recipient", "data": stream_data})
        self.notifier.push_to_stream(event.stream_id, "stream:updated", {"type": "created", "data": stream_data})

    @handles(ev.StreamWithdrawal)
    async def on_withdrawal(self, event: ev.StreamWithdrawal, ctx: ProcessingContext) -> None:
        await self.store.insert_once(StreamWithdrawal(
            stream_id=event.stream_id,
            recipient=event.recipient,
            amount=event.amount,
            tx_hash=ctx.tx_hash,
            event_index=ctx.event_index,
            block_height=ctx.block_height,
        ))

        stream = await self.lookups.stream_by_id(event.stream_id)
        sender = None
        remaining = 0
        if stream is None:
            logger.warning("Withdrawal for unknown stream", extra_data={"stream_id": event.stream_id})
        else:
            stream.withdrawn_amount = (stream.withdrawn_amount or 0) + event.amount
            await self.store.db.flush()
            sender = stream.sender
            remaining = stream.remaining_amount

        await self.notifier.notify(
            event.recipient,
            "stream_withdrawal",
            "Withdrawal Successful",
            f"You withdrew {event.amount} sBTC from stream #{event.stream_id}.",
            data={"streamId": str(event.stream_id), "amount": str(event.amount), "remainingAmount": str(remaining)},
            action_url=_stream_url(event.stream_id),
            action_text="View Stream",
            source_tx_hash=ctx.tx_hash,
        )
        await self.notifier.notify(
            sender,
            "stream_withdrawal",
            "Stream Withdrawal",
            f"{short_principal(event.recipient)} withdrew {event.amount} sBTC from stream #{event.stream_id}.",
            data={"streamId": str(event.stream_id), "amount": str(event.amount), "recipient": event.recipient},
            action_url=_stream_url(event.stream_id),
            action_text="View Stream",
            source_tx_hash=ctx.tx_hash,
        )

        withdrawal_data = {
            "streamId": str(event.stream_id),
            "recipient": event.recipient,
            "amount": str(event.amount),
            "remainingAmount": str(remaining),
            "txHash": ctx.tx_hash,
        }
        self.notifier.push_to_user(event.recipient, "stream:withdrawal", {"type": "stream-withdrawal", "role": "recipient", "data": withdrawal_data})
        self.notifier.push_to_user(sender, "stream:withdrawal", {"type": "stream-withdrawal", "role": "sender", "data": withdrawal_data})
        self.notifier.push_to_stream(event.stream_id, "stream:updated", {"type": "withdrawal", "data": withdrawal_data})

    @handles(ev.StreamCancelled)
    async def on_cancelled(self, event: ev.StreamCancelled, ctx: ProcessingContext) -> None:
        stream = await self.store.update(Stream, event.stream_id, {
            "status": StreamStatus.CANCELLED,
            "cancelled_at_block": event.cancelled_at_block,
            "unvested_returned": event.unvested_returned,
            "vested_paid": event.vested_paid,
        })
        recipient = stream.recipient if stream is not None else None
        if stream is None:
            logger.warning("Cancellation for unknown stream", extra_data={"stream_id": event.stream_id})

        await self.notifier.notify(
            recipient,
            "stream_cancelled",
            "Stream Cancelled",
            f"Stream #{event.stream_id} was cancelled. You received {event.vested_paid} sBTC (vested amount).",
            data={
                "streamId": str(event.stream_id),
                "sender": event.sender,
                "vestedPaid": str(event.vested_paid),
                "unvestedReturned": str(event.unvested_returned),
            },
            priority=NotificationPriority.HIGH,
            action_url=_stream_url(event.stream_id),
            action_text="View Details",
            source_tx_hash=ctx.tx_hash,
        )
        await self.notifier.notify(
            event.sender,
            "stream_cancelled",
            "Stream Cancelled",
            f"Stream #{event.stream_id} cancelled successfully. {event.unvested_returned} sBTC returned.",
            data={
                "streamId": str(event.stream_id),
                "recipient": recipient,
                "vestedPaid": str(event.vested_paid),
                "unvestedReturned": str(event.unvested_returned),
            },
            action_url="/dashboard/streams",
            action_text="View Streams",
            source_tx_hash=ctx.tx_hash,
        )

        cancel_data = {
            "streamId": str(event.stream_id),
            "sender": event.sender,
            "recipient": recipient,
            "vestedPaid": str(event.vested_paid),
            "unvestedReturned": str(event.unvested_returned),
            "cancelledAtBlock": str(event.cancelled_at_block),
            "txHash": ctx.tx_hash,
        }
        self.notifier.push_to_user(event.sender, "stream:cancelled", {"type": "stream-cancelled", "role": "sender", "data": cancel_data})
        self.notifier.push_to_user(recipient, "stream:cancelled", {"type": "stream-cancelled", "role": "recipient", "data": cancel_data})
        self.notifier.push_to_stream(event.stream_id, "stream:updated", {"type": "cancelled", "data": cancel_data})

    @handles(ev.StreamSenderUpdated)
    async def on_sender_updated(self, event: ev.StreamSenderUpdated, ctx: ProcessingContext) -> None:
        stream = await self.lookups.stream_by_id(event.stream_id)
        if stream is None:
            logger.warning("Sender update for unknown stream", extra_data={"stream_id": event.stream_id})
        else:
            stream.sender = event.new_sender
            stream.sender_history = [
                *(stream.sender_history or []),
                {"sender": event.old_sender, "replaced_at_block": ctx.block_height, "tx_hash": ctx.tx_hash},
            ]
            await self.store.db.flush()

        await self.notifier.notify(
            event.old_sender,
            "stream_sender_updated",
            "Stream Ownership Transferred",
            f"You have transferred ownership of stream #{event.stream_id} to {short_principal(event.new_sender, 10)}",
            data={"streamId": str(event.stream_id), "newSender": event.new_sender},
            action_url=_stream_url(event.stream_id),
            action_text="View Stream",
            source_tx_hash=ctx.tx_hash,
        )
        await self.notifier.notify(
            event.new_sender,
            "stream_sender_updated",
            "Stream Ownership Received",
            f"You are now the sender of stream #{event.stream_id}. You can manage this stream.",
            data={"streamId": str(event.stream_id), "oldSender": event.old_sender},
            priority=NotificationPriority.HIGH,
            action_url=_stream_url(event.stream_id),
            action_text="Manage Stream",
            source_tx_hash=ctx.tx_hash,
        )

        update_data = {
            "streamId": str(event.stream_id),
            "oldSender": event.old_sender,
            "newSender": event.new_sender,
            "recipient": event.recipient,
            "txHash": ctx.tx_hash,
        }
        for user in (event.old_sender, event.new_sender, event.recipient):
            self.notifier.push_to_user(user, "stream:sender-updated", {"type": "stream-sender-updated", "data": update_data})
        self.notifier.push_to_stream(event.stream_id, "stream:updated", {"type": "sender-updated", "data": update_data})

    # ==================== revert ====================

    @reverts(ev.StreamCreated)
    async def undo_created(self, event: ev.StreamCreated, ctx: ProcessingContext) -> None:
        await self.store.update(Stream, event.stream_id, {"status": StreamStatus.ROLLED_BACK})

    @reverts(ev.StreamWithdrawal)
    async def undo_withdrawal(self, event: ev.StreamWithdrawal, ctx: ProcessingContext) -> None:
        removed = await self.store.delete_where(
            StreamWithdrawal, tx_hash=ctx.tx_hash, event_index=ctx.event_index,
        )
        stream = await self.lookups.stream_by_id(event.stream_id)
        if removed and stream is not None:
            stream.withdrawn_amount = max(0, (stream.withdrawn_amount or 0) - event.amount)
            await self.store.db.flush()

    @reverts(ev.StreamCancelled)
    async def undo_cancelled(self, event: ev.StreamCancelled, ctx: ProcessingContext) -> None:
        await self.store.update(Stream, event.stream_id, {
            "status": StreamStatus.ACTIVE,
            "cancelled_at_block": None,
            "unvested_returned": None,
            "vested_paid": None,
        })

    @reverts(ev.StreamSenderUpdated)
    async def undo_sender_updated(self, event: ev.StreamSenderUpdated, ctx: ProcessingContext) -> None:
        stream = await self.lookups.stream_by_id(event.stream_id)
        if stream is None:
            return
        stream.sender = event.old_sender
        history = [entry for entry in (stream.sender_history or []) if entry.get("tx_hash") != ctx.tx_hash]
        stream.sender_history = history
        await self.store.db.flush()
