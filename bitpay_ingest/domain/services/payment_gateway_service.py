"""
Payment Gateway Service - StacksPay callbacks for gateway marketplace purchases.

Flow:
1. market-purchase-initiated (chainhook) creates the pending purchase and a payment link
2. the buyer pays through StacksPay
3. StacksPay calls back here; payment.completed asks the settlement relay to
   call marketplace complete-purchase
4. market-gateway-purchase-completed (chainhook) records the sale

Deliveries are de-duplicated through the webhook_events table. Only a
completed delivery blocks a redelivery.
"""
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from bitpay_ingest.core.exceptions import AppException, PaymentMetadataError
from bitpay_ingest.core.logging import get_logger
from bitpay_ingest.db.models.marketplace import (
    ListingStatus,
    MarketplaceListing,
    PendingPurchase,
    PurchaseStatus,
)
from bitpay_ingest.db.models.notification import NotificationPriority
from bitpay_ingest.db.models.payment import PaymentConfirmation, PaymentStatus, SettlementStatus
from bitpay_ingest.db.models.webhook_event import WebhookEvent
from bitpay_ingest.domain.services.notifier import FanOutNotifier
from bitpay_ingest.domain.services.realtime import RealtimeHub
from bitpay_ingest.domain.services.settlement import SettlementRelay

logger = get_logger(__name__)

SOURCE = "stackspay"

_STATUS_PROCESSING = "processing"
_STATUS_COMPLETED = "completed"
_STATUS_FAILED = "failed"


class PaymentMetadata(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    stream_id: str | None = Field(default=None, alias="streamId")
    buyer: str | None = None
    seller: str | None = None
    payment_id: str | None = Field(default=None, alias="paymentId")


class GatewayPayment(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    status: str | None = None
    amount: int | None = None
    currency: str | None = None
    transaction_id: str | None = Field(default=None, alias="transactionId")
    metadata: PaymentMetadata = Field(default_factory=PaymentMetadata)
    created_at: datetime | None = Field(default=None, alias="createdAt")
    completed_at: datetime | None = Field(default=None, alias="completedAt")


class GatewayEventData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    payment: GatewayPayment


class GatewayEvent(BaseModel):
    """One StacksPay callback body"""

    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    type: str
    data: GatewayEventData
    created: str | None = None

    @property
    def payment(self) -> GatewayPayment:
        return self.data.payment

    @property
    def delivery_id(self) -> str:
        return self.id or f"{self.type}:{self.payment.id}"


def _stream_id(metadata: PaymentMetadata) -> int | None:
    if metadata.stream_id and metadata.stream_id.isdigit():
        return int(metadata.stream_id)
    return None


class PaymentGatewayService:
    """Handles one StacksPay callback; returns (http status, response body)."""

    def __init__(self, db: AsyncSession, hub: RealtimeHub, relay: SettlementRelay | None = None):
        self.db = db
        self.relay = relay or SettlementRelay()
        self.notifier = FanOutNotifier(db, hub)

    # ==================== delivery idempotency ====================

    async def _acquire(self, delivery_id: str) -> bool:
        """Claim a delivery for processing; False if it already completed or is in flight."""
        try:
            async with self.db.begin_nested():
                self.db.add(WebhookEvent(delivery_id=delivery_id, source=SOURCE, status=_STATUS_PROCESSING))
            await self.db.commit()
            return True
        except IntegrityError:
            pass

        result = await self.db.execute(
            update(WebhookEvent)
            .where(WebhookEvent.delivery_id == delivery_id, WebhookEvent.status == _STATUS_FAILED)
            .values(status=_STATUS_PROCESSING, created_at=datetime.now(timezone.utc))
        )
        if result.rowcount:
            await self.db.commit()
            logger.warning("Retrying failed payment delivery", extra_data={"delivery_id": delivery_id})
            return True

        logger.info("Skipping duplicate payment delivery", extra_data={"delivery_id": delivery_id})
        return False

    async def _finish(self, delivery_id: str, status: str) -> None:
        await self.db.execute(
            update(WebhookEvent)
            .where(WebhookEvent.delivery_id == delivery_id)
            .values(status=status)
        )
        await self.db.commit()

    # ==================== entry point ====================

    async def handle(self, event: GatewayEvent) -> tuple[int, dict[str, Any]]:
        handler = {
            "payment.created": self._on_created,
            "payment.pending": self._on_pending,
            "payment.completed": self._on_completed,
            "payment.failed": self._on_failed,
            "payment.cancelled": self._on_cancelled,
        }.get(event.type)
        if handler is None:
            logger.info("Unhandled StacksPay event", extra_data={"type": event.type})
            return 200, {"success": True, "handled": False}

        delivery_id = event.delivery_id
        if not await self._acquire(delivery_id):
            return 200, {"success": True, "duplicate": True, "paymentId": event.payment.id}

        try:
            status_code, body = await handler(event.payment)
        except Exception:
            await self.db.rollback()
            self.notifier.discard()
            await self._finish(delivery_id, _STATUS_FAILED)
            raise

        await self._finish(delivery_id, _STATUS_COMPLETED if status_code < 400 else _STATUS_FAILED)
        await self.notifier.flush()
        return status_code, body

    # ==================== handlers ====================

    async def _confirmation(self, payment_id: str) -> PaymentConfirmation:
        confirmation = await self.db.get(PaymentConfirmation, payment_id)
        if confirmation is None:
            confirmation = PaymentConfirmation(stackspay_id=payment_id, status=PaymentStatus.CREATED)
            self.db.add(confirmation)
        return confirmation

    async def _on_created(self, payment: GatewayPayment) -> tuple[int, dict[str, Any]]:
        confirmation = await self._confirmation(payment.id)
        confirmation.payment_id = payment.metadata.payment_id
        confirmation.stream_id = _stream_id(payment.metadata)
        confirmation.buyer = payment.metadata.buyer
        confirmation.seller = payment.metadata.seller
        confirmation.amount = payment.amount
        confirmation.currency = payment.currency
        confirmation.status = PaymentStatus.CREATED
        await self.db.commit()
        logger.info("Payment created", extra_data={"stackspay_id": payment.id})
        return 200, {"success": True, "message": "Payment created", "paymentId": payment.id}

    async def _on_pending(self, payment: GatewayPayment) -> tuple[int, dict[str, Any]]:
        confirmation = await self._confirmation(payment.id)
        confirmation.status = PaymentStatus.PENDING
        confirmation.transaction_id = payment.transaction_id
        await self.db.commit()
        return 200, {"success": True, "message": "Payment pending", "paymentId": payment.id}

    async def _on_completed(self, payment: GatewayPayment) -> tuple[int, dict[str, Any]]:
        metadata = payment.metadata
        stream_id = _stream_id(metadata)
        missing = [
            name for name, value in (
                ("streamId", stream_id),
                ("buyer", metadata.buyer),
                ("seller", metadata.seller),
            ) if value is None
        ]

        confirmation = await self._confirmation(payment.id)
        confirmation.status = PaymentStatus.COMPLETED
        confirmation.transaction_id = payment.transaction_id
        confirmation.completed_at = payment.completed_at or datetime.now(timezone.utc)
        await self.db.commit()

        try:
            if missing:
                raise PaymentMetadataError(payment.id, missing)
            txid = await self.relay.complete_purchase(stream_id, metadata.buyer)
        except AppException as e:
            confirmation.settlement_status = SettlementStatus.FAILED
            confirmation.error = e.message[:1000]
            await self.db.commit()
            logger.error(
                "complete-purchase not submitted",
                extra_data={"stackspay_id": payment.id, "error": e.message},
            )
            return 500, {"success": False, "error": e.message}

        confirmation.settlement_status = SettlementStatus.PENDING
        confirmation.settlement_tx_id = txid
        confirmation.error = None
        await self.db.commit()
        return 200, {
            "success": True,
            "message": "Payment completed and blockchain transaction broadcast",
            "paymentId": payment.id,
            "streamId": metadata.stream_id,
            "blockchainTxId": txid,
        }

    async def _release_purchase(self, payment: GatewayPayment, status: PurchaseStatus) -> PendingPurchase | None:
        """Mark the pending purchase and put its listing back on sale."""
        criteria = [PendingPurchase.gateway_payment_id == payment.id]
        if payment.metadata.payment_id:
            criteria.append(PendingPurchase.payment_id == payment.metadata.payment_id)
        result = await self.db.execute(
            select(PendingPurchase)
            .where(or_(*criteria), PendingPurchase.status == PurchaseStatus.PENDING)
            .limit(1)
        )
        purchase = result.scalar_one_or_none()
        if purchase is None:
            return None

        purchase.status = status
        listing = await self.db.get(MarketplaceListing, purchase.stream_id)
        if listing is not None and listing.status == ListingStatus.PENDING_PAYMENT:
            listing.status = ListingStatus.ACTIVE
        return purchase

    async def _on_failed(self, payment: GatewayPayment) -> tuple[int, dict[str, Any]]:
        confirmation = await self._confirmation(payment.id)
        confirmation.status = PaymentStatus.FAILED
        purchase = await self._release_purchase(payment, PurchaseStatus.FAILED)

        buyer = payment.metadata.buyer or (purchase.buyer if purchase else None)
        stream_ref = payment.metadata.stream_id or (purchase.stream_id if purchase else "")
        await self.notifier.notify(
            buyer,
            "purchase_failed",
            "Payment Failed",
            f"Your payment for stream #{stream_ref} failed. Please try again.",
            data={"streamId": str(stream_ref), "paymentId": payment.id},
            priority=NotificationPriority.HIGH,
            action_url="/dashboard/marketplace",
            action_text="Try Again",
        )
        await self.db.commit()
        logger.warning("Payment failed", extra_data={"stackspay_id": payment.id})
        return 200, {"success": True, "message": "Payment failure processed", "paymentId": payment.id}

    async def _on_cancelled(self, payment: GatewayPayment) -> tuple[int, dict[str, Any]]:
        confirmation = await self._confirmation(payment.id)
        confirmation.status = PaymentStatus.CANCELLED
        purchase = await self._release_purchase(payment, PurchaseStatus.CANCELLED)

        buyer = payment.metadata.buyer or (purchase.buyer if purchase else None)
        stream_ref = payment.metadata.stream_id or (purchase.stream_id if purchase else "")
        await self.notifier.notify(
            buyer,
            "purchase_cancelled",
            "Payment Cancelled",
            f"Your payment for stream #{stream_ref} was cancelled.",
            data={"streamId": str(stream_ref), "paymentId": payment.id},
            priority=NotificationPriority.NORMAL,
            action_url="/dashboard/marketplace",
            action_text="View Marketplace",
        )
        await self.db.commit()
        return 200, {"success": True, "message": "Payment cancellation processed", "paymentId": payment.id}
