"""
Marketplace dispatcher (bitpay-marketplace)

Listings, direct and gateway purchases of obligation NFTs.
"""
from bitpay_ingest.core.exceptions import AppException
from bitpay_ingest.core.logging import get_logger
from bitpay_ingest.db.models.access_control import SystemStatus
from bitpay_ingest.db.models.marketplace import (
    AuthorizedBackend,
    ListingStatus,
    MarketplaceListing,
    MarketplaceSale,
    PendingPurchase,
    PurchaseStatus,
    SaleType,
)
from bitpay_ingest.db.models.notification import NotificationPriority
from bitpay_ingest.domain.dispatchers.base import DomainDispatcher, handles, reverts
from bitpay_ingest.domain.events import marketplace as ev
from bitpay_ingest.domain.services.admin_directory import AdminDirectory
from bitpay_ingest.domain.services.notifier import UNKNOWN_USER, FanOutNotifier, short_principal
from bitpay_ingest.domain.services.payment_links import PaymentLinkClient, purchase_page_url
from bitpay_ingest.domain.services.projection_store import ProjectionLookups, ProjectionStore
from bitpay_ingest.ingest.walker import ProcessingContext

logger = get_logger(__name__)

MARKETPLACE_FEE_KEY = "marketplace_fee"


class MarketplaceDispatcher(DomainDispatcher):
    domain = "marketplace"
    event_type = "marketplace-events"
    service_name = "BitPay Marketplace Events"
    events = ev.MarketplaceEvent

    def __init__(
        self,
        store: ProjectionStore,
        notifier: FanOutNotifier,
        lookups: ProjectionLookups,
        admins: AdminDirectory | None = None,
        payment_links: PaymentLinkClient | None = None,
    ):
        super().__init__(store, notifier, lookups, admins)
        self.payment_links = payment_links

    def _announce(self, users: tuple[str | None, ...], event: str, data: dict) -> None:
        for user in users:
            self.notifier.push_to_user(user, event, data)
        self.notifier.push_to_marketplace(event, data)

    # ==================== listings ====================

    @handles(ev.NFTListed)
    async def on_listed(self, event: ev.NFTListed, ctx: ProcessingContext) -> None:
        await self.store.upsert(
            MarketplaceListing,
            {"stream_id": event.stream_id},
            {
                "seller": event.seller,
                "price": event.price,
                "status": ListingStatus.ACTIVE,
                "buyer": None,
                "price_history": [{"price": event.price, "block_height": ctx.block_height, "tx_hash": ctx.tx_hash}],
                "listed_at_block": event.listed_at,
                "listed_tx_hash": ctx.tx_hash,
                "sold_at_block": None,
            },
        )

        await self.notifier.notify(
            event.seller,
            "nft_listed",
            "NFT Listed",
            f"Your stream #{event.stream_id} is listed on the marketplace for {event.price} sBTC.",
            data={"streamId": str(event.stream_id), "price": str(event.price)},
            action_url=f"/dashboard/marketplace/{event.stream_id}",
            action_text="View Listing",
            source_tx_hash=ctx.tx_hash,
        )
        self._announce((event.seller,), "marketplace:new-listing", {
            "streamId": str(event.stream_id),
            "seller": event.seller,
            "price": str(event.price),
            "listedAt": str(event.listed_at),
            "txHash": ctx.tx_hash,
        })

    @handles(ev.ListingPriceUpdated)
    async def on_price_updated(self, event: ev.ListingPriceUpdated, ctx: ProcessingContext) -> None:
        listing = await self.store.find(MarketplaceListing, event.stream_id)
        if listing is None:
            logger.warning("Price update for unknown listing", extra_data={"stream_id": event.stream_id})
        else:
            listing.price = event.new_price
            listing.price_history = [
                *(listing.price_history or []),
                {"price": event.new_price, "block_height": ctx.block_height, "tx_hash": ctx.tx_hash},
            ]
            await self.store.db.flush()

        await self.notifier.notify(
            event.seller,
            "listing_updated",
            "Listing Price Updated",
            f"Stream #{event.stream_id} price changed from {event.old_price} to {event.new_price} sBTC.",
            data={"streamId": str(event.stream_id), "oldPrice": str(event.old_price), "newPrice": str(event.new_price)},
            priority=NotificationPriority.LOW,
            source_tx_hash=ctx.tx_hash,
        )
        self._announce((event.seller,), "marketplace:listing-updated", {
            "streamId": str(event.stream_id),
            "seller": event.seller,
            "oldPrice": str(event.old_price),
            "newPrice": str(event.new_price),
            "txHash": ctx.tx_hash,
        })

    @handles(ev.ListingCancelled)
    async def on_listing_cancelled(self, event: ev.ListingCancelled, ctx: ProcessingContext) -> None:
        await self.store.update(MarketplaceListing, event.stream_id, {"status": ListingStatus.CANCELLED})

        await self.notifier.notify(
            event.seller,
            "listing_cancelled",
            "Listing Cancelled",
            f"Your listing for stream #{event.stream_id} was removed from the marketplace.",
            data={"streamId": str(event.stream_id)},
            priority=NotificationPriority.LOW,
            source_tx_hash=ctx.tx_hash,
        )
        self._announce((event.seller,), "marketplace:listing-cancelled", {
            "streamId": str(event.stream_id),
            "seller": event.seller,
            "txHash": ctx.tx_hash,
        })

    # ==================== sales ====================

    async def _record_sale(
        self,
        event: ev.DirectPurchaseCompleted | ev.GatewayPurchaseCompleted,
        ctx: ProcessingContext,
        sale_type: SaleType,
        payment_id: str | None,
    ) -> None:
        await self.store.upsert(
            MarketplaceSale,
            {"sale_id": event.sale_id},
            {
                "stream_id": event.stream_id,
                "seller": event.seller,
                "buyer": event.buyer,
                "price": event.price,
                "marketplace_fee": event.marketplace_fee,
                "sale_type": sale_type,
                "payment_id": payment_id,
                "tx_hash": ctx.tx_hash,
                "block_height": ctx.block_height,
            },
        )
        await self.store.update(MarketplaceListing, event.stream_id, {
            "status": ListingStatus.SOLD,
            "buyer": event.buyer,
            "sold_at_block": ctx.block_height,
        })

        net = event.price - event.marketplace_fee
        await self.notifier.notify(
            event.buyer,
            "purchase_completed",
            "Purchase Successful!",
            f"You now own the payment stream #{event.stream_id}. Future payouts will be sent to you.",
            data={"streamId": str(event.stream_id), "price": str(event.price), "saleId": str(event.sale_id)},
            priority=NotificationPriority.HIGH,
            action_url=f"/dashboard/streams/{event.stream_id}",
            action_text="View Stream",
            source_tx_hash=ctx.tx_hash,
        )
        await self.notifier.notify(
            event.seller,
            "sale_completed",
            "Stream Sold!",
            f"Stream #{event.stream_id} sold to {short_principal(event.buyer)} for {event.price} sBTC. "
            f"You received {net} sBTC after fees.",
            data={
                "streamId": str(event.stream_id),
                "price": str(event.price),
                "marketplaceFee": str(event.marketplace_fee),
                "netAmount": str(net),
                "saleId": str(event.sale_id),
            },
            priority=NotificationPriority.HIGH,
            action_url="/dashboard/marketplace",
            action_text="View Sales",
            source_tx_hash=ctx.tx_hash,
        )
        self._announce((event.buyer, event.seller), "marketplace:sale", {
            "streamId": str(event.stream_id),
            "seller": event.seller,
            "buyer": event.buyer,
            "price": str(event.price),
            "marketplaceFee": str(event.marketplace_fee),
            "saleId": str(event.sale_id),
            "saleType": sale_type.value,
            "txHash": ctx.tx_hash,
        })

    @handles(ev.DirectPurchaseCompleted)
    async def on_direct_purchase(self, event: ev.DirectPurchaseCompleted, ctx: ProcessingContext) -> None:
        await self._record_sale(event, ctx, SaleType.DIRECT, None)

    @handles(ev.GatewayPurchaseCompleted)
    async def on_gateway_purchase(self, event: ev.GatewayPurchaseCompleted, ctx: ProcessingContext) -> None:
        await self.store.update(PendingPurchase, event.payment_id, {"status": PurchaseStatus.COMPLETED})
        await self._record_sale(event, ctx, SaleType.GATEWAY, event.payment_id)

    # ==================== gateway purchases ====================

    async def _payment_url(self, event: ev.PurchaseInitiated, price: int) -> tuple[str, str | None]:
        """(payment url, gateway payment id); falls back to the in-app purchase page."""
        fallback = purchase_page_url(event.payment_id)
        if self.payment_links is None or not self.payment_links.enabled or price <= 0:
            return fallback, None
        try:
            link = await self.payment_links.create_payment_link(
                payment_id=event.payment_id,
                stream_id=event.stream_id,
                buyer=event.buyer,
                seller=event.seller,
                amount=price,
            )
        except AppException as e:
            logger.warning(
                "Payment link creation failed, using purchase page",
                extra_data={"payment_id": event.payment_id, "error": e.message},
            )
            return fallback, None
        return link.payment_url, link.gateway_payment_id

    @handles(ev.PurchaseInitiated)
    async def on_purchase_initiated(self, event: ev.PurchaseInitiated, ctx: ProcessingContext) -> None:
        listing = await self.store.find(MarketplaceListing, event.stream_id)
        price = listing.price if listing is not None else 0
        payment_url, gateway_payment_id = await self._payment_url(event, price)

        await self.store.upsert(
            PendingPurchase,
            {"payment_id": event.payment_id},
            {
                "stream_id": event.stream_id,
                "seller": event.seller,
                "buyer": event.buyer,
                "price": price,
                "status": PurchaseStatus.PENDING,
                "initiated_at_block": event.initiated_at,
                "expires_at_block": event.expires_at,
                "payment_url": payment_url,
                "gateway_payment_id": gateway_payment_id,
            },
        )
        if listing is not None:
            listing.status = ListingStatus.PENDING_PAYMENT
            await self.store.db.flush()

        await self.notifier.notify(
            event.buyer,
            "purchase_initiated",
            "Complete Your Purchase",
            f"Complete payment of {price} sBTC for stream #{event.stream_id} before block {event.expires_at}.",
            data={
                "streamId": str(event.stream_id),
                "paymentId": event.payment_id,
                "price": str(price),
                "expiresAt": str(event.expires_at),
                "paymentUrl": payment_url,
            },
            priority=NotificationPriority.URGENT,
            action_url=payment_url,
            action_text="Pay Now",
            source_tx_hash=ctx.tx_hash,
        )
        await self.notifier.notify(
            event.seller,
            "purchase_initiated",
            "Purchase Pending",
            f"{short_principal(event.buyer)} started a purchase of stream #{event.stream_id}. Awaiting payment.",
            data={"streamId": str(event.stream_id), "paymentId": event.payment_id, "buyer": event.buyer},
            priority=NotificationPriority.NORMAL,
            source_tx_hash=ctx.tx_hash,
        )

        data = {
            "streamId": str(event.stream_id),
            "seller": event.seller,
            "buyer": event.buyer,
            "paymentId": event.payment_id,
            "price": str(price),
            "expiresAt": str(event.expires_at),
            "paymentUrl": payment_url,
            "txHash": ctx.tx_hash,
        }
        self.notifier.push_to_user(event.buyer, "marketplace:purchase-initiated", data)
        self.notifier.push_to_user(event.seller, "marketplace:purchase-initiated", data)

    @handles(ev.PurchaseExpired)
    async def on_purchase_expired(self, event: ev.PurchaseExpired, ctx: ProcessingContext) -> None:
        listing = await self.store.find(MarketplaceListing, event.stream_id)
        seller = UNKNOWN_USER
        if listing is not None and listing.status == ListingStatus.PENDING_PAYMENT:
            seller = listing.seller
            listing.status = ListingStatus.ACTIVE
            await self.store.db.flush()

        await self.store.update(PendingPurchase, event.payment_id, {"status": PurchaseStatus.EXPIRED})

        await self.notifier.notify(
            event.buyer,
            "purchase_expired",
            "Purchase Expired",
            f"Your purchase of stream #{event.stream_id} expired before payment was completed.",
            data={"streamId": str(event.stream_id), "paymentId": event.payment_id},
            priority=NotificationPriority.NORMAL,
            source_tx_hash=ctx.tx_hash,
        )
        await self.notifier.notify(
            seller,
            "purchase_expired",
            "Purchase Expired",
            f"The pending purchase of stream #{event.stream_id} expired. Your listing is active again.",
            data={"streamId": str(event.stream_id), "paymentId": event.payment_id, "buyer": event.buyer},
            priority=NotificationPriority.LOW,
            source_tx_hash=ctx.tx_hash,
        )

        data = {
            "streamId": str(event.stream_id),
            "buyer": event.buyer,
            "seller": seller,
            "paymentId": event.payment_id,
            "txHash": ctx.tx_hash,
        }
        self.notifier.push_to_user(event.buyer, "marketplace:purchase-expired", data)
        self.notifier.push_to_user(seller, "marketplace:purchase-expired", data)

    # ==================== administration ====================

    @handles(ev.BackendAuthorized)
    async def on_backend_authorized(self, event: ev.BackendAuthorized, ctx: ProcessingContext) -> None:
        await self.store.upsert(
            AuthorizedBackend,
            {"backend": event.backend},
            {"is_authorized": True, "changed_by": event.authorized_by, "changed_at_block": ctx.block_height},
        )

    @handles(ev.BackendDeauthorized)
    async def on_backend_deauthorized(self, event: ev.BackendDeauthorized, ctx: ProcessingContext) -> None:
        await self.store.upsert(
            AuthorizedBackend,
            {"backend": event.backend},
            {"is_authorized": False, "changed_by": event.deauthorized_by, "changed_at_block": ctx.block_height},
        )

    @handles(ev.MarketplaceFeeUpdated)
    async def on_fee_updated(self, event: ev.MarketplaceFeeUpdated, ctx: ProcessingContext) -> None:
        await self.store.upsert(
            SystemStatus,
            {"key": MARKETPLACE_FEE_KEY},
            {"value": {"fee": event.new_fee}, "updated_by": event.updated_by, "updated_at_block": ctx.block_height},
        )

    # ==================== revert ====================

    @reverts(ev.NFTListed)
    async def undo_listed(self, event: ev.NFTListed, ctx: ProcessingContext) -> None:
        await self.store.update(MarketplaceListing, event.stream_id, {"status": ListingStatus.ROLLED_BACK})

    @reverts(ev.ListingPriceUpdated)
    async def undo_price_updated(self, event: ev.ListingPriceUpdated, ctx: ProcessingContext) -> None:
        listing = await self.store.find(MarketplaceListing, event.stream_id)
        if listing is None:
            return
        listing.price = event.old_price
        history = [entry for entry in (listing.price_history or []) if entry.get("tx_hash") != ctx.tx_hash]
        listing.price_history = history
        await self.store.db.flush()

    @reverts(ev.ListingCancelled)
    async def undo_listing_cancelled(self, event: ev.ListingCancelled, ctx: ProcessingContext) -> None:
        await self.store.update(MarketplaceListing, event.stream_id, {"status": ListingStatus.ACTIVE})

    async def _undo_sale(self, event: ev.DirectPurchaseCompleted | ev.GatewayPurchaseCompleted) -> None:
        await self.store.delete_where(MarketplaceSale, sale_id=event.sale_id)
        await self.store.update(MarketplaceListing, event.stream_id, {
            "status": ListingStatus.ACTIVE,
            "buyer": None,
            "sold_at_block": None,
        })

    @reverts(ev.DirectPurchaseCompleted)
    async def undo_direct_purchase(self, event: ev.DirectPurchaseCompleted, ctx: ProcessingContext) -> None:
        await self._undo_sale(event)

    @reverts(ev.GatewayPurchaseCompleted)
    async def undo_gateway_purchase(self, event: ev.GatewayPurchaseCompleted, ctx: ProcessingContext) -> None:
        await self._undo_sale(event)
        await self.store.update(PendingPurchase, event.payment_id, {"status": PurchaseStatus.PENDING})

    @reverts(ev.PurchaseInitiated)
    async def undo_purchase_initiated(self, event: ev.PurchaseInitiated, ctx: ProcessingContext) -> None:
        await self.store.update(PendingPurchase, event.payment_id, {"status": PurchaseStatus.ROLLED_BACK})
        listing = await self.store.find(MarketplaceListing, event.stream_id)
        if listing is not None and listing.status == ListingStatus.PENDING_PAYMENT:
            listing.status = ListingStatus.ACTIVE
            await self.store.db.flush()

    @reverts(ev.PurchaseExpired)
    async def undo_purchase_expired(self, event: ev.PurchaseExpired, ctx: ProcessingContext) -> None:
        purchase = await self.store.update(PendingPurchase, event.payment_id, {"status": PurchaseStatus.PENDING})
        listing = await self.store.find(MarketplaceListing, event.stream_id)
        if purchase is not None and listing is not None and listing.status == ListingStatus.ACTIVE:
            listing.status = ListingStatus.PENDING_PAYMENT
            await self.store.db.flush()

    @reverts(ev.BackendAuthorized)
    async def undo_backend_authorized(self, event: ev.BackendAuthorized, ctx: ProcessingContext) -> None:
        await self.store.update(AuthorizedBackend, event.backend, {"is_authorized": False})

    @reverts(ev.BackendDeauthorized)
    async def undo_backend_deauthorized(self, event: ev.BackendDeauthorized, ctx: ProcessingContext) -> None:
        await self.store.update(AuthorizedBackend, event.backend, {"is_authorized": True})

    @reverts(ev.MarketplaceFeeUpdated)
    async def undo_fee_updated(self, event: ev.MarketplaceFeeUpdated, ctx: ProcessingContext) -> None:
        await self.store.update(SystemStatus, MARKETPLACE_FEE_KEY, {"value": {"fee": event.old_fee}})
