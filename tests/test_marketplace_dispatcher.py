"""
Tests for the marketplace projection: listings, direct and gateway purchases.
"""
import pytest
from sqlalchemy import select

from bitpay_ingest.core.exceptions import PaymentGatewayError
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
from bitpay_ingest.db.models.notification import Notification, NotificationPriority
from tests.chainhook_payloads import (
    batch,
    block,
    direct_purchase,
    nft_listed,
    print_event,
    purchase_expired,
    purchase_initiated,
    transaction,
)


def _delivery(*values, index: int = 200) -> dict:
    events = [print_event(v, contract_name="bitpay-marketplace") for v in values]
    return batch(apply=[block(index, transaction(*events))])


async def _listing(db_session, stream_id: int = 7) -> MarketplaceListing:
    listing = await db_session.get(MarketplaceListing, stream_id)
    await db_session.refresh(listing)
    return listing


async def _notification_types(db_session, user_id: str) -> list[str]:
    result = await db_session.execute(
        select(Notification.type).where(Notification.user_id == user_id).order_by(Notification.id)
    )
    return list(result.scalars().all())


class TestListings:

    @pytest.mark.integration
    async def test_listing_creates_active_listing(self, db_session, hub, run_batch):
        result = await run_batch("marketplace", _delivery(nft_listed()))

        assert result.processed == 1
        listing = await _listing(db_session)
        assert listing.seller == "SP_A"
        assert listing.price == 950_000
        assert listing.status == ListingStatus.ACTIVE
        assert listing.listed_at_block == 200
        assert len(listing.price_history) == 1

        assert await _notification_types(db_session, "SP_A") == ["nft_listed"]
        assert hub.events("marketplace") == ["marketplace:new-listing"]
        assert hub.events("user:SP_A") == ["marketplace:new-listing"]

    @pytest.mark.integration
    async def test_price_update_appends_history(self, db_session, hub, run_batch):
        await run_batch("marketplace", _delivery(nft_listed()))
        update = {
            "event": "market-listing-price-updated",
            "stream-id": 7,
            "seller": "SP_A",
            "old-price": 950_000,
            "new-price": 800_000,
        }
        await run_batch("marketplace", _delivery(update, index=201))

        listing = await _listing(db_session)
        assert listing.price == 800_000
        assert [h["price"] for h in listing.price_history] == [950_000, 800_000]
        assert "marketplace:listing-updated" in hub.events("marketplace")

    @pytest.mark.integration
    async def test_listing_cancelled(self, db_session, run_batch):
        await run_batch("marketplace", _delivery(nft_listed()))
        cancel = {"event": "market-listing-cancelled", "stream-id": 7, "seller": "SP_A"}
        await run_batch("marketplace", _delivery(cancel, index=202))

        assert (await _listing(db_session)).status == ListingStatus.CANCELLED
        assert await _notification_types(db_session, "SP_A") == ["nft_listed", "listing_cancelled"]

    @pytest.mark.integration
    async def test_relisting_reactivates(self, db_session, run_batch):
        await run_batch("marketplace", _delivery(nft_listed(price=100)))
        await run_batch("marketplace", _delivery({"event": "market-listing-cancelled", "stream-id": 7, "seller": "SP_A"}, index=201))
        await run_batch("marketplace", _delivery(nft_listed(price=200), index=202))

        listing = await _listing(db_session)
        assert listing.status == ListingStatus.ACTIVE
        assert listing.price == 200


class TestDirectPurchase:

    @pytest.mark.integration
    async def test_sale_marks_listing_sold(self, db_session, hub, run_batch):
        await run_batch("marketplace", _delivery(nft_listed()))
        hub.emitted.clear()

        result = await run_batch("marketplace", _delivery(direct_purchase(), index=220))

        assert result.processed == 1
        sale = await db_session.get(MarketplaceSale, 1)
        assert sale.sale_type == SaleType.DIRECT
        assert sale.price == 950_000
        assert sale.marketplace_fee == 9_500

        listing = await _listing(db_session)
        assert listing.status == ListingStatus.SOLD
        assert listing.buyer == "SP_B"
        assert listing.sold_at_block == 220

        assert await _notification_types(db_session, "SP_B") == ["purchase_completed"]
        seller_notes = (await db_session.execute(
            select(Notification).where(Notification.user_id == "SP_A", Notification.type == "sale_completed")
        )).scalars().all()
        assert seller_notes[0].data["netAmount"] == "940500"
        assert hub.events("marketplace") == ["marketplace:sale"]


class TestGatewayPurchase:

    @pytest.mark.integration
    async def test_initiated_without_gateway_uses_purchase_page(self, db_session, hub, run_batch, payment_links):
        await run_batch("marketplace", _delivery(nft_listed()))

        result = await run_batch("marketplace", _delivery(purchase_initiated(), index=210))

        assert result.processed == 1
        assert payment_links.calls == []
        purchase = await db_session.get(PendingPurchase, "pay-1")
        assert purchase.status == PurchaseStatus.PENDING
        assert purchase.price == 950_000
        assert purchase.expires_at_block == 354
        assert purchase.gateway_payment_id is None
        assert purchase.payment_url.endswith("/dashboard/marketplace/purchase/pay-1")
        assert (await _listing(db_session)).status == ListingStatus.PENDING_PAYMENT

        buyer_notes = (await db_session.execute(
            select(Notification).where(Notification.user_id == "SP_B")
        )).scalars().all()
        assert buyer_notes[0].priority == NotificationPriority.URGENT
        assert hub.events("user:SP_B") == ["marketplace:purchase-initiated"]

    @pytest.mark.integration
    async def test_initiated_with_gateway_link(self, db_session, run_batch, payment_links):
        payment_links._api_url = "https://pay.test"
        await run_batch("marketplace", _delivery(nft_listed()))

        await run_batch("marketplace", _delivery(purchase_initiated(), index=210))

        assert payment_links.calls == [{
            "payment_id": "pay-1",
            "stream_id": 7,
            "buyer": "SP_B",
            "seller": "SP_A",
            "amount": 950_000,
        }]
        purchase = await db_session.get(PendingPurchase, "pay-1")
        assert purchase.gateway_payment_id == "sp_pay-1"
        assert purchase.payment_url == "https://pay.test/checkout/pay-1"

    @pytest.mark.integration
    async def test_gateway_failure_falls_back(self, db_session, run_batch, payment_links):
        payment_links._api_url = "https://pay.test"
        payment_links.error = PaymentGatewayError("create_payment_link", "HTTP 503")
        await run_batch("marketplace", _delivery(nft_listed()))

        result = await run_batch("marketplace", _delivery(purchase_initiated(), index=210))

        assert result.success
        purchase = await db_session.get(PendingPurchase, "pay-1")
        assert purchase.gateway_payment_id is None
        assert purchase.payment_url.endswith("/purchase/pay-1")

    @pytest.mark.integration
    async def test_expiry_reactivates_listing(self, db_session, hub, run_batch):
        await run_batch("marketplace", _delivery(nft_listed(), purchase_initiated()))
        hub.emitted.clear()

        await run_batch("marketplace", _delivery(purchase_expired(), index=360))

        purchase = await db_session.get(PendingPurchase, "pay-1")
        await db_session.refresh(purchase)
        assert purchase.status == PurchaseStatus.EXPIRED
        assert (await _listing(db_session)).status == ListingStatus.ACTIVE
        assert hub.events("user:SP_B") == ["marketplace:purchase-expired"]
        assert hub.events("user:SP_A") == ["marketplace:purchase-expired"]

    @pytest.mark.integration
    async def test_expiry_of_unknown_listing_has_no_seller(self, db_session, hub, run_batch):
        result = await run_batch("marketplace", _delivery(purchase_expired(stream_id=55)))

        assert result.processed == 1
        assert hub.events("user:unknown") == []
        assert await _notification_types(db_session, "unknown") == []

    @pytest.mark.integration
    async def test_gateway_completion_records_sale(self, db_session, run_batch):
        await run_batch("marketplace", _delivery(nft_listed(), purchase_initiated()))
        completed = {
            "event": "market-gateway-purchase-completed",
            "stream-id": 7,
            "seller": "SP_A",
            "buyer": "SP_B",
            "price": 950_000,
            "marketplace-fee": 9_500,
            "payment-id": "pay-1",
            "sale-id": 4,
        }
        await run_batch("marketplace", _delivery(completed, index=230))

        sale = await db_session.get(MarketplaceSale, 4)
        assert sale.sale_type == SaleType.GATEWAY
        assert sale.payment_id == "pay-1"
        purchase = await db_session.get(PendingPurchase, "pay-1")
        await db_session.refresh(purchase)
        assert purchase.status == PurchaseStatus.COMPLETED
        assert (await _listing(db_session)).status == ListingStatus.SOLD


class TestAdministration:

    @pytest.mark.integration
    async def test_backend_authorization_toggles(self, db_session, run_batch):
        authorized = {"event": "market-backend-authorized", "backend": "SP_BACKEND", "authorized-by": "SP_ROOT"}
        revoked = {"event": "market-backend-deauthorized", "backend": "SP_BACKEND", "deauthorized-by": "SP_ROOT"}

        await run_batch("marketplace", _delivery(authorized))
        backend = await db_session.get(AuthorizedBackend, "SP_BACKEND")
        assert backend.is_authorized is True

        await run_batch("marketplace", _delivery(revoked, index=201))
        await db_session.refresh(backend)
        assert backend.is_authorized is False
        assert backend.changed_by == "SP_ROOT"

    @pytest.mark.integration
    async def test_fee_update_is_stored(self, db_session, run_batch):
        update = {"event": "market-marketplace-fee-updated", "old-fee": 100, "new-fee": 250, "updated-by": "SP_ROOT"}
        await run_batch("marketplace", _delivery(update))

        status = await db_session.get(SystemStatus, "marketplace_fee")
        assert status.value == {"fee": 250}


class TestFailedTransactions:

    @pytest.mark.integration
    async def test_failed_listing_transaction_leaves_no_trace(self, db_session, hub, chain_reader, payment_links):
        from bitpay_ingest.db.models.chain_event import ChainEventRecord
        from bitpay_ingest.ingest.payload import ChainhookBatch
        from bitpay_ingest.ingest.registry import build_pipeline

        events = [print_event(nft_listed(), contract_name="bitpay-marketplace")]
        document = batch(apply=[block(200, transaction(*events, success=False))])
        pipeline = build_pipeline(
            "marketplace", db_session, hub,
            chain_reader=chain_reader,
            payment_links=payment_links,
        )

        result = await pipeline.run(ChainhookBatch.model_validate(document))

        assert result.success
        assert result.processed == 0
        assert await db_session.get(MarketplaceListing, 7) is None
        assert (await db_session.execute(select(Notification))).scalars().all() == []
        assert (await db_session.execute(select(ChainEventRecord))).scalars().all() == []
        assert pipeline.notifier.pending == []
        assert hub.emitted == []
