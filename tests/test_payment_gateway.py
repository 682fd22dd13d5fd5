"""
Tests for the StacksPay webhook: signature verification, payment status
handling, settlement submission and delivery de-duplication.
"""
import json
import time

import httpx
import pytest
from sqlalchemy import select

from bitpay_ingest.api.dependencies.webhook_auth import stackspay_signature
from bitpay_ingest.core.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from bitpay_ingest.core.exceptions import PaymentGatewayError
from bitpay_ingest.db.models.marketplace import ListingStatus, MarketplaceListing, PendingPurchase, PurchaseStatus
from bitpay_ingest.db.models.notification import Notification
from bitpay_ingest.db.models.payment import PaymentConfirmation, PaymentStatus, SettlementStatus
from bitpay_ingest.db.models.webhook_event import WebhookEvent
from bitpay_ingest.domain.services.settlement import SettlementRelay
from tests.chainhook_payloads import batch, block, nft_listed, print_event, purchase_initiated, transaction
from tests.conftest import TEST_STACKSPAY_SECRET

URL = "/api/webhooks/payment-gateway"


def gateway_event(
    type: str,
    *,
    event_id: str | None = "evt_1",
    payment_id: str = "sp_pay-1",
    metadata: dict | None = None,
) -> dict:
    body = {
        "type": type,
        "data": {
            "payment": {
                "id": payment_id,
                "status": type.split(".", 1)[1],
                "amount": 950_000,
                "currency": "SBTC",
                "transactionId": "0xpaid",
                "metadata": metadata if metadata is not None else {
                    "streamId": "7",
                    "buyer": "SP_B",
                    "seller": "SP_A",
                    "paymentId": "pay-1",
                },
            },
        },
    }
    if event_id is not None:
        body["id"] = event_id
    return body


def signed_headers(raw: bytes, *, secret: str = TEST_STACKSPAY_SECRET, timestamp: int | None = None) -> dict:
    ts = str(timestamp if timestamp is not None else int(time.time()))
    return {
        "Content-Type": "application/json",
        "X-StacksPay-Signature": stackspay_signature(secret, ts, raw),
        "X-StacksPay-Timestamp": ts,
    }


async def post_signed(client, document: dict, **kwargs):
    raw = json.dumps(document).encode()
    return await client.post(URL, content=raw, headers=signed_headers(raw, **kwargs))


class TestSignature:

    @pytest.mark.integration
    async def test_missing_headers(self, test_client):
        response = await test_client.post(URL, json=gateway_event("payment.created"))
        assert response.status_code == 401
        assert response.json()["success"] is False

    @pytest.mark.integration
    async def test_wrong_secret(self, test_client):
        response = await post_signed(test_client, gateway_event("payment.created"), secret="other")
        assert response.status_code == 401

    @pytest.mark.integration
    async def test_stale_timestamp(self, test_client):
        response = await post_signed(
            test_client, gateway_event("payment.created"), timestamp=int(time.time()) - 3600,
        )
        assert response.status_code == 401

    @pytest.mark.integration
    async def test_tampered_body(self, test_client):
        raw = json.dumps(gateway_event("payment.created")).encode()
        headers = signed_headers(raw)
        response = await test_client.post(URL, content=raw.replace(b"950000", b"1"), headers=headers)
        assert response.status_code == 401

    @pytest.mark.integration
    async def test_unconfigured_secret(self, test_client):
        from unittest.mock import patch
        from bitpay_ingest.core.config import settings

        with patch.object(settings, "STACKSPAY_WEBHOOK_SECRET", ""):
            response = await post_signed(test_client, gateway_event("payment.created"))
        assert response.status_code == 401

    @pytest.mark.integration
    async def test_signed_garbage_is_400(self, test_client):
        raw = b"not json"
        response = await test_client.post(URL, content=raw, headers=signed_headers(raw))
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid JSON body"

    @pytest.mark.integration
    async def test_signed_wrong_shape_is_400(self, test_client):
        response = await post_signed(test_client, {"type": "payment.created", "data": {}})
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid payload structure"


class TestPaymentStatuses:

    @pytest.mark.integration
    async def test_created_records_confirmation(self, test_client, db_session):
        response = await post_signed(test_client, gateway_event("payment.created"))

        assert response.status_code == 200
        assert response.json()["paymentId"] == "sp_pay-1"
        confirmation = await db_session.get(PaymentConfirmation, "sp_pay-1")
        assert confirmation.status == PaymentStatus.CREATED
        assert confirmation.stream_id == 7
        assert confirmation.payment_id == "pay-1"

    @pytest.mark.integration
    async def test_completed_submits_settlement(self, test_client, db_session, settlement_relay):
        response = await post_signed(test_client, gateway_event("payment.completed"))

        assert response.status_code == 200
        body = response.json()
        assert body["blockchainTxId"] == "0xsettled"
        assert body["streamId"] == "7"
        assert settlement_relay.calls == [(7, "SP_B")]

        confirmation = await db_session.get(PaymentConfirmation, "sp_pay-1")
        await db_session.refresh(confirmation)
        assert confirmation.status == PaymentStatus.COMPLETED
        assert confirmation.settlement_status == SettlementStatus.PENDING
        assert confirmation.settlement_tx_id == "0xsettled"

    @pytest.mark.integration
    async def test_completed_without_metadata_is_500(self, test_client, db_session, settlement_relay):
        response = await post_signed(test_client, gateway_event("payment.completed", metadata={"buyer": "SP_B"}))

        assert response.status_code == 500
        assert response.json()["success"] is False
        assert settlement_relay.calls == []

        confirmation = await db_session.get(PaymentConfirmation, "sp_pay-1")
        await db_session.refresh(confirmation)
        assert confirmation.status == PaymentStatus.COMPLETED
        assert confirmation.settlement_status == SettlementStatus.FAILED
        assert "streamId" in confirmation.error

    @pytest.mark.integration
    async def test_relay_failure_is_500_and_recorded(self, test_client, db_session, settlement_relay):
        settlement_relay.error = PaymentGatewayError("complete_purchase", "HTTP 502")

        response = await post_signed(test_client, gateway_event("payment.completed"))

        assert response.status_code == 500
        confirmation = await db_session.get(PaymentConfirmation, "sp_pay-1")
        await db_session.refresh(confirmation)
        assert confirmation.settlement_status == SettlementStatus.FAILED
        event = await db_session.get(WebhookEvent, "evt_1")
        await db_session.refresh(event)
        assert event.status == "failed"

    @pytest.mark.integration
    async def test_unhandled_type_is_acknowledged(self, test_client):
        response = await post_signed(test_client, gateway_event("payment.refunded"))
        assert response.status_code == 200
        assert response.json() == {"success": True, "handled": False}


class TestPurchaseRelease:

    @pytest.fixture
    async def pending_purchase(self, run_batch, payment_links):
        payment_links._api_url = "https://pay.test"
        await run_batch("marketplace", batch(apply=[
            block(200, transaction(print_event(nft_listed()))),
            block(210, transaction(print_event(purchase_initiated()))),
        ]))

    @pytest.mark.integration
    async def test_failed_payment_reopens_listing(self, test_client, db_session, pending_purchase):
        response = await post_signed(test_client, gateway_event("payment.failed"))

        assert response.status_code == 200
        purchase = await db_session.get(PendingPurchase, "pay-1")
        await db_session.refresh(purchase)
        assert purchase.status == PurchaseStatus.FAILED
        listing = await db_session.get(MarketplaceListing, 7)
        await db_session.refresh(listing)
        assert listing.status == ListingStatus.ACTIVE

        types = (await db_session.execute(
            select(Notification.type).where(Notification.user_id == "SP_B")
        )).scalars().all()
        assert "purchase_failed" in types

    @pytest.mark.integration
    async def test_cancelled_payment_found_by_gateway_id(self, test_client, db_session, pending_purchase):
        response = await post_signed(test_client, gateway_event("payment.cancelled", metadata={}))

        assert response.status_code == 200
        purchase = await db_session.get(PendingPurchase, "pay-1")
        await db_session.refresh(purchase)
        assert purchase.status == PurchaseStatus.CANCELLED

        note = (await db_session.execute(
            select(Notification).where(Notification.type == "purchase_cancelled")
        )).scalar_one()
        assert note.user_id == "SP_B"


class TestDeliveryIdempotency:

    @pytest.mark.integration
    async def test_completed_delivery_is_not_repeated(self, test_client, settlement_relay):
        document = gateway_event("payment.completed")

        first = await post_signed(test_client, document)
        second = await post_signed(test_client, document)

        assert first.status_code == 200
        assert second.status_code == 200
        assert second.json()["duplicate"] is True
        assert settlement_relay.calls == [(7, "SP_B")]

    @pytest.mark.integration
    async def test_failed_delivery_can_be_retried(self, test_client, settlement_relay):
        document = gateway_event("payment.completed")
        settlement_relay.error = PaymentGatewayError("complete_purchase", "HTTP 502")
        assert (await post_signed(test_client, document)).status_code == 500

        settlement_relay.error = None
        retry = await post_signed(test_client, document)

        assert retry.status_code == 200
        assert retry.json()["blockchainTxId"] == "0xsettled"
        assert len(settlement_relay.calls) == 2

    @pytest.mark.integration
    async def test_delivery_id_defaults_to_type_and_payment(self, test_client, db_session):
        await post_signed(test_client, gateway_event("payment.pending", event_id=None))

        event = await db_session.get(WebhookEvent, "payment.pending:sp_pay-1")
        assert event is not None
        assert event.source == "stackspay"


class TestDescriptor:

    @pytest.mark.integration
    async def test_get_describes_gateway(self, test_client):
        response = await test_client.get(URL)
        assert response.status_code == 200
        body = response.json()
        assert body["gateway"] == "StacksPay"
        assert body["supportedCurrencies"] == ["BTC", "STX", "SBTC"]


class TestSettlementRelay:

    @staticmethod
    def _breaker() -> CircuitBreaker:
        return CircuitBreaker("relay-test", CircuitBreakerConfig(failure_threshold=5))

    @pytest.mark.unit
    async def test_submits_complete_purchase(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"txid": "0xabc"})

        relay = SettlementRelay(
            relay_url="https://relay.test/submit",
            relay_token="tok",
            circuit_breaker=self._breaker(),
            transport=httpx.MockTransport(handler),
        )
        assert await relay.complete_purchase(7, "SP_B") == "0xabc"
        assert seen["auth"] == "Bearer tok"
        assert seen["body"]["functionName"] == "complete-purchase"
        assert seen["body"]["functionArgs"] == [
            {"type": "uint", "value": "7"},
            {"type": "principal", "value": "SP_B"},
        ]

    @pytest.mark.unit
    async def test_http_error_raises(self):
        relay = SettlementRelay(
            relay_url="https://relay.test/submit",
            relay_token="",
            circuit_breaker=self._breaker(),
            transport=httpx.MockTransport(lambda request: httpx.Response(502, text="bad gateway")),
        )
        with pytest.raises(PaymentGatewayError):
            await relay.complete_purchase(7, "SP_B")

    @pytest.mark.unit
    async def test_unconfigured_relay_raises(self):
        relay = SettlementRelay(relay_url="", relay_token="", circuit_breaker=self._breaker())
        with pytest.raises(PaymentGatewayError):
            await relay.complete_purchase(7, "SP_B")
