"""
StacksPay payment links for gateway marketplace purchases.
"""
from dataclasses import dataclass

import httpx

from bitpay_ingest.core.circuit_breaker import CircuitBreaker, get_stackspay_circuit_breaker
from bitpay_ingest.core.config import settings
from bitpay_ingest.core.exceptions import PaymentGatewayError, ServiceTimeoutError
from bitpay_ingest.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class PaymentLink:
    gateway_payment_id: str | None
    payment_url: str


def purchase_page_url(payment_id: str) -> str:
    """In-app purchase page; the fallback when no gateway link is created."""
    return f"{settings.APP_URL}/dashboard/marketplace/purchase/{payment_id}"


class PaymentLinkClient:
    """POST {STACKSPAY_API_URL}/payments"""

    def __init__(
        self,
        *,
        api_url: str | None = None,
        api_key: str | None = None,
        circuit_breaker: CircuitBreaker | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_url = settings.STACKSPAY_API_URL if api_url is None else api_url
        self._api_key = settings.STACKSPAY_API_KEY if api_key is None else api_key
        self._circuit_breaker = circuit_breaker or get_stackspay_circuit_breaker()
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self._api_url)

    async def _create(
        self,
        *,
        payment_id: str,
        stream_id: int,
        buyer: str,
        seller: str,
        amount: int,
    ) -> PaymentLink:
        body = {
            "amount": str(amount),
            "currency": "SBTC",
            "metadata": {
                "streamId": str(stream_id),
                "buyer": buyer,
                "seller": seller,
                "paymentId": payment_id,
            },
            "webhookUrl": f"{settings.APP_URL}/api/webhooks/payment-gateway",
            "returnUrl": f"{purchase_page_url(payment_id)}/complete",
        }
        timeout = settings.PAYMENT_LINK_TIMEOUT_SECONDS
        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self._api_url}/payments",
                    json=body,
                    headers={"Authorization": f"Bearer {self._api_key}"},
                )
        except httpx.TimeoutException:
            raise ServiceTimeoutError("stackspay", timeout)
        except httpx.RequestError as e:
            raise PaymentGatewayError("create_payment_link", f"network error: {e}")

        if response.status_code >= 300:
            raise PaymentGatewayError.from_response("create_payment_link", response)

        data = response.json()
        return PaymentLink(
            gateway_payment_id=data.get("id"),
            payment_url=data.get("paymentUrl") or purchase_page_url(payment_id),
        )

    async def create_payment_link(
        self,
        *,
        payment_id: str,
        stream_id: int,
        buyer: str,
        seller: str,
        amount: int,
    ) -> PaymentLink:
        return await self._circuit_breaker.execute(
            self._create,
            payment_id=payment_id,
            stream_id=stream_id,
            buyer=buyer,
            seller=seller,
            amount=amount,
        )


def get_payment_link_client() -> PaymentLinkClient:
    """Dependency for the StacksPay payment link client"""
    return PaymentLinkClient()
