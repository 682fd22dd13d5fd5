"""
Settlement Relay - asks the signing relay to call marketplace complete-purchase.

This service holds no keys. The relay signs and broadcasts the contract call
as the authorized backend principal and returns the transaction id.
"""
import httpx

from bitpay_ingest.core.circuit_breaker import CircuitBreaker, get_stackspay_circuit_breaker
from bitpay_ingest.core.config import settings
from bitpay_ingest.core.exceptions import PaymentGatewayError, ServiceTimeoutError
from bitpay_ingest.core.logging import get_logger, log_async_operation

logger = get_logger(__name__)


class SettlementRelay:
    def __init__(
        self,
        *,
        relay_url: str | None = None,
        relay_token: str | None = None,
        circuit_breaker: CircuitBreaker | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._relay_url = settings.SETTLEMENT_RELAY_URL if relay_url is None else relay_url
        self._relay_token = settings.SETTLEMENT_RELAY_TOKEN if relay_token is None else relay_token
        self._circuit_breaker = circuit_breaker or get_stackspay_circuit_breaker()
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self._relay_url)

    async def _submit(self, stream_id: int, buyer: str) -> str:
        body = {
            "contractAddress": settings.BITPAY_DEPLOYER_ADDRESS,
            "contractName": settings.MARKETPLACE_CONTRACT_NAME,
            "functionName": "complete-purchase",
            "functionArgs": [
                {"type": "uint", "value": str(stream_id)},
                {"type": "principal", "value": buyer},
            ],
        }
        headers = {"Authorization": f"Bearer {self._relay_token}"} if self._relay_token else {}
        timeout = settings.PAYMENT_LINK_TIMEOUT_SECONDS
        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
                response = await client.post(self._relay_url, json=body, headers=headers)
        except httpx.TimeoutException:
            raise ServiceTimeoutError("settlement_relay", timeout)
        except httpx.RequestError as e:
            raise PaymentGatewayError("complete_purchase", f"network error: {e}")

        if response.status_code >= 300:
            raise PaymentGatewayError.from_response("complete_purchase", response)

        data = response.json()
        txid = data.get("txid") or data.get("txId")
        if not txid:
            raise PaymentGatewayError("complete_purchase", str(data.get("error") or "relay returned no txid"))
        return txid

    @log_async_operation("settlement_complete_purchase")
    async def complete_purchase(self, stream_id: int, buyer: str) -> str:
        """Submit complete-purchase once; returns the broadcast transaction id."""
        if not self.configured:
            raise PaymentGatewayError("complete_purchase", "SETTLEMENT_RELAY_URL not configured")
        txid = await self._circuit_breaker.execute(self._submit, stream_id, buyer)
        logger.info(
            "complete-purchase broadcast",
            extra_data={"stream_id": stream_id, "txid": txid},
        )
        return txid


def get_settlement_relay() -> SettlementRelay:
    """Dependency for the settlement relay"""
    return SettlementRelay()
