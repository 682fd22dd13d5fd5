"""
Chain Reader - read-only contract calls against the Stacks API.

Used by the treasury domain for the two authoritative reads the projection
cannot answer itself: the current admin set and the approval threshold.
"""
from typing import Any

import httpx

from bitpay_ingest.core.circuit_breaker import CircuitBreaker, get_stacks_api_circuit_breaker
from bitpay_ingest.core.config import settings
from bitpay_ingest.core.exceptions import ChainReadError, ServiceTimeoutError
from bitpay_ingest.core.logging import get_logger
from bitpay_ingest.domain.services.clarity import ClarityDecodeError, decode_clarity_hex, unwrap_response

logger = get_logger(__name__)


class ChainReader:
    """POST /v2/contracts/call-read/{address}/{contract}/{function}"""

    def __init__(
        self,
        *,
        api_url: str | None = None,
        contract_address: str | None = None,
        circuit_breaker: CircuitBreaker | None = None,
        timeout_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_url = api_url or settings.STACKS_API_URL
        self._contract_address = contract_address or settings.BITPAY_DEPLOYER_ADDRESS
        self._circuit_breaker = circuit_breaker or get_stacks_api_circuit_breaker()
        self._timeout = timeout_seconds or settings.CHAIN_READ_TIMEOUT_SECONDS
        self._transport = transport

    async def _call(self, contract_name: str, function_name: str) -> Any:
        url = (
            f"{self._api_url}/v2/contracts/call-read/"
            f"{self._contract_address}/{contract_name}/{function_name}"
        )
        body = {"sender": self._contract_address, "arguments": []}

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(url, json=body)
        except httpx.TimeoutException:
            raise ServiceTimeoutError("stacks_api", self._timeout)
        except httpx.RequestError as e:
            raise ChainReadError(function_name, f"network error: {e}")

        if response.status_code != 200:
            raise ChainReadError.from_response(function_name, response)

        payload = response.json()
        if not payload.get("okay"):
            raise ChainReadError(function_name, str(payload.get("cause", "call not okay")))

        try:
            return unwrap_response(decode_clarity_hex(payload.get("result", "")))
        except ClarityDecodeError as e:
            raise ChainReadError(function_name, str(e))

    async def call_read_only(self, contract_name: str, function_name: str) -> Any:
        """Decoded result of a zero-argument read-only function, behind the breaker."""
        return await self._circuit_breaker.execute(self._call, contract_name, function_name)

    async def get_treasury_admins(self) -> list[str]:
        value = await self.call_read_only(settings.TREASURY_CONTRACT_NAME, "get-admins")
        if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
            raise ChainReadError("get-admins", f"unexpected value {value!r}")
        return value

    async def get_approval_threshold(self) -> int:
        value = await self.call_read_only(settings.TREASURY_CONTRACT_NAME, "get-approval-threshold")
        if isinstance(value, bool) or not isinstance(value, int):
            raise ChainReadError("get-approval-threshold", f"unexpected value {value!r}")
        return value


def get_chain_reader() -> ChainReader:
    """Dependency for the chain reader"""
    return ChainReader()
