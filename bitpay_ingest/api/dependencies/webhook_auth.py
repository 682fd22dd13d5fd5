"""
Inbound webhook authentication.

Chainhook deliveries carry ``Authorization: Bearer <CHAINHOOK_SECRET_TOKEN>``
and go through the payload gate. StacksPay callbacks are signed:
``x-stackspay-signature`` is the hex HMAC-SHA256 of ``"{timestamp}.{body}"``
under STACKSPAY_WEBHOOK_SECRET, with ``x-stackspay-timestamp`` inside a
replay window of PAYMENT_WEBHOOK_TOLERANCE_SECONDS.

Usage:
    @router.post("")
    async def payment_gateway_webhook(
        ...,
        body: bytes = Depends(verify_stackspay_signature),
    ):
        ...
"""
import hashlib
import hmac
import time

from fastapi import Header, Request

from bitpay_ingest.core.config import settings
from bitpay_ingest.core.exceptions import InvalidSignatureError, WebhookNotConfiguredError
from bitpay_ingest.core.logging import get_logger
from bitpay_ingest.ingest.gate import PayloadGate

logger = get_logger(__name__)


def get_payload_gate() -> PayloadGate:
    """Dependency for the chainhook payload gate"""
    return PayloadGate()


def stackspay_signature(secret: str, timestamp: str, body: bytes) -> str:
    payload = f"{timestamp}.".encode() + body
    return hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()


async def verify_stackspay_signature(
    request: Request,
    x_stackspay_signature: str | None = Header(None),
    x_stackspay_timestamp: str | None = Header(None),
) -> bytes:
    """
    Verify a StacksPay callback and return its raw body.

    - STACKSPAY_WEBHOOK_SECRET not set: 401, nothing can be verified.
    - Missing headers, stale timestamp or signature mismatch: 401.
    """
    secret = settings.STACKSPAY_WEBHOOK_SECRET
    if not secret:
        logger.error("STACKSPAY_WEBHOOK_SECRET not configured")
        raise WebhookNotConfiguredError("payment-gateway")

    if not x_stackspay_signature or not x_stackspay_timestamp:
        logger.warning("Payment webhook without signature headers")
        raise InvalidSignatureError()

    try:
        sent_at = int(x_stackspay_timestamp)
    except ValueError:
        raise InvalidSignatureError()

    if abs(int(time.time()) - sent_at) > settings.PAYMENT_WEBHOOK_TOLERANCE_SECONDS:
        logger.warning("Payment webhook timestamp outside tolerance", extra_data={"timestamp": sent_at})
        raise InvalidSignatureError()

    body = await request.body()
    expected = stackspay_signature(secret, x_stackspay_timestamp, body)
    # timing-safe comparison
    if not hmac.compare_digest(x_stackspay_signature.encode(), expected.encode()):
        logger.warning("Payment webhook with wrong signature")
        raise InvalidSignatureError()

    return body
