"""
Payload Gate - admit a chainhook delivery or reject it before any processing.

Checks run in order and the first failure wins:
1. rate limit per client identity
2. ``Authorization: Bearer <CHAINHOOK_SECRET_TOKEN>``
3. body is JSON
4. body is a batch: an object whose ``apply`` / ``rollback`` are arrays of blocks
"""
import hmac
import json
from typing import Any

from fastapi import Request
from pydantic import ValidationError

from bitpay_ingest.core.config import settings
from bitpay_ingest.core.exceptions import (
    InvalidPayloadError,
    RateLimitExceededError,
    WebhookNotConfiguredError,
    WebhookUnauthorizedError,
)
from bitpay_ingest.core.logging import get_logger
from bitpay_ingest.core.rate_limit import SlidingWindowRateLimiter, webhook_rate_limiter
from bitpay_ingest.ingest.payload import ChainhookBatch

logger = get_logger(__name__)

DEFAULT_IDENTITY = "chainhook"


def client_identity(request: Request) -> str:
    """First X-Forwarded-For hop, else the socket peer, else a shared bucket."""
    forwarded = request.headers.get("x-forwarded-for", "")
    first_hop = forwarded.split(",")[0].strip()
    if first_hop:
        return first_hop
    if request.client and request.client.host:
        return request.client.host
    return DEFAULT_IDENTITY


class PayloadGate:
    def __init__(
        self,
        *,
        secret_token: str | None = None,
        rate_limiter: SlidingWindowRateLimiter | None = None,
        webhook: str = "chainhook",
    ) -> None:
        self.secret_token = settings.CHAINHOOK_SECRET_TOKEN if secret_token is None else secret_token
        self.rate_limiter = rate_limiter or webhook_rate_limiter
        self.webhook = webhook

    def check_rate_limit(self, identity: str) -> None:
        if not self.rate_limiter.hit(identity):
            retry_after = self.rate_limiter.retry_after(identity)
            logger.warning(
                "Webhook rate limit exceeded",
                extra_data={"identity": identity, "retry_after": retry_after, "webhook": self.webhook},
            )
            raise RateLimitExceededError(identity, retry_after)

    def authenticate(self, authorization: str | None) -> None:
        if not self.secret_token:
            logger.error("CHAINHOOK_SECRET_TOKEN not configured", extra_data={"webhook": self.webhook})
            raise WebhookNotConfiguredError(self.webhook)

        scheme, _, token = (authorization or "").partition(" ")
        if scheme.lower() != "bearer" or not token:
            logger.warning("Webhook without bearer token", extra_data={"webhook": self.webhook})
            raise WebhookUnauthorizedError()

        if not hmac.compare_digest(token.strip().encode(), self.secret_token.encode()):
            logger.warning("Webhook with wrong bearer token", extra_data={"webhook": self.webhook})
            raise WebhookUnauthorizedError()

    @staticmethod
    def parse(body: bytes) -> ChainhookBatch:
        try:
            document: Any = json.loads(body or b"null")
        except ValueError:
            raise InvalidPayloadError("Invalid JSON body")

        if not isinstance(document, dict):
            raise InvalidPayloadError("Invalid payload structure")
        if "apply" not in document and "rollback" not in document:
            raise InvalidPayloadError("Invalid payload structure")
        for key in ("apply", "rollback"):
            if key in document and not isinstance(document[key], list):
                raise InvalidPayloadError("Invalid payload structure", {"field": key})

        try:
            return ChainhookBatch.model_validate(document)
        except ValidationError as e:
            raise InvalidPayloadError(
                "Invalid payload structure",
                {"errors": e.error_count()},
            )

    async def admit(self, request: Request) -> ChainhookBatch:
        """Run every check against a request; returns the validated batch."""
        self.check_rate_limit(client_identity(request))
        self.authenticate(request.headers.get("authorization"))
        batch = self.parse(await request.body())
        logger.info(
            "Chainhook batch admitted",
            extra_data={
                "webhook": self.webhook,
                "apply": len(batch.apply),
                "rollback": len(batch.rollback),
                "delivery_id": batch.delivery_id,
            },
        )
        return batch
