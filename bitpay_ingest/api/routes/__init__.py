"""
API Routes
"""
from fastapi import APIRouter

from bitpay_ingest.api.webhooks.chainhook import build_chainhook_router
from bitpay_ingest.api.webhooks.payment_gateway import router as payment_gateway_router
from bitpay_ingest.ingest.registry import DOMAINS

router = APIRouter()

for slug, spec in DOMAINS.items():
    router.include_router(
        build_chainhook_router(spec),
        prefix=f"/webhooks/chainhook/{slug}",
        tags=["chainhook"],
    )

router.include_router(payment_gateway_router, prefix="/webhooks/payment-gateway", tags=["webhooks"])

# Backwards-compatible endpoint: the first chainhook predicate was streams-only
router.include_router(
    build_chainhook_router(DOMAINS["streams"]),
    prefix="/webhooks/chainhook",
    tags=["chainhook"],
    include_in_schema=False
)
