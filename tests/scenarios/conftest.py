"""
Fixtures and helpers for end-to-end scenario tests.

Provides:
- concise senders for chainhook and StacksPay deliveries over HTTP
- DB assertion helpers (listing status, notification feed, journal)
"""
import json
import time

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from bitpay_ingest.api.dependencies.webhook_auth import stackspay_signature
from bitpay_ingest.db.models.chain_event import ChainEventRecord, JournalStatus
from bitpay_ingest.db.models.marketplace import ListingStatus, MarketplaceListing
from bitpay_ingest.db.models.notification import Notification
from tests.conftest import TEST_CHAINHOOK_TOKEN, TEST_STACKSPAY_SECRET


# ============================================================================
# Senders
# ============================================================================


async def post_chainhook(client, slug: str, document: dict):
    """POST one chainhook delivery to a domain endpoint with a valid token."""
    return await client.post(
        f"/api/webhooks/chainhook/{slug}",
        json=document,
        headers={"Authorization": f"Bearer {TEST_CHAINHOOK_TOKEN}"},
    )


async def post_stackspay(client, document: dict):
    """POST a StacksPay callback signed with the test secret."""
    raw = json.dumps(document).encode()
    ts = str(int(time.time()))
    return await client.post(
        "/api/webhooks/payment-gateway",
        content=raw,
        headers={
            "Content-Type": "application/json",
            "X-StacksPay-Signature": stackspay_signature(TEST_STACKSPAY_SECRET, ts, raw),
            "X-StacksPay-Timestamp": ts,
        },
    )


def stackspay_event(type: str, *, event_id: str, payment_id: str, metadata: dict) -> dict:
    return {
        "id": event_id,
        "type": type,
        "data": {
            "payment": {
                "id": payment_id,
                "status": type.split(".", 1)[1],
                "amount": 950_000,
                "currency": "SBTC",
                "metadata": metadata,
            },
        },
    }


# ============================================================================
# DB assertions
# ============================================================================


async def assert_listing_status(db: AsyncSession, stream_id: int, expected: ListingStatus) -> MarketplaceListing:
    listing = await db.get(MarketplaceListing, stream_id)
    assert listing is not None, f"listing {stream_id} not found"
    await db.refresh(listing)
    assert listing.status == expected, f"listing {stream_id}: expected {expected}, got {listing.status}"
    return listing


async def notification_types(db: AsyncSession, user_id: str) -> list[str]:
    result = await db.execute(
        select(Notification.type).where(Notification.user_id == user_id).order_by(Notification.id)
    )
    return list(result.scalars().all())


async def assert_journal_count(db: AsyncSession, domain: str, expected: int,
                               status: JournalStatus = JournalStatus.APPLIED) -> None:
    result = await db.execute(
        select(func.count(ChainEventRecord.id))
        .where(ChainEventRecord.domain == domain, ChainEventRecord.status == status)
    )
    count = result.scalar()
    assert count == expected, f"{domain} journal: expected {expected} {status.value} rows, got {count}"
