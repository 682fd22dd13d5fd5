"""
Domain Event Schema - one closed tagged union per business domain
"""
from bitpay_ingest.domain.events.base import DomainEvent, union_members, union_tags
from bitpay_ingest.domain.events.streams import StreamEvent
from bitpay_ingest.domain.events.marketplace import MarketplaceEvent
from bitpay_ingest.domain.events.nft import NFTEvent, NativeAssetEvent, NATIVE_ASSET_TAG
from bitpay_ingest.domain.events.treasury import TreasuryEvent
from bitpay_ingest.domain.events.access_control import AccessControlEvent

__all__ = [
    "DomainEvent",
    "union_members",
    "union_tags",
    "StreamEvent",
    "MarketplaceEvent",
    "NFTEvent",
    "NativeAssetEvent",
    "NATIVE_ASSET_TAG",
    "TreasuryEvent",
    "AccessControlEvent",
]
