"""
Domain Dispatchers - one per BitPay contract domain
"""
from bitpay_ingest.domain.dispatchers.base import DomainDispatcher, handles, reverts
from bitpay_ingest.domain.dispatchers.streams import StreamsDispatcher
from bitpay_ingest.domain.dispatchers.marketplace import MarketplaceDispatcher
from bitpay_ingest.domain.dispatchers.nft import NFTDispatcher
from bitpay_ingest.domain.dispatchers.treasury import TreasuryDispatcher
from bitpay_ingest.domain.dispatchers.access_control import AccessControlDispatcher

__all__ = [
    "DomainDispatcher",
    "handles",
    "reverts",
    "StreamsDispatcher",
    "MarketplaceDispatcher",
    "NFTDispatcher",
    "TreasuryDispatcher",
    "AccessControlDispatcher",
]
