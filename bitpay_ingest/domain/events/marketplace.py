"""
Marketplace events (bitpay-marketplace).
"""
from typing import Annotated, Literal, Union

from pydantic import Field

from bitpay_ingest.domain.events.base import DomainEvent, Principal, Text, Uint


class NFTListed(DomainEvent):
    event: Literal["market-nft-listed"] = "market-nft-listed"
    stream_id: Uint
    seller: Principal
    price: Uint
    listed_at: Uint


class ListingPriceUpdated(DomainEvent):
    event: Literal["market-listing-price-updated"] = "market-listing-price-updated"
    stream_id: Uint
    seller: Principal
    old_price: Uint
    new_price: Uint


class ListingCancelled(DomainEvent):
    event: Literal["market-listing-cancelled"] = "market-listing-cancelled"
    stream_id: Uint
    seller: Principal


class DirectPurchaseCompleted(DomainEvent):
    event: Literal["market-direct-purchase-completed"] = "market-direct-purchase-completed"
    stream_id: Uint
    seller: Principal
    buyer: Principal
    price: Uint
    marketplace_fee: Uint
    sale_id: Uint


class PurchaseInitiated(DomainEvent):
    event: Literal["market-purchase-initiated"] = "market-purchase-initiated"
    stream_id: Uint
    seller: Principal
    buyer: Principal
    payment_id: Text
    initiated_at: Uint
    expires_at: Uint


class GatewayPurchaseCompleted(DomainEvent):
    event: Literal["market-gateway-purchase-completed"] = "market-gateway-purchase-completed"
    stream_id: Uint
    seller: Principal
    buyer: Principal
    price: Uint
    marketplace_fee: Uint
    payment_id: Text
    sale_id: Uint


class PurchaseExpired(DomainEvent):
    event: Literal["market-purchase-expired"] = "market-purchase-expired"
    stream_id: Uint
    buyer: Principal
    payment_id: Text


class BackendAuthorized(DomainEvent):
    event: Literal["market-backend-authorized"] = "market-backend-authorized"
    backend: Principal
    authorized_by: Principal


class BackendDeauthorized(DomainEvent):
    event: Literal["market-backend-deauthorized"] = "market-backend-deauthorized"
    backend: Principal
    deauthorized_by: Principal


class MarketplaceFeeUpdated(DomainEvent):
    event: Literal["market-marketplace-fee-updated"] = "market-marketplace-fee-updated"
    old_fee: Uint
    new_fee: Uint
    updated_by: Principal


MarketplaceEvent = Annotated[
    Union[
        NFTListed,
        ListingPriceUpdated,
        ListingCancelled,
        DirectPurchaseCompleted,
        PurchaseInitiated,
        GatewayPurchaseCompleted,
        PurchaseExpired,
        BackendAuthorized,
        BackendDeauthorized,
        MarketplaceFeeUpdated,
    ],
    Field(discriminator="event"),
]
