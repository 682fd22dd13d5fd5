"""
NFT events (bitpay-obligation-nft) plus native asset records.
"""
from typing import Annotated, Any, Literal, Union

from pydantic import Field

from bitpay_ingest.domain.events.base import DomainEvent, Principal, Uint

NATIVE_ASSET_TAG = "native-asset-event"


class ObligationTransferred(DomainEvent):
    event: Literal["obligation-transferred"] = "obligation-transferred"
    token_id: Uint
    from_: Principal = Field(alias="from")
    to: Principal


class ObligationMinted(DomainEvent):
    event: Literal["obligation-minted"] = "obligation-minted"
    token_id: Uint
    recipient: Principal
    stream_id: Uint | None = None


class NativeAssetEvent(DomainEvent):
    """
    Native NFT mint/burn/transfer record (not a print event).

    Recognised and journalled, but not projected yet: recipient NFTs are
    tracked through the print events above.
    """

    event: Literal["native-asset-event"] = "native-asset-event"
    asset_event_type: str
    asset_identifier: str | None = None
    sender: str | None = None
    recipient: str | None = None
    raw_value: Any = None


NFTEvent = Annotated[
    Union[ObligationTransferred, ObligationMinted, NativeAssetEvent],
    Field(discriminator="event"),
]
