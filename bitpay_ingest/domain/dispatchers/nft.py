"""
Obligation NFT dispatcher (bitpay-obligation-nft)
"""
from bitpay_ingest.core.logging import get_logger
from bitpay_ingest.db.models.nft import NFTStatus, ObligationNFT
from bitpay_ingest.domain.dispatchers.base import DomainDispatcher, handles, reverts
from bitpay_ingest.domain.events import nft as ev
from bitpay_ingest.domain.services.notifier import short_principal
from bitpay_ingest.ingest.walker import ProcessingContext

logger = get_logger(__name__)


class NFTDispatcher(DomainDispatcher):
    domain = "nft"
    event_type = "nft-events"
    service_name = "BitPay NFT Events"
    events = ev.NFTEvent
    include_native = True

    @handles(ev.ObligationMinted)
    async def on_minted(self, event: ev.ObligationMinted, ctx: ProcessingContext) -> None:
        await self.store.upsert(
            ObligationNFT,
            {"token_id": event.token_id},
            {
                "stream_id": event.stream_id,
                "owner": event.recipient,
                "original_recipient": event.recipient,
                "status": NFTStatus.ACTIVE,
                "transfer_history": [],
                "minted_at_block": ctx.block_height,
                "minted_tx_hash": ctx.tx_hash,
            },
        )

        stream_ref = event.stream_id if event.stream_id is not None else event.token_id
        await self.notifier.notify(
            event.recipient,
            "nft_minted",
            "Obligation NFT Minted",
            f"You received obligation NFT #{event.token_id} for stream #{stream_ref}.",
            data={"tokenId": str(event.token_id), "streamId": str(stream_ref)},
            action_url=f"/dashboard/streams/{stream_ref}",
            action_text="View Stream",
            source_tx_hash=ctx.tx_hash,
        )

    @handles(ev.ObligationTransferred)
    async def on_transferred(self, event: ev.ObligationTransferred, ctx: ProcessingContext) -> None:
        nft = await self.store.find(ObligationNFT, event.token_id)
        if nft is None:
            logger.warning("Transfer of unknown obligation NFT", extra_data={"token_id": event.token_id})
        else:
            nft.owner = event.to
            nft.transfer_history = [
                *(nft.transfer_history or []),
                {"from": event.from_, "to": event.to, "block_height": ctx.block_height, "tx_hash": ctx.tx_hash},
            ]
            await self.store.db.flush()

        listing = await self.lookups.listing_by_token_id(event.token_id)
        if listing is not None:
            listing.seller = event.to
            await self.store.db.flush()

        await self.notifier.notify(
            event.from_,
            "nft_transferred",
            "Obligation NFT Transferred",
            f"You transferred obligation NFT #{event.token_id} to {short_principal(event.to)}",
            data={"tokenId": str(event.token_id), "to": event.to},
            source_tx_hash=ctx.tx_hash,
        )
        await self.notifier.notify(
            event.to,
            "nft_received",
            "Obligation NFT Received",
            f"You received obligation NFT #{event.token_id} from {short_principal(event.from_)}",
            data={"tokenId": str(event.token_id), "from": event.from_},
            source_tx_hash=ctx.tx_hash,
        )

        data = {"tokenId": str(event.token_id), "from": event.from_, "to": event.to, "txHash": ctx.tx_hash}
        self.notifier.push_to_user(event.from_, "nft:transferred", data)
        self.notifier.push_to_user(event.to, "nft:received", data)

    @handles(ev.NativeAssetEvent)
    async def on_native_asset(self, event: ev.NativeAssetEvent, ctx: ProcessingContext) -> None:
        logger.warning(
            "Native NFT asset events not yet implemented",
            extra_data={"asset_event_type": event.asset_event_type, "asset": event.asset_identifier},
        )

    # ==================== revert ====================

    @reverts(ev.ObligationMinted)
    async def undo_minted(self, event: ev.ObligationMinted, ctx: ProcessingContext) -> None:
        await self.store.update(ObligationNFT, event.token_id, {"status": NFTStatus.ROLLED_BACK})

    @reverts(ev.ObligationTransferred)
    async def undo_transferred(self, event: ev.ObligationTransferred, ctx: ProcessingContext) -> None:
        nft = await self.store.find(ObligationNFT, event.token_id)
        if nft is not None:
            nft.owner = event.from_
            history = [entry for entry in (nft.transfer_history or []) if entry.get("tx_hash") != ctx.tx_hash]
            nft.transfer_history = history
            await self.store.db.flush()

        listing = await self.lookups.listing_by_token_id(event.token_id)
        if listing is not None and listing.seller == event.to:
            listing.seller = event.from_
            await self.store.db.flush()

    @reverts(ev.NativeAssetEvent)
    async def undo_native_asset(self, event: ev.NativeAssetEvent, ctx: ProcessingContext) -> None:
        pass
