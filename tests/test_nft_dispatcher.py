"""
Tests for the obligation NFT projection.
"""
import pytest
from sqlalchemy import select

from bitpay_ingest.db.models.chain_event import ChainEventRecord
from bitpay_ingest.db.models.marketplace import MarketplaceListing
from bitpay_ingest.db.models.nft import NFTStatus, ObligationNFT
from bitpay_ingest.db.models.notification import Notification
from tests.chainhook_payloads import (
    batch,
    block,
    nft_listed,
    nft_transfer_record,
    obligation_minted,
    obligation_transferred,
    print_event,
    transaction,
)

NFT_CONTRACT = "bitpay-obligation-nft"


def _delivery(*records, index: int = 300) -> dict:
    return batch(apply=[block(index, transaction(*records))])


def _nft_print(value: dict) -> dict:
    return print_event(value, contract_name=NFT_CONTRACT)


class TestObligationNFT:

    @pytest.mark.integration
    async def test_mint_tracks_owner(self, db_session, run_batch):
        result = await run_batch("nft", _delivery(_nft_print(obligation_minted())))

        assert result.processed == 1
        nft = await db_session.get(ObligationNFT, 7)
        assert nft.owner == "SP_A"
        assert nft.original_recipient == "SP_A"
        assert nft.status == NFTStatus.ACTIVE
        assert nft.listing_key == 7

        types = (await db_session.execute(
            select(Notification.type).where(Notification.user_id == "SP_A")
        )).scalars().all()
        assert types == ["nft_minted"]

    @pytest.mark.integration
    async def test_transfer_updates_owner_and_history(self, db_session, hub, run_batch):
        await run_batch("nft", _delivery(_nft_print(obligation_minted())))
        hub.emitted.clear()

        await run_batch("nft", _delivery(_nft_print(obligation_transferred()), index=301))

        nft = await db_session.get(ObligationNFT, 7)
        await db_session.refresh(nft)
        assert nft.owner == "SP_C"
        assert [(h["from"], h["to"]) for h in nft.transfer_history] == [("SP_A", "SP_C")]
        assert hub.events("user:SP_A") == ["nft:transferred"]
        assert hub.events("user:SP_C") == ["nft:received"]

    @pytest.mark.integration
    async def test_transfer_moves_active_listing_to_new_owner(self, db_session, run_batch):
        await run_batch("nft", _delivery(_nft_print(obligation_minted())))
        await run_batch("marketplace", batch(apply=[
            block(301, transaction(print_event(nft_listed(), contract_name="bitpay-marketplace"))),
        ]))

        await run_batch("nft", _delivery(_nft_print(obligation_transferred()), index=302))

        listing = await db_session.get(MarketplaceListing, 7)
        await db_session.refresh(listing)
        assert listing.seller == "SP_C"

    @pytest.mark.integration
    async def test_transfer_of_unknown_token_still_notifies(self, db_session, run_batch):
        result = await run_batch("nft", _delivery(_nft_print(obligation_transferred(token_id=404))))

        assert result.processed == 1
        assert await db_session.get(ObligationNFT, 404) is None
        types = (await db_session.execute(
            select(Notification.type).where(Notification.user_id == "SP_C")
        )).scalars().all()
        assert types == ["nft_received"]

    @pytest.mark.integration
    async def test_native_asset_records_are_journalled_only(self, db_session, run_batch):
        record = nft_transfer_record(f"SP.{NFT_CONTRACT}::obligation", "SP_A", "SP_B")

        result = await run_batch("nft", _delivery(record))

        assert result.processed == 1
        assert (await db_session.execute(select(ObligationNFT))).scalars().all() == []
        journal = (await db_session.execute(select(ChainEventRecord))).scalars().all()
        assert [j.event_tag for j in journal] == ["native-asset-event"]

    @pytest.mark.integration
    async def test_other_domains_ignore_native_records(self, db_session, run_batch):
        record = nft_transfer_record(f"SP.{NFT_CONTRACT}::obligation", "SP_A", "SP_B")
        result = await run_batch("marketplace", _delivery(record))
        assert result.processed == 0
