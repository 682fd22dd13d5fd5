"""
Scenario 2 - stream lifecycle across a chain reorganisation

Covers:
- a block that fails is reported and leaves earlier blocks applied
- a fork delivery rolls back the old block and applies its replacement
"""
import pytest

from bitpay_ingest.db.models.chain_event import JournalStatus
from bitpay_ingest.db.models.stream import Stream, StreamStatus
from tests.chainhook_payloads import batch, block, print_event, stream_created, stream_withdrawal, transaction
from tests.scenarios.conftest import assert_journal_count, notification_types, post_chainhook


@pytest.mark.scenario
class TestStreamsReorgScenario:

    async def test_failing_block_is_isolated(self, test_client, db_session, monkeypatch):
        from bitpay_ingest.domain.dispatchers.streams import StreamsDispatcher

        async def _explode(self, event, ctx):
            raise RuntimeError("withdrawal exceeds vested amount")

        monkeypatch.setattr(StreamsDispatcher, "on_withdrawal", _explode)
        document = batch(apply=[
            block(150, transaction(print_event(stream_created(1)))),
            block(151, transaction(print_event(stream_withdrawal(1)))),
        ])

        response = await post_chainhook(test_client, "streams", document)

        assert response.status_code == 200
        assert response.json() == {
            "success": False,
            "eventType": "stream-events",
            "processed": 1,
            "errors": ["Failed to process block 151: withdrawal exceeds vested amount"],
        }
        stream = await db_session.get(Stream, 1)
        await db_session.refresh(stream)
        assert stream.withdrawn_amount == 0
        await assert_journal_count(db_session, "streams", 1)

    async def test_fork_replaces_block(self, test_client, db_session, hub):
        original = block(
            150,
            transaction(print_event(stream_created(1)), tx_hash="0xcreate"),
            transaction(print_event(stream_withdrawal(1, amount=300)), tx_hash="0xwithdraw"),
        )
        await post_chainhook(test_client, "streams", batch(apply=[original]))

        # the withdrawal did not survive the fork
        replacement = block(150, transaction(print_event(stream_created(1)), tx_hash="0xcreate"), block_hash="0xfork")
        response = await post_chainhook(test_client, "streams", batch(apply=[replacement], rollback=[original]))

        assert response.json() == {"success": True, "eventType": "stream-events", "processed": 1}

        stream = await db_session.get(Stream, 1)
        await db_session.refresh(stream)
        assert stream.status == StreamStatus.ACTIVE
        assert stream.withdrawn_amount == 0

        await assert_journal_count(db_session, "streams", 1)
        await assert_journal_count(db_session, "streams", 1, JournalStatus.ROLLED_BACK)
        assert "chain:reorg" in hub.events("global")
        assert "stream_received" in await notification_types(db_session, "SP_RECIPIENT")
