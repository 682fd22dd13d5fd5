"""
Reorg Reconciler - revert what retracted blocks applied, before new blocks land.

The applied-event journal is the record of what to undo: each journal row of
a retracted block is decoded back into its event and handed to the
dispatcher's revert handler, newest first across the whole rollback set.
One transaction per block.
"""
from typing import Iterable

from sqlalchemy.ext.asyncio import AsyncSession

from bitpay_ingest.core.logging import get_logger, ingest_context
from bitpay_ingest.db.models.chain_event import ChainEventRecord
from bitpay_ingest.domain.dispatchers.base import DomainDispatcher
from bitpay_ingest.domain.services.notifier import FanOutNotifier
from bitpay_ingest.ingest.decoder import EventDecoder
from bitpay_ingest.ingest.payload import Block
from bitpay_ingest.ingest.result import BatchResult
from bitpay_ingest.ingest.walker import BlockWalker, ProcessingContext

logger = get_logger(__name__)

REORG_EVENT = "chain:reorg"


def context_from_record(record: ChainEventRecord) -> ProcessingContext:
    return ProcessingContext(
        tx_hash=record.tx_hash,
        event_index=record.event_index,
        block_height=record.block_height,
        block_hash=record.block_hash,
        block_timestamp=record.block_timestamp,
        contract_identifier=record.contract_identifier,
        sender=record.sender,
    )


class ReorgReconciler:
    def __init__(
        self,
        db: AsyncSession,
        dispatcher: DomainDispatcher,
        notifier: FanOutNotifier,
        decoder: EventDecoder,
        walker: BlockWalker,
    ):
        self.db = db
        self.dispatcher = dispatcher
        self.notifier = notifier
        self.decoder = decoder
        self.walker = walker

    async def revert_block(self, block: Block) -> int:
        """Revert one block's journalled events; returns how many were reverted."""
        store = self.dispatcher.store
        records = await store.journal_for_block(
            block.hash,
            block.index,
            self.walker.transaction_hashes(block),
        )
        for record in reversed(records):
            event = self.decoder.decode(record.payload)
            if event is None:
                logger.warning(
                    "Journalled event no longer decodes, marking rolled back only",
                    extra_data={"tag": record.event_tag, "tx_hash": record.tx_hash},
                )
                continue
            await self.dispatcher.revert(event, context_from_record(record))

        await store.mark_rolled_back(records)
        return len(records)

    async def _revert_order(self, blocks: list[Block]) -> list[int]:
        """
        Positions of ``blocks`` in the order their reverts must run.

        Most recently applied block first, so each undo handler sees the
        projection exactly as its own event left it. Blocks with nothing
        journalled go last.
        """
        store = self.dispatcher.store
        journalled: list[tuple[tuple, int]] = []
        empty: list[int] = []
        for position, block in enumerate(blocks):
            last = await store.last_application(
                block.hash,
                block.index,
                self.walker.transaction_hashes(block),
            )
            if last is None:
                empty.append(position)
            else:
                journalled.append(((*last, block.index), position))
        journalled.sort(key=lambda item: item[0], reverse=True)
        return [position for _, position in journalled] + empty

    async def reconcile(self, blocks: Iterable[Block], result: BatchResult) -> None:
        """
        Revert retracted blocks, one transaction each.

        Failures go to ``result`` in the order the blocks were given.
        """
        blocks = list(blocks)
        failures: dict[int, str] = {}
        for position in await self._revert_order(blocks):
            block = blocks[position]
            with ingest_context(block_height=block.index, block_hash=block.hash, phase="rollback"):
                try:
                    reverted = await self.revert_block(block)
                    await self.db.commit()
                except Exception as e:
                    await self.db.rollback()
                    self.notifier.discard()
                    logger.error(
                        "Rollback failed",
                        extra_data={"block_height": block.index, "error": str(e)},
                        exc_info=True,
                    )
                    failures[position] = f"Failed to roll back block {block.index}: {e}"
                    continue

                logger.info("Block rolled back", extra_data={"reverted": reverted})
                if reverted:
                    self.notifier.broadcast(REORG_EVENT, {
                        "domain": self.dispatcher.domain,
                        "blockHeight": block.index,
                        "blockHash": block.hash,
                        "reverted": reverted,
                    })
                await self.notifier.flush()

        for position in sorted(failures):
            result.add_error(failures[position])
