"""
Ingest Pipeline - one validated batch through one domain.

rollback blocks (latest application reverted first) -> apply blocks (oldest
first) -> walk -> decode -> dispatch. Each event commits on its own; a failing
event aborts the rest of its block, and the block contributes an error instead of a count.
"""
from sqlalchemy.ext.asyncio import AsyncSession

from bitpay_ingest.core.logging import get_logger, ingest_context
from bitpay_ingest.domain.dispatchers.base import DomainDispatcher
from bitpay_ingest.domain.services.notifier import FanOutNotifier
from bitpay_ingest.ingest.decoder import EventDecoder
from bitpay_ingest.ingest.payload import Block, ChainhookBatch
from bitpay_ingest.ingest.reconciler import ReorgReconciler
from bitpay_ingest.ingest.result import BatchResult
from bitpay_ingest.ingest.walker import BlockWalker

logger = get_logger(__name__)


class IngestPipeline:
    def __init__(
        self,
        db: AsyncSession,
        dispatcher: DomainDispatcher,
        notifier: FanOutNotifier,
    ):
        self.db = db
        self.dispatcher = dispatcher
        self.notifier = notifier
        self.decoder = EventDecoder(dispatcher.events)
        self.walker = BlockWalker(include_native=dispatcher.include_native)
        self.reconciler = ReorgReconciler(db, dispatcher, notifier, self.decoder, self.walker)

    async def apply_block(self, block: Block) -> int:
        """Apply every decodable event of a block; returns the number newly applied."""
        processed = 0
        for walked in self.walker.walk(block):
            event = self.decoder.decode(walked.value)
            if event is None:
                continue

            try:
                applied = await self.dispatcher.dispatch(event, walked.context)
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                self.notifier.discard()
                raise

            await self.notifier.flush()
            if applied:
                processed += 1
        return processed

    async def run(self, batch: ChainhookBatch) -> BatchResult:
        result = BatchResult(event_type=self.dispatcher.event_type)

        with ingest_context(domain=self.dispatcher.domain, delivery_id=batch.delivery_id):
            if batch.rollback:
                await self.reconciler.reconcile(batch.rollback_in_order(), result)

            for block in batch.apply_in_order():
                with ingest_context(block_height=block.index):
                    try:
                        count = await self.apply_block(block)
                    except Exception as e:
                        logger.error(
                            "Block processing failed",
                            extra_data={"block_hash": block.hash, "error": str(e)},
                            exc_info=True,
                        )
                        result.add_error(f"Failed to process block {block.index}: {e}")
                        continue
                    result.add_processed(count)

            logger.info(
                "Batch processed",
                extra_data={
                    "processed": result.processed,
                    "errors": len(result.errors),
                    "apply": len(batch.apply),
                    "rollback": len(batch.rollback),
                },
            )
        return result
