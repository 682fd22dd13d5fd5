"""
Block Walker - blocks -> successful transactions -> raw event records.

Walking is stateless per block: calling ``walk`` again on the same block
yields the same sequence.
"""
from dataclasses import dataclass
from typing import Any, Iterator

from bitpay_ingest.core.logging import get_logger
from bitpay_ingest.domain.events.base import coerce_print_value
from bitpay_ingest.domain.events.nft import NATIVE_ASSET_TAG
from bitpay_ingest.ingest.payload import Block, RawEventRecord, Transaction

logger = get_logger(__name__)

PRINT_EVENT_TYPES = frozenset({"print_event", "SmartContractEvent"})

NATIVE_NFT_EVENT_TYPES = frozenset({
    "nft_event",
    "nft_mint_event",
    "nft_burn_event",
    "nft_transfer_event",
    "NFTMintEvent",
    "NFTBurnEvent",
    "NFTTransferEvent",
})


@dataclass(frozen=True)
class ProcessingContext:
    """Chain coordinates of one event, attached before dispatch."""

    tx_hash: str
    event_index: int
    block_height: int
    block_hash: str
    block_timestamp: int | None = None
    contract_identifier: str | None = None
    sender: str | None = None

    def log_fields(self) -> dict[str, Any]:
        return {
            "block_height": self.block_height,
            "tx_hash": self.tx_hash,
            "event_index": self.event_index,
        }


@dataclass(frozen=True)
class WalkedEvent:
    """A raw tuple ready for decoding, with its context."""

    value: dict[str, Any]
    context: ProcessingContext
    native: bool = False


def is_print_record(record: RawEventRecord) -> bool:
    if record.type == "print_event":
        return True
    # Stacks API style contract log
    return record.type == "SmartContractEvent" and record.data.get("topic", "print") == "print"


def native_asset_value(record: RawEventRecord) -> dict[str, Any]:
    """Shape a native NFT record as a tagged tuple so it decodes like a print event."""
    data = record.data
    return {
        "event": NATIVE_ASSET_TAG,
        "asset-event-type": record.type,
        "asset-identifier": data.get("asset_identifier"),
        "sender": data.get("sender"),
        "recipient": data.get("recipient"),
        "raw-value": data.get("raw_value", data.get("value")),
    }


class BlockWalker:
    """
    Yield the event records of a block in emission order.

    Transactions with ``success = false`` are skipped entirely. Print records
    are always yielded; native NFT records only when ``include_native`` is set.
    """

    def __init__(self, *, include_native: bool = False) -> None:
        self.include_native = include_native

    def _context(
        self,
        block: Block,
        tx: Transaction,
        record: RawEventRecord,
        position: int,
    ) -> ProcessingContext:
        return ProcessingContext(
            tx_hash=tx.transaction_identifier.hash,
            event_index=record.position.index if record.position is not None else position,
            block_height=block.index,
            block_hash=block.hash,
            block_timestamp=block.timestamp,
            contract_identifier=record.data.get("contract_identifier"),
            sender=tx.metadata.sender,
        )

    def walk(self, block: Block) -> Iterator[WalkedEvent]:
        for tx in block.transactions:
            if not tx.metadata.success:
                logger.debug(
                    "Skipping failed transaction",
                    extra_data={"tx_hash": tx.transaction_identifier.hash, "block_height": block.index},
                )
                continue

            for position, record in enumerate(tx.metadata.event_records()):
                if is_print_record(record):
                    value = coerce_print_value(record.data.get("value"))
                    if value is None:
                        logger.debug(
                            "Print event value is not a tuple",
                            extra_data={"tx_hash": tx.transaction_identifier.hash, "position": position},
                        )
                        continue
                    yield WalkedEvent(value, self._context(block, tx, record, position))
                elif self.include_native and record.type in NATIVE_NFT_EVENT_TYPES:
                    yield WalkedEvent(
                        native_asset_value(record),
                        self._context(block, tx, record, position),
                        native=True,
                    )

    def transaction_hashes(self, block: Block) -> list[str]:
        """Hashes of the block's successful transactions."""
        return [
            tx.transaction_identifier.hash
            for tx in block.transactions
            if tx.metadata.success
        ]
