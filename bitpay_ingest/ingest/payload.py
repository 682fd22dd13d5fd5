"""
Chainhook batch shape.

Only the fields the pipeline reads are declared; everything else the indexer
sends (operations, raw_tx, pox metadata, predicate) is accepted and ignored.
"""
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class _Lenient(BaseModel):
    model_config = ConfigDict(extra="ignore")


class BlockIdentifier(_Lenient):
    index: int = Field(ge=0)
    hash: str


class TransactionIdentifier(_Lenient):
    hash: str


class EventPosition(_Lenient):
    index: int


class RawEventRecord(_Lenient):
    """One entry of a transaction receipt: print event or native asset event."""

    type: str
    data: dict[str, Any] = Field(default_factory=dict)
    position: EventPosition | None = None


class Receipt(_Lenient):
    events: list[RawEventRecord] | None = None


class TransactionMetadata(_Lenient):
    success: bool
    sender: str | None = None
    events: list[RawEventRecord] | None = None
    receipt: Receipt | None = None

    def event_records(self) -> list[RawEventRecord]:
        """Top-level events when present, otherwise the receipt's."""
        if self.events is not None:
            return self.events
        if self.receipt is not None and self.receipt.events is not None:
            return self.receipt.events
        return []


class Transaction(_Lenient):
    transaction_identifier: TransactionIdentifier
    metadata: TransactionMetadata


class Block(_Lenient):
    block_identifier: BlockIdentifier
    parent_block_identifier: BlockIdentifier | None = None
    timestamp: int | None = None
    transactions: list[Transaction] = Field(default_factory=list)

    @property
    def index(self) -> int:
        return self.block_identifier.index

    @property
    def hash(self) -> str:
        return self.block_identifier.hash


class ChainhookInfo(_Lenient):
    uuid: str | None = None


class ChainhookBatch(_Lenient):
    """One webhook delivery: blocks to retract, then blocks to apply."""

    apply: list[Block] = Field(default_factory=list)
    rollback: list[Block] = Field(default_factory=list)
    chainhook: ChainhookInfo | None = None

    @property
    def delivery_id(self) -> str | None:
        return self.chainhook.uuid if self.chainhook else None

    def rollback_in_order(self) -> list[Block]:
        """Retracted blocks, oldest first."""
        return sorted(self.rollback, key=lambda block: block.index)

    def apply_in_order(self) -> list[Block]:
        """Applied blocks, oldest first."""
        return sorted(self.apply, key=lambda block: block.index)
