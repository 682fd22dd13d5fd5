"""
Projection Store Adapter

All dispatcher writes go through ProjectionStore. Every write is scoped to a
natural key; inserts run inside a SAVEPOINT so a concurrent or redelivered
insert of the same key falls back to an update instead of failing the event.
"""
from datetime import datetime, timezone
from typing import Any, Iterable, TypeVar

from sqlalchemy import and_, delete, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from bitpay_ingest.core.logging import get_logger
from bitpay_ingest.db.models.access_control import Role, RoleAssignment
from bitpay_ingest.db.models.chain_event import ChainEventRecord, JournalStatus
from bitpay_ingest.db.models.marketplace import ListingStatus, MarketplaceListing
from bitpay_ingest.db.models.nft import NFTStatus, ObligationNFT
from bitpay_ingest.db.models.stream import Stream
from bitpay_ingest.domain.events.base import DomainEvent

logger = get_logger(__name__)

M = TypeVar("M")


class ProjectionStore:
    """Key-scoped reads and writes for one domain's projection."""

    def __init__(self, db: AsyncSession, domain: str):
        self.db = db
        self.domain = domain

    # ==================== reads ====================

    async def find(self, model: type[M], key: Any) -> M | None:
        """Load by primary key (scalar, or tuple for composite keys)."""
        return await self.db.get(model, key)

    async def find_one(self, model: type[M], **filters: Any) -> M | None:
        result = await self.db.execute(select(model).filter_by(**filters).limit(1))
        return result.scalar_one_or_none()

    async def find_all(self, model: type[M], *criteria: Any, order_by: Any = None) -> list[M]:
        query = select(model).where(*criteria)
        if order_by is not None:
            query = query.order_by(order_by)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    # ==================== writes ====================

    async def upsert(self, model: type[M], key: dict[str, Any], values: dict[str, Any]) -> tuple[M, bool]:
        """
        Insert or update the row identified by ``key``.

        Returns (row, created).
        """
        pk = tuple(key.values()) if len(key) > 1 else next(iter(key.values()))
        row = await self.find(model, pk)
        if row is None:
            try:
                async with self.db.begin_nested():
                    row = model(**key, **values)
                    self.db.add(row)
                return row, True
            except IntegrityError:
                # created concurrently; fall through to update
                logger.info(
                    "Upsert insert conflicted, updating instead",
                    extra_data={"model": model.__name__, "key": {k: str(v) for k, v in key.items()}},
                )
                row = await self.find(model, pk)
                if row is None:
                    raise

        for name, value in values.items():
            setattr(row, name, value)
        await self.db.flush()
        return row, False

    async def update(self, model: type[M], key: Any, values: dict[str, Any]) -> M | None:
        """Update an existing row; returns None when it does not exist."""
        row = await self.find(model, key)
        if row is None:
            return None
        for name, value in values.items():
            setattr(row, name, value)
        await self.db.flush()
        return row

    async def insert_once(self, row: Any) -> bool:
        """Insert a row guarded by a unique key; False if it already existed."""
        try:
            async with self.db.begin_nested():
                self.db.add(row)
            return True
        except IntegrityError:
            logger.debug(
                "Row already recorded",
                extra_data={"model": type(row).__name__},
            )
            return False

    async def delete_where(self, model: type, **filters: Any) -> int:
        result = await self.db.execute(delete(model).filter_by(**filters))
        return result.rowcount or 0

    # ==================== event journal ====================

    async def claim_event(self, event: DomainEvent, ctx: Any) -> bool:
        """
        Record the first application of ``event`` at ``ctx``.

        Returns False for an event already applied. A journal row left in
        rolled_back by a reorg is claimed again with the new block coordinates.
        """
        record = ChainEventRecord(
            domain=self.domain,
            tx_hash=ctx.tx_hash,
            event_index=ctx.event_index,
            event_tag=event.event,
            block_height=ctx.block_height,
            block_hash=ctx.block_hash,
            contract_identifier=ctx.contract_identifier,
            sender=ctx.sender,
            block_timestamp=ctx.block_timestamp,
            payload=event.payload(),
            status=JournalStatus.APPLIED,
        )
        try:
            async with self.db.begin_nested():
                self.db.add(record)
            return True
        except IntegrityError:
            pass

        existing = await self.find_one(
            ChainEventRecord,
            domain=self.domain,
            tx_hash=ctx.tx_hash,
            event_index=ctx.event_index,
        )
        if existing is None or existing.status == JournalStatus.APPLIED:
            logger.info(
                "Skipping already applied event",
                extra_data={"domain": self.domain, "tag": event.event, **ctx.log_fields()},
            )
            return False

        existing.status = JournalStatus.APPLIED
        existing.event_tag = event.event
        existing.block_height = ctx.block_height
        existing.block_hash = ctx.block_hash
        existing.block_timestamp = ctx.block_timestamp
        existing.payload = event.payload()
        existing.applied_at = datetime.now(timezone.utc)
        existing.rolled_back_at = None
        await self.db.flush()
        logger.info(
            "Re-applying event after reorg",
            extra_data={"domain": self.domain, "tag": event.event, **ctx.log_fields()},
        )
        return True

    def _in_block(self, block_hash: str, block_height: int, tx_hashes: Iterable[str]) -> tuple:
        matches = [ChainEventRecord.block_hash == block_hash]
        tx_hashes = list(tx_hashes)
        if tx_hashes:
            matches.append(and_(
                ChainEventRecord.block_height == block_height,
                ChainEventRecord.tx_hash.in_(tx_hashes),
            ))
        return (
            ChainEventRecord.domain == self.domain,
            ChainEventRecord.status == JournalStatus.APPLIED,
            or_(*matches),
        )

    async def journal_for_block(
        self,
        block_hash: str,
        block_height: int,
        tx_hashes: Iterable[str] = (),
    ) -> list[ChainEventRecord]:
        """Applied journal rows of this domain that belong to a block, in application order."""
        result = await self.db.execute(
            select(ChainEventRecord)
            .where(*self._in_block(block_hash, block_height, tx_hashes))
            .order_by(ChainEventRecord.applied_at, ChainEventRecord.id)
        )
        return list(result.scalars().all())

    async def last_application(
        self,
        block_hash: str,
        block_height: int,
        tx_hashes: Iterable[str] = (),
    ) -> tuple[datetime, int] | None:
        """(applied_at, id) of the block's most recently applied journal row, if any."""
        result = await self.db.execute(
            select(ChainEventRecord.applied_at, ChainEventRecord.id)
            .where(*self._in_block(block_hash, block_height, tx_hashes))
            .order_by(ChainEventRecord.applied_at.desc(), ChainEventRecord.id.desc())
            .limit(1)
        )
        row = result.first()
        return tuple(row) if row is not None else None

    async def mark_rolled_back(self, records: Iterable[ChainEventRecord]) -> None:
        now = datetime.now(timezone.utc)
        for record in records:
            record.status = JournalStatus.ROLLED_BACK
            record.rolled_back_at = now
        await self.db.flush()


class ProjectionLookups:
    """Read-only cross-domain lookups shared by every dispatcher."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def stream_by_id(self, stream_id: int) -> Stream | None:
        return await self.db.get(Stream, stream_id)

    async def owner_by_token_id(self, token_id: int) -> str | None:
        nft = await self.db.get(ObligationNFT, token_id)
        if nft is None or nft.status != NFTStatus.ACTIVE:
            return None
        return nft.owner

    async def listing_by_token_id(
        self,
        token_id: int,
        statuses: tuple[ListingStatus, ...] = (ListingStatus.ACTIVE,),
    ) -> MarketplaceListing | None:
        """Listing for the stream an obligation NFT was minted for."""
        nft = await self.db.get(ObligationNFT, token_id)
        listing_key = nft.listing_key if nft is not None else token_id
        listing = await self.db.get(MarketplaceListing, listing_key)
        if listing is None or listing.status not in statuses:
            return None
        return listing

    async def active_role_holders(self, role: Role) -> list[str]:
        result = await self.db.execute(
            select(RoleAssignment.principal)
            .where(RoleAssignment.role == role, RoleAssignment.is_active.is_(True))
            .order_by(RoleAssignment.principal)
        )
        return list(result.scalars().all())
