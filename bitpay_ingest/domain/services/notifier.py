"""
Fan-out Notifier

Two sinks per affected user:
- a durable Notification row, written in the event's transaction
- a realtime push, queued and emitted only after the event commits

Neither sink ever fails the handler that called it.
"""
from dataclasses import dataclass
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from bitpay_ingest.core.logging import get_logger
from bitpay_ingest.db.models.notification import Notification, NotificationPriority
from bitpay_ingest.domain.services.realtime import (
    GLOBAL_ROOM,
    MARKETPLACE_ROOM,
    RealtimeHub,
    stream_room,
    user_room,
)

logger = get_logger(__name__)

UNKNOWN_USER = "unknown"


def short_principal(principal: str, length: int = 8) -> str:
    return f"{principal[:length]}..." if principal and len(principal) > length else principal


@dataclass(frozen=True)
class RealtimePush:
    room: str
    event: str
    data: dict[str, Any]


class FanOutNotifier:
    """Per-request notifier; one instance per pipeline run."""

    def __init__(self, db: AsyncSession, hub: RealtimeHub):
        self.db = db
        self.hub = hub
        self._pending: list[RealtimePush] = []

    @staticmethod
    def _is_addressable(user_id: str | None) -> bool:
        return bool(user_id) and user_id != UNKNOWN_USER

    async def notify(
        self,
        user_id: str | None,
        type: str,
        title: str,
        message: str,
        *,
        data: dict[str, Any] | None = None,
        priority: NotificationPriority = NotificationPriority.NORMAL,
        action_url: str | None = None,
        action_text: str | None = None,
        source_tx_hash: str | None = None,
    ) -> bool:
        """Write one durable notification; returns False if skipped or failed."""
        if not self._is_addressable(user_id):
            logger.debug("Skipping notification without a user", extra_data={"type": type})
            return False

        try:
            async with self.db.begin_nested():
                self.db.add(Notification(
                    user_id=user_id,
                    type=type,
                    priority=priority,
                    title=title,
                    message=message,
                    data=data or {},
                    action_url=action_url,
                    action_text=action_text,
                    source_tx_hash=source_tx_hash,
                ))
        except SQLAlchemyError as e:
            logger.error(
                "Failed to store notification",
                extra_data={"user_id": user_id, "type": type, "error": str(e)},
            )
            return False

        logger.debug("Notification stored", extra_data={"user_id": user_id, "type": type})
        return True

    # ==================== realtime ====================

    def push(self, room: str, event: str, data: dict[str, Any]) -> None:
        self._pending.append(RealtimePush(room, event, data))

    def push_to_user(self, user_id: str | None, event: str, data: dict[str, Any]) -> None:
        if self._is_addressable(user_id):
            self.push(user_room(user_id), event, data)

    def push_to_stream(self, stream_id: int | str, event: str, data: dict[str, Any]) -> None:
        self.push(stream_room(stream_id), event, data)

    def push_to_marketplace(self, event: str, data: dict[str, Any]) -> None:
        self.push(MARKETPLACE_ROOM, event, data)

    def broadcast(self, event: str, data: dict[str, Any]) -> None:
        self.push(GLOBAL_ROOM, event, data)

    @property
    def pending(self) -> list[RealtimePush]:
        return list(self._pending)

    def discard(self) -> None:
        """Drop queued pushes of an event whose writes were rolled back."""
        self._pending.clear()

    async def flush(self) -> int:
        """Emit queued pushes; called after the event's transaction commits."""
        pushes, self._pending = self._pending, []
        sent = 0
        for item in pushes:
            try:
                await self.hub.emit(item.room, item.event, item.data)
                sent += 1
            except Exception as e:
                logger.warning(
                    "Realtime push failed",
                    extra_data={"room": item.room, "event": item.event, "error": str(e)},
                )
        return sent
