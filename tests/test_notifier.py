"""
Tests for the fan-out notifier: durable rows and deferred realtime pushes.
"""
import pytest
from sqlalchemy import select

from bitpay_ingest.db.models.notification import Notification, NotificationPriority
from bitpay_ingest.domain.services.notifier import FanOutNotifier, short_principal


@pytest.fixture
def notifier(db_session, hub) -> FanOutNotifier:
    return FanOutNotifier(db_session, hub)


class TestDurableNotifications:

    @pytest.mark.integration
    async def test_notify_writes_row(self, db_session, notifier):
        stored = await notifier.notify(
            "SP_A", "stream_received", "New stream", "You are receiving a stream",
            data={"streamId": 1}, priority=NotificationPriority.HIGH, source_tx_hash="0xabc",
        )

        assert stored is True
        row = (await db_session.execute(select(Notification))).scalar_one()
        assert row.user_id == "SP_A"
        assert row.priority == NotificationPriority.HIGH
        assert row.data == {"streamId": 1}
        assert row.source_tx_hash == "0xabc"

    @pytest.mark.integration
    @pytest.mark.parametrize("user_id", [None, "", "unknown"])
    async def test_unaddressable_users_are_skipped(self, db_session, notifier, user_id):
        assert await notifier.notify(user_id, "stream_received", "t", "m") is False
        assert (await db_session.execute(select(Notification))).scalars().all() == []

    @pytest.mark.integration
    async def test_failed_insert_does_not_poison_session(self, db_session, notifier):
        # title is NOT NULL; the savepoint absorbs the failure
        assert await notifier.notify("SP_A", "broken", None, "m") is False
        assert await notifier.notify("SP_A", "ok", "t", "m") is True

        types = (await db_session.execute(select(Notification.type))).scalars().all()
        assert types == ["ok"]


class TestRealtimePushes:

    @pytest.mark.unit
    async def test_pushes_wait_for_flush(self, hub, notifier):
        notifier.push_to_user("SP_A", "stream:created", {"streamId": 1})
        notifier.push_to_stream(1, "stream:created", {"streamId": 1})
        notifier.push_to_marketplace("nft:listed", {"streamId": 1})
        notifier.broadcast("system:paused", {})

        assert hub.emitted == []
        assert [p.room for p in notifier.pending] == ["user:SP_A", "stream:1", "marketplace", "global"]

        assert await notifier.flush() == 0  # no sockets connected
        assert [room for room, _, _ in hub.emitted] == ["user:SP_A", "stream:1", "marketplace", "global"]
        assert notifier.pending == []

    @pytest.mark.unit
    async def test_unknown_user_push_is_dropped(self, notifier):
        notifier.push_to_user("unknown", "stream:created", {})
        notifier.push_to_user(None, "stream:created", {})
        assert notifier.pending == []

    @pytest.mark.unit
    async def test_discard_drops_queue(self, hub, notifier):
        notifier.broadcast("chain:reorg", {})
        notifier.discard()

        await notifier.flush()
        assert hub.emitted == []

    @pytest.mark.unit
    async def test_flush_survives_a_failing_emit(self, hub, notifier):
        calls = []

        async def flaky_emit(room, event, data):
            calls.append(room)
            if room == "stream:1":
                raise RuntimeError("socket gone")
            return 1

        hub.emit = flaky_emit
        notifier.push_to_stream(1, "stream:withdrawal", {})
        notifier.push_to_marketplace("nft:sold", {})

        assert await notifier.flush() == 1
        assert calls == ["stream:1", "marketplace"]


class TestShortPrincipal:

    @pytest.mark.unit
    def test_truncates_long_principals(self):
        assert short_principal("SP2J6ZY48GV1EZ5V2V5RB9MP66SW86PYKKNRV9EJ7") == "SP2J6ZY4..."

    @pytest.mark.unit
    def test_keeps_short_values(self):
        assert short_principal("SP_A") == "SP_A"
