"""
Tests for the realtime hub and the /ws endpoint.
"""
import pytest
from starlette.testclient import TestClient

from bitpay_ingest.api.realtime import initial_rooms
from bitpay_ingest.domain.services.realtime import RealtimeHub, get_realtime_hub
from bitpay_ingest.main import app


@pytest.fixture
def socket_hub():
    hub = RealtimeHub()
    app.dependency_overrides[get_realtime_hub] = lambda: hub
    yield hub
    app.dependency_overrides.clear()


class TestInitialRooms:

    @pytest.mark.unit
    def test_query_params_map_to_rooms(self):
        assert initial_rooms("SP_A", "7", True) == ["user:SP_A", "stream:7", "marketplace"]

    @pytest.mark.unit
    def test_no_params_means_no_extra_rooms(self):
        assert initial_rooms(None, None, False) == []


class TestSocketEndpoint:

    @pytest.mark.unit
    def test_connect_joins_global_and_requested_rooms(self, socket_hub):
        client = TestClient(app)
        with client.websocket_connect("/ws?user=SP_A&stream=7") as ws:
            status = ws.receive_json()

            assert status["event"] == "connection:status"
            assert status["data"]["rooms"] == ["global", "stream:7", "user:SP_A"]
            assert socket_hub.stats()["connections"] == 1

        assert socket_hub.stats() == {"connections": 0, "rooms": {}}

    @pytest.mark.unit
    def test_join_and_leave(self, socket_hub):
        client = TestClient(app)
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()

            ws.send_json({"action": "join", "room": "marketplace"})
            assert ws.receive_json() == {
                "event": "room:join",
                "data": {"room": "marketplace", "rooms": ["global", "marketplace"]},
            }

            ws.send_json({"action": "leave", "room": "marketplace"})
            assert ws.receive_json() == {
                "event": "room:leave",
                "data": {"room": "marketplace", "rooms": ["global"]},
            }

    @pytest.mark.unit
    def test_global_room_cannot_be_left(self, socket_hub):
        client = TestClient(app)
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()

            ws.send_json({"action": "leave", "room": "global"})
            assert ws.receive_json()["data"]["rooms"] == ["global"]

    @pytest.mark.unit
    def test_unknown_actions_are_ignored(self, socket_hub):
        client = TestClient(app)
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()

            ws.send_json({"action": "shout", "room": "marketplace"})
            ws.send_json(["not", "a", "dict"])
            ws.send_json({"action": "join", "room": "stream:1"})

            assert ws.receive_json()["event"] == "room:join"


class TestHubEmit:

    @pytest.mark.unit
    async def test_emit_reaches_room_members_only(self):
        sent = []

        class FakeSocket:
            def __init__(self, name):
                self.name = name

            async def accept(self):
                pass

            async def send_json(self, message):
                sent.append((self.name, message["event"]))

        hub = RealtimeHub()
        await hub.connect(FakeSocket("a"), ["stream:1"])
        await hub.connect(FakeSocket("b"))
        sent.clear()

        assert await hub.emit("stream:1", "stream:withdrawal", {"amount": "10"}) == 1
        assert sent == [("a", "stream:withdrawal")]

        assert await hub.emit("global", "chain:reorg", {}) == 2

    @pytest.mark.unit
    async def test_failing_socket_is_disconnected(self):
        class DeadSocket:
            async def accept(self):
                pass

            async def send_json(self, message):
                raise RuntimeError("closed")

        hub = RealtimeHub()
        await hub.connect(DeadSocket())

        assert await hub.emit("global", "system:paused", {}) == 0
        assert hub.stats() == {"connections": 0, "rooms": {}}
