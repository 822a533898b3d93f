"""Tests for the websocket event broadcaster."""

import asyncio

import pytest

from workbridge.protocol import BroadcastEvent, EventType
from workbridge.server.broadcaster import Broadcaster, ClientConnection


class MockWebSocket:
    """Mock WebSocket for testing."""

    def __init__(self, should_fail: bool = False):
        self.should_fail = should_fail
        self.accepted = False
        self.closed = False
        self.close_code: int | None = None
        self.close_reason: str | None = None
        self.sent_messages: list = []

    async def accept(self) -> None:
        self.accepted = True

    async def send_json(self, message: dict) -> None:
        if self.should_fail:
            raise Exception("WebSocket connection failed")
        self.sent_messages.append(message)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.closed = True
        self.close_code = code
        self.close_reason = reason


@pytest.fixture
def broadcaster() -> Broadcaster:
    """Create a fresh Broadcaster for each test."""
    return Broadcaster()


def make_event(**payload) -> BroadcastEvent:
    return BroadcastEvent(EventType.USER_JOINED, payload)


class TestConnect:
    @pytest.mark.asyncio
    async def test_connect_accepts_and_registers(self, broadcaster: Broadcaster) -> None:
        ws = MockWebSocket()
        client = await broadcaster.connect(ws)

        assert ws.accepted is True
        assert isinstance(client, ClientConnection)
        assert broadcaster.connection_count == 1

    @pytest.mark.asyncio
    async def test_client_ids_are_unique(self, broadcaster: Broadcaster) -> None:
        first = await broadcaster.connect(MockWebSocket())
        second = await broadcaster.connect(MockWebSocket())
        assert first.id != second.id

    @pytest.mark.asyncio
    async def test_disconnect(self, broadcaster: Broadcaster) -> None:
        client = await broadcaster.connect(MockWebSocket())
        await broadcaster.disconnect(client)

        assert broadcaster.connection_count == 0
        assert client.closed is True

    @pytest.mark.asyncio
    async def test_disconnect_twice_is_harmless(self, broadcaster: Broadcaster) -> None:
        client = await broadcaster.connect(MockWebSocket())
        await broadcaster.disconnect(client)
        await broadcaster.disconnect(client)
        assert broadcaster.connection_count == 0


class TestPublish:
    @pytest.mark.asyncio
    async def test_no_clients(self, broadcaster: Broadcaster) -> None:
        assert await broadcaster.publish(make_event()) == 0

    @pytest.mark.asyncio
    async def test_every_client_gets_identical_copy(self, broadcaster: Broadcaster) -> None:
        ws1, ws2 = MockWebSocket(), MockWebSocket()
        await broadcaster.connect(ws1)
        await broadcaster.connect(ws2)
        event = make_event(userId="u1", displayName="Ana")

        delivered = await broadcaster.publish(event)

        assert delivered == 2
        assert ws1.sent_messages == ws2.sent_messages == [event.to_dict()]
        message = ws1.sent_messages[0]
        assert message["type"] == "user-joined"
        assert message["payload"] == {"userId": "u1", "displayName": "Ana"}
        assert "id" not in message
        assert "success" not in message

    @pytest.mark.asyncio
    async def test_late_joiner_sees_no_history(self, broadcaster: Broadcaster) -> None:
        early = MockWebSocket()
        await broadcaster.connect(early)
        await broadcaster.publish(make_event(n=1))

        late = MockWebSocket()
        await broadcaster.connect(late)
        await broadcaster.publish(make_event(n=2))

        assert [m["payload"]["n"] for m in early.sent_messages] == [1, 2]
        assert [m["payload"]["n"] for m in late.sent_messages] == [2]

    @pytest.mark.asyncio
    async def test_disconnected_client_not_sent(self, broadcaster: Broadcaster) -> None:
        ws = MockWebSocket()
        client = await broadcaster.connect(ws)
        await broadcaster.disconnect(client)

        await broadcaster.publish(make_event())

        assert ws.sent_messages == []

    @pytest.mark.asyncio
    async def test_failing_client_dropped(self, broadcaster: Broadcaster) -> None:
        good, bad = MockWebSocket(), MockWebSocket(should_fail=True)
        await broadcaster.connect(good)
        bad_client = await broadcaster.connect(bad)

        delivered = await broadcaster.publish(make_event())

        assert delivered == 1
        assert broadcaster.connection_count == 1
        assert bad_client.closed is True
        assert len(good.sent_messages) == 1

        await broadcaster.publish(make_event())
        assert len(good.sent_messages) == 2

    @pytest.mark.asyncio
    async def test_concurrent_publishes_keep_frames_whole(self, broadcaster: Broadcaster) -> None:
        ws = MockWebSocket()
        await broadcaster.connect(ws)

        await asyncio.gather(*(broadcaster.publish(make_event(n=i)) for i in range(20)))

        assert sorted(m["payload"]["n"] for m in ws.sent_messages) == list(range(20))


class TestCloseAll:
    @pytest.mark.asyncio
    async def test_close_all(self, broadcaster: Broadcaster) -> None:
        ws1, ws2 = MockWebSocket(), MockWebSocket()
        await broadcaster.connect(ws1)
        await broadcaster.connect(ws2)

        await broadcaster.close_all()

        assert broadcaster.connection_count == 0
        assert ws1.closed and ws2.closed
        assert ws1.close_code == 1001
        assert ws1.close_reason == "Server shutting down"

    @pytest.mark.asyncio
    async def test_close_tolerates_errors(self, broadcaster: Broadcaster) -> None:
        class BrokenClose(MockWebSocket):
            async def close(self, code: int = 1000, reason: str = "") -> None:
                raise RuntimeError("already gone")

        await broadcaster.connect(BrokenClose())
        await broadcaster.close_all("bye")
        assert broadcaster.connection_count == 0
