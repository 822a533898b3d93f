"""Tests for the collaboration capability."""

from __future__ import annotations

import asyncio
import sys
import types
from pathlib import Path

import pytest

from workbridge.collaboration import (
    LocalCollaboration,
    ProviderCollaboration,
    load_provider,
    select_collaboration,
)
from workbridge.config.schema import CollaborationConfig
from workbridge.errors import UpstreamFailure
from workbridge.protocol import BroadcastEvent, EventType


class FakeProvider:
    """In-process provider honoring the duck-typed contract."""

    def __init__(self, peers: list[dict] | None = None, fail_share: bool = False) -> None:
        self._peers = peers or []
        self.fail_share = fail_share
        self.callback = None
        self.ended = False

    async def share(self) -> str:
        if self.fail_share:
            raise RuntimeError("not signed in")
        return "https://collab.example/join/abc"

    def end(self) -> None:
        self.ended = True

    def peers(self) -> list[dict]:
        return list(self._peers)

    def subscribe(self, callback) -> None:
        self.callback = callback


def make_provider() -> FakeProvider:
    return FakeProvider()


class MinimalProvider:
    def share(self) -> None:
        return None


def make_minimal() -> MinimalProvider:
    return MinimalProvider()


@pytest.fixture
def events() -> list[BroadcastEvent]:
    return []


def record(events: list[BroadcastEvent]):
    async def callback(event: BroadcastEvent) -> None:
        events.append(event)

    return callback


@pytest.fixture
def fake_module(monkeypatch: pytest.MonkeyPatch) -> str:
    module = types.ModuleType("fake_collab_provider")
    module.make_provider = make_provider
    module.make_minimal = make_minimal
    monkeypatch.setitem(sys.modules, "fake_collab_provider", module)
    return "fake_collab_provider"


class TestLocalCollaboration:
    @pytest.mark.asyncio
    async def test_start_returns_workspace_link(self, tmp_path: Path, events) -> None:
        collab = LocalCollaboration(tmp_path)
        collab.on_event(record(events))

        link = await collab.start()

        assert link.startswith(tmp_path.resolve().as_uri() + "#session=workbridge-")
        assert collab.active is True
        assert [e.type for e in events] == [EventType.SESSION_CHANGED]
        session = events[0].payload["session"]
        assert session["role"] == "Host"
        assert session["peerCount"] == 0
        assert link.endswith(session["sessionId"])

    @pytest.mark.asyncio
    async def test_end_emits_session_ended(self, tmp_path: Path, events) -> None:
        collab = LocalCollaboration(tmp_path)
        collab.on_event(record(events))
        await collab.start()

        await collab.end()

        assert collab.active is False
        assert events[-1].type is EventType.SESSION_ENDED

    @pytest.mark.asyncio
    async def test_end_without_session_is_quiet(self, tmp_path: Path, events) -> None:
        collab = LocalCollaboration(tmp_path)
        collab.on_event(record(events))
        await collab.end()
        assert events == []

    def test_no_participants(self, tmp_path: Path) -> None:
        assert LocalCollaboration(tmp_path).list_participants() == []

    @pytest.mark.asyncio
    async def test_failing_callback_does_not_break_start(self, tmp_path: Path, events) -> None:
        async def broken(event: BroadcastEvent) -> None:
            raise RuntimeError("subscriber down")

        collab = LocalCollaboration(tmp_path)
        collab.on_event(broken)
        collab.on_event(record(events))

        assert await collab.start()
        assert len(events) == 1


class TestProviderCollaboration:
    @pytest.mark.asyncio
    async def test_start_shares_and_syncs_peers(self, events) -> None:
        provider = FakeProvider(peers=[{"peerNumber": 0, "displayName": "Host", "email": "h@x.io"}])
        collab = ProviderCollaboration(provider)
        collab.on_event(record(events))

        link = await collab.start()

        assert link == "https://collab.example/join/abc"
        assert provider.callback is not None
        assert [e.type for e in events] == [EventType.USER_JOINED]
        assert [p.to_dict()["role"] for p in collab.list_participants()] == ["Owner"]
        assert events[0].payload["user"]["email"] == "h@x.io"

    @pytest.mark.asyncio
    async def test_share_failure(self) -> None:
        collab = ProviderCollaboration(FakeProvider(fail_share=True))
        with pytest.raises(UpstreamFailure, match="not signed in"):
            await collab.start()
        assert collab.active is False

    @pytest.mark.asyncio
    async def test_peer_join_and_leave(self, events) -> None:
        collab = ProviderCollaboration(FakeProvider())
        collab.on_event(record(events))
        peer = {"peerNumber": 3, "displayName": "Ana"}

        await collab.handle_notification({"kind": "peers", "added": [peer]})
        await collab.handle_notification({"kind": "peers", "added": [peer]})
        assert [p.user_name for p in collab.list_participants()] == ["Ana"]

        await collab.handle_notification({"kind": "peers", "removed": [peer]})

        assert [e.type for e in events] == [EventType.USER_JOINED, EventType.USER_LEFT]
        assert events[0].payload["user"]["userId"] == "3"
        assert events[0].payload["user"]["role"] == "Guest"
        assert collab.list_participants() == []

    @pytest.mark.asyncio
    async def test_unknown_peer_leaving_is_ignored(self, events) -> None:
        collab = ProviderCollaboration(FakeProvider())
        collab.on_event(record(events))
        await collab.handle_notification({"kind": "peers", "removed": [{"peerNumber": 9}]})
        assert events == []

    @pytest.mark.asyncio
    async def test_cursor_update(self, events) -> None:
        collab = ProviderCollaboration(FakeProvider())
        collab.on_event(record(events))

        await collab.handle_notification(
            {
                "kind": "cursor",
                "peer": {"peerNumber": 2},
                "file": "src/app.py",
                "position": {"line": 4, "character": 7},
            }
        )

        assert events[0].type is EventType.CURSOR_UPDATE
        assert events[0].payload == {
            "userId": "2",
            "file": "src/app.py",
            "position": {"line": 4, "character": 7},
        }

    @pytest.mark.asyncio
    async def test_session_notifications(self, events) -> None:
        collab = ProviderCollaboration(FakeProvider())
        collab.on_event(record(events))
        await collab.handle_notification({"kind": "peers", "added": [{"peerNumber": 1}]})

        await collab.handle_notification({"kind": "session", "session": {"id": "s1"}})
        assert collab.active is True

        await collab.handle_notification({"kind": "session", "session": None})

        assert [e.type for e in events][-2:] == [EventType.SESSION_CHANGED, EventType.SESSION_ENDED]
        assert collab.active is False
        assert collab.list_participants() == []

    @pytest.mark.asyncio
    async def test_unknown_notification_ignored(self, events) -> None:
        collab = ProviderCollaboration(FakeProvider())
        collab.on_event(record(events))
        await collab.handle_notification({"kind": "telemetry"})
        assert events == []

    @pytest.mark.asyncio
    async def test_notification_via_subscription(self, events) -> None:
        provider = FakeProvider()
        collab = ProviderCollaboration(provider)
        collab.on_event(record(events))
        await collab.start()

        provider.callback({"kind": "peers", "added": [{"peerNumber": 5, "displayName": "Bo"}]})
        for _ in range(50):
            if events:
                break
            await asyncio.sleep(0.01)

        assert events[0].type is EventType.USER_JOINED

    @pytest.mark.asyncio
    async def test_end(self, events) -> None:
        provider = FakeProvider()
        collab = ProviderCollaboration(provider)
        collab.on_event(record(events))
        await collab.start()

        await collab.end()

        assert provider.ended is True
        assert events[-1].type is EventType.SESSION_ENDED


class TestSelection:
    def test_no_provider_configured(self, tmp_path: Path) -> None:
        assert isinstance(select_collaboration(CollaborationConfig(), tmp_path), LocalCollaboration)
        assert isinstance(select_collaboration(None, tmp_path), LocalCollaboration)

    def test_unimportable_provider_falls_back(self, tmp_path: Path) -> None:
        config = CollaborationConfig(provider="no_such_module_xyz:factory")
        assert isinstance(select_collaboration(config, tmp_path), LocalCollaboration)

    def test_valid_provider(self, tmp_path: Path, fake_module: str) -> None:
        config = CollaborationConfig(provider=f"{fake_module}:make_provider")
        assert isinstance(select_collaboration(config, tmp_path), ProviderCollaboration)

    def test_incomplete_provider_falls_back(self, tmp_path: Path, fake_module: str) -> None:
        config = CollaborationConfig(provider=f"{fake_module}:make_minimal")
        assert isinstance(select_collaboration(config, tmp_path), LocalCollaboration)

    @pytest.mark.parametrize("path", ["nocolon", ":attr", "module:"])
    def test_bad_path_format(self, path: str) -> None:
        with pytest.raises(ValueError):
            load_provider(path)
