"""Real-time collaboration capability.

The bridge never implements a collaboration service itself. When a provider
is configured it is wrapped by ProviderCollaboration; otherwise
LocalCollaboration hands out a workspace-scoped session link and emits the
session lifecycle events so clients see the same event stream either way.

Provider objects are duck-typed:

    share() -> str | None        start sharing, return the share link
    end() -> None                stop sharing
    peers() -> list[dict]        currently connected peers
    subscribe(callback) -> None  register for notifications (dicts, below)

Each method may be sync or async. Notifications:

    {"kind": "peers", "added": [peer, ...], "removed": [peer, ...]}
    {"kind": "session", "session": {...} | None}   # None: session ended
    {"kind": "cursor", "peer": peer, "file": str, "position": {line, character}}

where ``peer`` is ``{"peerNumber", "displayName", "email"?}``.
"""

from __future__ import annotations

import asyncio
import importlib
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

from workbridge.errors import UpstreamFailure
from workbridge.protocol.envelopes import BroadcastEvent, EventType, now_ms

if TYPE_CHECKING:
    from workbridge.config.schema import CollaborationConfig

log = logging.getLogger(__name__)

EventCallback = Callable[[BroadcastEvent], Awaitable[Any]]


@dataclass
class Participant:
    user_id: str
    user_name: str
    email: str | None = None
    role: str = "Guest"  # Owner or Guest
    joined_at: int = field(default_factory=now_ms)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "userId": self.user_id,
            "userName": self.user_name,
            "role": self.role,
            "joinedAt": self.joined_at,
        }
        if self.email is not None:
            data["email"] = self.email
        return data


class Collaboration(Protocol):
    """Protocol for the collaboration capability."""

    @property
    def active(self) -> bool: ...

    async def start(self) -> str | None:
        """Start a session and return its share link."""
        ...

    async def end(self) -> None: ...

    def list_participants(self) -> list[Participant]: ...

    def on_event(self, callback: EventCallback) -> None: ...


class _EventSource:
    """Callback registry shared by the implementations."""

    def __init__(self) -> None:
        self._callbacks: list[EventCallback] = []

    def on_event(self, callback: EventCallback) -> None:
        self._callbacks.append(callback)

    async def _emit(self, event_type: EventType, payload: dict[str, Any] | None = None) -> None:
        event = BroadcastEvent(event_type, payload or {})
        log.debug("Collaboration event: %s", event_type.value)
        for callback in list(self._callbacks):
            try:
                await callback(event)
            except Exception as e:
                log.warning("Collaboration event callback failed: %s", e)


class LocalCollaboration(_EventSource):
    """Fallback used when no provider is available."""

    def __init__(self, workspace_root: str | Path) -> None:
        super().__init__()
        self._workspace_uri = Path(workspace_root).resolve().as_uri()
        self._session_id: str | None = None

    @property
    def active(self) -> bool:
        return self._session_id is not None

    async def start(self) -> str | None:
        self._session_id = f"workbridge-{now_ms()}"
        link = f"{self._workspace_uri}#session={self._session_id}"
        log.info("Started local collaboration session %s", self._session_id)
        await self._emit(
            EventType.SESSION_CHANGED,
            {
                "session": {
                    "sessionId": self._session_id,
                    "role": "Host",
                    "peerCount": 0,
                    "state": "active",
                }
            },
        )
        return link

    async def end(self) -> None:
        if self._session_id is None:
            return
        log.info("Ended local collaboration session %s", self._session_id)
        self._session_id = None
        await self._emit(EventType.SESSION_ENDED)

    def list_participants(self) -> list[Participant]:
        return []


async def _call(method: Callable[..., Any], *args: Any) -> Any:
    result = method(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


def _peer_id(peer: dict[str, Any]) -> str:
    number = peer.get("peerNumber")
    return str(number) if number is not None else f"peer-{now_ms()}"


class ProviderCollaboration(_EventSource):
    """Adapts a third-party provider object to the Collaboration protocol."""

    def __init__(self, provider: Any) -> None:
        super().__init__()
        self._provider = provider
        self._participants: dict[str, Participant] = {}
        self._active = False
        self._subscribed = False
        self._loop: asyncio.AbstractEventLoop | None = None
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def active(self) -> bool:
        return self._active

    async def start(self) -> str | None:
        self._subscribe()
        try:
            link = await _call(self._provider.share)
        except Exception as e:
            raise UpstreamFailure(f"Collaboration provider failed to start session: {e}") from e
        self._active = True
        await self._sync_peers()
        return str(link) if link is not None else None

    async def end(self) -> None:
        try:
            await _call(self._provider.end)
        except Exception as e:
            raise UpstreamFailure(f"Collaboration provider failed to end session: {e}") from e
        if self._active:
            await self._session_ended()

    def list_participants(self) -> list[Participant]:
        return list(self._participants.values())

    def _subscribe(self) -> None:
        if self._subscribed:
            return
        subscribe = getattr(self._provider, "subscribe", None)
        if subscribe is None:
            return
        self._loop = asyncio.get_running_loop()
        subscribe(self._on_notification)
        self._subscribed = True

    async def _sync_peers(self) -> None:
        peers_method = getattr(self._provider, "peers", None)
        if peers_method is None:
            return
        try:
            peers = await _call(peers_method) or []
        except Exception as e:
            log.warning("Could not read provider peers: %s", e)
            return
        await self.handle_notification({"kind": "peers", "added": peers, "removed": []})

    def _on_notification(self, notification: dict[str, Any]) -> None:
        """Provider callback; may be invoked from any thread."""
        if self._loop is None:
            return
        self._loop.call_soon_threadsafe(self._schedule, notification)

    def _schedule(self, notification: dict[str, Any]) -> None:
        task = asyncio.ensure_future(self.handle_notification(notification))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def handle_notification(self, notification: dict[str, Any]) -> None:
        """Translate one provider notification into broadcast events."""
        match notification.get("kind"):
            case "peers":
                for peer in notification.get("added") or []:
                    await self._peer_joined(peer)
                for peer in notification.get("removed") or []:
                    await self._peer_left(peer)
            case "session":
                session = notification.get("session")
                if session is None:
                    await self._session_ended()
                else:
                    self._active = True
                    await self._emit(EventType.SESSION_CHANGED, {"session": session})
            case "cursor":
                peer = notification.get("peer") or {}
                await self._emit(
                    EventType.CURSOR_UPDATE,
                    {
                        "userId": _peer_id(peer),
                        "file": notification.get("file"),
                        "position": notification.get("position"),
                    },
                )
            case other:
                log.debug("Ignoring provider notification %r", other)

    async def _peer_joined(self, peer: dict[str, Any]) -> None:
        user_id = _peer_id(peer)
        if user_id in self._participants:
            return
        participant = Participant(
            user_id=user_id,
            user_name=peer.get("displayName") or f"Guest {peer.get('peerNumber', '?')}",
            email=peer.get("email"),
            role="Owner" if peer.get("peerNumber") == 0 else "Guest",
        )
        self._participants[user_id] = participant
        log.info("%s joined the workspace", participant.user_name)
        await self._emit(EventType.USER_JOINED, {"user": participant.to_dict()})

    async def _peer_left(self, peer: dict[str, Any]) -> None:
        participant = self._participants.pop(_peer_id(peer), None)
        if participant is None:
            return
        log.info("%s left the workspace", participant.user_name)
        await self._emit(EventType.USER_LEFT, {"user": participant.to_dict()})

    async def _session_ended(self) -> None:
        self._active = False
        self._participants.clear()
        await self._emit(EventType.SESSION_ENDED)


def load_provider(path: str) -> Any:
    """Instantiate a provider from a "module:attribute" factory path."""
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"Provider path must look like 'module:attribute', got {path!r}")
    factory = getattr(importlib.import_module(module_name), attr)
    provider = factory()
    missing = [name for name in ("share", "end") if not callable(getattr(provider, name, None))]
    if missing:
        raise TypeError(f"Provider {path} lacks required methods: {', '.join(missing)}")
    return provider


def select_collaboration(
    config: CollaborationConfig | None, workspace_root: str | Path
) -> ProviderCollaboration | LocalCollaboration:
    """Pick the collaboration implementation once at startup.

    Any problem loading the configured provider falls back to
    LocalCollaboration.
    """
    if config is None or not config.provider:
        return LocalCollaboration(workspace_root)
    try:
        provider = load_provider(config.provider)
    except Exception as e:
        log.warning("Collaboration provider %s unavailable, using local mode: %s", config.provider, e)
        return LocalCollaboration(workspace_root)
    log.info("Using collaboration provider %s", config.provider)
    return ProviderCollaboration(provider)
