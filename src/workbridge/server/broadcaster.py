"""Event fan-out to connected agent clients."""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from fastapi import WebSocket

    from workbridge.protocol.envelopes import BroadcastEvent

log = logging.getLogger(__name__)

_client_ids = itertools.count(1)


class ClientConnection:
    """One connected websocket client.

    All writes go through ``send``, which serializes them so a response and
    a broadcast event never interleave on the same socket.
    """

    def __init__(self, websocket: WebSocket) -> None:
        self.websocket = websocket
        self.id = next(_client_ids)
        self.closed = False
        self._send_lock = asyncio.Lock()

    async def send(self, message: dict[str, Any]) -> None:
        """Send one JSON frame. Raises if the socket is gone."""
        async with self._send_lock:
            await self.websocket.send_json(message)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if self.closed:
            return
        self.closed = True
        with contextlib.suppress(Exception):
            await self.websocket.close(code=code, reason=reason)

    def __repr__(self) -> str:
        return f"ClientConnection(id={self.id}, closed={self.closed})"


class Broadcaster:
    """Tracks connected clients and publishes BroadcastEvents to all of them.

    Delivery is best-effort and live only: there is no history, so a client
    that connects after an event was published never sees it, and a client
    whose send fails is dropped without retry.
    """

    def __init__(self) -> None:
        self._clients: set[ClientConnection] = set()
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket) -> ClientConnection:
        """Accept a websocket and register it for broadcasts."""
        await websocket.accept()
        client = ClientConnection(websocket)
        async with self._lock:
            self._clients.add(client)
        log.debug("Client %d connected (%d total)", client.id, len(self._clients))
        return client

    async def disconnect(self, client: ClientConnection) -> None:
        """Deregister a client. Later events are not sent to it."""
        client.closed = True
        async with self._lock:
            self._clients.discard(client)
        log.debug("Client %d disconnected (%d total)", client.id, len(self._clients))

    async def publish(self, event: BroadcastEvent) -> int:
        """Send ``event`` to every currently connected client.

        Returns:
            Number of clients the event was delivered to.
        """
        message = event.to_dict()
        async with self._lock:
            clients = list(self._clients)

        if not clients:
            return 0

        results = await asyncio.gather(
            *(client.send(message) for client in clients), return_exceptions=True
        )

        dead_clients = [c for c, r in zip(clients, results) if isinstance(r, BaseException)]
        if dead_clients:
            async with self._lock:
                for client in dead_clients:
                    self._clients.discard(client)
                    client.closed = True
            log.debug("Dropped %d client(s) after failed send", len(dead_clients))

        return len(clients) - len(dead_clients)

    @property
    def connection_count(self) -> int:
        return len(self._clients)

    async def close_all(self, reason: str = "Server shutting down") -> None:
        """Close all client connections gracefully."""
        async with self._lock:
            clients = list(self._clients)
            self._clients.clear()

        for client in clients:
            await client.close(code=1001, reason=reason)
        if clients:
            log.info("Closed %d client connection(s)", len(clients))
