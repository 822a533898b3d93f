"""FastAPI application: the agent websocket plus health and diagnostics routes."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from fastapi import FastAPI, WebSocket

from workbridge import __version__

if TYPE_CHECKING:
    from workbridge.diagnostics.collector import DiagnosticsCollector
    from workbridge.dispatcher import CommandDispatcher
    from workbridge.server.broadcaster import Broadcaster, ClientConnection

log = logging.getLogger(__name__)


@dataclass
class BridgeServices:
    """What the routes need from the bridge."""

    dispatcher: CommandDispatcher
    broadcaster: Broadcaster
    diagnostics: DiagnosticsCollector
    started_at: float = field(default_factory=time.time)


def create_app(services: BridgeServices) -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="workbridge",
        description="Agent command bridge for a code-editing workspace",
        version=__version__,
    )
    app.state.services = services
    _register_routes(app, services)
    return app


def _register_routes(app: FastAPI, services: BridgeServices) -> None:
    """Register HTTP and websocket routes."""

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "uptime": time.time() - services.started_at,
            "connections": services.broadcaster.connection_count,
        }

    @app.get("/diagnostics")
    async def diagnostics() -> dict[str, Any]:
        """Latest diagnostics snapshot, same shape as the shared file."""
        return services.diagnostics.snapshot

    async def agent_socket(websocket: WebSocket) -> None:
        client = await services.broadcaster.connect(websocket)
        pending: set[asyncio.Task[None]] = set()
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
                raw = message.get("text")
                if raw is None:
                    raw = message.get("bytes") or b""
                # One task per frame so a slow command does not block the rest
                task = asyncio.create_task(_handle_frame(services, client, raw))
                pending.add(task)
                task.add_done_callback(pending.discard)
        finally:
            await services.broadcaster.disconnect(client)
            if pending:
                log.debug("Client %d left with %d command(s) in flight", client.id, len(pending))

    app.add_api_websocket_route("/", agent_socket)
    app.add_api_websocket_route("/ws", agent_socket)


async def _handle_frame(services: BridgeServices, client: ClientConnection, raw: str | bytes) -> None:
    response = await services.dispatcher.handle_frame(raw)
    if client.closed:
        log.debug("Discarding response %s for disconnected client %d", response.id, client.id)
        return
    try:
        await client.send(response.to_dict())
    except Exception as e:
        log.debug("Could not deliver response %s to client %d: %s", response.id, client.id, e)
