"""Websocket server, event broadcasting and server lifecycle."""

from workbridge.server.app import BridgeServices, create_app
from workbridge.server.broadcaster import Broadcaster, ClientConnection
from workbridge.server.lifecycle import BridgeServer, bind_socket

__all__ = [
    "Broadcaster",
    "BridgeServer",
    "BridgeServices",
    "ClientConnection",
    "bind_socket",
    "create_app",
]
