"""workbridge: websocket command bridge between an automation agent and a code workspace."""

__version__ = "0.1.0"

# Public API
from workbridge.bridge import Bridge
from workbridge.config import Config, get_config, load_config
from workbridge.errors import (
    BridgeError,
    BridgeStartupError,
    InvalidCommand,
    NotFound,
    UpstreamFailure,
)
from workbridge.protocol import (
    BroadcastEvent,
    CommandEnvelope,
    CommandType,
    EventType,
    ResponseEnvelope,
)

__all__ = [
    # Main entry point
    "Bridge",
    # Config
    "Config",
    "load_config",
    "get_config",
    # Errors
    "BridgeError",
    "BridgeStartupError",
    "InvalidCommand",
    "NotFound",
    "UpstreamFailure",
    # Wire protocol
    "BroadcastEvent",
    "CommandEnvelope",
    "CommandType",
    "EventType",
    "ResponseEnvelope",
]
