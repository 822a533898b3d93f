"""Wire envelopes: command requests, responses and broadcast events.

Each websocket text frame carries exactly one JSON message:

    request:   {"id": "1", "type": "createCheckpoint", "payload": {...}}
    response:  {"id": "1", "success": true, "data": {...}}
               {"id": "1", "success": false, "error": "...", "errorCode": "NOT_FOUND"}
    event:     {"type": "diagnostics-updated", "payload": {...}, "timestamp": 1700000000000}

Responses always carry ``id`` and ``success``; events never do.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from workbridge.errors import BridgeError, InvalidCommand

INVALID_COMMAND_MESSAGE = "invalid command"


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class MalformedEnvelope(InvalidCommand):
    """A frame that is not a valid CommandEnvelope.

    ``request_id`` holds the id when one could still be recovered so the
    error response can be correlated.
    """

    def __init__(self, request_id: str | None = None) -> None:
        super().__init__(INVALID_COMMAND_MESSAGE)
        self.request_id = request_id


@dataclass(frozen=True)
class CommandEnvelope:
    """One agent request, consumed once by the dispatcher."""

    id: str
    type: str
    payload: dict[str, Any] = field(default_factory=dict)


def parse_envelope(raw: str | bytes) -> CommandEnvelope:
    """Decode one frame into a CommandEnvelope.

    Raises:
        MalformedEnvelope: If the frame is not JSON or has the wrong shape.
    """
    try:
        data = json.loads(raw)
    except (ValueError, UnicodeDecodeError) as e:
        raise MalformedEnvelope() from e

    if not isinstance(data, dict):
        raise MalformedEnvelope()

    request_id = data.get("id")
    if not isinstance(request_id, str) or not request_id:
        raise MalformedEnvelope()

    command_type = data.get("type")
    payload = data.get("payload", {})
    if payload is None:
        payload = {}
    if not isinstance(command_type, str) or not isinstance(payload, dict):
        raise MalformedEnvelope(request_id)

    return CommandEnvelope(id=request_id, type=command_type, payload=payload)


@dataclass
class ResponseEnvelope:
    """The single reply to a CommandEnvelope."""

    id: str | None
    success: bool
    data: Any = None
    error: str | None = None
    error_code: str | None = None

    @classmethod
    def ok(cls, request_id: str | None, data: Any = None) -> ResponseEnvelope:
        return cls(id=request_id, success=True, data=data)

    @classmethod
    def failure(cls, request_id: str | None, error: BridgeError) -> ResponseEnvelope:
        return cls(id=request_id, success=False, error=error.message, error_code=error.code)

    @classmethod
    def internal_error(cls, request_id: str | None, exc: BaseException) -> ResponseEnvelope:
        return cls(
            id=request_id,
            success=False,
            error=str(exc) or type(exc).__name__,
            error_code="INTERNAL",
        )

    def to_dict(self) -> dict[str, Any]:
        message: dict[str, Any] = {"id": self.id, "success": self.success}
        if self.success:
            if self.data is not None:
                message["data"] = self.data
        else:
            message["error"] = self.error
            if self.error_code:
                message["errorCode"] = self.error_code
        return message


class EventType(str, Enum):
    """Broadcast event tags."""

    DIAGNOSTICS_UPDATED = "diagnostics-updated"
    USER_JOINED = "user-joined"
    USER_LEFT = "user-left"
    CURSOR_UPDATE = "cursor-update"
    SESSION_CHANGED = "session-changed"
    SESSION_ENDED = "session-ended"


@dataclass(frozen=True)
class BroadcastEvent:
    """A transient notification fanned out to currently connected clients."""

    type: EventType
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: int = field(default_factory=now_ms)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "payload": self.payload,
            "timestamp": self.timestamp,
        }
