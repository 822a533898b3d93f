"""Bridge wire protocol: envelopes, events and the command union."""

from workbridge.protocol.commands import Command, CommandType, UnknownCommand, parse_command
from workbridge.protocol.envelopes import (
    BroadcastEvent,
    CommandEnvelope,
    EventType,
    MalformedEnvelope,
    ResponseEnvelope,
    now_ms,
    parse_envelope,
)

__all__ = [
    "BroadcastEvent",
    "Command",
    "CommandEnvelope",
    "CommandType",
    "EventType",
    "MalformedEnvelope",
    "ResponseEnvelope",
    "UnknownCommand",
    "now_ms",
    "parse_command",
    "parse_envelope",
]
