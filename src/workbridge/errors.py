"""Error taxonomy for the bridge.

Every failure a handler can raise on purpose is a BridgeError subclass. The
dispatcher converts them to failed ResponseEnvelopes carrying the message and
the wire ``code``; nothing raised by a handler crosses the socket.

A terminal wait that elapses is not an error: it is reported as a session
that is still running.
"""

from __future__ import annotations


class BridgeError(Exception):
    """Base class for errors reported back to the agent."""

    code = "INTERNAL"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class NotFound(BridgeError):
    """Unknown terminal, checkpoint, code action or workspace file."""

    code = "NOT_FOUND"


class InvalidCommand(BridgeError):
    """Unrecognized command type or malformed envelope/payload."""

    code = "INVALID_COMMAND"


class UpstreamFailure(BridgeError):
    """A git, subprocess, analyzer or provider call failed.

    The upstream error text is kept verbatim in ``message``.
    """

    code = "UPSTREAM_FAILURE"


class BridgeStartupError(Exception):
    """The socket listener could not be bound.

    Raised from server startup; the bridge cannot operate without it.
    """

    def __init__(self, host: str, port: int, reason: str) -> None:
        super().__init__(f"Failed to bind bridge socket on {host}:{port}: {reason}")
        self.host = host
        self.port = port
        self.reason = reason
