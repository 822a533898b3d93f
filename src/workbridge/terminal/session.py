"""Terminal session record."""

from __future__ import annotations

import asyncio
import codecs
import time
from dataclasses import dataclass, field
from typing import Any

TRUNCATION_MARKER = "\n... (output truncated)"


@dataclass
class TerminalSession:
    """State of one captured shell execution.

    Attributes:
        id: Caller-chosen session id.
        command: The shell command line that was started.
        created_at: Epoch seconds when the session was registered.
        output: Combined stdout/stderr, append-only.
        running: True until the shell exits (plus a short drain of buffered output).
        exit_code: Process exit code once finished.
        finished_at: Epoch seconds when the process exited.
        truncated: True once output reached the manager's limit.
    """

    id: str
    command: str
    created_at: float = field(default_factory=time.time)
    output: str = ""
    running: bool = True
    exit_code: int | None = None
    finished_at: float | None = None
    truncated: bool = False
    process: asyncio.subprocess.Process | None = field(default=None, repr=False)
    reader: asyncio.Task[None] | None = field(default=None, repr=False)
    drain: asyncio.Task[None] | None = field(default=None, repr=False)
    _decoder: Any = field(
        default_factory=lambda: codecs.getincrementaldecoder("utf-8")(errors="replace"),
        repr=False,
    )

    def feed(self, chunk: bytes, limit: int) -> None:
        """Decode and append a chunk of process output, honouring ``limit``."""
        self.append(self._decoder.decode(chunk), limit)

    def append(self, text: str, limit: int) -> None:
        if self.truncated or not text:
            return
        room = limit - len(self.output)
        if len(text) <= room:
            self.output += text
            return
        self.output += text[: max(room, 0)] + TRUNCATION_MARKER
        self.truncated = True

    def finish(self, exit_code: int | None, limit: int) -> None:
        """Mark the session finished, flushing any buffered partial character."""
        self.append(self._decoder.decode(b"", final=True), limit)
        self.exit_code = exit_code
        self.running = False
        self.finished_at = time.time()

    def snapshot(self) -> dict[str, Any]:
        """Wire shape: {terminalId, output, isRunning, exitCode?}."""
        data: dict[str, Any] = {
            "terminalId": self.id,
            "output": self.output,
            "isRunning": self.running,
        }
        if self.exit_code is not None:
            data["exitCode"] = self.exit_code
        if self.truncated:
            data["truncated"] = True
        return data

    def __repr__(self) -> str:
        if self.running:
            return f"<TerminalSession {self.id} running>"
        return f"<TerminalSession {self.id} exit={self.exit_code}>"
