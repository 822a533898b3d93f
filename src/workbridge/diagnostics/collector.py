"""Diagnostics collector.

Periodically recomputes the workspace diagnostic set, keeps the latest
snapshot in memory, mirrors it to a shared JSON file for readers outside the
socket, and broadcasts a ``diagnostics-updated`` event.

A cycle runs every ``interval`` seconds and additionally as soon as the
analyzer reports a change; changes arriving while a cycle is pending are
coalesced into it.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING, Any

from filelock import FileLock

from workbridge.analysis.records import DiagnosticRecord, normalize_severity
from workbridge.protocol.envelopes import BroadcastEvent, EventType, now_ms

if TYPE_CHECKING:
    from workbridge.analysis.protocol import Analyzer
    from workbridge.server.broadcaster import Broadcaster

log = logging.getLogger(__name__)

DEFAULT_INTERVAL = 2.0


def build_snapshot(records: list[DiagnosticRecord]) -> dict[str, Any]:
    """Wrap normalized records in the ``{timestamp, count, diagnostics}`` shape."""
    diagnostics = []
    for record in records:
        entry = record.to_dict()
        entry["severity"] = normalize_severity(record.severity).value
        diagnostics.append(entry)
    return {"timestamp": now_ms(), "count": len(diagnostics), "diagnostics": diagnostics}


class DiagnosticsCollector:
    """Runs the collection loop and owns the latest snapshot."""

    def __init__(
        self,
        analyzer: Analyzer,
        broadcaster: Broadcaster | None,
        file_path: str | None,
        interval: float = DEFAULT_INTERVAL,
    ) -> None:
        """Initialize the collector.

        Args:
            analyzer: Source of diagnostics and change notifications.
            broadcaster: Where ``diagnostics-updated`` events go.
            file_path: Shared snapshot file, or None to keep it in memory only.
            interval: Seconds between cycles.
        """
        self._analyzer = analyzer
        self._broadcaster = broadcaster
        self._file = Path(file_path) if file_path else None
        self._interval = interval
        self._snapshot: dict[str, Any] = {"timestamp": now_ms(), "count": 0, "diagnostics": []}
        self._wakeup: asyncio.Event | None = None
        self._event_loop: asyncio.AbstractEventLoop | None = None
        self._task: asyncio.Task[None] | None = None
        self._running = False
        analyzer.on_change(self._on_analyzer_change)

    @property
    def snapshot(self) -> dict[str, Any]:
        """The latest snapshot; empty until the first cycle completes."""
        return self._snapshot

    @property
    def file_path(self) -> Path | None:
        return self._file

    def _on_analyzer_change(self, paths: list[str]) -> None:
        """Analyzer callback; may run in a worker thread."""
        if self._wakeup is None or self._event_loop is None:
            return
        log.debug("Analyzer reported changes in %s", paths)
        with contextlib.suppress(RuntimeError):
            # Loop already closed during shutdown
            self._event_loop.call_soon_threadsafe(self._wakeup.set)

    async def collect_once(self) -> dict[str, Any]:
        """Run one cycle: recompute, store, write the file, broadcast.

        Failures are logged and the previous snapshot is kept.
        """
        try:
            records = await asyncio.to_thread(self._analyzer.diagnostics)
        except Exception as e:
            log.error("Diagnostics collection failed: %s", e)
            return self._snapshot

        self._snapshot = build_snapshot(records)

        if self._file is not None:
            try:
                await asyncio.to_thread(self._write_file, self._snapshot)
            except Exception as e:
                log.error("Failed to write diagnostics file %s: %s", self._file, e)

        if self._broadcaster is not None:
            try:
                await self._broadcaster.publish(
                    BroadcastEvent(EventType.DIAGNOSTICS_UPDATED, self._snapshot)
                )
            except Exception as e:
                log.warning("Failed to publish diagnostics: %s", e)

        return self._snapshot

    def _write_file(self, snapshot: dict[str, Any]) -> None:
        """Replace the shared file atomically under its lock."""
        assert self._file is not None
        self._file.parent.mkdir(parents=True, exist_ok=True)
        lock = FileLock(f"{self._file}.lock", timeout=10)
        with lock:
            fd, tmp_path = tempfile.mkstemp(
                dir=self._file.parent, prefix=f".{self._file.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(snapshot, f, indent=2)
                os.replace(tmp_path, self._file)
            except BaseException:
                with contextlib.suppress(OSError):
                    os.unlink(tmp_path)
                raise

    async def _run(self) -> None:
        """Main collection loop."""
        assert self._wakeup is not None
        while self._running:
            await self.collect_once()
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._wakeup.wait(), self._interval)
            self._wakeup.clear()

    def start(self) -> None:
        """Start the loop. Must be called from within an async context."""
        if self._running:
            return
        self._running = True
        self._event_loop = asyncio.get_running_loop()
        self._wakeup = asyncio.Event()
        self._task = asyncio.create_task(self._run())
        log.debug("Diagnostics collector started (interval=%.1fs)", self._interval)

    async def stop(self) -> None:
        """Stop the loop and remove the shared file."""
        self._running = False
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        self._wakeup = None

        if self._file is not None:
            try:
                self._file.unlink(missing_ok=True)
            except OSError as e:
                log.warning("Could not remove diagnostics file %s: %s", self._file, e)
            with contextlib.suppress(OSError):
                Path(f"{self._file}.lock").unlink(missing_ok=True)
        log.debug("Diagnostics collector stopped")
