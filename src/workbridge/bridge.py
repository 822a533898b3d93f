"""Bridge composition root.

Builds every registry once, wires them together and owns their lifecycle.
Nothing else in the package holds process-wide state.
"""

from __future__ import annotations

import logging
from pathlib import Path

from workbridge.analysis.python_analyzer import PythonAnalyzer
from workbridge.checkpoints.manager import CheckpointManager
from workbridge.collaboration import select_collaboration
from workbridge.config.schema import Config
from workbridge.diagnostics.collector import DiagnosticsCollector
from workbridge.dispatcher import CommandDispatcher
from workbridge.editor import HeadlessEditor
from workbridge.server.app import BridgeServices, create_app
from workbridge.server.broadcaster import Broadcaster
from workbridge.server.lifecycle import BridgeServer
from workbridge.terminal.manager import TerminalSessionManager

log = logging.getLogger(__name__)


class Bridge:
    """The running bridge for one workspace."""

    def __init__(self, config: Config) -> None:
        self.config = config
        self.root = Path(config.workspace.root).resolve()

        self.broadcaster = Broadcaster()
        self.terminals = TerminalSessionManager(
            str(self.root),
            default_timeout_ms=config.terminal.default_timeout_ms,
            output_limit=config.terminal.output_limit,
        )
        self.analyzer = PythonAnalyzer(
            self.root,
            patterns=config.diagnostics.patterns,
            ignore_patterns=config.diagnostics.ignore_patterns,
            max_files=config.diagnostics.max_files,
        )
        self.editor = HeadlessEditor(self.root, self.terminals, self.analyzer)
        self.checkpoints = CheckpointManager(
            str(self.root),
            prefix=config.checkpoints.prefix,
            git=config.checkpoints.git,
            editor=self.editor,
        )
        self.diagnostics = DiagnosticsCollector(
            self.analyzer,
            self.broadcaster,
            config.diagnostics.file,
            config.diagnostics.interval,
        )
        self.collaboration = select_collaboration(config.collaboration, self.root)
        self.collaboration.on_event(self.broadcaster.publish)

        self.dispatcher = CommandDispatcher(
            terminals=self.terminals,
            checkpoints=self.checkpoints,
            editor=self.editor,
            analyzer=self.analyzer,
            diagnostics=self.diagnostics,
            collaboration=self.collaboration,
        )
        self.app = create_app(BridgeServices(self.dispatcher, self.broadcaster, self.diagnostics))
        self.server = BridgeServer(
            self.app, self.broadcaster, config.server.host, config.server.port
        )
        self._started = False

    async def start(self) -> None:
        """Start serving, then start diagnostics collection.

        Raises:
            BridgeStartupError: If the listener cannot be bound.
        """
        await self.server.start()
        self._started = True
        if self.config.diagnostics.enabled:
            try:
                self.diagnostics.start()
            except Exception:
                await self.stop()
                raise
        log.info("Bridge ready for workspace %s", self.root)

    async def stop(self) -> None:
        """Tear everything down in reverse order. Safe to call twice."""
        if not self._started:
            return
        self._started = False

        await self.diagnostics.stop()
        try:
            await self.collaboration.end()
        except Exception as e:
            log.warning("Failed to end collaboration session: %s", e)
        await self.terminals.shutdown()
        await self.server.stop()

    async def run(self) -> None:
        """Start, serve until the server exits, then stop."""
        await self.start()
        try:
            await self.server.wait()
        finally:
            await self.stop()
