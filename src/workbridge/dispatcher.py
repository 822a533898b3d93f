"""Command Dispatcher: routes each command to its handler.

The dispatcher owns no state of its own. Handlers run on the event loop and
may interleave at await points; serialization where it matters (checkpoints)
is the handler's own responsibility.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, assert_never

from workbridge.errors import BridgeError, InvalidCommand
from workbridge.protocol.commands import (
    ApplyCodeAction,
    Command,
    CreateCheckpoint,
    DisposeTerminal,
    EndCollaboration,
    FindReferences,
    FormatDocument,
    GetCheckpointDiff,
    GetCodeActions,
    GetDiagnostics,
    GetHover,
    GetTerminalOutput,
    GoToDefinition,
    ListCheckpoints,
    ListParticipants,
    OpenFile,
    RestoreCheckpoint,
    RunInTerminal,
    RunInTerminalAndCapture,
    SearchSymbols,
    StartCollaboration,
    UnknownCommand,
    parse_command,
)
from workbridge.protocol.envelopes import (
    CommandEnvelope,
    MalformedEnvelope,
    ResponseEnvelope,
    parse_envelope,
)

if TYPE_CHECKING:
    from workbridge.analysis.protocol import Analyzer
    from workbridge.checkpoints.manager import CheckpointManager
    from workbridge.collaboration import Collaboration
    from workbridge.diagnostics.collector import DiagnosticsCollector
    from workbridge.editor import Editor
    from workbridge.terminal.manager import TerminalSessionManager

log = logging.getLogger(__name__)


class CommandDispatcher:
    """Turns CommandEnvelopes into ResponseEnvelopes.

    Every outcome is a ResponseEnvelope: BridgeErrors become failures with
    their code, anything else becomes an INTERNAL failure and is logged with
    its traceback.
    """

    def __init__(
        self,
        terminals: TerminalSessionManager,
        checkpoints: CheckpointManager,
        editor: Editor,
        analyzer: Analyzer,
        diagnostics: DiagnosticsCollector,
        collaboration: Collaboration,
    ) -> None:
        self._terminals = terminals
        self._checkpoints = checkpoints
        self._editor = editor
        self._analyzer = analyzer
        self._diagnostics = diagnostics
        self._collaboration = collaboration

    async def handle_frame(self, raw: str | bytes) -> ResponseEnvelope:
        """Parse one text frame and dispatch it."""
        try:
            envelope = parse_envelope(raw)
        except MalformedEnvelope as e:
            log.warning("Rejected malformed frame (id=%s)", e.request_id)
            return ResponseEnvelope.failure(e.request_id, e)
        return await self.dispatch(envelope)

    async def dispatch(self, envelope: CommandEnvelope) -> ResponseEnvelope:
        log.debug("Command %s (id=%s)", envelope.type, envelope.id)
        try:
            command = parse_command(envelope.type, envelope.payload)
            data = await self.execute(command)
        except BridgeError as e:
            log.warning("Command %s (id=%s) failed: %s", envelope.type, envelope.id, e.message)
            return ResponseEnvelope.failure(envelope.id, e)
        except Exception as e:
            log.exception("Unexpected error handling %s (id=%s)", envelope.type, envelope.id)
            return ResponseEnvelope.internal_error(envelope.id, e)
        return ResponseEnvelope.ok(envelope.id, data)

    async def execute(self, command: Command) -> dict[str, Any]:
        """Run the handler for one command and return its result data."""
        match command:
            # Editor
            case OpenFile(file_path=path, line=line):
                return await self._editor.open_file(path, line)
            case RunInTerminal(command=shell_command, terminal_name=name):
                return await self._editor.run_in_terminal(shell_command, name)

            # Terminal capture
            case RunInTerminalAndCapture(
                command=shell_command, terminal_id=terminal_id, wait_for_output=wait, timeout_ms=timeout
            ):
                return await self._terminals.create(terminal_id, shell_command, wait, timeout)
            case GetTerminalOutput(terminal_id=terminal_id):
                return self._terminals.get(terminal_id)
            case DisposeTerminal(terminal_id=terminal_id):
                await self._terminals.dispose(terminal_id)
                return {"terminalId": terminal_id, "disposed": True}

            # Checkpoints
            case CreateCheckpoint(checkpoint_id=checkpoint_id):
                return await self._checkpoints.create(checkpoint_id)
            case RestoreCheckpoint(checkpoint_id=checkpoint_id):
                return await self._checkpoints.restore(checkpoint_id)
            case ListCheckpoints():
                return {"checkpoints": await self._checkpoints.list()}
            case GetCheckpointDiff(backing_ref=ref):
                return await self._checkpoints.diff_with_summary(ref)

            # Analysis
            case GetDiagnostics():
                return self._diagnostics.snapshot
            case GetCodeActions(file_path=path, line=line):
                actions = await asyncio.to_thread(self._analyzer.code_actions, path, line)
                return {"actions": actions}
            case ApplyCodeAction(action_id=action_id):
                title = await asyncio.to_thread(self._analyzer.apply_code_action, action_id)
                return {"applied": title}
            case GoToDefinition(file_path=path, line=line, character=character):
                definitions = await asyncio.to_thread(self._analyzer.definition, path, line, character)
                return {"definitions": definitions}
            case FindReferences(file_path=path, line=line, character=character):
                references = await asyncio.to_thread(self._analyzer.references, path, line, character)
                return {"count": len(references), "references": references}
            case SearchSymbols(query=query):
                symbols = await asyncio.to_thread(self._analyzer.symbols, query)
                return {"count": len(symbols), "symbols": symbols}
            case FormatDocument(file_path=path):
                return await asyncio.to_thread(self._analyzer.format, path)
            case GetHover(file_path=path, line=line, character=character):
                hover = await asyncio.to_thread(self._analyzer.hover, path, line, character)
                return {"hover": hover}

            # Collaboration
            case StartCollaboration():
                return {"shareLink": await self._collaboration.start()}
            case EndCollaboration():
                await self._collaboration.end()
                return {"ended": True}
            case ListParticipants():
                participants = self._collaboration.list_participants()
                return {"participants": [p.to_dict() for p in participants]}

            case UnknownCommand(type=command_type):
                raise InvalidCommand(f"unrecognized command type: {command_type}")
            case _:
                assert_never(command)
