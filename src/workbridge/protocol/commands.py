"""The closed set of bridge commands.

Every command type is a frozen dataclass. ``Command`` is the union of all of
them; ``UnknownCommand`` is the explicit variant for tags outside
``CommandType``. ``parse_command`` turns an envelope's (type, payload) pair
into one variant, validating field presence and JSON types.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from workbridge.errors import InvalidCommand

DEFAULT_TERMINAL_NAME = "workbridge"

# Checkpoint ids end up inside git reflog messages
_CHECKPOINT_ID_PATTERN = re.compile(r"^[A-Za-z0-9._:@-]{1,128}$")


class CommandType(str, Enum):
    OPEN_FILE = "openFile"
    RUN_IN_TERMINAL = "runInTerminal"
    RUN_IN_TERMINAL_AND_CAPTURE = "runInTerminalAndCapture"
    GET_TERMINAL_OUTPUT = "getTerminalOutput"
    DISPOSE_TERMINAL = "disposeTerminal"
    CREATE_CHECKPOINT = "createCheckpoint"
    RESTORE_CHECKPOINT = "restoreCheckpoint"
    LIST_CHECKPOINTS = "listCheckpoints"
    GET_CHECKPOINT_DIFF = "getCheckpointDiff"
    GET_DIAGNOSTICS = "getDiagnostics"
    GET_CODE_ACTIONS = "getCodeActions"
    APPLY_CODE_ACTION = "applyCodeAction"
    GO_TO_DEFINITION = "goToDefinition"
    FIND_REFERENCES = "findReferences"
    SEARCH_SYMBOLS = "searchSymbols"
    FORMAT_DOCUMENT = "formatDocument"
    GET_HOVER = "getHover"
    START_COLLABORATION = "startCollaboration"
    END_COLLABORATION = "endCollaboration"
    LIST_PARTICIPANTS = "listParticipants"


# =============================================================================
# Editor commands
# =============================================================================


@dataclass(frozen=True)
class OpenFile:
    file_path: str
    line: int | None = None


@dataclass(frozen=True)
class RunInTerminal:
    command: str
    terminal_name: str = DEFAULT_TERMINAL_NAME


# =============================================================================
# Terminal capture
# =============================================================================


@dataclass(frozen=True)
class RunInTerminalAndCapture:
    command: str
    terminal_id: str
    wait_for_output: bool = True
    timeout_ms: int | None = None  # None: use the configured default


@dataclass(frozen=True)
class GetTerminalOutput:
    terminal_id: str


@dataclass(frozen=True)
class DisposeTerminal:
    terminal_id: str


# =============================================================================
# Checkpoints
# =============================================================================


@dataclass(frozen=True)
class CreateCheckpoint:
    checkpoint_id: str


@dataclass(frozen=True)
class RestoreCheckpoint:
    checkpoint_id: str


@dataclass(frozen=True)
class ListCheckpoints:
    pass


@dataclass(frozen=True)
class GetCheckpointDiff:
    backing_ref: str


# =============================================================================
# Analyzer queries
# =============================================================================


@dataclass(frozen=True)
class GetDiagnostics:
    pass


@dataclass(frozen=True)
class GetCodeActions:
    file_path: str
    line: int


@dataclass(frozen=True)
class ApplyCodeAction:
    action_id: int


@dataclass(frozen=True)
class GoToDefinition:
    file_path: str
    line: int
    character: int


@dataclass(frozen=True)
class FindReferences:
    file_path: str
    line: int
    character: int


@dataclass(frozen=True)
class SearchSymbols:
    query: str


@dataclass(frozen=True)
class FormatDocument:
    file_path: str


@dataclass(frozen=True)
class GetHover:
    file_path: str
    line: int
    character: int


# =============================================================================
# Collaboration
# =============================================================================


@dataclass(frozen=True)
class StartCollaboration:
    pass


@dataclass(frozen=True)
class EndCollaboration:
    pass


@dataclass(frozen=True)
class ListParticipants:
    pass


@dataclass(frozen=True)
class UnknownCommand:
    """A command whose type tag is not in CommandType."""

    type: str


Command = (
    OpenFile
    | RunInTerminal
    | RunInTerminalAndCapture
    | GetTerminalOutput
    | DisposeTerminal
    | CreateCheckpoint
    | RestoreCheckpoint
    | ListCheckpoints
    | GetCheckpointDiff
    | GetDiagnostics
    | GetCodeActions
    | ApplyCodeAction
    | GoToDefinition
    | FindReferences
    | SearchSymbols
    | FormatDocument
    | GetHover
    | StartCollaboration
    | EndCollaboration
    | ListParticipants
    | UnknownCommand
)


_MISSING: Any = object()


class _Fields:
    """Typed accessors over a raw payload dict."""

    def __init__(self, command_type: CommandType, payload: dict[str, Any]) -> None:
        self._type = command_type.value
        self._payload = payload

    def _error(self, name: str, expected: str) -> InvalidCommand:
        return InvalidCommand(
            f"invalid command: {self._type} payload field '{name}' must be {expected}"
        )

    def string(self, name: str, default: Any = _MISSING, allow_empty: bool = False) -> str:
        expected = "a string" if allow_empty else "a non-empty string"
        value = self._payload.get(name)
        if value is None:
            if default is _MISSING:
                raise self._error(name, expected)
            return default
        if not isinstance(value, str) or (not value and not allow_empty):
            raise self._error(name, expected)
        return value

    def integer(self, name: str, default: Any = _MISSING, minimum: int | None = None) -> Any:
        value = self._payload.get(name)
        if value is None:
            if default is _MISSING:
                raise self._error(name, "an integer")
            return default
        # bool is an int subclass but never a valid position or duration
        if isinstance(value, bool) or not isinstance(value, int):
            raise self._error(name, "an integer")
        if minimum is not None and value < minimum:
            raise self._error(name, f"an integer >= {minimum}")
        return value

    def boolean(self, name: str, default: bool) -> bool:
        value = self._payload.get(name)
        if value is None:
            return default
        if not isinstance(value, bool):
            raise self._error(name, "a boolean")
        return value

    def checkpoint_id(self) -> str:
        value = self.string("checkpointId")
        if not _CHECKPOINT_ID_PATTERN.match(value):
            raise self._error("checkpointId", "1-128 characters of [A-Za-z0-9._:@-]")
        return value


def _position(cls: type[Any]) -> Callable[[_Fields], Any]:
    def build(f: _Fields) -> Any:
        return cls(
            file_path=f.string("filePath"),
            line=f.integer("line", minimum=1),
            character=f.integer("character", minimum=0),
        )

    return build


_BUILDERS: dict[CommandType, Callable[[_Fields], Command]] = {
    CommandType.OPEN_FILE: lambda f: OpenFile(
        file_path=f.string("filePath"),
        line=f.integer("line", default=None, minimum=1),
    ),
    CommandType.RUN_IN_TERMINAL: lambda f: RunInTerminal(
        command=f.string("command"),
        terminal_name=f.string("terminalName", default=DEFAULT_TERMINAL_NAME),
    ),
    CommandType.RUN_IN_TERMINAL_AND_CAPTURE: lambda f: RunInTerminalAndCapture(
        command=f.string("command"),
        terminal_id=f.string("terminalId"),
        wait_for_output=f.boolean("waitForOutput", default=True),
        timeout_ms=f.integer("timeoutMs", default=None, minimum=0),
    ),
    CommandType.GET_TERMINAL_OUTPUT: lambda f: GetTerminalOutput(
        terminal_id=f.string("terminalId"),
    ),
    CommandType.DISPOSE_TERMINAL: lambda f: DisposeTerminal(
        terminal_id=f.string("terminalId"),
    ),
    CommandType.CREATE_CHECKPOINT: lambda f: CreateCheckpoint(checkpoint_id=f.checkpoint_id()),
    CommandType.RESTORE_CHECKPOINT: lambda f: RestoreCheckpoint(checkpoint_id=f.checkpoint_id()),
    CommandType.LIST_CHECKPOINTS: lambda f: ListCheckpoints(),
    CommandType.GET_CHECKPOINT_DIFF: lambda f: GetCheckpointDiff(
        backing_ref=f.string("backingRef"),
    ),
    CommandType.GET_DIAGNOSTICS: lambda f: GetDiagnostics(),
    CommandType.GET_CODE_ACTIONS: lambda f: GetCodeActions(
        file_path=f.string("filePath"),
        line=f.integer("line", minimum=1),
    ),
    CommandType.APPLY_CODE_ACTION: lambda f: ApplyCodeAction(
        action_id=f.integer("actionId", minimum=0),
    ),
    CommandType.GO_TO_DEFINITION: _position(GoToDefinition),
    CommandType.FIND_REFERENCES: _position(FindReferences),
    CommandType.SEARCH_SYMBOLS: lambda f: SearchSymbols(query=f.string("query", allow_empty=True)),
    CommandType.FORMAT_DOCUMENT: lambda f: FormatDocument(file_path=f.string("filePath")),
    CommandType.GET_HOVER: _position(GetHover),
    CommandType.START_COLLABORATION: lambda f: StartCollaboration(),
    CommandType.END_COLLABORATION: lambda f: EndCollaboration(),
    CommandType.LIST_PARTICIPANTS: lambda f: ListParticipants(),
}

# Every CommandType must have a builder
assert set(_BUILDERS) == set(CommandType)


def parse_command(command_type: str, payload: dict[str, Any]) -> Command:
    """Build the command variant for an envelope.

    Args:
        command_type: The envelope's ``type`` tag.
        payload: The envelope's payload object.

    Returns:
        The typed command, or UnknownCommand when the tag is not recognized.

    Raises:
        InvalidCommand: If the payload is missing a field or has a wrong type.
    """
    try:
        kind = CommandType(command_type)
    except ValueError:
        return UnknownCommand(type=command_type)
    return _BUILDERS[kind](_Fields(kind, payload))
