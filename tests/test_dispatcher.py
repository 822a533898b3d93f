"""Tests for command dispatch, against real components in a git workspace."""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any

import pytest

from workbridge.analysis import PythonAnalyzer
from workbridge.checkpoints import CheckpointManager
from workbridge.collaboration import LocalCollaboration
from workbridge.diagnostics import DiagnosticsCollector
from workbridge.dispatcher import CommandDispatcher
from workbridge.editor import HeadlessEditor
from workbridge.protocol import CommandEnvelope, CommandType
from workbridge.terminal import TerminalSessionManager

_next_id = iter(range(1, 10_000))


def frame(command_type: str, payload: dict[str, Any] | None = None, request_id: str | None = None) -> str:
    message: dict[str, Any] = {"id": request_id or str(next(_next_id)), "type": command_type}
    if payload is not None:
        message["payload"] = payload
    return json.dumps(message)


@pytest.fixture
async def components(git_workspace: Path):
    terminals = TerminalSessionManager(str(git_workspace), default_timeout_ms=5000)
    analyzer = PythonAnalyzer(git_workspace)
    editor = HeadlessEditor(git_workspace, terminals, analyzer)
    checkpoints = CheckpointManager(str(git_workspace), editor=editor)
    collector = DiagnosticsCollector(analyzer, None, None)
    collaboration = LocalCollaboration(git_workspace)
    yield {
        "terminals": terminals,
        "analyzer": analyzer,
        "editor": editor,
        "checkpoints": checkpoints,
        "diagnostics": collector,
        "collaboration": collaboration,
    }
    await terminals.shutdown()


@pytest.fixture
def dispatcher(components) -> CommandDispatcher:
    return CommandDispatcher(**components)


async def call(dispatcher: CommandDispatcher, command_type: str, payload: dict | None = None) -> dict:
    response = await dispatcher.handle_frame(frame(command_type, payload))
    return response.to_dict()


class TestEnvelopeHandling:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw", ["not json", "[1, 2]", '{"type": "listCheckpoints"}', '{"id": ""}'])
    async def test_malformed_frame(self, dispatcher: CommandDispatcher, raw: str) -> None:
        response = (await dispatcher.handle_frame(raw)).to_dict()
        assert response == {
            "id": None,
            "success": False,
            "error": "invalid command",
            "errorCode": "INVALID_COMMAND",
        }

    @pytest.mark.asyncio
    async def test_malformed_payload_keeps_id(self, dispatcher: CommandDispatcher) -> None:
        raw = json.dumps({"id": "7", "type": "openFile", "payload": [1]})
        response = (await dispatcher.handle_frame(raw)).to_dict()
        assert response["id"] == "7"
        assert response["success"] is False
        assert response["errorCode"] == "INVALID_COMMAND"

    @pytest.mark.asyncio
    async def test_unknown_command(self, dispatcher: CommandDispatcher) -> None:
        response = (await dispatcher.handle_frame(frame("frobnicate", request_id="u1"))).to_dict()
        assert response == {
            "id": "u1",
            "success": False,
            "error": "unrecognized command type: frobnicate",
            "errorCode": "INVALID_COMMAND",
        }

    @pytest.mark.asyncio
    async def test_invalid_payload_field(self, dispatcher: CommandDispatcher) -> None:
        response = await call(dispatcher, "goToDefinition", {"filePath": "app.py", "line": "1"})
        assert response["success"] is False
        assert response["errorCode"] == "INVALID_COMMAND"
        assert "line" in response["error"]

    @pytest.mark.asyncio
    async def test_unexpected_exception_becomes_internal(self, git_workspace: Path, components) -> None:
        class ExplodingAnalyzer(PythonAnalyzer):
            def symbols(self, query: str):
                raise RuntimeError("boom")

        components["analyzer"] = ExplodingAnalyzer(git_workspace)
        dispatcher = CommandDispatcher(**components)

        response = (
            await dispatcher.dispatch(CommandEnvelope(id="x", type="searchSymbols", payload={"query": "a"}))
        ).to_dict()

        assert response == {"id": "x", "success": False, "error": "boom", "errorCode": "INTERNAL"}

    @pytest.mark.asyncio
    async def test_response_echoes_id(self, dispatcher: CommandDispatcher) -> None:
        response = (await dispatcher.handle_frame(frame("listCheckpoints", request_id="abc"))).to_dict()
        assert response["id"] == "abc"
        assert response["success"] is True


# First required field of every command that takes one
_REQUIRED_FIELDS = {
    CommandType.OPEN_FILE: "filePath",
    CommandType.RUN_IN_TERMINAL: "command",
    CommandType.RUN_IN_TERMINAL_AND_CAPTURE: "command",
    CommandType.GET_TERMINAL_OUTPUT: "terminalId",
    CommandType.DISPOSE_TERMINAL: "terminalId",
    CommandType.CREATE_CHECKPOINT: "checkpointId",
    CommandType.RESTORE_CHECKPOINT: "checkpointId",
    CommandType.GET_CHECKPOINT_DIFF: "backingRef",
    CommandType.GET_CODE_ACTIONS: "filePath",
    CommandType.APPLY_CODE_ACTION: "actionId",
    CommandType.GO_TO_DEFINITION: "filePath",
    CommandType.FIND_REFERENCES: "filePath",
    CommandType.SEARCH_SYMBOLS: "query",
    CommandType.FORMAT_DOCUMENT: "filePath",
    CommandType.GET_HOVER: "filePath",
}

_NO_FIELDS = {
    CommandType.LIST_CHECKPOINTS,
    CommandType.GET_DIAGNOSTICS,
    CommandType.START_COLLABORATION,
    CommandType.END_COLLABORATION,
    CommandType.LIST_PARTICIPANTS,
}


class TestMalformedPayloads:
    def test_every_command_is_listed(self) -> None:
        assert set(_REQUIRED_FIELDS) | _NO_FIELDS == set(CommandType)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("command_type", list(_REQUIRED_FIELDS), ids=lambda c: c.value)
    async def test_missing_field(self, dispatcher: CommandDispatcher, command_type: CommandType) -> None:
        raw = frame(command_type.value, {}, request_id="bad-1")
        response = (await dispatcher.handle_frame(raw)).to_dict()

        assert response["id"] == "bad-1"
        assert response["success"] is False
        assert response["errorCode"] == "INVALID_COMMAND"
        assert _REQUIRED_FIELDS[command_type] in response["error"]

        follow_up = (await dispatcher.handle_frame(frame("listCheckpoints", request_id="ok-1"))).to_dict()
        assert follow_up["id"] == "ok-1"
        assert follow_up["success"] is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize("command_type", list(_REQUIRED_FIELDS), ids=lambda c: c.value)
    async def test_wrong_field_type(self, dispatcher: CommandDispatcher, command_type: CommandType) -> None:
        field = _REQUIRED_FIELDS[command_type]
        raw = frame(command_type.value, {field: ["not", "scalar"]}, request_id="bad-2")
        response = (await dispatcher.handle_frame(raw)).to_dict()

        assert response["id"] == "bad-2"
        assert response["errorCode"] == "INVALID_COMMAND"
        assert field in response["error"]

        follow_up = await call(dispatcher, "openFile", {"filePath": "app.py"})
        assert follow_up["success"] is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "command_type,payload,field",
        [
            ("openFile", {"filePath": "app.py", "line": 0}, "line"),
            (
                "runInTerminalAndCapture",
                {"command": "true", "terminalId": "t", "waitForOutput": "yes"},
                "waitForOutput",
            ),
            (
                "runInTerminalAndCapture",
                {"command": "true", "terminalId": "t", "timeoutMs": -1},
                "timeoutMs",
            ),
            ("createCheckpoint", {"checkpointId": "has space"}, "checkpointId"),
            ("getCodeActions", {"filePath": "app.py", "line": True}, "line"),
            ("applyCodeAction", {"actionId": -1}, "actionId"),
            ("findReferences", {"filePath": "app.py", "line": 1, "character": -1}, "character"),
            ("getHover", {"filePath": "app.py", "line": 1}, "character"),
        ],
    )
    async def test_invalid_optional_or_ranged_field(
        self, dispatcher: CommandDispatcher, command_type: str, payload: dict, field: str
    ) -> None:
        response = await call(dispatcher, command_type, payload)

        assert response["errorCode"] == "INVALID_COMMAND"
        assert field in response["error"]

        follow_up = await call(dispatcher, "listParticipants")
        assert follow_up["success"] is True


class TestEditorCommands:
    @pytest.mark.asyncio
    async def test_open_file(self, dispatcher: CommandDispatcher) -> None:
        response = await call(dispatcher, "openFile", {"filePath": "app.py", "line": 1})
        assert response["data"] == {"message": "Opened app.py at line 1"}

    @pytest.mark.asyncio
    async def test_open_missing_file(self, dispatcher: CommandDispatcher) -> None:
        response = await call(dispatcher, "openFile", {"filePath": "nope.py"})
        assert response["errorCode"] == "NOT_FOUND"

    @pytest.mark.skipif(sys.platform == "win32", reason="uses a POSIX shell command")
    @pytest.mark.asyncio
    async def test_run_in_terminal_default_name(self, dispatcher: CommandDispatcher) -> None:
        response = await call(dispatcher, "runInTerminal", {"command": "true"})
        assert response["data"]["terminal"] == "workbridge"
        assert response["data"]["terminalId"] == "workbridge-1"


@pytest.mark.skipif(sys.platform == "win32", reason="uses POSIX shell commands")
class TestTerminalCommands:
    @pytest.mark.asyncio
    async def test_capture_lifecycle(self, dispatcher: CommandDispatcher) -> None:
        created = await call(
            dispatcher, "runInTerminalAndCapture", {"command": "echo captured", "terminalId": "t1"}
        )
        assert created["success"] is True
        assert created["data"]["terminalId"] == "t1"
        assert "captured" in created["data"]["output"]
        assert created["data"]["isRunning"] is False
        assert created["data"]["exitCode"] == 0

        output = await call(dispatcher, "getTerminalOutput", {"terminalId": "t1"})
        assert output["data"] == created["data"]

        disposed = await call(dispatcher, "disposeTerminal", {"terminalId": "t1"})
        assert disposed["data"] == {"terminalId": "t1", "disposed": True}

        gone = await call(dispatcher, "getTerminalOutput", {"terminalId": "t1"})
        assert gone["errorCode"] == "NOT_FOUND"

    @pytest.mark.asyncio
    async def test_timeout_reports_running(self, dispatcher: CommandDispatcher) -> None:
        response = await call(
            dispatcher,
            "runInTerminalAndCapture",
            {"command": "sleep 5", "terminalId": "slow", "timeoutMs": 100},
        )
        assert response["success"] is True
        assert response["data"]["isRunning"] is True

    @pytest.mark.asyncio
    async def test_unknown_terminal(self, dispatcher: CommandDispatcher) -> None:
        response = await call(dispatcher, "disposeTerminal", {"terminalId": "ghost"})
        assert response["errorCode"] == "NOT_FOUND"


class TestCheckpointCommands:
    @pytest.mark.asyncio
    async def test_round_trip(self, git_workspace: Path, dispatcher: CommandDispatcher) -> None:
        (git_workspace / "app.py").write_text("print('v2')\n")

        created = await call(dispatcher, "createCheckpoint", {"checkpointId": "cp1"})
        assert created["data"]["checkpointId"] == "cp1"

        listed = await call(dispatcher, "listCheckpoints")
        assert [c["checkpointId"] for c in listed["data"]["checkpoints"]] == ["cp1"]

        diff = await call(dispatcher, "getCheckpointDiff", {"backingRef": created["data"]["backingRef"]})
        assert "+print('v2')" in diff["data"]["diff"]

        (git_workspace / "app.py").write_text("print('v3')\n")
        restored = await call(dispatcher, "restoreCheckpoint", {"checkpointId": "cp1"})
        assert restored["data"]["restored"] is True
        assert (git_workspace / "app.py").read_text() == "print('v2')\n"

    @pytest.mark.asyncio
    async def test_restore_unknown(self, dispatcher: CommandDispatcher) -> None:
        response = await call(dispatcher, "restoreCheckpoint", {"checkpointId": "missing"})
        assert response["errorCode"] == "NOT_FOUND"

    @pytest.mark.asyncio
    async def test_bad_checkpoint_id(self, dispatcher: CommandDispatcher) -> None:
        response = await call(dispatcher, "createCheckpoint", {"checkpointId": "has space"})
        assert response["errorCode"] == "INVALID_COMMAND"


class TestAnalysisCommands:
    @pytest.mark.asyncio
    async def test_diagnostics_snapshot(self, components, dispatcher: CommandDispatcher) -> None:
        await components["diagnostics"].collect_once()
        response = await call(dispatcher, "getDiagnostics")
        assert response["data"]["count"] == 0
        assert response["data"]["diagnostics"] == []

    @pytest.mark.asyncio
    async def test_search_symbols(self, git_workspace: Path, dispatcher: CommandDispatcher) -> None:
        (git_workspace / "lib.py").write_text("def helper():\n    pass\n")
        response = await call(dispatcher, "searchSymbols", {"query": "help"})
        assert response["data"]["count"] == 1
        assert response["data"]["symbols"][0]["name"] == "helper"

    @pytest.mark.asyncio
    async def test_definition_and_references(self, git_workspace: Path, dispatcher: CommandDispatcher) -> None:
        (git_workspace / "lib.py").write_text("def helper():\n    pass\n\n\nhelper()\n")

        definition = await call(
            dispatcher, "goToDefinition", {"filePath": "lib.py", "line": 5, "character": 1}
        )
        assert definition["data"]["definitions"] == [{"file": "lib.py", "line": 1, "character": 4}]

        references = await call(
            dispatcher, "findReferences", {"filePath": "lib.py", "line": 1, "character": 5}
        )
        assert references["data"]["count"] == 2

    @pytest.mark.asyncio
    async def test_hover_nothing(self, dispatcher: CommandDispatcher) -> None:
        response = await call(dispatcher, "getHover", {"filePath": "app.py", "line": 1, "character": 1})
        assert response == {"id": response["id"], "success": True, "data": {"hover": None}}

    @pytest.mark.asyncio
    async def test_code_action_flow(self, git_workspace: Path, dispatcher: CommandDispatcher) -> None:
        (git_workspace / "messy.py").write_text("x = 1   \n")

        actions = await call(dispatcher, "getCodeActions", {"filePath": "messy.py", "line": 1})
        first = actions["data"]["actions"][0]
        applied = await call(dispatcher, "applyCodeAction", {"actionId": first["id"]})

        assert applied["data"] == {"applied": first["title"]}
        assert (git_workspace / "messy.py").read_text() == "x = 1\n"

    @pytest.mark.asyncio
    async def test_format(self, git_workspace: Path, dispatcher: CommandDispatcher) -> None:
        (git_workspace / "messy.py").write_text("x = 1\t\n")
        response = await call(dispatcher, "formatDocument", {"filePath": "messy.py"})
        assert response["data"]["message"] == "Formatted messy.py"


class TestCollaborationCommands:
    @pytest.mark.asyncio
    async def test_lifecycle(self, dispatcher: CommandDispatcher) -> None:
        started = await call(dispatcher, "startCollaboration")
        assert "#session=workbridge-" in started["data"]["shareLink"]

        participants = await call(dispatcher, "listParticipants")
        assert participants["data"] == {"participants": []}

        ended = await call(dispatcher, "endCollaboration")
        assert ended["data"] == {"ended": True}
