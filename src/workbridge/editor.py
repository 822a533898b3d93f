"""Editor surface: open documents, visible terminals and view reloads.

The bridge runs without a GUI; HeadlessEditor keeps the editor-side state
(which documents are open, at which line) so handlers behave the same way an
attached editor would.
"""

from __future__ import annotations

import itertools
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

from workbridge.errors import InvalidCommand, NotFound

if TYPE_CHECKING:
    from workbridge.analysis.protocol import Analyzer
    from workbridge.terminal.manager import TerminalSessionManager

log = logging.getLogger(__name__)


class Editor(Protocol):
    """Protocol for the editor the bridge drives."""

    async def open_file(self, path: str, line: int | None = None) -> dict[str, Any]: ...

    async def run_in_terminal(self, command: str, name: str) -> dict[str, Any]: ...

    async def reload(self, paths: Iterable[str]) -> None:
        """Refresh views of ``paths`` after their content changed on disk."""
        ...

    def open_documents(self) -> list[dict[str, Any]]: ...


@dataclass
class OpenDocument:
    path: str  # Workspace-relative, forward slashes
    line: int | None
    content: str


class HeadlessEditor:
    """Editor implementation that tracks state without rendering."""

    def __init__(
        self,
        workspace_root: str | Path,
        terminals: TerminalSessionManager,
        analyzer: Analyzer | None = None,
    ) -> None:
        self._root = Path(workspace_root).resolve()
        self._terminals = terminals
        self._analyzer = analyzer
        self._documents: dict[str, OpenDocument] = {}
        self._terminal_counter = itertools.count(1)
        self._named: dict[str, str] = {}  # Terminal name -> id of its current session

    def _resolve(self, path: str) -> Path:
        candidate = Path(path)
        if not candidate.is_absolute():
            candidate = self._root / candidate
        candidate = candidate.resolve()
        if candidate != self._root and self._root not in candidate.parents:
            raise InvalidCommand(f"Path is outside the workspace: {path}")
        return candidate

    def _relative(self, path: Path) -> str:
        return path.relative_to(self._root).as_posix()

    async def open_file(self, path: str, line: int | None = None) -> dict[str, Any]:
        """Open a workspace file, optionally positioned at ``line`` (1-based).

        Raises:
            InvalidCommand: If the path escapes the workspace root.
            NotFound: If the file does not exist.
        """
        resolved = self._resolve(path)
        if not resolved.is_file():
            raise NotFound(f"File not found: {path}")
        content = resolved.read_text(encoding="utf-8", errors="replace")
        rel = self._relative(resolved)
        self._documents[rel] = OpenDocument(rel, line, content)
        log.debug("Opened %s at line %s", rel, line)

        message = f"Opened {path}"
        if line is not None:
            message += f" at line {line}"
        return {"message": message}

    async def run_in_terminal(self, command: str, name: str) -> dict[str, Any]:
        """Start ``command`` in the terminal named ``name`` without waiting for it.

        One terminal is kept per name and reused once its previous command
        has finished. While it is still busy the command gets a fresh
        ``name-N`` terminal, which then becomes the one kept for ``name``.
        """
        terminal_id = self._named.get(name)
        if terminal_id is not None and self._terminals.has(terminal_id):
            if self._terminals.get(terminal_id)["isRunning"]:
                terminal_id = None
        if terminal_id is None:
            terminal_id = f"{name}-{next(self._terminal_counter)}"
            while self._terminals.has(terminal_id):
                terminal_id = f"{name}-{next(self._terminal_counter)}"
        await self._terminals.create(terminal_id, command, wait_for_output=False)
        self._named[name] = terminal_id
        return {"terminal": name, "terminalId": terminal_id, "command": command}

    async def reload(self, paths: Iterable[str]) -> None:
        """Re-read open documents among ``paths``; close those that no longer exist."""
        changed = list(paths)
        for rel in changed:
            document = self._documents.get(rel)
            if document is None:
                continue
            file = self._root / rel
            if file.is_file():
                document.content = file.read_text(encoding="utf-8", errors="replace")
            else:
                del self._documents[rel]
                log.debug("Closed %s (deleted on disk)", rel)

        if self._analyzer is not None and changed:
            self._analyzer.invalidate(changed)

    def open_documents(self) -> list[dict[str, Any]]:
        return [{"path": d.path, "line": d.line} for d in self._documents.values()]

    def document(self, path: str) -> OpenDocument | None:
        return self._documents.get(path)
