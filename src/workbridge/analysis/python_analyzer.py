"""Built-in language analysis for Python workspaces.

Everything is derived from the standard ``ast`` module: syntax errors become
diagnostics, and a definition index built from function, class and
assignment nodes answers definition, reference, symbol and hover queries.
Formatting and code actions are whitespace-only fixes that never change what
the code means.
"""

from __future__ import annotations

import ast
import logging
import os
import re
import threading
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Any

from workbridge.analysis.protocol import ChangeCallback
from workbridge.analysis.records import DiagnosticRecord, Severity
from workbridge.errors import InvalidCommand, NotFound

log = logging.getLogger(__name__)

MAX_SYMBOLS = 50
TAB_SIZE = 4

_IDENTIFIER = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")


@dataclass
class _Definition:
    name: str
    kind: str  # Class, Function, Method, Variable
    line: int  # 1-based
    character: int  # 0-based
    container: str
    node: ast.AST


@dataclass
class _Module:
    """Parsed state of one file, valid while its mtime and size are unchanged."""

    mtime_ns: int
    size: int
    source: str
    tree: ast.Module | None = None
    error: DiagnosticRecord | None = None
    definitions: list[_Definition] = field(default_factory=list)

    @property
    def lines(self) -> list[str]:
        return self.source.splitlines()


@dataclass
class _PendingAction:
    title: str
    kind: str
    preferred: bool
    path: Path
    line: int
    fix: str  # "trailing-whitespace", "tab-indent" or "format"


def _format_line(line: str) -> str:
    stripped = line.rstrip(" \t")
    indent = len(stripped) - len(stripped.lstrip(" \t"))
    return stripped[:indent].expandtabs(TAB_SIZE) + stripped[indent:]


def format_text(text: str) -> tuple[str, int]:
    """Apply whitespace formatting to ``text``.

    Trailing whitespace is stripped, tab indentation is expanded and the text
    ends with exactly one newline (an empty document stays empty).

    Returns:
        (formatted text, number of edits)
    """
    lines = text.splitlines()
    formatted = [_format_line(line) for line in lines]
    edits = sum(1 for before, after in zip(lines, formatted) if before != after)

    while formatted and not formatted[-1]:
        formatted.pop()
    result = "\n".join(formatted) + "\n" if formatted else ""

    if result != text and edits == 0:
        edits = 1  # Only line endings or the final newline changed
    return result, edits


def _matches(rel: str, patterns: Iterable[str]) -> bool:
    # Prefixing "/" lets "**/x" patterns match at the workspace root too
    return any(fnmatchcase(rel, p) or fnmatchcase("/" + rel, p) for p in patterns)


class PythonAnalyzer:
    """ast-based Analyzer over the ``*.py`` files of one workspace.

    ``diagnostics()`` may run in a worker thread while other queries run on
    the event loop; the parse cache is guarded by a lock.
    """

    def __init__(
        self,
        root: str | Path,
        *,
        patterns: Iterable[str] = ("**/*.py",),
        ignore_patterns: Iterable[str] = (),
        max_files: int = 5000,
    ) -> None:
        """Initialize the analyzer.

        Args:
            root: Workspace root directory.
            patterns: Glob patterns of files to analyze, relative to root.
            ignore_patterns: Glob patterns of files and directories to skip.
            max_files: Upper bound on analyzed files.
        """
        self._root = Path(root).resolve()
        self._patterns = list(patterns)
        self._ignore = list(ignore_patterns)
        self._max_files = max_files
        self._modules: dict[Path, _Module] = {}
        self._cache_lock = threading.Lock()
        self._callbacks: list[ChangeCallback] = []
        self._actions: list[_PendingAction] = []

    @property
    def root(self) -> Path:
        return self._root

    # -------------------------------------------------------------------------
    # Paths and files
    # -------------------------------------------------------------------------

    def resolve(self, path: str) -> Path:
        """Resolve a workspace-relative or absolute path to an existing file.

        Raises:
            InvalidCommand: If the path escapes the workspace root.
            NotFound: If the file does not exist.
        """
        candidate = Path(path)
        if not candidate.is_absolute():
            candidate = self._root / candidate
        candidate = candidate.resolve()
        if candidate != self._root and self._root not in candidate.parents:
            raise InvalidCommand(f"Path is outside the workspace: {path}")
        if not candidate.is_file():
            raise NotFound(f"File not found: {path}")
        return candidate

    def relative(self, path: Path) -> str:
        try:
            return path.relative_to(self._root).as_posix()
        except ValueError:
            return path.as_posix()

    def files(self) -> list[Path]:
        """Workspace files matching the patterns, sorted, at most max_files."""
        found: list[Path] = []
        for dirpath, dirnames, filenames in os.walk(self._root):
            base = Path(dirpath)
            rel_dir = self.relative(base)
            prefix = "" if rel_dir == "." else rel_dir + "/"
            dirnames[:] = sorted(d for d in dirnames if not _matches(f"{prefix}{d}/_", self._ignore))
            for name in sorted(filenames):
                rel = prefix + name
                if _matches(rel, self._patterns) and not _matches(rel, self._ignore):
                    found.append(base / name)
                    if len(found) >= self._max_files:
                        log.warning("Analysis limited to the first %d files", self._max_files)
                        return found
        return found

    def _load(self, path: Path) -> _Module | None:
        try:
            stat = path.stat()
        except OSError:
            with self._cache_lock:
                self._modules.pop(path, None)
            return None

        with self._cache_lock:
            cached = self._modules.get(path)
        if cached is not None and cached.mtime_ns == stat.st_mtime_ns and cached.size == stat.st_size:
            return cached

        module = self._parse(path, stat.st_mtime_ns, stat.st_size)
        with self._cache_lock:
            self._modules[path] = module
        return module

    def _parse(self, path: Path, mtime_ns: int, size: int) -> _Module:
        rel = self.relative(path)
        try:
            source = path.read_text(encoding="utf-8")
        except UnicodeDecodeError as e:
            return _Module(
                mtime_ns,
                size,
                "",
                error=DiagnosticRecord(rel, 1, 1, Severity.WARNING, f"File is not valid UTF-8: {e.reason}", "python", "decode-error"),
            )
        except OSError as e:
            return _Module(
                mtime_ns,
                size,
                "",
                error=DiagnosticRecord(rel, 1, 1, Severity.WARNING, f"Could not read file: {e}", "python", "read-error"),
            )

        module = _Module(mtime_ns, size, source)
        try:
            module.tree = ast.parse(source, filename=rel)
        except SyntaxError as e:
            module.error = DiagnosticRecord(
                file=rel,
                line=max(e.lineno or 1, 1),
                column=max(e.offset or 1, 1),
                severity=Severity.ERROR,
                message=e.msg,
                source="python",
                code="syntax-error",
            )
        except ValueError as e:
            # Null bytes in source
            module.error = DiagnosticRecord(rel, 1, 1, Severity.ERROR, str(e), "python", "syntax-error")

        if module.tree is not None:
            module.definitions = list(self._collect_definitions(module.tree, module.lines))
        return module

    def _collect_definitions(
        self,
        node: ast.AST,
        lines: list[str],
        container: str = "",
        in_class: bool = False,
        in_function: bool = False,
    ) -> Iterator[_Definition]:
        for child in ast.iter_child_nodes(node):
            if isinstance(child, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
                is_class = isinstance(child, ast.ClassDef)
                if is_class:
                    kind = "Class"
                else:
                    kind = "Method" if in_class else "Function"
                yield _Definition(
                    child.name,
                    kind,
                    child.lineno,
                    _name_column(lines, child.lineno, child.col_offset, child.name),
                    container,
                    child,
                )
                yield from self._collect_definitions(
                    child, lines, child.name, in_class=is_class, in_function=not is_class
                )
            elif isinstance(child, (ast.Assign, ast.AnnAssign)):
                if in_function:
                    continue  # Locals are not symbols
                targets = child.targets if isinstance(child, ast.Assign) else [child.target]
                for target in targets:
                    for name_node in _target_names(target):
                        yield _Definition(
                            name_node.id,
                            "Variable",
                            name_node.lineno,
                            name_node.col_offset,
                            container,
                            child,
                        )
            elif not isinstance(child, ast.expr):
                # Compound statements (if/try/with) at the same scope level
                yield from self._collect_definitions(child, lines, container, in_class, in_function)

    def _modules_in_workspace(self) -> Iterator[tuple[Path, _Module]]:
        for path in self.files():
            module = self._load(path)
            if module is not None:
                yield path, module

    # -------------------------------------------------------------------------
    # Analyzer surface
    # -------------------------------------------------------------------------

    def diagnostics(self) -> list[DiagnosticRecord]:
        records: list[DiagnosticRecord] = []
        seen: set[Path] = set()
        for path, module in self._modules_in_workspace():
            seen.add(path)
            if module.error is not None:
                records.append(module.error)
        with self._cache_lock:
            for stale in [p for p in self._modules if p not in seen]:
                del self._modules[stale]
        return records

    def code_actions(self, path: str, line: int) -> list[dict[str, Any]]:
        """Offer whitespace fixes for one line; replaces previously offered actions."""
        resolved = self.resolve(path)
        rel = self.relative(resolved)
        text = _read(resolved)
        lines = text.splitlines()

        actions: list[_PendingAction] = []
        if 1 <= line <= len(lines):
            current = lines[line - 1]
            if current != current.rstrip(" \t"):
                actions.append(
                    _PendingAction("Remove trailing whitespace", "quickfix", True, resolved, line, "trailing-whitespace")
                )
            indent = current[: len(current) - len(current.lstrip(" \t"))]
            if "\t" in indent:
                actions.append(
                    _PendingAction("Convert indentation to spaces", "quickfix", not actions, resolved, line, "tab-indent")
                )
        if format_text(text)[0] != text:
            actions.append(_PendingAction(f"Format {rel}", "source.format", False, resolved, line, "format"))

        self._actions = actions
        return [
            {"id": index, "title": a.title, "kind": a.kind, "isPreferred": a.preferred}
            for index, a in enumerate(actions)
        ]

    def apply_code_action(self, action_id: int) -> str:
        """Apply an action from the last ``code_actions`` call.

        Raises:
            NotFound: If no action has this id.
        """
        if not 0 <= action_id < len(self._actions):
            raise NotFound(f"Code action not found: {action_id}")
        action = self._actions[action_id]
        text = _read(action.path)

        if action.fix == "format":
            updated, _ = format_text(text)
        else:
            lines = text.splitlines(keepends=True)
            if action.line > len(lines):
                raise NotFound(f"Line {action.line} no longer exists in {self.relative(action.path)}")
            original = lines[action.line - 1]
            body = original.rstrip("\r\n")
            ending = original[len(body):]
            if action.fix == "trailing-whitespace":
                body = body.rstrip(" \t")
            else:
                indent = len(body) - len(body.lstrip(" \t"))
                body = body[:indent].expandtabs(TAB_SIZE) + body[indent:]
            lines[action.line - 1] = body + ending
            updated = "".join(lines)

        if updated != text:
            action.path.write_text(updated, encoding="utf-8")
            self.invalidate([str(action.path)])
        log.debug("Applied code action %d: %s", action_id, action.title)
        return action.title

    def definition(self, path: str, line: int, character: int) -> list[dict[str, Any]]:
        resolved = self.resolve(path)
        name = self._word_at(resolved, line, character)
        if name is None:
            return []
        return [
            {"file": self.relative(def_path), "line": d.line, "character": d.character}
            for def_path, d in self._find_definitions(resolved, name)
        ]

    def references(self, path: str, line: int, character: int) -> list[dict[str, Any]]:
        resolved = self.resolve(path)
        name = self._word_at(resolved, line, character)
        if name is None:
            return []

        locations: set[tuple[str, int, int]] = set()
        for mod_path, module in self._modules_in_workspace():
            if module.tree is None or name not in module.source:
                continue
            rel = self.relative(mod_path)
            for ref_line, ref_char in _name_occurrences(module.tree, module.lines, name):
                locations.add((rel, ref_line, ref_char))

        return [
            {"file": file, "line": ref_line, "character": ref_char}
            for file, ref_line, ref_char in sorted(locations)
        ]

    def symbols(self, query: str) -> list[dict[str, Any]]:
        """Definitions whose name contains ``query`` (case-insensitive), at most 50."""
        needle = query.lower()
        results: list[dict[str, Any]] = []
        for path, module in self._modules_in_workspace():
            for d in module.definitions:
                if needle in d.name.lower():
                    results.append(
                        {
                            "name": d.name,
                            "kind": d.kind,
                            "file": self.relative(path),
                            "line": d.line,
                            "containerName": d.container,
                        }
                    )
                    if len(results) >= MAX_SYMBOLS:
                        return results
        return results

    def format(self, path: str) -> dict[str, Any]:
        resolved = self.resolve(path)
        text = _read(resolved)
        updated, edits = format_text(text)
        if updated != text:
            resolved.write_text(updated, encoding="utf-8")
            self.invalidate([str(resolved)])
        return {"message": f"Formatted {path}", "editsApplied": edits}

    def hover(self, path: str, line: int, character: int) -> dict[str, Any] | None:
        resolved = self.resolve(path)
        name = self._word_at(resolved, line, character)
        if name is None:
            return None
        for def_path, d in self._find_definitions(resolved, name):
            module = self._load(def_path)
            if module is None:
                continue
            contents = f"```python\n{_signature(d, module.lines)}\n```"
            if isinstance(d.node, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
                doc = ast.get_docstring(d.node)
                if doc:
                    contents += f"\n\n{doc}"
            return {"contents": contents}
        return None

    def on_change(self, callback: ChangeCallback) -> None:
        self._callbacks.append(callback)

    def invalidate(self, paths: Iterable[str]) -> None:
        changed: list[str] = []
        for raw in paths:
            path = Path(raw)
            if not path.is_absolute():
                path = self._root / path
            path = path.resolve()
            with self._cache_lock:
                self._modules.pop(path, None)
            changed.append(self.relative(path))
        if not changed:
            return
        for callback in list(self._callbacks):
            try:
                callback(changed)
            except Exception as e:
                log.warning("Change callback failed: %s", e)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _word_at(self, path: Path, line: int, character: int) -> str | None:
        module = self._load(path)
        if module is None:
            return None
        lines = module.lines
        if not 1 <= line <= len(lines):
            return None
        for match in _IDENTIFIER.finditer(lines[line - 1]):
            if match.start() <= character <= match.end():
                return match.group(0)
        return None

    def _find_definitions(self, origin: Path, name: str) -> list[tuple[Path, _Definition]]:
        """Definitions of ``name``, those in ``origin`` first."""
        local: list[tuple[Path, _Definition]] = []
        remote: list[tuple[Path, _Definition]] = []
        origin_module = self._load(origin)
        if origin_module is not None:
            local = [(origin, d) for d in origin_module.definitions if d.name == name]
        for path, module in self._modules_in_workspace():
            if path != origin:
                remote.extend((path, d) for d in module.definitions if d.name == name)
        return local + remote


def _read(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise NotFound(f"Could not read {path}: {e}") from e


def _target_names(target: ast.AST) -> Iterator[ast.Name]:
    if isinstance(target, ast.Name):
        yield target
    elif isinstance(target, (ast.Tuple, ast.List)):
        for element in target.elts:
            yield from _target_names(element)
    elif isinstance(target, ast.Starred):
        yield from _target_names(target.value)


def _name_column(lines: list[str], lineno: int, col: int, name: str) -> int:
    if 1 <= lineno <= len(lines):
        match = re.search(rf"\b{re.escape(name)}\b", lines[lineno - 1][col:])
        if match:
            return col + match.start()
    return col


def _name_occurrences(tree: ast.AST, lines: list[str], name: str) -> Iterator[tuple[int, int]]:
    for node in ast.walk(tree):
        match node:
            case ast.Name(id=node_id) if node_id == name:
                yield node.lineno, node.col_offset
            case ast.arg(arg=arg_name) if arg_name == name:
                yield node.lineno, node.col_offset
            case ast.Attribute(attr=attr) if attr == name:
                end_line = node.end_lineno or node.lineno
                end_col = node.end_col_offset if node.end_col_offset is not None else len(name)
                yield end_line, max(end_col - len(name), 0)
            case ast.FunctionDef() | ast.AsyncFunctionDef() | ast.ClassDef() if node.name == name:
                yield node.lineno, _name_column(lines, node.lineno, node.col_offset, name)


def _signature(definition: _Definition, lines: list[str]) -> str:
    node = definition.node
    start = definition.line
    end = start
    if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)) and node.body:
        # Header spans until the first body statement (multi-line signatures)
        end = max(start, node.body[0].lineno - 1)
    header = lines[start - 1 : end]
    return "\n".join(line.strip() for line in header if line.strip()) or definition.name
