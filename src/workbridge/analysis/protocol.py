"""Analyzer protocol for language-analysis backends."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Any, Protocol

from workbridge.analysis.records import DiagnosticRecord

ChangeCallback = Callable[[list[str]], None]


class Analyzer(Protocol):
    """Language-analysis surface queried by the dispatcher and the collector.

    Implementations:
    - PythonAnalyzer: ast-based analysis of the workspace's Python files

    Paths passed in are workspace-relative or absolute; paths returned are
    workspace-relative with forward slashes. Lines are 1-based and
    characters 0-based.
    """

    def diagnostics(self) -> list[DiagnosticRecord]:
        """Full current diagnostic set for the workspace."""
        ...

    def code_actions(self, path: str, line: int) -> list[dict[str, Any]]:
        """Actions available at ``line``: ``{id, title, kind, isPreferred}``."""
        ...

    def apply_code_action(self, action_id: int) -> str:
        """Apply a previously offered action and return its title."""
        ...

    def definition(self, path: str, line: int, character: int) -> list[dict[str, Any]]: ...

    def references(self, path: str, line: int, character: int) -> list[dict[str, Any]]: ...

    def symbols(self, query: str) -> list[dict[str, Any]]: ...

    def format(self, path: str) -> dict[str, Any]:
        """Format a document in place: ``{message, editsApplied}``."""
        ...

    def hover(self, path: str, line: int, character: int) -> dict[str, Any] | None: ...

    def on_change(self, callback: ChangeCallback) -> None:
        """Register a callback fired with changed paths."""
        ...

    def invalidate(self, paths: Iterable[str]) -> None:
        """Drop cached state for ``paths`` and notify change callbacks."""
        ...
