"""Diagnostic records and severity normalization."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"
    HINT = "hint"


# LSP DiagnosticSeverity numbering
_NUMERIC = {
    1: Severity.ERROR,
    2: Severity.WARNING,
    3: Severity.INFO,
    4: Severity.HINT,
}

_NAMED = {
    "error": Severity.ERROR,
    "err": Severity.ERROR,
    "fatal": Severity.ERROR,
    "warning": Severity.WARNING,
    "warn": Severity.WARNING,
    "info": Severity.INFO,
    "information": Severity.INFO,
    "hint": Severity.HINT,
}


def normalize_severity(raw: Any) -> Severity:
    """Map an analyzer-specific severity onto Severity. Unknown values are info."""
    if isinstance(raw, Severity):
        return raw
    if isinstance(raw, int) and not isinstance(raw, bool):
        return _NUMERIC.get(raw, Severity.INFO)
    if isinstance(raw, str):
        return _NAMED.get(raw.strip().lower(), Severity.INFO)
    return Severity.INFO


@dataclass(frozen=True)
class DiagnosticRecord:
    """One analyzer finding. ``line`` and ``column`` are 1-based."""

    file: str
    line: int
    column: int
    severity: Severity
    message: str
    source: str | None = None
    code: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "file": self.file,
            "line": self.line,
            "column": self.column,
            "severity": self.severity.value,
            "message": self.message,
        }
        if self.source is not None:
            data["source"] = self.source
        if self.code is not None:
            data["code"] = self.code
        return data
