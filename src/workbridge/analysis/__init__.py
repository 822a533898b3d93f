"""Language analysis: diagnostics, navigation, formatting and code actions."""

from workbridge.analysis.protocol import Analyzer, ChangeCallback
from workbridge.analysis.python_analyzer import PythonAnalyzer, format_text
from workbridge.analysis.records import DiagnosticRecord, Severity, normalize_severity

__all__ = [
    "Analyzer",
    "ChangeCallback",
    "DiagnosticRecord",
    "PythonAnalyzer",
    "Severity",
    "format_text",
    "normalize_severity",
]
