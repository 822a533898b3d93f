"""Diagnostics collection loop and shared snapshot file."""

from workbridge.diagnostics.collector import DiagnosticsCollector, build_snapshot

__all__ = ["DiagnosticsCollector", "build_snapshot"]
