"""Configuration schema dataclasses for workbridge.

Defines the structure of configuration at all levels (system, user, project).
Every field has a default so partial configs merge together cleanly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

DEFAULT_PORT = 3002
DEFAULT_DIAGNOSTICS_FILE = "/tmp/workbridge-diagnostics.json"
DEFAULT_CHECKPOINT_PREFIX = "workbridge-checkpoint-"


@dataclass
class ServerConfig:
    """Websocket listener configuration."""

    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT


@dataclass
class WorkspaceConfig:
    """The single active workspace all handlers operate on."""

    root: str = "."


@dataclass
class DiagnosticsConfig:
    """Diagnostics collection loop.

    Example config.yaml:
        diagnostics:
          interval: 2.0
          file: /tmp/workbridge-diagnostics.json
          ignore_patterns:
            - "**/.venv/**"
    """

    enabled: bool = True
    file: str = DEFAULT_DIAGNOSTICS_FILE  # Shared snapshot for out-of-socket readers
    interval: float = 2.0  # Seconds between collection cycles
    patterns: list[str] = field(default_factory=lambda: ["**/*.py"])
    ignore_patterns: list[str] = field(
        default_factory=lambda: [
            "**/__pycache__/**",
            "**/.git/**",
            "**/node_modules/**",
            "**/.venv/**",
            "**/venv/**",
        ]
    )
    max_files: int = 5000


@dataclass
class TerminalConfig:
    """Terminal capture defaults."""

    default_timeout_ms: int = 5000
    output_limit: int = 200_000  # Characters kept per session


@dataclass
class CheckpointConfig:
    """Checkpoint backend settings."""

    prefix: str = DEFAULT_CHECKPOINT_PREFIX  # Tag embedded in every stash message
    git: str = "git"  # git executable


@dataclass
class CollaborationConfig:
    """Optional real-time collaboration provider.

    ``provider`` is a "module:attribute" path to a zero-argument factory
    returning the provider object. When unset or unloadable the local
    fallback is used.
    """

    provider: str | None = None


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str | None = None  # DEBUG, INFO, WARNING, ERROR
    file: str | None = None  # Log file path
    verbose: int | None = None  # 0-4, overrides level


@dataclass
class Config:
    """Root configuration object.

    Merged from system, user, project configs and environment variables.
    """

    server: ServerConfig = field(default_factory=ServerConfig)
    workspace: WorkspaceConfig = field(default_factory=WorkspaceConfig)
    diagnostics: DiagnosticsConfig = field(default_factory=DiagnosticsConfig)
    terminal: TerminalConfig = field(default_factory=TerminalConfig)
    checkpoints: CheckpointConfig = field(default_factory=CheckpointConfig)
    collaboration: CollaborationConfig = field(default_factory=CollaborationConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    extra: dict[str, Any] = field(default_factory=dict)  # Unknown top-level keys
