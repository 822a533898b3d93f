"""Configuration management for workbridge.

Provides hierarchical YAML-based configuration with:
- System-level config (/etc/workbridge/ or %PROGRAMDATA%)
- User-level config (~/.config/workbridge/ or %APPDATA%)
- Project-level config ($workspace/.workbridge/)
- Environment variable overrides (highest priority)

Example usage:
    from workbridge.config import load_config

    config = load_config(workspace_root="/path/to/project")
    print(config.server.port)
"""

from workbridge.config.loader import (
    get_config,
    load_config,
    reset_config,
)
from workbridge.config.paths import (
    get_config_paths,
    get_project_config_path,
    get_system_config_path,
    get_user_config_path,
)
from workbridge.config.schema import (
    CheckpointConfig,
    CollaborationConfig,
    Config,
    DiagnosticsConfig,
    LoggingConfig,
    ServerConfig,
    TerminalConfig,
    WorkspaceConfig,
)

__all__ = [
    # Main API
    "Config",
    "load_config",
    "get_config",
    "reset_config",
    # Schema types
    "ServerConfig",
    "WorkspaceConfig",
    "DiagnosticsConfig",
    "TerminalConfig",
    "CheckpointConfig",
    "CollaborationConfig",
    "LoggingConfig",
    # Path utilities
    "get_config_paths",
    "get_system_config_path",
    "get_user_config_path",
    "get_project_config_path",
]
