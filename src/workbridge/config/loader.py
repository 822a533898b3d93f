"""Configuration file loading and caching.

Handles:
- YAML file parsing
- Environment variable overrides
- Config caching with reset support
- Conversion from dict to typed Config dataclass
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml

from workbridge.config.merge import merge_configs
from workbridge.config.paths import get_config_paths
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

# Module logger (may not be configured yet at import time)
log = logging.getLogger(__name__)

_cached_config: Config | None = None

_KNOWN_KEYS = {
    "server",
    "workspace",
    "diagnostics",
    "terminal",
    "checkpoints",
    "collaboration",
    "logging",
}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file, returning empty dict if not found or invalid."""
    if not path.exists():
        return {}

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
            return data if isinstance(data, dict) else {}
    except yaml.YAMLError as e:
        log.warning("Invalid YAML in %s: %s", path, e)
        return {}
    except PermissionError:
        log.debug("Permission denied reading %s", path)
        return {}
    except OSError as e:
        log.warning("Error reading %s: %s", path, e)
        return {}


def env_overrides() -> dict[str, Any]:
    """Build config dict from WB_* environment variables.

    Environment variables take highest priority.
    """
    overrides: dict[str, Any] = {}

    host = os.environ.get("WB_HOST")
    if host:
        overrides.setdefault("server", {})["host"] = host

    port = os.environ.get("WB_PORT")
    if port:
        try:
            overrides.setdefault("server", {})["port"] = int(port)
        except ValueError:
            log.warning("Ignoring non-integer WB_PORT=%r", port)

    workspace = os.environ.get("WB_WORKSPACE")
    if workspace:
        overrides.setdefault("workspace", {})["root"] = workspace

    diagnostics_file = os.environ.get("WB_DIAGNOSTICS_FILE")
    if diagnostics_file:
        overrides.setdefault("diagnostics", {})["file"] = diagnostics_file

    log_path = os.environ.get("WB_LOG")
    if log_path:
        overrides.setdefault("logging", {})["file"] = log_path

    return overrides


def _section(data: dict[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key)
    return value if isinstance(value, dict) else {}


def _str_list(value: Any, default: list[str]) -> list[str]:
    if not isinstance(value, list):
        return list(default)
    return [item for item in value if isinstance(item, str)]


def dict_to_config(data: dict[str, Any]) -> Config:
    """Convert merged dict to typed Config dataclass.

    Args:
        data: Merged configuration dictionary.

    Returns:
        Typed Config object.
    """
    server_data = _section(data, "server")
    server = ServerConfig(
        host=server_data.get("host", ServerConfig.host),
        port=int(server_data.get("port", ServerConfig.port)),
    )

    workspace_data = _section(data, "workspace")
    workspace = WorkspaceConfig(root=str(workspace_data.get("root", WorkspaceConfig.root)))

    diag_data = _section(data, "diagnostics")
    diag_defaults = DiagnosticsConfig()
    diagnostics = DiagnosticsConfig(
        enabled=bool(diag_data.get("enabled", diag_defaults.enabled)),
        file=str(diag_data.get("file", diag_defaults.file)),
        interval=float(diag_data.get("interval", diag_defaults.interval)),
        patterns=_str_list(diag_data.get("patterns"), diag_defaults.patterns),
        ignore_patterns=_str_list(
            diag_data.get("ignore_patterns"), diag_defaults.ignore_patterns
        ),
        max_files=int(diag_data.get("max_files", diag_defaults.max_files)),
    )

    term_data = _section(data, "terminal")
    terminal = TerminalConfig(
        default_timeout_ms=int(
            term_data.get("default_timeout_ms", TerminalConfig.default_timeout_ms)
        ),
        output_limit=int(term_data.get("output_limit", TerminalConfig.output_limit)),
    )

    cp_data = _section(data, "checkpoints")
    checkpoints = CheckpointConfig(
        prefix=str(cp_data.get("prefix", CheckpointConfig.prefix)),
        git=str(cp_data.get("git", CheckpointConfig.git)),
    )

    collab_data = _section(data, "collaboration")
    collaboration = CollaborationConfig(provider=collab_data.get("provider"))

    log_data = _section(data, "logging")
    logging_config = LoggingConfig(
        level=log_data.get("level"),
        file=log_data.get("file"),
        verbose=log_data.get("verbose"),
    )

    extra = {k: v for k, v in data.items() if k not in _KNOWN_KEYS}

    return Config(
        server=server,
        workspace=workspace,
        diagnostics=diagnostics,
        terminal=terminal,
        checkpoints=checkpoints,
        collaboration=collaboration,
        logging=logging_config,
        extra=extra,
    )


def load_config(workspace_root: str | None = None, reload: bool = False) -> Config:
    """Load and merge config from all sources.

    Priority order (highest to lowest):
    1. Environment variables (WB_*)
    2. Project config ($workspace/.workbridge/config.yaml)
    3. User config (~/.config/workbridge/config.yaml or %APPDATA%)
    4. System config (/etc/workbridge/ or %PROGRAMDATA%)

    Args:
        workspace_root: Workspace directory for project-level config.
        reload: Force reload even if cached.

    Returns:
        Merged Config object.
    """
    global _cached_config

    if _cached_config is not None and not reload and workspace_root is None:
        return _cached_config

    configs: list[dict[str, Any]] = []

    project_root = workspace_root or os.environ.get("WB_WORKSPACE")
    for path in get_config_paths(project_root):
        config_data = load_yaml_file(path)
        if config_data:
            log.debug("Loaded config from %s", path)
            configs.append(config_data)

    env_config = env_overrides()
    if env_config:
        configs.append(env_config)

    merged = merge_configs(*configs)
    config = dict_to_config(merged)

    # The project config was found through this root, so it is authoritative
    if workspace_root is not None:
        config.workspace.root = workspace_root

    # Cache only global config (no workspace_root)
    if workspace_root is None:
        _cached_config = config

    return config


def get_config() -> Config:
    """Get the cached global config, loading it on first use."""
    if _cached_config is None:
        return load_config()
    return _cached_config


def reset_config() -> None:
    """Reset cached config. Useful for testing or forcing a reload."""
    global _cached_config
    _cached_config = None
