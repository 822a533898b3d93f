"""Logging for the bridge process.

Everything logs under the ``workbridge`` logger. Two extra levels sit
between the standard ones: VERBOSE (15) for per-command chatter and TRACE
(5) for every git and subprocess invocation.

Output goes to a log file when one is configured (``logging.file`` or
``WB_LOG``). Otherwise it goes to stderr, but only when stderr is a
terminal: under a supervisor that pipes stderr the bridge stays quiet.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from workbridge.config.schema import LoggingConfig

TRACE = 5
VERBOSE = 15

logging.addLevelName(TRACE, "TRACE")
logging.addLevelName(VERBOSE, "VERBOSE")

logger = logging.getLogger("workbridge")

_configured = False

_NAMED_LEVELS = {
    "TRACE": TRACE,
    "DEBUG": logging.DEBUG,
    "VERBOSE": VERBOSE,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

# -v count -> level
_VERBOSITY_LEVELS = (logging.ERROR, logging.WARNING, logging.INFO, VERBOSE, TRACE)

_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
_DATE_FORMAT = "%H:%M:%S"


class _BridgeFormatter(logging.Formatter):
    """Lowercase level names, e.g. ``12:00:01 warning workbridge.server: ...``."""

    def format(self, record: logging.LogRecord) -> str:
        record.levelname = record.levelname.lower()
        return super().format(record)


def resolve_level(config: LoggingConfig | None) -> int:
    """Effective level: a verbosity count beats a level name; INFO otherwise."""
    if config is None:
        return logging.INFO
    if config.verbose is not None:
        index = max(config.verbose, 0)
        return _VERBOSITY_LEVELS[min(index, len(_VERBOSITY_LEVELS) - 1)]
    if config.level:
        return _NAMED_LEVELS.get(config.level.upper(), logging.INFO)
    return logging.INFO


def _attach(handler: logging.Handler, level: int) -> None:
    handler.setLevel(level)
    handler.setFormatter(_BridgeFormatter(_FORMAT, datefmt=_DATE_FORMAT))
    logger.addHandler(handler)


def setup_logging(config: LoggingConfig | None = None) -> None:
    """Configure the ``workbridge`` logger. Only the first call has an effect."""
    global _configured
    if _configured:
        return
    _configured = True

    level = resolve_level(config)
    logger.setLevel(level)

    log_path = (config.file if config else None) or os.environ.get("WB_LOG")
    if log_path:
        try:
            _attach(logging.FileHandler(os.path.expanduser(log_path), encoding="utf-8"), level)
            return
        except OSError as e:
            if sys.stderr.isatty():
                print(f"[workbridge] cannot open log file {log_path}: {e}", file=sys.stderr)

    if sys.stderr.isatty():
        _attach(logging.StreamHandler(sys.stderr), level)


def get_logger(name: str | None = None) -> logging.Logger:
    """The ``workbridge`` logger, or its child ``workbridge.<name>``."""
    return logger.getChild(name) if name else logger
