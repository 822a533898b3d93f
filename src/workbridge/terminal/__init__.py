"""Captured shell execution for agent commands."""

from workbridge.terminal.manager import TerminalSessionManager
from workbridge.terminal.session import TerminalSession

__all__ = [
    "TerminalSession",
    "TerminalSessionManager",
]
