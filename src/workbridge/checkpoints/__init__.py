"""Workspace checkpoints backed by the git stash stack."""

from workbridge.checkpoints.diffstat import summarize_patch
from workbridge.checkpoints.git import GitResult, GitRunner
from workbridge.checkpoints.manager import CheckpointEntry, CheckpointManager

__all__ = [
    "CheckpointEntry",
    "CheckpointManager",
    "GitResult",
    "GitRunner",
    "summarize_patch",
]
