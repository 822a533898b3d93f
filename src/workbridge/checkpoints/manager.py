"""Checkpoint Manager: full-workspace snapshots on the git stash stack.

Each checkpoint is one stash entry whose reflog message carries the tag
``<prefix><checkpointId>``. Stash positions (``stash@{N}``) shift every time
a new entry is pushed, so a checkpoint is always located by scanning the
stash list for its tag; a positional ref is only ever trusted within the
locked operation that resolved it.

Every operation holds one lock. Interleaving a create with a restore or a
list would let positional refs move underneath the operation using them.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from workbridge.checkpoints.diffstat import summarize_patch
from workbridge.checkpoints.git import GitRunner
from workbridge.config.schema import DEFAULT_CHECKPOINT_PREFIX
from workbridge.errors import NotFound, UpstreamFailure

if TYPE_CHECKING:
    from workbridge.editor import Editor

log = logging.getLogger(__name__)

_STASH_REF = re.compile(r"^stash@\{(\d+)\}$")
_OBJECT_NAME = re.compile(r"^[0-9a-fA-F]{7,64}$")
_SEP = "\x1f"
_LIST_FORMAT = "%gd%x1f%H%x1f%ct%x1f%gs"

# Used only when the repository has no identity configured
_FALLBACK_IDENTITY = {
    "GIT_AUTHOR_NAME": "workbridge",
    "GIT_AUTHOR_EMAIL": "workbridge@localhost",
    "GIT_COMMITTER_NAME": "workbridge",
    "GIT_COMMITTER_EMAIL": "workbridge@localhost",
}


@dataclass(frozen=True)
class CheckpointEntry:
    """One tagged entry of the stash stack."""

    stash_index: int
    checkpoint_id: str
    ref: str  # stash@{N}, valid only until the next push
    message: str
    content_hash: str  # stash commit sha, stable
    file_count: int  # Paths differing from the commit the snapshot was taken on
    timestamp: int  # Stash commit time, epoch ms

    def to_dict(self) -> dict[str, Any]:
        return {
            "stashIndex": self.stash_index,
            "checkpointId": self.checkpoint_id,
            "ref": self.ref,
            "backingRef": self.ref,
            "message": self.message,
            "contentHash": self.content_hash,
            "fileCount": self.file_count,
            "timestamp": self.timestamp,
        }


class CheckpointManager:
    """Creates, lists, restores and diffs workspace checkpoints."""

    def __init__(
        self,
        root: str,
        *,
        prefix: str = DEFAULT_CHECKPOINT_PREFIX,
        git: str = "git",
        editor: Editor | None = None,
    ) -> None:
        """Initialize the manager.

        Args:
            root: Workspace root, a git working tree.
            prefix: Tag prefix embedded in every checkpoint's stash message.
            git: git executable.
            editor: Editor whose open views are reloaded after a restore.
        """
        self._git = GitRunner(root, git)
        self._prefix = prefix
        self._tag_pattern = re.compile(re.escape(prefix) + r"([A-Za-z0-9._:@-]+)")
        self._editor = editor
        self._lock = asyncio.Lock()
        self._identity_checked = False

    def attach_editor(self, editor: Editor) -> None:
        self._editor = editor

    def tag(self, checkpoint_id: str) -> str:
        return f"{self._prefix}{checkpoint_id}"

    # -------------------------------------------------------------------------
    # create
    # -------------------------------------------------------------------------

    async def create(self, checkpoint_id: str) -> dict[str, Any]:
        """Snapshot the whole working tree under ``checkpoint_id``.

        Tracked and untracked changes are captured; ignored files are not.
        The working tree and the index are left as they were.

        Returns:
            {checkpointId, backingRef, contentHash, fileCount, timestamp}
        """
        async with self._lock:
            await self._ensure_identity()
            message = self.tag(checkpoint_id)

            saved_index = (await self._git.run("write-tree")).stdout.strip()
            await self._git.run("add", "-A")
            try:
                sha = (await self._git.run("stash", "create", message)).stdout.strip()
                if not sha:
                    # Nothing differs from HEAD; still record a restorable point
                    sha = await self._head_snapshot(message)
                await self._git.run("stash", "store", "-m", message, sha)
            finally:
                restored = await self._git.run("read-tree", saved_index, check=False)
                if not restored.ok:
                    log.warning("Could not restore index after checkpoint: %s", restored.stderr.strip())

            file_count = await self._file_count(sha)
            committed = await self._git.run("log", "-1", "--format=%ct", sha)
            timestamp = _epoch_ms(committed.stdout.strip())

        log.info("Created checkpoint %s (%s, %d files)", checkpoint_id, sha[:12], file_count)
        return {
            "checkpointId": checkpoint_id,
            "backingRef": "stash@{0}",
            "contentHash": sha,
            "fileCount": file_count,
            "timestamp": timestamp,
        }

    async def _file_count(self, sha: str) -> int:
        changed = await self._git.run("diff", "--name-only", "-z", f"{sha}^1", sha)
        return len([p for p in changed.stdout.split("\0") if p])

    async def _head_snapshot(self, message: str) -> str:
        """Build a stash-like commit whose tree is HEAD's tree."""
        head = (await self._git.run("rev-parse", "--verify", "HEAD")).stdout.strip()
        tree = (await self._git.run("rev-parse", f"{head}^{{tree}}")).stdout.strip()
        index_commit = (
            await self._git.run("commit-tree", tree, "-p", head, "-m", f"index on {message}")
        ).stdout.strip()
        return (
            await self._git.run("commit-tree", tree, "-p", head, "-p", index_commit, "-m", message)
        ).stdout.strip()

    async def _ensure_identity(self) -> None:
        if self._identity_checked:
            return
        self._identity_checked = True
        name = await self._git.run("config", "user.name", check=False)
        email = await self._git.run("config", "user.email", check=False)
        if not (name.ok and name.stdout.strip() and email.ok and email.stdout.strip()):
            log.debug("No git identity configured, using fallback identity for checkpoints")
            for key, value in _FALLBACK_IDENTITY.items():
                self._git.set_env(key, value)

    # -------------------------------------------------------------------------
    # list
    # -------------------------------------------------------------------------

    async def list(self) -> list[dict[str, Any]]:
        """All tagged checkpoints, most recent first."""
        async with self._lock:
            entries = await self._entries()
        return [entry.to_dict() for entry in entries]

    async def _entries(self) -> list[CheckpointEntry]:
        result = await self._git.run("stash", "list", f"--format={_LIST_FORMAT}")
        entries: list[CheckpointEntry] = []
        for line in result.stdout.splitlines():
            parts = line.split(_SEP, 3)
            if len(parts) != 4:
                continue
            ref, sha, commit_time, subject = parts
            ref_match = _STASH_REF.match(ref)
            tag_match = self._tag_pattern.search(subject)
            if not ref_match or not tag_match:
                continue
            entries.append(
                CheckpointEntry(
                    stash_index=int(ref_match.group(1)),
                    checkpoint_id=tag_match.group(1),
                    ref=ref,
                    message=subject,
                    content_hash=sha,
                    file_count=await self._file_count(sha),
                    timestamp=_epoch_ms(commit_time),
                )
            )
        return entries

    async def _find(self, checkpoint_id: str) -> CheckpointEntry:
        # First match is the most recent entry carrying this id
        for entry in await self._entries():
            if entry.checkpoint_id == checkpoint_id:
                return entry
        raise NotFound(f"Checkpoint not found: {checkpoint_id}")

    # -------------------------------------------------------------------------
    # restore
    # -------------------------------------------------------------------------

    async def restore(self, checkpoint_id: str) -> dict[str, Any]:
        """Make the working tree byte-identical to the checkpoint.

        Uncommitted changes and untracked (non-ignored) files are discarded.
        HEAD does not move: if commits were made after the checkpoint, their
        content is reverted in the working tree and shows up as uncommitted
        changes.

        Returns:
            {restored, checkpointId, resolvedRef, affectedFiles}
        """
        async with self._lock:
            entry = await self._find(checkpoint_id)
            sha = entry.content_hash

            # Nothing destructive happens until the snapshot is known readable
            await self._validate_snapshot(checkpoint_id, sha)
            affected = await self._affected_paths(sha)

            await self._git.run("reset", "--hard", "-q")
            await self._git.run("clean", "-fd", "-q")
            await self._git.run("read-tree", "-u", "--reset", f"{sha}^{{tree}}")
            await self._git.run("reset", "-q")

        log.info("Restored checkpoint %s from %s (%d files affected)", checkpoint_id, entry.ref, len(affected))

        if self._editor is not None:
            try:
                await self._editor.reload(affected)
            except Exception as e:
                log.warning("Editor reload after restore failed: %s", e)

        return {
            "restored": True,
            "checkpointId": checkpoint_id,
            "resolvedRef": entry.ref,
            "affectedFiles": affected,
        }

    async def _validate_snapshot(self, checkpoint_id: str, sha: str) -> None:
        await self._git.run("cat-file", "-e", f"{sha}^{{tree}}")
        listing = await self._git.run("ls-tree", "-r", "-z", "--full-tree", sha)

        object_ids: list[str] = []
        for record in listing.stdout.split("\0"):
            if not record:
                continue
            meta, _, _path = record.partition("\t")
            fields = meta.split(" ")
            if len(fields) == 3 and fields[1] == "blob":
                object_ids.append(fields[2])

        if not object_ids:
            return
        check = await self._git.run("cat-file", "--batch-check", input="\n".join(object_ids) + "\n")
        for line in check.stdout.splitlines():
            if line.endswith(" missing"):
                raise UpstreamFailure(
                    f"Checkpoint {checkpoint_id} is not fully readable: {line.split(' ')[0]} missing"
                )

    async def _affected_paths(self, sha: str) -> list[str]:
        changed = await self._git.run("diff", "--name-only", "-z", sha)
        untracked = await self._git.run("ls-files", "--others", "--exclude-standard", "-z")
        paths = {p for p in changed.stdout.split("\0") if p}
        paths.update(p for p in untracked.stdout.split("\0") if p)
        return sorted(paths)

    # -------------------------------------------------------------------------
    # diff
    # -------------------------------------------------------------------------

    async def diff(self, backing_ref: str) -> str:
        """Patch recorded by a snapshot, or "" when unavailable. Never raises."""
        if not (_STASH_REF.match(backing_ref) or _OBJECT_NAME.match(backing_ref)):
            return ""
        try:
            async with self._lock:
                result = await self._git.run(
                    "stash", "show", "-p", "--no-color", backing_ref, check=False
                )
        except Exception as e:
            log.debug("Diff for %s unavailable: %s", backing_ref, e)
            return ""
        return result.stdout if result.ok else ""

    async def diff_with_summary(self, backing_ref: str) -> dict[str, Any]:
        patch = await self.diff(backing_ref)
        return {"diff": patch, "files": summarize_patch(patch)}


def _epoch_ms(commit_time: str) -> int:
    """Convert a git %ct value (epoch seconds) to epoch ms; 0 if unparseable."""
    return int(commit_time) * 1000 if commit_time.isdigit() else 0
