"""Async git command runner."""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass

from workbridge.errors import UpstreamFailure
from workbridge.logging import TRACE

log = logging.getLogger(__name__)


@dataclass
class GitResult:
    """Captured result of one git invocation."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class GitRunner:
    """Runs git in a fixed working tree using asyncio subprocesses.

    A failing command raises UpstreamFailure with git's own error text.
    """

    def __init__(self, cwd: str, git: str = "git", env: dict[str, str] | None = None) -> None:
        self._cwd = cwd
        self._git = git
        self._env = os.environ.copy()
        # Never block on a credential or editor prompt
        self._env["GIT_TERMINAL_PROMPT"] = "0"
        self._env["GIT_EDITOR"] = "true"
        if env:
            self._env.update(env)

    def set_env(self, key: str, value: str) -> None:
        self._env[key] = value

    async def run(
        self,
        *args: str,
        input: str | None = None,
        check: bool = True,
    ) -> GitResult:
        """Run ``git <args>``.

        Args:
            *args: git arguments.
            input: Text written to git's stdin.
            check: Raise UpstreamFailure on a non-zero exit.

        Returns:
            GitResult with decoded stdout/stderr.
        """
        try:
            process = await asyncio.create_subprocess_exec(
                self._git,
                *args,
                stdin=asyncio.subprocess.PIPE if input is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self._cwd,
                env=self._env,
            )
        except FileNotFoundError as e:
            raise UpstreamFailure(f"git executable not found: {self._git}") from e
        except OSError as e:
            raise UpstreamFailure(f"Failed to run git: {e}") from e

        stdout_data, stderr_data = await process.communicate(
            input.encode("utf-8") if input is not None else None
        )
        result = GitResult(
            args=args,
            returncode=process.returncode if process.returncode is not None else -1,
            stdout=stdout_data.decode("utf-8", errors="replace"),
            stderr=stderr_data.decode("utf-8", errors="replace"),
        )
        log.log(TRACE, "git %s -> %d", " ".join(args), result.returncode)

        if check and not result.ok:
            message = result.stderr.strip() or result.stdout.strip()
            raise UpstreamFailure(message or f"git {args[0]} exited with code {result.returncode}")
        return result
