"""Terminal Session Manager.

Runs agent shell commands and keeps their captured output addressable by id.

Execution strategy: every command runs as a structured subprocess
(``asyncio.create_subprocess_shell``) with stdout and stderr merged into one
pipe, so completion and the exit code are real signals rather than guesses.
The alternative, sending text to an interactive editor terminal and polling
after a fixed delay, keeps the command visible in the editor UI but cannot
observe the exit code without shell-integration escape parsing. Commands that
must be visible go through the editor's ``runInTerminal`` instead, which is
fire-and-forget.

A waiting ``create`` returns as soon as the process finishes or the timeout
elapses, whichever comes first. An elapsed timeout is not an error: the
snapshot simply reports ``isRunning: true`` and the output so far.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import signal
import sys
from typing import Any

from workbridge.errors import InvalidCommand, NotFound, UpstreamFailure
from workbridge.terminal.session import TerminalSession

log = logging.getLogger(__name__)

_READ_CHUNK = 4096
_EXIT_POLL = 0.05  # Seconds between exit checks while output is still flowing
_DRAIN_GRACE = 0.2  # Seconds to collect buffered output after the shell exits


class TerminalSessionManager:
    """Owns every TerminalSession and the processes behind them.

    Sessions are never removed automatically; callers discard them with
    ``dispose``.
    """

    def __init__(
        self,
        cwd: str,
        *,
        default_timeout_ms: int = 5000,
        output_limit: int = 200_000,
        env: dict[str, str] | None = None,
    ) -> None:
        """Initialize the manager.

        Args:
            cwd: Working directory for every command (the workspace root).
            default_timeout_ms: Wait used when a request gives no timeout.
            output_limit: Maximum characters of output kept per session.
            env: Extra environment variables for spawned commands.
        """
        self._cwd = cwd
        self._default_timeout_ms = default_timeout_ms
        self._output_limit = output_limit
        self._env = env or {}
        self._sessions: dict[str, TerminalSession] = {}
        # Replaced sessions whose background children still hold the pipe
        self._detached: list[TerminalSession] = []

    @property
    def default_timeout_ms(self) -> int:
        return self._default_timeout_ms

    async def create(
        self,
        session_id: str,
        command: str,
        wait_for_output: bool = True,
        timeout_ms: int | None = None,
    ) -> dict[str, Any]:
        """Start ``command`` and register it under ``session_id``.

        Args:
            session_id: Id the caller will use with ``get``.
            command: Shell command line.
            wait_for_output: Wait for completion (bounded by the timeout).
            timeout_ms: Wait bound in milliseconds; default when None.

        Returns:
            The session snapshot at the moment the wait ended.

        Raises:
            InvalidCommand: If a session with this id is still running.
            UpstreamFailure: If the shell could not be spawned.
        """
        existing = self._sessions.get(session_id)
        if existing is not None and existing.running:
            raise InvalidCommand(f"Terminal session {session_id} is still running")
        if existing is not None and _draining(existing):
            self._detached.append(existing)

        process_env = os.environ.copy()
        process_env.update(self._env)

        try:
            process = await asyncio.create_subprocess_shell(
                command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,  # Merge stderr into stdout
                cwd=self._cwd,
                env=process_env,
                start_new_session=sys.platform != "win32",
            )
        except OSError as e:
            raise UpstreamFailure(f"Failed to start command: {e}") from e

        session = TerminalSession(id=session_id, command=command, process=process)
        session.reader = asyncio.create_task(self._pump(session))
        self._sessions[session_id] = session
        log.debug("Started terminal %s (pid=%s): %s", session_id, process.pid, command)

        if wait_for_output:
            timeout_ms = self._default_timeout_ms if timeout_ms is None else timeout_ms
            with contextlib.suppress(asyncio.TimeoutError):
                # shield: the reader must outlive this wait
                await asyncio.wait_for(asyncio.shield(session.reader), timeout_ms / 1000)

        return session.snapshot()

    async def _pump(self, session: TerminalSession) -> None:
        """Record the shell's exit, with whatever output arrived by then.

        Completion is the shell exiting, not the pipe closing: a background
        child (``server &``) inherits the pipe and may hold it open long
        after the shell is gone. Output that arrives later is still appended.
        """
        process = session.process
        assert process is not None
        session.drain = asyncio.create_task(self._drain(session))

        exit_code: int | None = None
        try:
            while process.returncode is None and not session.drain.done():
                await asyncio.wait({session.drain}, timeout=_EXIT_POLL)
            if process.returncode is None:
                exit_code = await process.wait()
            else:
                exit_code = process.returncode
                with contextlib.suppress(asyncio.TimeoutError):
                    await asyncio.wait_for(asyncio.shield(session.drain), _DRAIN_GRACE)
        except Exception as e:
            log.warning("Exit tracking failed for terminal %s: %s", session.id, e)
            exit_code = process.returncode
        finally:
            session.finish(exit_code, self._output_limit)
            log.debug("Terminal %s finished with exit code %s", session.id, exit_code)

    async def _drain(self, session: TerminalSession) -> None:
        """Copy process output into the session until EOF."""
        assert session.process is not None and session.process.stdout is not None
        stdout = session.process.stdout
        try:
            while True:
                chunk = await stdout.read(_READ_CHUNK)
                if not chunk:
                    break
                session.feed(chunk, self._output_limit)
        except Exception as e:
            log.warning("Output capture failed for terminal %s: %s", session.id, e)

    def get(self, session_id: str) -> dict[str, Any]:
        """Return the current snapshot of a session.

        Raises:
            NotFound: If no session has this id.
        """
        return self._lookup(session_id).snapshot()

    def _lookup(self, session_id: str) -> TerminalSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise NotFound(f"Terminal session not found: {session_id}")
        return session

    def has(self, session_id: str) -> bool:
        return session_id in self._sessions

    async def dispose(self, session_id: str) -> None:
        """Kill a session's process if needed and forget the session.

        Raises:
            NotFound: If no session has this id.
        """
        session = self._lookup(session_id)
        await self._terminate(session)
        self._sessions.pop(session_id, None)

    async def _terminate(self, session: TerminalSession) -> None:
        process = session.process
        if process is not None and (process.returncode is None or _draining(session)):
            try:
                if sys.platform != "win32":
                    # The whole group, so background children die with the shell
                    os.killpg(process.pid, signal.SIGKILL)
                elif process.returncode is None:
                    process.kill()
            except ProcessLookupError:
                pass  # Process group already gone
        for task in (session.reader, session.drain):
            if task is None or task.done():
                continue
            try:
                await asyncio.wait_for(asyncio.shield(task), 2.0)
            except asyncio.TimeoutError:
                # A child outside the group may still hold the pipe open
                task.cancel()

    async def shutdown(self) -> None:
        """Kill every running process, background children included. Sessions stay readable."""
        sessions = [*self._sessions.values(), *self._detached]
        running = [s for s in sessions if s.running or _draining(s)]
        for session in running:
            await self._terminate(session)
        self._detached.clear()
        if running:
            log.info("Terminated %d running terminal session(s)", len(running))


def _draining(session: TerminalSession) -> bool:
    """True while something still holds the session's output pipe open."""
    return session.drain is not None and not session.drain.done()
