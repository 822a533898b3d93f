"""Bridge server lifecycle: socket binding and the uvicorn task."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import socket
from typing import TYPE_CHECKING

import uvicorn

from workbridge.errors import BridgeStartupError

if TYPE_CHECKING:
    from fastapi import FastAPI

    from workbridge.server.broadcaster import Broadcaster

log = logging.getLogger(__name__)

_STARTUP_TIMEOUT = 10.0
_SHUTDOWN_TIMEOUT = 5.0


def bind_socket(host: str, port: int) -> socket.socket:
    """Bind the listener socket.

    Raises:
        BridgeStartupError: If the address cannot be bound.
    """
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
    except OSError as e:
        sock.close()
        raise BridgeStartupError(host, port, e.strerror or str(e)) from e
    sock.set_inheritable(True)
    return sock


class BridgeServer:
    """Runs the FastAPI app under uvicorn on a socket bound up front.

    Binding before uvicorn starts turns an unavailable port into a
    BridgeStartupError the caller can handle, instead of uvicorn exiting the
    process.
    """

    def __init__(self, app: FastAPI, broadcaster: Broadcaster, host: str, port: int) -> None:
        self._app = app
        self._broadcaster = broadcaster
        self._host = host
        self._port = port
        self._socket: socket.socket | None = None
        self._server: uvicorn.Server | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def host(self) -> str:
        return self._host

    @property
    def port(self) -> int:
        """Bound port (the real one when started with port 0)."""
        return self._port

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def task(self) -> asyncio.Task[None] | None:
        return self._task

    async def start(self) -> None:
        """Bind and start serving.

        Raises:
            BridgeStartupError: If binding fails or the server does not come up.
        """
        if self.running:
            raise RuntimeError(f"Bridge server already running on port {self._port}")

        self._socket = bind_socket(self._host, self._port)
        self._port = self._socket.getsockname()[1]

        config = uvicorn.Config(
            self._app,
            host=self._host,
            port=self._port,
            log_level="warning",
            access_log=False,
            lifespan="off",
            ws="websockets",
        )
        self._server = uvicorn.Server(config)
        self._task = asyncio.create_task(self._server.serve(sockets=[self._socket]))

        loop = asyncio.get_running_loop()
        deadline = loop.time() + _STARTUP_TIMEOUT
        while not self._server.started:
            if self._task.done() or loop.time() > deadline:
                await self._abort_startup()
                raise BridgeStartupError(self._host, self._port, "server did not start")
            await asyncio.sleep(0.01)

        log.info("Bridge listening on ws://%s:%d", self._host, self._port)

    async def _abort_startup(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        if self._task is not None:
            with contextlib.suppress(BaseException):
                await self._task
        self._close_socket()
        self._task = None
        self._server = None

    def _close_socket(self) -> None:
        if self._socket is not None:
            with contextlib.suppress(OSError):
                self._socket.close()
            self._socket = None

    async def wait(self) -> None:
        """Block until the server task ends."""
        if self._task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await self._task

    async def stop(self) -> None:
        """Close client connections and stop serving."""
        if self._task is None:
            return

        await self._broadcaster.close_all("Server shutting down")

        if self._server is not None:
            self._server.should_exit = True
        try:
            await asyncio.wait_for(asyncio.shield(self._task), _SHUTDOWN_TIMEOUT)
        except asyncio.TimeoutError:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task

        self._close_socket()
        log.info("Bridge stopped (was on port %d)", self._port)
        self._task = None
        self._server = None
