"""Accept client connections and run their commands against a shared Db."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import socket
from collections.abc import Awaitable

from miniredis.cmd import from_frame
from miniredis.connection import Connection
from miniredis.db import Db, DbDropGuard
from miniredis.frame import Frame
from miniredis.shutdown import Shutdown

logger = logging.getLogger(__name__)

MAX_CONNECTIONS = 250
BACKOFF_MAX = 64

_SHUTDOWN = object()


class Handler:
    """Reads commands from one connection and applies them to the Db."""

    def __init__(self, db: Db, connection: Connection, shutdown: Shutdown) -> None:
        self.db = db
        self.connection = connection
        self.shutdown = shutdown

    async def _next_frame(self) -> Frame | None | object:
        read_task = asyncio.ensure_future(self.connection.read_frame())
        stop_task = asyncio.ensure_future(self.shutdown.recv())
        try:
            done, _ = await asyncio.wait(
                {read_task, stop_task}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for task in (read_task, stop_task):
                if not task.done():
                    task.cancel()
            await asyncio.gather(read_task, stop_task, return_exceptions=True)
        if read_task in done:
            return read_task.result()
        return _SHUTDOWN

    async def run(self) -> None:
        """Serve commands until the peer disconnects or shutdown is signalled."""
        while not self.shutdown.is_shutdown():
            frame = await self._next_frame()
            if frame is _SHUTDOWN or frame is None:
                return
            command = from_frame(frame)
            logger.debug("%r", command)
            await command.apply(self.db, self.connection, self.shutdown)


class Server:
    """Listener state: accepts connections and spawns a handler for each."""

    def __init__(
        self,
        sock: socket.socket,
        db_guard: DbDropGuard,
        max_connections: int = MAX_CONNECTIONS,
    ) -> None:
        self._sock = sock
        self._db_guard = db_guard
        self._limit = asyncio.Semaphore(max_connections)
        self._notify_shutdown = asyncio.Event()
        self._handlers: set[asyncio.Task] = set()

    async def run(self) -> None:
        """Accept connections forever; raises when accepting keeps failing."""
        logger.info("accepting inbound connections")
        self._sock.setblocking(False)
        while True:
            await self._limit.acquire()
            try:
                client = await self._accept()
            except BaseException:
                self._limit.release()
                raise
            task = asyncio.create_task(self._serve(client))
            self._handlers.add(task)
            task.add_done_callback(self._handlers.discard)

    async def _accept(self) -> socket.socket:
        loop = asyncio.get_running_loop()
        backoff = 1
        while True:
            try:
                client, _ = await loop.sock_accept(self._sock)
                return client
            except OSError:
                if backoff > BACKOFF_MAX:
                    raise
            await asyncio.sleep(backoff)
            backoff *= 2

    async def _serve(self, client: socket.socket) -> None:
        connection: Connection | None = None
        try:
            reader, writer = await asyncio.open_connection(sock=client)
            connection = Connection(reader, writer)
            handler = Handler(
                self._db_guard.db(), connection, Shutdown(self._notify_shutdown)
            )
            await handler.run()
        except Exception as err:
            logger.error("connection error: %r", err)
        finally:
            if connection is not None:
                with contextlib.suppress(OSError):
                    await connection.close()
            else:
                client.close()
            self._limit.release()

    async def _shutdown(self) -> None:
        self._notify_shutdown.set()
        handlers = list(self._handlers)
        if handlers:
            await asyncio.gather(*handlers, return_exceptions=True)
        self._db_guard.close()
        self._sock.close()


async def run(sock: socket.socket, shutdown: Awaitable[object]) -> None:
    """Serve on the listening ``sock`` until ``shutdown`` completes.

    Once ``shutdown`` completes, every connection handler is told to stop and
    the call returns after all of them have finished.
    """
    server = Server(sock, DbDropGuard(), MAX_CONNECTIONS)
    server_task = asyncio.ensure_future(server.run())
    shutdown_task = asyncio.ensure_future(shutdown)
    try:
        done, _ = await asyncio.wait(
            {server_task, shutdown_task}, return_when=asyncio.FIRST_COMPLETED
        )
        if server_task in done:
            err = server_task.exception()
            if err is not None:
                logger.error("failed to accept: %s", err)
        else:
            logger.info("shutting down")
    finally:
        for task in (server_task, shutdown_task):
            if not task.done():
                task.cancel()
        await asyncio.gather(server_task, shutdown_task, return_exceptions=True)
        await server._shutdown()