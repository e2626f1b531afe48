"""Share one client between many tasks by queueing their requests."""

from __future__ import annotations

import asyncio
import contextlib

from miniredis.client import Client
from miniredis.cmd import Command, CommandError, Get, Set

QUEUE_SIZE = 32

_Request = tuple[Command, "asyncio.Future[bytes | None]"]


def _to_bytes(value: bytes | bytearray | str) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else bytes(value)


async def _serve(client: Client, queue: asyncio.Queue[_Request | None]) -> None:
    try:
        while (request := await queue.get()) is not None:
            command, future = request
            try:
                match command:
                    case Get(key=key):
                        result = await client.get(key)
                    case Set(key=key, value=value):
                        await client.set(key, value)
                        result = None
                    case _:
                        raise CommandError("unimplemented")
            except Exception as err:
                if not future.done():
                    future.set_exception(err)
            else:
                if not future.done():
                    future.set_result(result)
    finally:
        with contextlib.suppress(OSError):
            await client.close()


class BufferedClient:
    """Sends GET and SET requests from many tasks over one client connection."""

    def __init__(
        self, queue: asyncio.Queue[_Request | None], worker: asyncio.Task
    ) -> None:
        self._queue = queue
        self._worker = worker
        self._closed = False

    @classmethod
    def buffer(cls, client: Client) -> BufferedClient:
        """Start a task owning ``client``; must be called with a running loop."""
        queue: asyncio.Queue[_Request | None] = asyncio.Queue(maxsize=QUEUE_SIZE)
        worker = asyncio.get_running_loop().create_task(_serve(client, queue))
        return cls(queue, worker)

    async def _request(self, command: Command) -> bytes | None:
        if self._closed or self._worker.done():
            raise RuntimeError("buffered client is closed")
        future: asyncio.Future[bytes | None] = asyncio.get_running_loop().create_future()
        await self._queue.put((command, future))
        return await future

    async def get(self, key: str) -> bytes | None:
        """Return the value of ``key``, or None when it is not set."""
        return await self._request(Get(key))

    async def set(self, key: str, value: bytes | str) -> None:
        """Store ``value`` under ``key``."""
        await self._request(Set(key, _to_bytes(value)))

    async def close(self) -> None:
        """Finish the queued requests, then close the connection."""
        if self._closed:
            return
        self._closed = True
        if not self._worker.done():
            await self._queue.put(None)
        await self._worker

    async def __aenter__(self) -> BufferedClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()