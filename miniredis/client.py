"""Asynchronous client for the server and its pub/sub subscriber."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Iterable
from dataclasses import dataclass

from miniredis.cmd import Get, Ping, Publish, Set, Subscribe, Unsubscribe
from miniredis.connection import Connection
from miniredis.frame import Array, Bulk, ErrorFrame, Frame, Integer, Null, Simple

logger = logging.getLogger(__name__)


class ServerError(Exception):
    """Raised when the server replies with an error frame."""


@dataclass
class Message:
    """A message received on a subscribed channel."""

    channel: str
    content: bytes


def _split_addr(addr: str | tuple[str, int]) -> tuple[str, int]:
    if isinstance(addr, str):
        host, sep, port = addr.rpartition(":")
        if not sep or not host:
            raise ValueError(f"invalid address: {addr!r}")
        return host, int(port)
    host, port = addr
    return host, int(port)


def _to_bytes(value: bytes | bytearray | str) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else bytes(value)


def _payload(frame: Frame) -> bytes:
    """Return the bytes carried by a simple or bulk reply."""
    if isinstance(frame, Simple):
        return frame.value.encode("utf-8")
    if isinstance(frame, Bulk):
        return frame.data
    raise frame.to_error()


def _reply_items(frame: Frame, kind: str) -> list[Frame]:
    """Return the entries of an array reply whose first entry is ``kind``."""
    if isinstance(frame, Array) and len(frame.items) >= 2 and frame.items[0].matches(kind):
        return frame.items
    raise frame.to_error()


class Client:
    """A connection to the server issuing one request at a time."""

    def __init__(self, connection: Connection) -> None:
        self._connection = connection

    @classmethod
    async def connect(cls, addr: str | tuple[str, int]) -> Client:
        """Open a connection to ``addr`` ("host:port" or a (host, port) pair)."""
        host, port = _split_addr(addr)
        reader, writer = await asyncio.open_connection(host, port)
        return cls(Connection(reader, writer))

    async def get(self, key: str) -> bytes | None:
        """Return the value of ``key``, or None when it is not set."""
        response = await self._request(Get(key).into_frame())
        return None if isinstance(response, Null) else _payload(response)

    async def set(self, key: str, value: bytes | str) -> None:
        """Store ``value`` under ``key``."""
        await self._set_cmd(Set(key, _to_bytes(value)))

    async def set_expires(self, key: str, value: bytes | str, expiration: float) -> None:
        """Store ``value`` under ``key`` for ``expiration`` seconds."""
        await self._set_cmd(Set(key, _to_bytes(value), expiration))

    async def _set_cmd(self, command: Set) -> None:
        response = await self._request(command.into_frame())
        if not (isinstance(response, Simple) and response.value == "OK"):
            raise response.to_error()

    async def ping(self, msg: bytes | str | None = None) -> bytes:
        """Ping the server; it answers with ``msg`` or PONG."""
        command = Ping(None if msg is None else _to_bytes(msg))
        return _payload(await self._request(command.into_frame()))

    async def publish(self, channel: str, message: bytes | str) -> int:
        """Publish ``message`` on ``channel``; return how many subscribers got it."""
        response = await self._request(Publish(channel, _to_bytes(message)).into_frame())
        if isinstance(response, Integer):
            return response.value
        raise response.to_error()

    async def subscribe(self, channels: Iterable[str]) -> Subscriber:
        """Subscribe to ``channels``; the client becomes a Subscriber."""
        channels = list(channels)
        await self._subscribe_cmd(channels)
        return Subscriber(self, channels)

    async def _subscribe_cmd(self, channels: list[str]) -> None:
        await self._send(Subscribe(list(channels)).into_frame())
        for channel in channels:
            response = await self._read_response()
            if not _reply_items(response, "subscribe")[1].matches(channel):
                raise response.to_error()

    async def _send(self, frame: Frame) -> None:
        logger.debug("request %r", frame)
        await self._connection.write_frame(frame)

    async def _request(self, frame: Frame) -> Frame:
        await self._send(frame)
        return await self._read_response()

    async def _read_response(self) -> Frame:
        response = await self._connection.read_frame()
        logger.debug("response %r", response)
        if isinstance(response, ErrorFrame):
            raise ServerError(response.value)
        if response is None:
            raise ConnectionResetError("reset by peer")
        return response

    async def close(self) -> None:
        """Close the connection."""
        await self._connection.close()

    async def __aenter__(self) -> Client:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()


class Subscriber:
    """A client in pub/sub mode, receiving messages on its channels."""

    def __init__(self, client: Client, channels: list[str]) -> None:
        self._client = client
        self._channels = list(channels)

    def subscribed(self) -> list[str]:
        """Return the channels currently subscribed to."""
        return list(self._channels)

    async def next_message(self) -> Message | None:
        """Wait for the next message; None when the server closed the connection."""
        frame = await self._client._connection.read_frame()
        if frame is None:
            return None
        logger.debug("%r", frame)
        items = _reply_items(frame, "message")
        if len(items) != 3:
            raise frame.to_error()
        _, channel, content = items
        data = content.data if isinstance(content, Bulk) else str(content).encode("utf-8")
        return Message(channel=str(channel), content=data)

    async def __aiter__(self) -> AsyncIterator[Message]:
        while (message := await self.next_message()) is not None:
            yield message

    async def subscribe(self, channels: Iterable[str]) -> None:
        """Subscribe to more channels."""
        channels = list(channels)
        await self._client._subscribe_cmd(channels)
        self._channels.extend(channels)

    async def unsubscribe(self, channels: Iterable[str] = ()) -> None:
        """Leave ``channels``, or every channel when none are given."""
        channels = list(channels)
        await self._client._send(Unsubscribe(list(channels)).into_frame())
        count = len(channels) if channels else len(self._channels)
        for _ in range(count):
            response = await self._client._read_response()
            channel = _reply_items(response, "unsubscribe")[1]
            before = len(self._channels)
            if before == 0:
                raise response.to_error()
            self._channels = [c for c in self._channels if not channel.matches(c)]
            if len(self._channels) != before - 1:
                raise response.to_error()

    async def __aenter__(self) -> Subscriber:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self._client.close()