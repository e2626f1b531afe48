"""Commands understood by the server: decoding, encoding and execution."""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass, field
from typing import ClassVar

from miniredis.connection import Connection
from miniredis.db import Db, Lagged, Receiver
from miniredis.frame import Array, Bulk, ErrorFrame, Frame, Integer, Null, Simple
from miniredis.parse import EndOfStream, Parse
from miniredis.shutdown import Shutdown

logger = logging.getLogger(__name__)


class CommandError(Exception):
    """Raised when a command is malformed or cannot run in its context."""


def _bulk_array(*parts: bytes) -> Array:
    frame = Array()
    for part in parts:
        frame.push_bulk(part)
    return frame


class Command:
    """Base class of every command."""

    name: ClassVar[str] = ""

    def into_frame(self) -> Frame:
        """Return the frame a client sends to issue this command."""
        raise NotImplementedError

    async def apply(self, db: Db, connection: Connection, shutdown: Shutdown) -> None:
        """Run the command against ``db`` and write the reply to ``connection``."""
        raise NotImplementedError


@dataclass
class Get(Command):
    """GET key."""

    name: ClassVar[str] = "get"
    key: str

    @classmethod
    def parse_frames(cls, parse: Parse) -> Get:
        return cls(parse.next_string())

    def into_frame(self) -> Frame:
        return _bulk_array(b"get", self.key.encode("utf-8"))

    async def apply(self, db: Db, connection: Connection, shutdown: Shutdown) -> None:
        value = db.get(self.key)
        frame: Frame = Null() if value is None else Bulk(value)
        logger.debug("%r", frame)
        await connection.write_frame(frame)


@dataclass
class Publish(Command):
    """PUBLISH channel message."""

    name: ClassVar[str] = "publish"
    channel: str
    message: bytes

    @classmethod
    def parse_frames(cls, parse: Parse) -> Publish:
        channel = parse.next_string()
        message = parse.next_bytes()
        return cls(channel, message)

    def into_frame(self) -> Frame:
        return _bulk_array(b"publish", self.channel.encode("utf-8"), self.message)

    async def apply(self, db: Db, connection: Connection, shutdown: Shutdown) -> None:
        subscribers = db.publish(self.channel, self.message)
        await connection.write_frame(Integer(subscribers))


@dataclass
class Set(Command):
    """SET key value [EX seconds | PX milliseconds].

    ``expire`` is held in seconds.
    """

    name: ClassVar[str] = "set"
    key: str
    value: bytes
    expire: float | None = None

    @classmethod
    def parse_frames(cls, parse: Parse) -> Set:
        key = parse.next_string()
        value = parse.next_bytes()
        try:
            option = parse.next_string()
        except EndOfStream:
            return cls(key, value)
        match option.upper():
            case "EX":
                expire = float(parse.next_int())
            case "PX":
                expire = parse.next_int() / 1000
            case _:
                raise CommandError("SET only supports expire option")
        return cls(key, value, expire)

    def into_frame(self) -> Frame:
        frame = _bulk_array(b"set", self.key.encode("utf-8"), self.value)
        if self.expire is not None:
            frame.push_bulk(b"px")
            frame.push_int(math.floor(self.expire * 1000 + 1e-9))
        return frame

    async def apply(self, db: Db, connection: Connection, shutdown: Shutdown) -> None:
        db.set(self.key, self.value, self.expire)
        frame = Simple("OK")
        logger.debug("%r", frame)
        await connection.write_frame(frame)


async def _next_message(receiver: Receiver) -> bytes | None:
    while True:
        try:
            return await receiver.recv()
        except Lagged:
            continue


def _listen(receiver: Receiver) -> asyncio.Task:
    return asyncio.ensure_future(_next_message(receiver))


def _subscription_frame(kind: bytes, channel: str, count: int) -> Array:
    frame = _bulk_array(kind, channel.encode("utf-8"))
    frame.push_int(count)
    return frame


def _message_frame(channel: str, message: bytes) -> Array:
    return _bulk_array(b"message", channel.encode("utf-8"), message)


def _stop_listening(channel: str, listeners: dict[asyncio.Task, str]) -> None:
    for task, name in list(listeners.items()):
        if name == channel:
            del listeners[task]
            task.cancel()


@dataclass
class Subscribe(Command):
    """SUBSCRIBE channel [channel ...]."""

    name: ClassVar[str] = "subscribe"
    channels: list[str] = field(default_factory=list)

    @classmethod
    def parse_frames(cls, parse: Parse) -> Subscribe:
        channels = [parse.next_string()]
        while True:
            try:
                channels.append(parse.next_string())
            except EndOfStream:
                break
        return cls(channels)

    def into_frame(self) -> Frame:
        return _bulk_array(b"subscribe", *(c.encode("utf-8") for c in self.channels))

    async def apply(self, db: Db, connection: Connection, shutdown: Shutdown) -> None:
        """Stream published messages until the client leaves or shutdown."""
        pending = list(self.channels)
        receivers: dict[str, Receiver] = {}
        listeners: dict[asyncio.Task, str] = {}
        shutdown_task = asyncio.ensure_future(shutdown.recv())
        read_task: asyncio.Task | None = None
        try:
            while True:
                while pending:
                    await self._subscribe_to(
                        pending.pop(0), receivers, listeners, db, connection
                    )
                if read_task is None:
                    read_task = asyncio.ensure_future(connection.read_frame())
                done, _ = await asyncio.wait(
                    {shutdown_task, read_task, *listeners},
                    return_when=asyncio.FIRST_COMPLETED,
                )
                for task in [t for t in listeners if t in done]:
                    channel = listeners.pop(task)
                    message = task.result()
                    if message is None:
                        receivers.pop(channel).close()
                        continue
                    listeners[_listen(receivers[channel])] = channel
                    await connection.write_frame(_message_frame(channel, message))
                if read_task in done:
                    frame = read_task.result()
                    read_task = None
                    if frame is None:
                        return
                    await self._handle_command(
                        frame, pending, receivers, listeners, db, connection, shutdown
                    )
                if shutdown_task in done:
                    return
        finally:
            tasks = [shutdown_task, *listeners]
            if read_task is not None:
                tasks.append(read_task)
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            for receiver in receivers.values():
                receiver.close()

    @staticmethod
    async def _subscribe_to(
        channel: str,
        receivers: dict[str, Receiver],
        listeners: dict[asyncio.Task, str],
        db: Db,
        connection: Connection,
    ) -> None:
        previous = receivers.get(channel)
        if previous is not None:
            _stop_listening(channel, listeners)
            previous.close()
        receiver = db.subscribe(channel)
        receivers[channel] = receiver
        listeners[_listen(receiver)] = channel
        await connection.write_frame(
            _subscription_frame(b"subscribe", channel, len(receivers))
        )

    @staticmethod
    async def _handle_command(
        frame: Frame,
        pending: list[str],
        receivers: dict[str, Receiver],
        listeners: dict[asyncio.Task, str],
        db: Db,
        connection: Connection,
        shutdown: Shutdown,
    ) -> None:
        command = from_frame(frame)
        match command:
            case Subscribe(channels=channels):
                pending.extend(channels)
            case Unsubscribe(channels=channels):
                for channel in channels or list(receivers):
                    receiver = receivers.pop(channel, None)
                    if receiver is not None:
                        _stop_listening(channel, listeners)
                        receiver.close()
                    await connection.write_frame(
                        _subscription_frame(b"unsubscribe", channel, len(receivers))
                    )
            case _:
                await Unknown(command.name).apply(db, connection, shutdown)


@dataclass
class Unsubscribe(Command):
    """UNSUBSCRIBE [channel ...]; only valid while subscribed."""

    name: ClassVar[str] = "unsubscribe"
    channels: list[str] = field(default_factory=list)

    @classmethod
    def parse_frames(cls, parse: Parse) -> Unsubscribe:
        channels = []
        while True:
            try:
                channels.append(parse.next_string())
            except EndOfStream:
                break
        return cls(channels)

    def into_frame(self) -> Frame:
        return _bulk_array(b"unsubscribe", *(c.encode("utf-8") for c in self.channels))

    async def apply(self, db: Db, connection: Connection, shutdown: Shutdown) -> None:
        raise CommandError("`Unsubscribe` is unsupported in this context")


@dataclass
class Ping(Command):
    """PING [message]."""

    name: ClassVar[str] = "ping"
    msg: bytes | None = None

    @classmethod
    def parse_frames(cls, parse: Parse) -> Ping:
        try:
            return cls(parse.next_bytes())
        except EndOfStream:
            return cls()

    def message(self) -> bytes:
        """Return the reply: the given message, or PONG."""
        return b"PONG" if self.msg is None else self.msg

    def into_frame(self) -> Frame:
        frame = _bulk_array(b"ping")
        if self.msg is not None:
            frame.push_bulk(self.msg)
        return frame

    async def apply(self, db: Db, connection: Connection, shutdown: Shutdown) -> None:
        await connection.write_frame(Bulk(self.message()))


@dataclass
class Unknown(Command):
    """A command the server does not support."""

    command_name: str

    @property
    def name(self) -> str:  # type: ignore[override]
        return self.command_name

    def into_frame(self) -> Frame:
        return _bulk_array(self.command_name.encode("utf-8"))

    async def apply(self, db: Db, connection: Connection, shutdown: Shutdown) -> None:
        frame = ErrorFrame(f"ERR unknown command {self.command_name}")
        logger.debug("%r", frame)
        await connection.write_frame(frame)


_COMMANDS: dict[str, type[Get | Publish | Set | Subscribe | Unsubscribe | Ping]] = {
    "get": Get,
    "publish": Publish,
    "set": Set,
    "subscribe": Subscribe,
    "unsubscribe": Unsubscribe,
    "ping": Ping,
}


def from_frame(frame: Frame) -> Command:
    """Decode a command from a received array frame."""
    parse = Parse(frame)
    command_name = parse.next_string().lower()
    command_type = _COMMANDS.get(command_name)
    if command_type is None:
        return Unknown(command_name)
    command = command_type.parse_frames(parse)
    parse.finish()
    return command