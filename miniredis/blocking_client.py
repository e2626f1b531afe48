"""Synchronous client that drives the asynchronous one on a private event loop."""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Iterable, Iterator

from miniredis.client import Client, Message, Subscriber


class BlockingClient:
    """A client whose methods block until the server has answered."""

    def __init__(self, client: Client, loop: asyncio.AbstractEventLoop) -> None:
        self._client: Client | None = client
        self._loop: asyncio.AbstractEventLoop | None = loop

    @classmethod
    def connect(cls, addr: str | tuple[str, int]) -> BlockingClient:
        """Open a connection to ``addr`` ("host:port" or a (host, port) pair)."""
        loop = asyncio.new_event_loop()
        try:
            client = loop.run_until_complete(Client.connect(addr))
        except BaseException:
            loop.close()
            raise
        return cls(client, loop)

    def _require(self) -> tuple[Client, asyncio.AbstractEventLoop]:
        if self._client is None or self._loop is None:
            raise RuntimeError("client is closed or has become a subscriber")
        return self._client, self._loop

    def get(self, key: str) -> bytes | None:
        """Return the value of ``key``, or None when it is not set."""
        client, loop = self._require()
        return loop.run_until_complete(client.get(key))

    def set(self, key: str, value: bytes | str) -> None:
        """Store ``value`` under ``key``."""
        client, loop = self._require()
        loop.run_until_complete(client.set(key, value))

    def publish(self, channel: str, message: bytes | str) -> int:
        """Publish ``message`` on ``channel``; return how many subscribers got it."""
        client, loop = self._require()
        return loop.run_until_complete(client.publish(channel, message))

    def subscribe(self, channels: Iterable[str]) -> BlockingSubscriber:
        """Subscribe to ``channels``; this client can no longer be used afterwards."""
        client, loop = self._require()
        self._client = None
        self._loop = None
        try:
            subscriber = loop.run_until_complete(client.subscribe(list(channels)))
        except BaseException:
            with contextlib.suppress(OSError):
                loop.run_until_complete(client.close())
            loop.close()
            raise
        return BlockingSubscriber(subscriber, loop)

    def close(self) -> None:
        """Close the connection and the private event loop."""
        client, loop = self._client, self._loop
        self._client = None
        self._loop = None
        if client is not None and loop is not None:
            with contextlib.suppress(OSError):
                loop.run_until_complete(client.close())
        if loop is not None:
            loop.close()

    def __enter__(self) -> BlockingClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class BlockingSubscriber:
    """A blocking client in pub/sub mode."""

    def __init__(self, subscriber: Subscriber, loop: asyncio.AbstractEventLoop) -> None:
        self._subscriber: Subscriber | None = subscriber
        self._loop: asyncio.AbstractEventLoop | None = loop

    def _require(self) -> tuple[Subscriber, asyncio.AbstractEventLoop]:
        if self._subscriber is None or self._loop is None:
            raise RuntimeError("subscriber is closed")
        return self._subscriber, self._loop

    def subscribed(self) -> list[str]:
        """Return the channels currently subscribed to."""
        subscriber, _ = self._require()
        return subscriber.subscribed()

    def next_message(self) -> Message | None:
        """Block until the next message; None when the server closed the connection."""
        subscriber, loop = self._require()
        return loop.run_until_complete(subscriber.next_message())

    def __iter__(self) -> Iterator[Message]:
        while (message := self.next_message()) is not None:
            yield message

    def subscribe(self, channels: Iterable[str]) -> None:
        """Subscribe to more channels."""
        subscriber, loop = self._require()
        loop.run_until_complete(subscriber.subscribe(list(channels)))

    def close(self) -> None:
        """Close the connection and the private event loop."""
        subscriber, loop = self._subscriber, self._loop
        self._subscriber = None
        self._loop = None
        if subscriber is not None and loop is not None:
            with contextlib.suppress(OSError):
                loop.run_until_complete(subscriber._client.close())
        if loop is not None:
            loop.close()

    def __enter__(self) -> BlockingSubscriber:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()