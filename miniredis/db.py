"""Shared key/value and pub/sub state with background key expiry."""

from __future__ import annotations

import asyncio
import bisect
import logging
import weakref
from collections import deque
from dataclasses import dataclass

logger = logging.getLogger(__name__)

CHANNEL_CAPACITY = 1024


class Lagged(Exception):
    """Raised by a receiver that fell behind and lost messages."""

    def __init__(self, skipped: int) -> None:
        super().__init__(f"receiver lagged behind by {skipped} messages")
        self.skipped = skipped


class Receiver:
    """Receiving end of a pub/sub channel."""

    def __init__(self, channel: _Broadcast) -> None:
        self._channel = channel
        self._queue: deque[bytes] = deque()
        self._missed = 0
        self._closed = False
        self._ready = asyncio.Event()

    def _push(self, message: bytes) -> None:
        if len(self._queue) >= self._channel.capacity:
            self._queue.popleft()
            self._missed += 1
        self._queue.append(message)
        self._ready.set()

    async def recv(self) -> bytes | None:
        """Return the next message, or None once the receiver is closed.

        Raises Lagged when older messages were dropped; the following call
        resumes with the oldest message still held.
        """
        while True:
            if self._missed:
                skipped, self._missed = self._missed, 0
                raise Lagged(skipped)
            if self._queue:
                return self._queue.popleft()
            if self._closed:
                return None
            self._ready.clear()
            await self._ready.wait()

    def close(self) -> None:
        """Stop receiving messages from the channel."""
        if not self._closed:
            self._closed = True
            self._channel.detach(self)
            self._ready.set()


class _Broadcast:
    """A channel that delivers every message to every live receiver."""

    def __init__(self, capacity: int = CHANNEL_CAPACITY) -> None:
        self.capacity = capacity
        self._receivers: weakref.WeakSet[Receiver] = weakref.WeakSet()

    def subscribe(self) -> Receiver:
        receiver = Receiver(self)
        self._receivers.add(receiver)
        return receiver

    def detach(self, receiver: Receiver) -> None:
        self._receivers.discard(receiver)

    def send(self, message: bytes) -> int:
        receivers = list(self._receivers)
        for receiver in receivers:
            receiver._push(message)
        return len(receivers)


@dataclass(slots=True)
class _Entry:
    data: bytes
    expires_at: float | None


class Db:
    """Server state shared across all connections.

    Must be created while an event loop is running: a background task is
    started that removes keys once their expiry time has passed.
    """

    def __init__(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._entries: dict[str, _Entry] = {}
        self._pub_sub: dict[str, _Broadcast] = {}
        self._expirations: list[tuple[float, str]] = []
        self._shutdown = False
        self._wakeup = asyncio.Event()
        self._purge_task = self._loop.create_task(self._purge_expired_tasks())

    def get(self, key: str) -> bytes | None:
        """Return the value stored under ``key``, or None."""
        entry = self._entries.get(key)
        return None if entry is None else entry.data

    def set(self, key: str, value: bytes, expire: float | None = None) -> None:
        """Store ``value`` under ``key``, expiring after ``expire`` seconds."""
        notify = False
        expires_at = None
        if expire is not None:
            expires_at = self._loop.time() + expire
            following = self._next_expiration()
            notify = following is None or following > expires_at

        previous = self._entries.get(key)
        self._entries[key] = _Entry(bytes(value), expires_at)

        if previous is not None and previous.expires_at is not None:
            self._remove_expiration(previous.expires_at, key)
        if expires_at is not None:
            bisect.insort(self._expirations, (expires_at, key))

        if notify:
            self._wakeup.set()

    def subscribe(self, key: str) -> Receiver:
        """Return a receiver for messages published on channel ``key``."""
        channel = self._pub_sub.get(key)
        if channel is None:
            channel = self._pub_sub[key] = _Broadcast()
        return channel.subscribe()

    def publish(self, key: str, value: bytes) -> int:
        """Send ``value`` on channel ``key``; return how many receivers got it."""
        channel = self._pub_sub.get(key)
        if channel is None:
            return 0
        return channel.send(bytes(value))

    def shutdown_purge_task(self) -> None:
        """Signal the background expiry task to stop."""
        self._shutdown = True
        self._wakeup.set()

    def _next_expiration(self) -> float | None:
        return self._expirations[0][0] if self._expirations else None

    def _remove_expiration(self, when: float, key: str) -> None:
        index = bisect.bisect_left(self._expirations, (when, key))
        if index < len(self._expirations) and self._expirations[index] == (when, key):
            del self._expirations[index]

    def _purge_expired_keys(self) -> float | None:
        """Drop expired keys; return when the next key expires, if any."""
        if self._shutdown:
            return None
        now = self._loop.time()
        while self._expirations:
            when, key = self._expirations[0]
            if when > now:
                return when
            self._entries.pop(key, None)
            del self._expirations[0]
        return None

    async def _purge_expired_tasks(self) -> None:
        while not self._shutdown:
            when = self._purge_expired_keys()
            timeout = None if when is None else max(0.0, when - self._loop.time())
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout)
            except TimeoutError:
                pass
            self._wakeup.clear()
        logger.debug("Purge background task shut down")


class DbDropGuard:
    """Owns a Db and stops its expiry task when closed."""

    def __init__(self) -> None:
        self._db = Db()

    def db(self) -> Db:
        """Return the shared database."""
        return self._db

    def close(self) -> None:
        """Stop the database's background expiry task."""
        self._db.shutdown_purge_task()

    def __enter__(self) -> DbDropGuard:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()