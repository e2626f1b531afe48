"""Listen for the server's shutdown signal."""

from __future__ import annotations

import asyncio


class Shutdown:
    """Tracks whether the shutdown signal has been received.

    The signal is an ``asyncio.Event`` shared by every connection handler.
    Once the event has been seen, ``is_shutdown`` stays true.
    """

    def __init__(self, event: asyncio.Event) -> None:
        self._event = event
        self._is_shutdown = False

    def is_shutdown(self) -> bool:
        """Return True once the shutdown signal has been received."""
        return self._is_shutdown

    async def recv(self) -> None:
        """Wait for the shutdown signal, returning at once if already seen."""
        if self._is_shutdown:
            return
        await self._event.wait()
        self._is_shutdown = True