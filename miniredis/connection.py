"""Read and write frames over an asyncio stream pair."""

from __future__ import annotations

import asyncio

from miniredis.frame import Frame, IncompleteError, check, encode, parse

_READ_SIZE = 4 * 1024


class Connection:
    """Frame-level wrapper around a stream reader and writer."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self._reader = reader
        self._writer = writer
        self._buffer = bytearray()

    async def read_frame(self) -> Frame | None:
        """Return the next frame, or None when the peer closed cleanly.

        Raises ConnectionResetError when the peer closes mid-frame and
        FrameError when the data is not a valid frame.
        """
        while True:
            frame = self._parse_frame()
            if frame is not None:
                return frame
            chunk = await self._reader.read(_READ_SIZE)
            if not chunk:
                if not self._buffer:
                    return None
                raise ConnectionResetError("connection reset by peer")
            self._buffer += chunk

    def _parse_frame(self) -> Frame | None:
        try:
            end = check(self._buffer, 0)
        except IncompleteError:
            return None
        frame, _ = parse(self._buffer, 0)
        del self._buffer[:end]
        return frame

    async def write_frame(self, frame: Frame) -> None:
        """Encode ``frame`` and flush it to the peer."""
        self._writer.write(encode(frame))
        await self._writer.drain()

    async def close(self) -> None:
        """Close the underlying stream."""
        self._writer.close()
        await self._writer.wait_closed()

    async def __aenter__(self) -> Connection:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()