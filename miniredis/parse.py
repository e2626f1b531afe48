"""Walk the parts of an array frame when decoding a command."""

from __future__ import annotations

from collections.abc import Iterator

from miniredis.frame import Array, Bulk, Frame, Integer, Simple, _atoi_u64


class ParseError(Exception):
    """Raised when a command frame does not have the expected shape."""


class EndOfStream(ParseError):
    """Raised when the frame has no more parts."""

    def __init__(self, message: str = "unexpected end of stream") -> None:
        super().__init__(message)


def _raw(frame: Simple | Bulk) -> bytes:
    return frame.value.encode("utf-8") if isinstance(frame, Simple) else frame.data


class Parse:
    """Cursor over the entries of an array frame."""

    def __init__(self, frame: Frame) -> None:
        if not isinstance(frame, Array):
            raise ParseError(f"parse error, expect array, got{frame!r}")
        self._parts: Iterator[Frame] = iter(frame.items)

    def _next(self) -> Frame:
        try:
            return next(self._parts)
        except StopIteration:
            raise EndOfStream() from None

    def _next_text(self, caller: str) -> Simple | Bulk:
        frame = self._next()
        if not isinstance(frame, (Simple, Bulk)):
            raise ParseError(f"{caller} error, expect simple or bulk, got {frame!r}")
        return frame

    def next_string(self) -> str:
        """Return the next entry as a string."""
        frame = self._next_text("next_string")
        if isinstance(frame, Simple):
            return frame.value
        try:
            return frame.data.decode("utf-8")
        except UnicodeDecodeError:
            raise ParseError("invalid string") from None

    def next_bytes(self) -> bytes:
        """Return the next entry as raw bytes."""
        return _raw(self._next_text("next_bytes"))

    def next_int(self) -> int:
        """Return the next entry as an unsigned integer."""
        frame = self._next()
        if isinstance(frame, Integer):
            return frame.value
        if not isinstance(frame, (Simple, Bulk)):
            raise ParseError(f"next_int error, expect int, got {frame!r}")
        number = _atoi_u64(_raw(frame))
        if number is None:
            raise ParseError("invalid number")
        return number

    def finish(self) -> None:
        """Ensure that every entry has been consumed."""
        if next(self._parts, None) is not None:
            raise ParseError("expect end of frame, but more")