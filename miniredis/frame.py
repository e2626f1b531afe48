"""Redis protocol frames and their wire encoding."""

from __future__ import annotations

import re
from dataclasses import dataclass, field

CRLF = b"\r\n"
_INVALID_FORMAT = "protocol error; invalid frame format"
_U64_LIMIT = 1 << 64
_LEADING_INT = re.compile(rb"([+-]?)(\d+)")

_SIMPLE = ord("+")
_ERROR = ord("-")
_INTEGER = ord(":")
_BULK = ord("$")
_ARRAY = ord("*")


class FrameError(Exception):
    """Raised when bytes do not form a valid frame."""


class IncompleteError(FrameError):
    """Raised when not enough data is buffered to decode a whole frame."""

    def __init__(self, message: str = "stream ended early") -> None:
        super().__init__(message)


class Frame:
    """Base class of every protocol frame."""

    __slots__ = ()

    def to_error(self) -> FrameError:
        """Return an 'unexpected frame' error describing this frame."""
        return FrameError(f"unexpected frame: {self}")

    def matches(self, text: str) -> bool:
        """Tell whether a simple or bulk frame holds exactly ``text``."""
        return False


@dataclass(slots=True)
class Simple(Frame):
    value: str

    def matches(self, text: str) -> bool:
        return self.value == text

    def __str__(self) -> str:
        return self.value


@dataclass(slots=True)
class ErrorFrame(Frame):
    value: str

    def __str__(self) -> str:
        return f"error: {self.value}"


@dataclass(slots=True)
class Integer(Frame):
    value: int

    def __post_init__(self) -> None:
        if not 0 <= self.value < _U64_LIMIT:
            raise ValueError(f"integer frame out of range: {self.value}")

    def __str__(self) -> str:
        return str(self.value)


@dataclass(slots=True)
class Bulk(Frame):
    data: bytes

    def __post_init__(self) -> None:
        self.data = bytes(self.data)

    def matches(self, text: str) -> bool:
        return self.data == text.encode("utf-8")

    def __str__(self) -> str:
        try:
            return self.data.decode("utf-8")
        except UnicodeDecodeError:
            return repr(self.data)


@dataclass(slots=True)
class Null(Frame):
    def __str__(self) -> str:
        return "(nil)"


@dataclass(slots=True)
class Array(Frame):
    items: list[Frame] = field(default_factory=list)

    def push_bulk(self, data: bytes) -> None:
        """Append a bulk frame holding ``data``."""
        self.items.append(Bulk(bytes(data)))

    def push_int(self, value: int) -> None:
        """Append an integer frame holding ``value``."""
        self.items.append(Integer(value))

    def __str__(self) -> str:
        return " ".join(str(item) for item in self.items)


def _atoi_u64(text: bytes) -> int | None:
    """Read the leading unsigned decimal of ``text``; None if there is none."""
    match = _LEADING_INT.match(text)
    if match is None:
        return None
    value = int(match.group(2))
    if match.group(1) == b"-" and value:
        return None
    if value >= _U64_LIMIT:
        return None
    return value


def _as_bytes(buf: bytes | bytearray | memoryview) -> bytes:
    return buf if isinstance(buf, bytes) else bytes(buf)


def _get_u8(data: bytes, pos: int) -> tuple[int, int]:
    if pos >= len(data):
        raise IncompleteError()
    return data[pos], pos + 1


def _peek_u8(data: bytes, pos: int) -> int:
    if pos >= len(data):
        raise IncompleteError()
    return data[pos]


def _skip(data: bytes, pos: int, count: int) -> int:
    if len(data) - pos < count:
        raise IncompleteError()
    return pos + count


def _get_line(data: bytes, pos: int) -> tuple[bytes, int]:
    end = data.find(CRLF, pos)
    if end < 0:
        raise IncompleteError()
    return data[pos:end], end + 2


def _get_decimal(data: bytes, pos: int) -> tuple[int, int]:
    line, pos = _get_line(data, pos)
    value = _atoi_u64(line)
    if value is None:
        raise FrameError(_INVALID_FORMAT)
    return value, pos


def _decode_line(line: bytes) -> str:
    try:
        return line.decode("utf-8")
    except UnicodeDecodeError:
        raise FrameError(_INVALID_FORMAT) from None


def _check(data: bytes, pos: int) -> int:
    kind, pos = _get_u8(data, pos)
    if kind in (_SIMPLE, _ERROR):
        return _get_line(data, pos)[1]
    if kind == _INTEGER:
        return _get_decimal(data, pos)[1]
    if kind == _BULK:
        if _peek_u8(data, pos) == _ERROR:
            return _skip(data, pos, 4)
        length, pos = _get_decimal(data, pos)
        return _skip(data, pos, length + 2)
    if kind == _ARRAY:
        count, pos = _get_decimal(data, pos)
        for _ in range(count):
            pos = _check(data, pos)
        return pos
    raise FrameError(f"protocol error; invalid frame type byte `{kind}`")


def _parse(data: bytes, pos: int) -> tuple[Frame, int]:
    kind, pos = _get_u8(data, pos)
    if kind == _SIMPLE:
        line, pos = _get_line(data, pos)
        return Simple(_decode_line(line)), pos
    if kind == _ERROR:
        line, pos = _get_line(data, pos)
        return ErrorFrame(_decode_line(line)), pos
    if kind == _INTEGER:
        value, pos = _get_decimal(data, pos)
        return Integer(value), pos
    if kind == _BULK:
        if _peek_u8(data, pos) == _ERROR:
            line, pos = _get_line(data, pos)
            if line != b"-1":
                raise FrameError(_INVALID_FORMAT)
            return Null(), pos
        length, pos = _get_decimal(data, pos)
        if len(data) - pos < length + 2:
            raise IncompleteError()
        return Bulk(data[pos : pos + length]), pos + length + 2
    if kind == _ARRAY:
        count, pos = _get_decimal(data, pos)
        items = []
        for _ in range(count):
            item, pos = _parse(data, pos)
            items.append(item)
        return Array(items), pos
    raise FrameError(f"protocol error; invalid frame type byte `{kind}`")


def check(buf: bytes | bytearray | memoryview, pos: int = 0) -> int:
    """Check that a whole frame starts at ``pos``; return where it ends.

    Raises IncompleteError when more data is needed and FrameError when the
    data cannot be a frame.
    """
    return _check(_as_bytes(buf), pos)


def parse(buf: bytes | bytearray | memoryview, pos: int = 0) -> tuple[Frame, int]:
    """Decode the frame starting at ``pos``; return it and where it ends."""
    return _parse(_as_bytes(buf), pos)


def _encode_into(out: bytearray, frame: Frame) -> None:
    match frame:
        case Simple(value=value):
            out += b"+" + value.encode("utf-8") + CRLF
        case ErrorFrame(value=value):
            out += b"-" + value.encode("utf-8") + CRLF
        case Integer(value=value):
            out += b":%d\r\n" % value
        case Null():
            out += b"$-1\r\n"
        case Bulk(data=data):
            out += b"$%d\r\n" % len(data) + data + CRLF
        case Array(items=items):
            out += b"*%d\r\n" % len(items)
            for item in items:
                _encode_into(out, item)
        case _:
            raise TypeError(f"not a frame: {frame!r}")


def encode(frame: Frame) -> bytes:
    """Return the wire encoding of ``frame``."""
    out = bytearray()
    _encode_into(out, frame)
    return bytes(out)