"""Incremental parsing and encoding of the RESP-style wire protocol."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Iterable, Optional, Union

# A length or count line, terminator included, may be at most this long.
NUMBER_LINE_LIMIT = 10

_ATOI = re.compile(rb"\s*([+-]?\d+)")

Data = Union[str, bytes, bytearray, memoryview]


class RecvType(IntEnum):
    """The kind of message received from a peer."""

    HUP = -2
    ERR = -1
    OK = 1
    STRING = 2
    ARRAY = 3


_TYPE_BYTES = {
    ord("+"): RecvType.OK,
    ord("-"): RecvType.ERR,
    ord("$"): RecvType.STRING,
    ord("*"): RecvType.ARRAY,
}


class ProtocolError(Exception):
    """The peer sent something that does not follow the protocol.

    ``reply`` tells whether the error text should be sent back to the peer
    before the connection is closed. ``messages`` holds the messages that
    were complete before the error was found in the same chunk of input.
    """

    def __init__(self, message: str, reply: bool = False) -> None:
        super().__init__(message)
        self.reply = reply
        self.messages: list[Message] = []


@dataclass
class Message:
    """A complete message: its type and its arguments."""

    type: RecvType
    argv: list[bytes] = field(default_factory=list)

    @property
    def argc(self) -> int:
        return len(self.argv)

    @property
    def command(self) -> Optional[bytes]:
        """The command name of an array message, if it has one."""
        if self.type is RecvType.ARRAY and self.argv:
            return self.argv[0]
        return None


class _Incomplete(Exception):
    """More input is needed before the next message can be parsed."""


def _atoi(raw: bytes) -> int:
    match = _ATOI.match(raw)
    return int(match.group(1)) if match else 0


def _line(buf: bytearray, pos: int) -> tuple[bytes, int]:
    end = buf.find(b"\r\n", pos)
    if end == -1:
        raise _Incomplete
    return bytes(buf[pos:end]), end + 2


def _number(buf: bytearray, pos: int) -> tuple[int, int]:
    end = buf.find(b"\r\n", pos)
    if end == -1:
        if len(buf) - pos > NUMBER_LINE_LIMIT:
            raise ProtocolError("Protocol error: number too long")
        raise _Incomplete
    if end + 2 - pos > NUMBER_LINE_LIMIT:
        raise ProtocolError("Protocol error: number too long")
    return _atoi(bytes(buf[pos:end])), end + 2


def _bulk(buf: bytearray, pos: int) -> tuple[bytes, int]:
    length, pos = _number(buf, pos)
    if length < 0:
        raise ProtocolError("Protocol error: invalid bulk length")
    end = pos + length + 2
    if end > len(buf):
        raise _Incomplete
    # The two bytes after the payload are the terminator and are dropped.
    return bytes(buf[pos : pos + length]), end


def _parse(buf: bytearray) -> tuple[Message, int]:
    recv_type = _TYPE_BYTES.get(buf[0])
    if recv_type is None:
        raise ProtocolError("Protocol error: Unrecognized type", reply=True)
    pos = 1

    if recv_type in (RecvType.OK, RecvType.ERR):
        text, pos = _line(buf, pos)
        return Message(recv_type, [text]), pos

    if recv_type is RecvType.STRING:
        value, pos = _bulk(buf, pos)
        return Message(recv_type, [value]), pos

    count, pos = _number(buf, pos)
    if count <= 0:
        raise ProtocolError("Protocol error: invalid argument count")
    argv = []
    for _ in range(count):
        if pos >= len(buf):
            raise _Incomplete
        pos += 1  # the '$' that opens each argument
        value, pos = _bulk(buf, pos)
        argv.append(value)
    return Message(recv_type, argv), pos


class RespParser:
    """Accumulates bytes from a peer and yields complete messages."""

    def __init__(self) -> None:
        self._buffer = bytearray()

    @property
    def pending(self) -> int:
        """Number of buffered bytes not yet forming a complete message."""
        return len(self._buffer)

    def reset(self) -> None:
        """Discard any partially received message."""
        self._buffer.clear()

    def feed(self, data: bytes) -> list[Message]:
        """Add ``data`` and return every message it completes, in order.

        Raises :class:`ProtocolError` on malformed input; the buffered input
        is then discarded.
        """
        self._buffer += data
        messages: list[Message] = []
        while self._buffer:
            try:
                message, consumed = _parse(self._buffer)
            except _Incomplete:
                break
            except ProtocolError as exc:
                self._buffer.clear()
                exc.messages = messages
                raise
            del self._buffer[:consumed]
            messages.append(message)
        return messages


def _to_bytes(data: Data) -> bytes:
    if isinstance(data, str):
        return data.encode("utf-8")
    return bytes(data)


def encode_bulk(data: Data) -> bytes:
    """Encode one bulk string."""
    raw = _to_bytes(data)
    return b"$%d\r\n%s\r\n" % (len(raw), raw)


def encode_array(items: Iterable[Data]) -> bytes:
    """Encode an array of bulk strings, as used for commands and replies."""
    parts = [encode_bulk(item) for item in items]
    return b"*%d\r\n" % len(parts) + b"".join(parts)


def encode_error(message: Data) -> bytes:
    """Encode an error reply."""
    return b"-" + _to_bytes(message) + b"\r\n"