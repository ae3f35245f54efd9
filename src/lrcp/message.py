from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from .constants import MAX_NUMBER, MAX_NUMBER_DIGITS, MIN_FRAME_LEN

SLASH = ord("/")
BACKSLASH = ord("\\")


class FrameError(ValueError):
    """Raised for datagrams that are not well-formed LRCP frames."""


@dataclass(frozen=True, slots=True)
class Connect:
    pass


@dataclass(frozen=True, slots=True)
class Data:
    position: int
    data: bytes


@dataclass(frozen=True, slots=True)
class Ack:
    length: int


@dataclass(frozen=True, slots=True)
class Close:
    pass


Payload = Union[Connect, Data, Ack, Close]


def escape(data: bytes) -> bytes:
    return data.replace(b"\\", b"\\\\").replace(b"/", b"\\/")


def unescape(data: bytes) -> bytes:
    out = bytearray()
    pending = False
    for b in data:
        if pending:
            if b != SLASH and b != BACKSLASH:
                raise FrameError(f"invalid escape sequence: \\{chr(b)!r}")
            out.append(b)
            pending = False
        elif b == BACKSLASH:
            pending = True
        elif b == SLASH:
            raise FrameError("unescaped '/' in data")
        else:
            out.append(b)
    if pending:
        raise FrameError("data ends with a dangling '\\'")
    return bytes(out)


def _parse_number(field: bytes, what: str) -> int:
    # bytes.isdigit() is ASCII-only, so "+1", "-1" and " 1" are all rejected
    if not field.isdigit():
        raise FrameError(f"{what} is not an unsigned integer: {field!r}")
    if len(field) > MAX_NUMBER_DIGITS:
        raise FrameError(f"{what} has {len(field)} digits")
    if len(field) > 1 and field[0] == ord("0"):
        raise FrameError(f"{what} has a leading zero: {field!r}")
    value = int(field)
    if value > MAX_NUMBER:
        raise FrameError(f"{what} out of range: {value}")
    return value


@dataclass(frozen=True, slots=True)
class Message:
    session: int
    payload: Payload

    def to_bytes(self) -> bytes:
        p = self.payload
        if isinstance(p, Connect):
            return f"/connect/{self.session}/".encode("ascii")
        if isinstance(p, Data):
            return f"/data/{self.session}/{p.position}/".encode("ascii") + escape(p.data) + b"/"
        if isinstance(p, Ack):
            return f"/ack/{self.session}/{p.length}/".encode("ascii")
        if isinstance(p, Close):
            return f"/close/{self.session}/".encode("ascii")
        raise TypeError(f"unknown payload: {p!r}")

    @staticmethod
    def from_bytes(raw: bytes) -> "Message":
        if len(raw) < MIN_FRAME_LEN:
            raise FrameError("datagram too small to be a valid frame")
        if raw[0] != SLASH or raw[-1] != SLASH:
            raise FrameError("frame must start and end with '/'")

        # the data field may hold escaped slashes, so split at most 3 times
        parts = raw[1:-1].split(b"/", 3)
        kind = parts[0]
        if len(parts) < 2:
            raise FrameError("missing session field")
        session = _parse_number(parts[1], "session")

        payload: Payload
        if kind == b"connect" and len(parts) == 2:
            payload = Connect()
        elif kind == b"close" and len(parts) == 2:
            payload = Close()
        elif kind == b"ack" and len(parts) == 3:
            payload = Ack(_parse_number(parts[2], "length"))
        elif kind == b"data" and len(parts) == 4:
            payload = Data(_parse_number(parts[2], "position"), unescape(parts[3]))
        else:
            raise FrameError(f"unknown frame type or field count: {kind!r}/{len(parts)}")

        return Message(session=session, payload=payload)

    def __str__(self) -> str:
        p = self.payload
        if isinstance(p, Data):
            return f"{self.session}: data({p.position}, {len(p.data)})"
        if isinstance(p, Ack):
            return f"{self.session}: ack({p.length})"
        return f"{self.session}: {type(p).__name__.lower()}"


def encode(message: Message) -> bytes:
    return message.to_bytes()


def decode(raw: bytes) -> Message:
    return Message.from_bytes(raw)
