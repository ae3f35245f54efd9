"""Per-session ARQ state machine.

A Session never touches the network. ``receive`` and ``ping`` return the
payloads that should go back to the peer; the registry encodes and sends
them. Both streams are append-at-the-back, consume-from-the-front buffers
indexed by absolute stream offsets:

- inbound: ``received`` counts contiguous bytes accepted since offset 0,
  ``_inbox`` holds the ones not yet consumed by the line reversal.
- outbound: ``acked`` is the peer's cumulative ack, ``_outbox`` holds bytes
  ``[acked, queued)``, ``sent`` is the highest offset ever transmitted.
"""
from __future__ import annotations

import enum
import time
from dataclasses import dataclass, field
from typing import Callable, Hashable

from .constants import MAX_DATA_CHUNK, RETRANSMIT_AFTER_S, SESSION_EXPIRY_S
from .message import Ack, Close, Connect, Data, Payload


class CloseReason(enum.Enum):
    PEER = "closed by peer"
    TIMEOUT = "idle timeout"
    BAD_ACK = "ack beyond sent data"
    NOT_CONNECTED = "frame before connect"


@dataclass(slots=True, eq=False)
class Session:
    id: int
    peer: Hashable
    clock: Callable[[], float] = time.monotonic
    retransmit_after_s: float = RETRANSMIT_AFTER_S
    expiry_s: float = SESSION_EXPIRY_S

    connected: bool = field(default=False, init=False)
    close_reason: CloseReason | None = field(default=None, init=False)
    received: int = field(default=0, init=False)
    acked: int = field(default=0, init=False)
    sent: int = field(default=0, init=False)
    retransmits: int = field(default=0, init=False)
    last_receive: float = field(default=0.0, init=False)
    last_send: float = field(default=0.0, init=False)
    _inbox: bytearray = field(default_factory=bytearray, init=False)
    _outbox: bytearray = field(default_factory=bytearray, init=False)
    _scan_from: int = field(default=0, init=False)

    def __post_init__(self) -> None:
        now = self.clock()
        self.last_receive = now
        self.last_send = now

    @property
    def queued(self) -> int:
        """Total bytes ever queued for sending."""
        return self.acked + len(self._outbox)

    @property
    def unacked(self) -> int:
        return len(self._outbox)

    def receive(self, payload: Payload) -> list[Payload]:
        self.last_receive = self.clock()

        if isinstance(payload, Connect):
            self.connected = True
            return [Ack(self.received)]

        if not self.connected:
            return self._close(CloseReason.NOT_CONNECTED)

        if isinstance(payload, Data):
            return self._on_data(payload)
        if isinstance(payload, Ack):
            return self._on_ack(payload)
        return self._close(CloseReason.PEER)

    def ping(self) -> list[Payload]:
        now = self.clock()
        if now - self.last_receive > self.expiry_s:
            return self._close(CloseReason.TIMEOUT)

        if self._outbox and now - self.last_send > self.retransmit_after_s:
            return self._chunks(self.acked)

        return []

    def _on_data(self, msg: Data) -> list[Payload]:
        offset = self.received - msg.position
        if msg.position <= self.received and offset < len(msg.data):
            fresh = msg.data[offset:]
            self._inbox += fresh
            self.received += len(fresh)
            self._reverse_lines()

        return [Ack(self.received), *self._chunks(max(self.sent, self.acked))]

    def _on_ack(self, msg: Ack) -> list[Payload]:
        if msg.length > self.queued:
            return self._close(CloseReason.BAD_ACK)

        if msg.length > self.acked:
            del self._outbox[: msg.length - self.acked]
            self.acked = msg.length

        return self._chunks(self.acked)

    def _reverse_lines(self) -> None:
        while True:
            idx = self._inbox.find(b"\n", self._scan_from)
            if idx < 0:
                self._scan_from = len(self._inbox)
                return
            line = bytes(self._inbox[:idx])
            del self._inbox[: idx + 1]
            self._scan_from = 0
            self._outbox += line[::-1]
            self._outbox += b"\n"

    def _chunks(self, start: int) -> list[Payload]:
        """Data payloads covering ``[start, queued)`` in MAX_DATA_CHUNK pieces."""
        end = self.queued
        if start >= end:
            return []

        out: list[Payload] = []
        for pos in range(start, end, MAX_DATA_CHUNK):
            lo = pos - self.acked
            hi = min(pos + MAX_DATA_CHUNK, end) - self.acked
            out.append(Data(pos, bytes(self._outbox[lo:hi])))
            if pos < self.sent:
                self.retransmits += 1

        self.sent = max(self.sent, end)
        self.last_send = self.clock()
        return out

    def _close(self, reason: CloseReason) -> list[Payload]:
        self.connected = False
        self.close_reason = reason
        return [Close()]
