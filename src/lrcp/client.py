from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field

from .constants import DEFAULT_MAX_RETRIES, DEFAULT_TIMEOUT_MS, MAX_DATA_CHUNK
from .message import Ack, Close, Connect, Data, FrameError, Message, Payload
from .net import Address, UdpEndpoint

logger = logging.getLogger(__name__)


class LrcpError(Exception):
    pass


@dataclass(slots=True)
class Metrics:
    packets_sent: int = 0
    bytes_sent: int = 0
    bytes_received: int = 0
    timeouts: int = 0
    retransmits: int = 0
    start_ts: float = field(default_factory=time.monotonic)
    end_ts: float | None = None

    @property
    def duration_s(self) -> float:
        end = time.monotonic() if self.end_ts is None else self.end_ts
        return max(0.0, end - self.start_ts)

    @property
    def throughput_mbps(self) -> float:
        if self.duration_s <= 0:
            return 0.0
        return (self.bytes_sent * 8 / 1_000_000) / self.duration_s


@dataclass(slots=True)
class LrcpClient:
    """Talks to a line-reversal server over one LRCP session.

    Blocking and single-threaded: every wait is a ``recvfrom`` bounded by
    ``timeout_ms``, and each timeout retransmits whatever the server has not
    acknowledged yet.
    """

    udp: UdpEndpoint
    server: Address
    session_id: int
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    max_retries: int = DEFAULT_MAX_RETRIES
    metrics: Metrics = field(default_factory=Metrics)
    _out: bytearray = field(default_factory=bytearray, init=False)
    _acked: int = field(default=0, init=False)
    _sent: int = field(default=0, init=False)
    _in: bytearray = field(default_factory=bytearray, init=False)
    _delivered: int = field(default=0, init=False)

    def connect(self) -> None:
        for attempt in range(self.max_retries + 1):
            self._send(Connect())
            msg = self._recv()
            if msg is None:
                self.metrics.timeouts += 1
                logger.debug("connect timeout; session=%d attempt=%d", self.session_id, attempt)
                continue
            if isinstance(msg.payload, Ack) and msg.payload.length == 0:
                logger.info("session %d connected to %s:%d", self.session_id, *self.server)
                return
            if isinstance(msg.payload, Ack):
                raise LrcpError(
                    f"session {self.session_id} is already in use on the server "
                    f"({msg.payload.length} bytes received)"
                )
            if isinstance(msg.payload, Close):
                raise LrcpError(f"server refused session {self.session_id}")
        raise LrcpError(f"no ack for connect after {self.max_retries} retries")

    def exchange(self, data: bytes) -> bytes:
        """Send ``data`` and return the server's replies to every complete line in it."""
        self._out += data
        lines_wanted = self._out.count(b"\n")
        self._transmit(self._sent)

        retries = 0
        while self._acked < len(self._out) or self._in.count(b"\n") < lines_wanted:
            msg = self._recv()
            if msg is None:
                retries += 1
                self.metrics.timeouts += 1
                if retries > self.max_retries:
                    raise LrcpError(f"too many timeouts; acked={self._acked} of {len(self._out)}")
                logger.debug("timeout; retransmit from %d retry=%d", self._acked, retries)
                self._transmit(self._acked)
                # a repeated ack makes the server resend whatever we are missing
                self._send(Ack(len(self._in)))
                continue

            retries = 0
            self._handle(msg.payload)

        reply = bytes(self._in[self._delivered :])
        self._delivered = len(self._in)
        self.metrics.end_ts = time.monotonic()
        return reply

    def close(self) -> None:
        for _ in range(self.max_retries + 1):
            self._send(Close())
            msg = self._recv()
            while msg is not None and not isinstance(msg.payload, Close):
                msg = self._recv()
            if msg is not None:
                logger.info("session %d closed", self.session_id)
                return
        logger.warning("session %d: no close reply from server", self.session_id)

    def _handle(self, payload: Payload) -> None:
        if isinstance(payload, Ack):
            if payload.length > len(self._out):
                raise LrcpError(f"server acked {payload.length} of {len(self._out)} bytes")
            self._acked = max(self._acked, payload.length)
        elif isinstance(payload, Data):
            offset = len(self._in) - payload.position
            if payload.position <= len(self._in) and offset < len(payload.data):
                self._in += payload.data[offset:]
                self.metrics.bytes_received += len(payload.data) - offset
            self._send(Ack(len(self._in)))
        elif isinstance(payload, Close):
            raise LrcpError(f"server closed session {self.session_id}")

    def _transmit(self, start: int) -> None:
        end = len(self._out)
        for pos in range(start, end, MAX_DATA_CHUNK):
            chunk = bytes(self._out[pos : min(pos + MAX_DATA_CHUNK, end)])
            if pos < self._sent:
                self.metrics.retransmits += 1
            else:
                self.metrics.bytes_sent += len(chunk)
            self._send(Data(pos, chunk))
        self._sent = max(self._sent, end)

    def _send(self, payload: Payload) -> None:
        self.metrics.packets_sent += 1
        self.udp.sendto(Message(self.session_id, payload).to_bytes(), self.server)

    def _recv(self) -> Message | None:
        """Next frame for this session, or None once ``timeout_ms`` passes quietly."""
        self.udp.settimeout(self.timeout_ms / 1000.0)
        while True:
            try:
                raw, _ = self.udp.recvfrom()
            except TimeoutError:
                return None
            try:
                msg = Message.from_bytes(raw)
            except FrameError as exc:
                logger.debug("ignoring malformed frame: %s", exc)
                continue
            if msg.session == self.session_id:
                return msg
