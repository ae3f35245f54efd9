from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Hashable, Iterable, Tuple

from .constants import RETRANSMIT_AFTER_S, SESSION_EXPIRY_S
from .message import Close, Connect, FrameError, Message, Payload
from .session import CloseReason, Session

logger = logging.getLogger(__name__)

Outgoing = Tuple[bytes, Hashable]


@dataclass(slots=True)
class RegistryMetrics:
    datagrams_in: int = 0
    malformed: int = 0
    sessions_opened: int = 0
    sessions_closed: int = 0
    timeouts: int = 0
    violations: int = 0
    retransmits: int = 0


class Registry:
    """Routes frames to sessions by id and drives their timers.

    Sessions are keyed by id alone. A frame for a live session arriving from
    another address is still applied to that session, and replies keep going
    to the address that opened it.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        retransmit_after_s: float = RETRANSMIT_AFTER_S,
        expiry_s: float = SESSION_EXPIRY_S,
    ):
        self.clock = clock
        self.retransmit_after_s = retransmit_after_s
        self.expiry_s = expiry_s
        self.sessions: dict[int, Session] = {}
        self.metrics = RegistryMetrics()

    def on_datagram(self, raw: bytes, addr: Hashable) -> list[Outgoing]:
        self.metrics.datagrams_in += 1
        try:
            message = Message.from_bytes(raw)
        except FrameError as exc:
            self.metrics.malformed += 1
            logger.debug("dropped %d bytes from %s: %s", len(raw), addr, exc)
            return []
        return self.on_message(message, addr)

    def on_message(self, message: Message, addr: Hashable) -> list[Outgoing]:
        logger.debug("<-- %s", message)
        session = self.sessions.get(message.session)

        if session is None:
            if not isinstance(message.payload, Connect):
                self.metrics.violations += 1
                logger.debug("session %d: %s before connect", message.session, message)
                return self._encode([Message(message.session, Close())], addr)
            session = Session(
                message.session,
                addr,
                clock=self.clock,
                retransmit_after_s=self.retransmit_after_s,
                expiry_s=self.expiry_s,
            )
            self.sessions[session.id] = session
            self.metrics.sessions_opened += 1
            logger.info("session %d opened by %s", session.id, addr)
        elif addr != session.peer:
            logger.warning("session %d: frame from %s, session belongs to %s", session.id, addr, session.peer)

        before = session.retransmits
        return self._process(session, session.receive(message.payload), before)

    def tick(self) -> list[Outgoing]:
        out: list[Outgoing] = []
        for session in list(self.sessions.values()):
            before = session.retransmits
            out.extend(self._process(session, session.ping(), before))
        return out

    def _process(self, session: Session, payloads: list[Payload], retransmits_before: int) -> list[Outgoing]:
        self.metrics.retransmits += session.retransmits - retransmits_before
        out = self._encode((Message(session.id, p) for p in payloads), session.peer)

        if any(isinstance(p, Close) for p in payloads):
            self._remove(session)
        return out

    def _remove(self, session: Session) -> None:
        del self.sessions[session.id]
        self.metrics.sessions_closed += 1
        reason = session.close_reason
        if reason is CloseReason.TIMEOUT:
            self.metrics.timeouts += 1
        elif reason is CloseReason.BAD_ACK:
            self.metrics.violations += 1
        logger.info(
            "session %d closed (%s); received=%d sent=%d retransmits=%d",
            session.id,
            reason.value if reason else "unknown",
            session.received,
            session.queued,
            session.retransmits,
        )

    @staticmethod
    def _encode(messages: Iterable[Message], addr: Hashable) -> list[Outgoing]:
        out: list[Outgoing] = []
        for m in messages:
            logger.debug("--> %s", m)
            out.append((m.to_bytes(), addr))
        return out
