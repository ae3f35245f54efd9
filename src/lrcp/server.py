from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Iterable

from .constants import (
    DEFAULT_HOST,
    DEFAULT_PORT,
    RETRANSMIT_AFTER_S,
    SESSION_EXPIRY_S,
    TICK_INTERVAL_S,
)
from .net import Impairment, UdpEndpoint
from .registry import Outgoing, Registry

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ServerConfig:
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    tick_interval_s: float = TICK_INTERVAL_S
    retransmit_after_s: float = RETRANSMIT_AFTER_S
    expiry_s: float = SESSION_EXPIRY_S


class Server:
    """Single-threaded serve loop.

    The loop is the only code that touches the registry. It blocks in
    ``recvfrom`` until the next tick is due, so inbound datagrams and the
    timer never run concurrently.
    """

    def __init__(
        self,
        endpoint: UdpEndpoint,
        registry: Registry | None = None,
        tick_interval_s: float = TICK_INTERVAL_S,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.endpoint = endpoint
        self.registry = registry or Registry(clock=clock)
        self.tick_interval_s = tick_interval_s
        self.clock = clock
        self._running = False

    @classmethod
    def from_config(cls, config: ServerConfig, impairment: Impairment | None = None) -> "Server":
        endpoint = UdpEndpoint.listening(config.host, config.port, impairment=impairment)
        registry = Registry(retransmit_after_s=config.retransmit_after_s, expiry_s=config.expiry_s)
        return cls(endpoint, registry, tick_interval_s=config.tick_interval_s)

    @property
    def address(self):
        return self.endpoint.address

    def serve_forever(self) -> None:
        self._running = True
        host, port = self.address[:2]
        logger.info("LRCP server listening on %s:%d", host, port)

        next_tick = self.clock() + self.tick_interval_s
        try:
            while self._running:
                remaining = next_tick - self.clock()
                if remaining <= 0:
                    self._dispatch(self.registry.tick)
                    next_tick += self.tick_interval_s
                    if next_tick <= self.clock():
                        next_tick = self.clock() + self.tick_interval_s
                    continue

                self.endpoint.settimeout(remaining)
                try:
                    raw, addr = self.endpoint.recvfrom()
                except TimeoutError:
                    continue
                except ConnectionResetError:
                    # ICMP port unreachable from an earlier send, on some platforms
                    continue
                except OSError:
                    if not self._running:
                        break
                    raise

                self._dispatch(self.registry.on_datagram, raw, addr)
        finally:
            self._running = False
            logger.info("LRCP server stopped; %s", self.registry.metrics)

    def stop(self) -> None:
        """Ask the loop to exit; it notices within one tick interval."""
        self._running = False

    def close(self) -> None:
        self.stop()
        self.endpoint.close()

    def _dispatch(self, handler: Callable[..., list[Outgoing]], *args) -> None:
        try:
            outgoing = handler(*args)
        except Exception:
            logger.exception("%s failed; server keeps running", handler.__name__)
            return
        self._send(outgoing)

    def _send(self, outgoing: Iterable[Outgoing]) -> None:
        for data, addr in outgoing:
            try:
                self.endpoint.sendto(data, addr)
            except OSError as exc:
                logger.warning("send to %s failed: %s", addr, exc)
