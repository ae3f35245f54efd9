from __future__ import annotations

import threading

import pytest

from lrcp.net import UdpEndpoint
from lrcp.registry import Registry
from lrcp.server import Server


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def server():
    endpoint = UdpEndpoint.listening("127.0.0.1", 0)
    srv = Server(endpoint, Registry(retransmit_after_s=0.2), tick_interval_s=0.05)
    t = threading.Thread(target=srv.serve_forever, daemon=True)
    t.start()
    try:
        yield srv
    finally:
        srv.stop()
        t.join(timeout=2.0)
        endpoint.close()


@pytest.fixture
def peer():
    endpoint = UdpEndpoint.sending(timeout_ms=2000)
    try:
        yield endpoint
    finally:
        endpoint.close()
