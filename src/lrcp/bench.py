from __future__ import annotations

import random
import string
import threading
from dataclasses import dataclass

from .client import LrcpClient, LrcpError
from .constants import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_TIMEOUT_MS,
    RETRANSMIT_AFTER_S,
    TICK_INTERVAL_S,
)
from .net import Impairment, UdpEndpoint
from .registry import Registry
from .server import Server


@dataclass(frozen=True, slots=True)
class BenchmarkResult:
    lines: int
    bytes_transferred: int
    duration_s: float
    throughput_mbps: float
    client_retransmits: int
    server_retransmits: int
    timeouts: int


def make_lines(count: int, line_size: int, rng: random.Random) -> list[bytes]:
    alphabet = string.ascii_letters + string.digits + " /\\"
    return [
        "".join(rng.choice(alphabet) for _ in range(line_size)).encode("ascii") + b"\n"
        for _ in range(count)
    ]


def run_benchmark(
    *,
    lines: int = 100,
    line_size: int = 200,
    loss_rate: float = 0.0,
    delay_ms: int = 0,
    duplicate_rate: float = 0.0,
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
    max_retries: int = DEFAULT_MAX_RETRIES,
    tick_interval_s: float = TICK_INTERVAL_S,
    retransmit_after_s: float = RETRANSMIT_AFTER_S,
    seed: int | None = None,
) -> BenchmarkResult:
    rng = random.Random(seed)
    payload_lines = make_lines(lines, line_size, rng)
    payload = b"".join(payload_lines)

    def impair() -> Impairment:
        return Impairment(loss_rate, delay_ms, duplicate_rate, rng=random.Random(rng.getrandbits(32)))

    server_ep = UdpEndpoint.listening("127.0.0.1", 0, impairment=impair())
    registry = Registry(retransmit_after_s=retransmit_after_s)
    server = Server(server_ep, registry, tick_interval_s=tick_interval_s)
    t = threading.Thread(target=server.serve_forever, name="lrcp-bench-server", daemon=True)
    t.start()

    client_ep = UdpEndpoint.sending(impairment=impair())
    try:
        client = LrcpClient(
            client_ep,
            server.address,
            session_id=rng.randrange(2**31),
            timeout_ms=timeout_ms,
            max_retries=max_retries,
        )
        client.connect()
        reply = client.exchange(payload)
        client.close()
    finally:
        client_ep.close()
        server.stop()
        t.join(timeout=tick_interval_s + 5.0)
        server_ep.close()

    expected = b"".join(line[:-1][::-1] + b"\n" for line in payload_lines)
    if reply != expected:
        raise LrcpError(f"reply mismatch: got {len(reply)} bytes, expected {len(expected)}")

    m = client.metrics
    duration_s = max(0.001, m.duration_s)
    return BenchmarkResult(
        lines=lines,
        bytes_transferred=len(payload),
        duration_s=duration_s,
        throughput_mbps=(len(payload) * 8 / 1_000_000) / duration_s,
        client_retransmits=m.retransmits,
        server_retransmits=registry.metrics.retransmits,
        timeouts=m.timeouts,
    )
