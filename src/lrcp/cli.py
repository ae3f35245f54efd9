from __future__ import annotations

import argparse
import json
import logging
import random
from dataclasses import asdict

from .bench import run_benchmark
from .client import LrcpClient, LrcpError
from .constants import (
    DEFAULT_HOST,
    DEFAULT_MAX_RETRIES,
    DEFAULT_PORT,
    DEFAULT_TIMEOUT_MS,
    RETRANSMIT_AFTER_S,
    SESSION_EXPIRY_S,
    TICK_INTERVAL_S,
)
from .net import Impairment, UdpEndpoint
from .server import Server, ServerConfig


def cmd_serve(args: argparse.Namespace) -> int:
    config = ServerConfig(
        host=args.host,
        port=args.port,
        tick_interval_s=args.tick_interval,
        retransmit_after_s=args.retransmit_after,
        expiry_s=args.expiry,
    )
    impair = Impairment(args.loss_rate, args.delay_ms, args.duplicate_rate)
    server = Server.from_config(config, impairment=impair)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        server.close()

    payload = {"role": "server", **asdict(server.registry.metrics)}
    print(json.dumps(payload, indent=2) if args.json else payload)
    return 0


def cmd_send(args: argparse.Namespace) -> int:
    impair = Impairment(args.loss_rate, args.delay_ms, args.duplicate_rate)
    udp = UdpEndpoint.sending(impairment=impair)
    session_id = args.session if args.session is not None else random.randrange(2**31)
    client = LrcpClient(
        udp,
        (args.host, args.port),
        session_id,
        timeout_ms=args.timeout_ms,
        max_retries=args.max_retries,
    )

    data = "".join(line + "\n" for line in args.text).encode("utf-8")
    try:
        client.connect()
        reply = client.exchange(data)
        client.close()
    except LrcpError as exc:
        logging.error("%s", exc)
        return 1
    finally:
        udp.close()

    if args.json:
        payload = {
            "role": "client",
            "session": session_id,
            "reply": reply.decode("utf-8", errors="replace").splitlines(),
            "seconds": client.metrics.duration_s,
            "timeouts": client.metrics.timeouts,
            "retransmits": client.metrics.retransmits,
        }
        print(json.dumps(payload, indent=2))
    else:
        print(reply.decode("utf-8", errors="replace"), end="")
    return 0


def cmd_bench(args: argparse.Namespace) -> int:
    r = run_benchmark(
        lines=args.lines,
        line_size=args.line_size,
        loss_rate=args.loss_rate,
        delay_ms=args.delay_ms,
        duplicate_rate=args.duplicate_rate,
        timeout_ms=args.timeout_ms,
        max_retries=args.max_retries,
        seed=args.seed,
    )
    payload = {"role": "bench", **asdict(r)}
    print(json.dumps(payload, indent=2) if args.json else payload)
    return 0


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(prog="lrcp", description="Line Reversal Control Protocol over UDP.")
    p.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
    sub = p.add_subparsers(dest="cmd", required=True)

    def add_common(x: argparse.ArgumentParser) -> None:
        x.add_argument("--loss-rate", type=float, default=0.0, help="simulate packet loss")
        x.add_argument("--delay-ms", type=int, default=0, help="simulate per-packet delay")
        x.add_argument("--duplicate-rate", type=float, default=0.0, help="simulate outbound duplication")
        x.add_argument("--json", action="store_true")

    serve = sub.add_parser("serve", help="run the line-reversal server")
    add_common(serve)
    serve.add_argument("--host", default=DEFAULT_HOST)
    serve.add_argument("--port", type=int, default=DEFAULT_PORT)
    serve.add_argument("--tick-interval", type=float, default=TICK_INTERVAL_S)
    serve.add_argument("--retransmit-after", type=float, default=RETRANSMIT_AFTER_S)
    serve.add_argument("--expiry", type=float, default=SESSION_EXPIRY_S)
    serve.set_defaults(func=cmd_serve)

    send = sub.add_parser("send", help="send lines to a server and print the replies")
    add_common(send)
    send.add_argument("--host", default="127.0.0.1")
    send.add_argument("--port", type=int, default=DEFAULT_PORT)
    send.add_argument("--session", type=int, default=None)
    send.add_argument("--timeout-ms", type=int, default=DEFAULT_TIMEOUT_MS)
    send.add_argument("--max-retries", type=int, default=DEFAULT_MAX_RETRIES)
    send.add_argument("text", nargs="+")
    send.set_defaults(func=cmd_send)

    bench = sub.add_parser("bench", help="loopback benchmark (server thread + client)")
    add_common(bench)
    bench.add_argument("--lines", type=int, default=100)
    bench.add_argument("--line-size", type=int, default=200)
    bench.add_argument("--timeout-ms", type=int, default=DEFAULT_TIMEOUT_MS)
    bench.add_argument("--max-retries", type=int, default=DEFAULT_MAX_RETRIES)
    bench.add_argument("--seed", type=int, default=None)
    bench.set_defaults(func=cmd_bench)

    args = p.parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format="%(asctime)s [%(levelname)s] %(message)s")
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
