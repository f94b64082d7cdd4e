from __future__ import annotations

import argparse
import json
import logging
from dataclasses import asdict

from .bench import run_benchmark
from .constants import DEFAULT_TIMEOUT_MS, SESSION_IDLE_TIMEOUT_S
from .server import DatagramServer, StreamServer


def cmd_serve(args: argparse.Namespace) -> int:
    if args.transport == "tcp":
        tcp = StreamServer(args.listen_host, args.listen_port, args.root)
        try:
            if args.forever:
                tcp.serve_forever()
            else:
                tcp.serve_one()
        finally:
            tcp.close()
    else:
        udp = DatagramServer.bind(
            args.listen_host,
            args.listen_port,
            args.root,
            idle_timeout=args.idle_timeout,
        )
        try:
            udp.serve_forever()
        finally:
            udp.close()
    return 0


def cmd_bench(args: argparse.Namespace) -> int:
    r = run_benchmark(
        transport=args.transport,
        size_bytes=args.size_bytes,
        timeout_ms=args.timeout_ms,
    )
    payload = {"role": "bench", **asdict(r)}
    print(json.dumps(payload, indent=2) if args.json else payload)
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="rfsp", description="Remote file shell over TCP or UDP.")
    p.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
    sub = p.add_subparsers(dest="cmd", required=True)

    serve = sub.add_parser("serve", help="serve a directory to remote clients")
    serve.add_argument("--transport", choices=["tcp", "udp"], default="tcp")
    serve.add_argument("--listen-host", default="0.0.0.0")
    serve.add_argument("--listen-port", type=int, required=True)
    serve.add_argument("--root", required=True, help="directory clients may not leave")
    serve.add_argument(
        "--idle-timeout",
        type=float,
        default=SESSION_IDLE_TIMEOUT_S,
        help="seconds before an idle UDP session is dropped (udp only)",
    )
    serve.add_argument(
        "--forever",
        action="store_true",
        help="keep accepting connections one after another (tcp only)",
    )
    serve.set_defaults(func=cmd_serve)

    bench = sub.add_parser("bench", help="loopback upload+download benchmark")
    bench.add_argument("--transport", choices=["tcp", "udp"], default="udp")
    bench.add_argument("--size-bytes", type=int, default=5_000_000)
    bench.add_argument("--timeout-ms", type=int, default=DEFAULT_TIMEOUT_MS)
    bench.add_argument("--json", action="store_true")
    bench.set_defaults(func=cmd_bench)

    return p


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format="%(asctime)s [%(levelname)s] %(message)s")
    try:
        return int(args.func(args))
    except NotADirectoryError as e:
        logging.error("%s", e)
        return 2
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
