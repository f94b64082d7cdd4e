from __future__ import annotations

import os
import tempfile
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Literal, Union

from .client import DatagramClient, StreamClient
from .constants import DEFAULT_TIMEOUT_MS
from .server import DatagramServer, StreamServer


@dataclass(frozen=True, slots=True)
class BenchmarkResult:
    transport: str
    bytes_transferred: int
    upload_s: float
    download_s: float
    upload_mbps: float
    download_mbps: float


def _mbps(size_bytes: int, seconds: float) -> float:
    return (size_bytes * 8 / 1_000_000) / max(0.001, seconds)


def run_benchmark(
    *,
    transport: Literal["tcp", "udp"],
    size_bytes: int,
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
) -> BenchmarkResult:
    """Upload then download ``size_bytes`` over loopback and check the bytes survive."""
    payload = os.urandom(size_bytes)

    with tempfile.TemporaryDirectory() as tmp:
        base = Path(tmp)
        root = base / "root"
        root.mkdir()
        src = base / "payload.bin"
        src.write_bytes(payload)

        server: Union[StreamServer, DatagramServer]
        client: Union[StreamClient, DatagramClient]
        if transport == "tcp":
            server = StreamServer("127.0.0.1", 0, root)
            t = threading.Thread(target=server.serve_one, daemon=True)
            t.start()
            host, port = server.address
            client = StreamClient(host, port, timeout_ms=timeout_ms)
        else:
            server = DatagramServer.bind("127.0.0.1", 0, root, poll_ms=100)
            t = threading.Thread(target=server.serve_forever, daemon=True)
            t.start()
            host, port = server.address
            client = DatagramClient(host, port, timeout_ms=timeout_ms)

        try:
            with client:
                t0 = time.perf_counter()
                client.upload(src)
                t1 = time.perf_counter()
                out = client.download(src.name, base / "back")
                t2 = time.perf_counter()
        finally:
            if isinstance(server, DatagramServer):
                server.shutdown()
            t.join(timeout=10.0)
            server.close()

        if out.read_bytes() != payload:
            raise RuntimeError(f"{transport} round trip corrupted the payload")

    return BenchmarkResult(
        transport=transport,
        bytes_transferred=size_bytes,
        upload_s=t1 - t0,
        download_s=t2 - t1,
        upload_mbps=_mbps(size_bytes, t1 - t0),
        download_mbps=_mbps(size_bytes, t2 - t1),
    )
