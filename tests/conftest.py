from __future__ import annotations

import os
import threading
from pathlib import Path

import pytest

from rfsp.client import DatagramClient, StreamClient
from rfsp.net import UdpEndpoint
from rfsp.server import DatagramServer, StreamServer
from rfsp.session import SessionStore


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def root(tmp_path: Path) -> Path:
    r = tmp_path / "root"
    r.mkdir()
    return r.resolve()


@pytest.fixture
def local_dir(tmp_path: Path) -> Path:
    d = tmp_path / "local"
    d.mkdir()
    return d


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def dgram(root: Path, clock: FakeClock):
    """A datagram server driven in-process through handle_datagram."""
    server = DatagramServer(
        UdpEndpoint.listening("127.0.0.1", 0),
        root,
        SessionStore(root, idle_timeout=300, clock=clock),
    )
    yield server
    server.close()


@pytest.fixture
def tcp_client(root: Path):
    server = StreamServer("127.0.0.1", 0, root)
    t = threading.Thread(target=server.serve_one, daemon=True)
    t.start()
    host, port = server.address
    client = StreamClient(host, port, timeout_ms=5000)
    yield client
    client.close()
    t.join(timeout=5.0)
    server.close()


@pytest.fixture
def udp_server(root: Path):
    server = DatagramServer.bind("127.0.0.1", 0, root, poll_ms=50)
    t = threading.Thread(target=server.serve_forever, daemon=True)
    t.start()
    yield server
    server.shutdown()
    t.join(timeout=5.0)
    server.close()


@pytest.fixture
def udp_client(udp_server: DatagramServer):
    host, port = udp_server.address
    client = DatagramClient(host, port, timeout_ms=2000)
    yield client
    client.close()


@pytest.fixture
def make_file(local_dir: Path):
    def make(name: str, size: int) -> tuple[Path, bytes]:
        data = os.urandom(size)
        path = local_dir / name
        path.write_bytes(data)
        return path, data

    return make


@pytest.fixture
def undecodable_entry(root: Path) -> Path:
    """A file under root whose on-disk name is not valid UTF-8."""
    path = root / os.fsdecode(b"bad\xff.txt")
    path.write_bytes(b"x")
    return path
