from __future__ import annotations

import random
import socket
import time
from dataclasses import dataclass
from typing import Tuple

from .constants import MAX_DATAGRAM_SIZE
from .errors import ConnectionClosed
from .messages import Request, Response, encode, read_request, read_response

Address = Tuple[str, int]


@dataclass(frozen=True, slots=True)
class Impairment:
    loss_rate: float = 0.0
    delay_ms: int = 0

    def should_drop(self) -> bool:
        return random.random() < self.loss_rate

    def sleep_if_needed(self) -> None:
        if self.delay_ms > 0:
            time.sleep(self.delay_ms / 1000.0)


class UdpEndpoint:
    def __init__(self, sock: socket.socket, impairment: Impairment | None = None):
        self.sock = sock
        self.impairment = impairment or Impairment()

    @classmethod
    def listening(
        cls,
        host: str,
        port: int,
        timeout_ms: int = 0,
        impairment: Impairment | None = None,
    ) -> "UdpEndpoint":
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        sock.bind((host, port))
        if timeout_ms > 0:
            sock.settimeout(timeout_ms / 1000.0)
        return cls(sock, impairment)

    @classmethod
    def sending(
        cls,
        timeout_ms: int = 0,
        impairment: Impairment | None = None,
    ) -> "UdpEndpoint":
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        if timeout_ms > 0:
            sock.settimeout(timeout_ms / 1000.0)
        return cls(sock, impairment)

    @property
    def address(self) -> Address:
        return self.sock.getsockname()

    def sendto(self, data: bytes, addr: Address) -> None:
        if self.impairment.should_drop():
            return
        self.impairment.sleep_if_needed()
        self.sock.sendto(data, addr)

    def recvfrom(self, bufsize: int = MAX_DATAGRAM_SIZE) -> Tuple[bytes, Address]:
        while True:
            data, addr = self.sock.recvfrom(bufsize)
            if self.impairment.should_drop():
                continue
            self.impairment.sleep_if_needed()
            return data, addr

    def close(self) -> None:
        self.sock.close()


class StreamChannel:
    """A connected TCP socket carrying encoded messages and raw file bytes.

    Every read goes through the one buffered reader, so bytes that follow a
    message on the wire are never lost to read-ahead.
    """

    def __init__(self, sock: socket.socket):
        self.sock = sock
        self.rfile = sock.makefile("rb")

    @classmethod
    def connect(cls, host: str, port: int, timeout_ms: int = 0) -> "StreamChannel":
        timeout = timeout_ms / 1000.0 if timeout_ms > 0 else None
        return cls(socket.create_connection((host, port), timeout=timeout))

    def send(self, data: bytes) -> None:
        self.sock.sendall(data)

    def send_message(self, message: Request | Response) -> None:
        self.sock.sendall(encode(message))

    def read_exact(self, n: int) -> bytes:
        data = self.rfile.read(n)
        if len(data) != n:
            raise ConnectionClosed(f"connection closed after {len(data)} of {n} bytes")
        return data

    def at_eof(self) -> bool:
        return not self.rfile.peek(1)

    def read_request(self) -> Request:
        return read_request(self.read_exact)

    def read_response(self) -> Response:
        return read_response(self.read_exact)

    def close(self) -> None:
        self.rfile.close()
        self.sock.close()
