from __future__ import annotations

import logging
import os
import socket
from abc import ABC, abstractmethod
from pathlib import Path

from .chunked import download_chunks, upload_chunks
from .constants import DEFAULT_TIMEOUT_MS, MAX_DATAGRAM_SIZE
from .errors import DecodeError, RemoteError, RfspError, TransportError, UnexpectedResponse
from .messages import (
    Cd,
    CdUp,
    Copy,
    CopyResult,
    Dir,
    DirEntry,
    DirList,
    Error,
    Mkdir,
    Ok,
    Request,
    Response,
    decode_response,
    encode,
)
from .net import Impairment, StreamChannel, UdpEndpoint
from .streaming import download_stream, upload_stream

log = logging.getLogger(__name__)


def _failure(resp: Response, what: str) -> RfspError:
    if isinstance(resp, Error):
        return RemoteError(resp.message)
    return UnexpectedResponse(f"unexpected response to {what}: {resp!r}")


class RemoteShell(ABC):
    """Operations on a remote root, independent of the transport.

    Subclasses supply the transport hooks. Server-side failures raise
    RemoteError with the server's message; replies of the wrong kind raise
    UnexpectedResponse.
    """

    @abstractmethod
    def _roundtrip(self, request: Request) -> Response: ...

    @abstractmethod
    def upload(self, local_path: str | os.PathLike[str], remote_dir: str = ".") -> int: ...

    @abstractmethod
    def download(self, remote_path: str, local_dir: str | os.PathLike[str] = ".") -> Path: ...

    @abstractmethod
    def close(self) -> None: ...

    def list(self) -> list[DirEntry]:
        resp = self._roundtrip(Dir())
        if isinstance(resp, DirList):
            return list(resp.entries)
        raise _failure(resp, "dir")

    def change_dir(self, path: str) -> None:
        resp = self._roundtrip(Cd(path=path))
        if not isinstance(resp, Ok):
            raise _failure(resp, "cd")

    def change_dir_up(self) -> None:
        resp = self._roundtrip(CdUp())
        if not isinstance(resp, Ok):
            raise _failure(resp, "cd ..")

    def make_dir(self, name: str) -> None:
        resp = self._roundtrip(Mkdir(name=name))
        if not isinstance(resp, Ok):
            raise _failure(resp, "mkdir")

    def copy(self, src: str, dst: str) -> int:
        resp = self._roundtrip(Copy(src=src, dst=dst))
        if isinstance(resp, CopyResult):
            return resp.bytes_copied
        raise _failure(resp, "copy")

    def __enter__(self):
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class StreamClient(RemoteShell):
    """Client for the stream transport; transfers stream raw bytes.

    A transport or decode failure leaves the byte stream out of step, so the
    connection is closed and the client cannot be used further.
    """

    def __init__(self, host: str, port: int, timeout_ms: int = 0):
        self.channel = StreamChannel.connect(host, port, timeout_ms=timeout_ms)
        self.closed = False

    def _check_open(self) -> None:
        if self.closed:
            raise TransportError("connection is closed")

    def _roundtrip(self, request: Request) -> Response:
        self._check_open()
        try:
            self.channel.send_message(request)
            return self.channel.read_response()
        except (TransportError, DecodeError):
            self.close()
            raise
        except OSError as e:
            self.close()
            raise TransportError(str(e)) from e

    def upload(self, local_path: str | os.PathLike[str], remote_dir: str = ".") -> int:
        self._check_open()
        try:
            return upload_stream(self.channel, local_path, remote_dir)
        except (TransportError, DecodeError):
            self.close()
            raise
        except (ConnectionError, TimeoutError) as e:
            self.close()
            raise TransportError(str(e)) from e

    def download(self, remote_path: str, local_dir: str | os.PathLike[str] = ".") -> Path:
        self._check_open()
        try:
            return download_stream(self.channel, remote_path, local_dir)
        except (TransportError, DecodeError):
            self.close()
            raise
        except (ConnectionError, TimeoutError) as e:
            self.close()
            raise TransportError(str(e)) from e

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.channel.close()


class DatagramClient(RemoteShell):
    """Client for the datagram transport; transfers go chunk by chunk.

    Each request waits ``timeout_ms`` for its reply and raises TransportError
    when none arrives. Nothing is retried.
    """

    def __init__(
        self,
        host: str,
        port: int,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        impairment: Impairment | None = None,
    ):
        self.server = (socket.gethostbyname(host), port)
        self.timeout_ms = timeout_ms
        self.endpoint = UdpEndpoint.sending(timeout_ms=timeout_ms, impairment=impairment)

    def _roundtrip(self, request: Request) -> Response:
        data = encode(request)
        if len(data) > MAX_DATAGRAM_SIZE:
            raise ValueError(f"request of {len(data)} bytes does not fit in a datagram")
        self.endpoint.sendto(data, self.server)

        while True:
            try:
                raw, addr = self.endpoint.recvfrom()
            except TimeoutError as e:
                raise TransportError(
                    f"no response to {type(request).__name__} within {self.timeout_ms} ms"
                ) from e
            if addr != self.server:
                log.debug("ignoring datagram from %s", addr)
                continue
            return decode_response(raw)

    def upload(self, local_path: str | os.PathLike[str], remote_dir: str = ".") -> int:
        return upload_chunks(self._roundtrip, local_path, remote_dir)

    def download(self, remote_path: str, local_dir: str | os.PathLike[str] = ".") -> Path:
        return download_chunks(self._roundtrip, remote_path, local_dir)

    def close(self) -> None:
        self.endpoint.close()
