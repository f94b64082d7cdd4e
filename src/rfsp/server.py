from __future__ import annotations

import logging
import socket
import threading
from pathlib import Path
from typing import assert_never

from .chunked import accept_chunk, begin_download, begin_upload, next_chunk
from .constants import MAX_PAYLOAD_SIZE, SESSION_IDLE_TIMEOUT_S
from .errors import DecodeError, TransportError
from .fsops import handle_fs_request
from .messages import (
    Cd,
    CdUp,
    Copy,
    Dir,
    Download,
    DownloadChunk,
    Error,
    Mkdir,
    Request,
    Response,
    Upload,
    UploadChunk,
    decode_request,
    encode,
)
from .net import Address, StreamChannel, UdpEndpoint
from .sandbox import resolve_root
from .session import Session, SessionStore
from .streaming import serve_download, serve_upload

log = logging.getLogger(__name__)


def dispatch_datagram(session: Session, root: Path, request: Request) -> Response:
    match request:
        case Upload():
            return begin_upload(session, request)
        case UploadChunk():
            return accept_chunk(session, request)
        case Download():
            return begin_download(session, request)
        case DownloadChunk():
            return next_chunk(session, request)
        case Dir() | CdUp() | Cd() | Mkdir() | Copy():
            session.cwd, response = handle_fs_request(session.cwd, root, request)
            return response
        case _:
            assert_never(request)


def encode_for_datagram(response: Response) -> bytes:
    """Encode ``response``, substituting an Error when it cannot be sent as one datagram."""
    try:
        data = encode(response)
    except ValueError as e:
        log.error("encode error: %s", e)
        return encode(Error(f"Encode error: {e}"))
    if len(data) > MAX_PAYLOAD_SIZE:
        log.warning("%s of %d bytes is too large for one datagram", type(response).__name__, len(data))
        return encode(Error("Response too large for UDP"))
    return data


class DatagramServer:
    """Serves any number of datagram clients from one socket, one datagram at a time."""

    def __init__(self, endpoint: UdpEndpoint, root: Path, store: SessionStore | None = None):
        self.endpoint = endpoint
        self.root = root
        self.store = store if store is not None else SessionStore(root)
        self._stop = threading.Event()

    @classmethod
    def bind(
        cls,
        host: str,
        port: int,
        root: str | Path,
        idle_timeout: float = SESSION_IDLE_TIMEOUT_S,
        poll_ms: int = 500,
    ) -> "DatagramServer":
        root = resolve_root(root)
        endpoint = UdpEndpoint.listening(host, port, timeout_ms=poll_ms)
        return cls(endpoint, root, SessionStore(root, idle_timeout=idle_timeout))

    @property
    def address(self) -> Address:
        return self.endpoint.address

    def handle_datagram(self, raw: bytes, addr: Address) -> bytes:
        self.store.sweep()

        try:
            request = decode_request(raw)
        except DecodeError as e:
            log.warning("decode error from %s: %s", addr, e)
            return encode(Error(f"Invalid request: {e}"))

        session = self.store.get_or_create(addr)
        self.store.touch(session)
        log.debug("%s from %s", type(request).__name__, addr)
        try:
            response = dispatch_datagram(session, self.root, request)
        except Exception as e:
            log.exception("%s from %s failed", type(request).__name__, addr)
            response = Error(f"Internal error: {e}")
        return encode_for_datagram(response)

    def serve_once(self) -> bool:
        try:
            raw, addr = self.endpoint.recvfrom()
        except TimeoutError:
            return False
        except OSError as e:
            if not self._stop.is_set():
                log.error("receive error: %s", e)
            return False

        log.debug("received %d bytes from %s", len(raw), addr)
        reply = self.handle_datagram(raw, addr)
        try:
            self.endpoint.sendto(reply, addr)
        except OSError as e:
            log.error("send error to %s: %s", addr, e)
        return True

    def serve_forever(self) -> None:
        host, port = self.address
        log.info("UDP server listening on %s:%d, root %s", host, port, self.root)
        while not self._stop.is_set():
            self.serve_once()

    def shutdown(self) -> None:
        self._stop.set()

    def close(self) -> None:
        self.store.close()
        self.endpoint.close()


class StreamServer:
    """Serves one stream connection at a time.

    The connection's current directory lives in ``handle_connection`` and is
    gone once the client disconnects.
    """

    def __init__(self, host: str, port: int, root: str | Path):
        self.root = resolve_root(root)
        self.sock = socket.create_server((host, port), backlog=1)

    @property
    def address(self) -> Address:
        return self.sock.getsockname()

    def serve_one(self) -> None:
        conn, peer = self.sock.accept()
        log.info("client connected: %s:%d", peer[0], peer[1])
        channel = StreamChannel(conn)
        try:
            self.handle_connection(channel)
        except (TransportError, OSError) as e:
            log.error("client handler error: %s", e)
        except Exception:
            log.exception("client handler failed")
        finally:
            channel.close()
            log.info("client disconnected: %s:%d", peer[0], peer[1])

    def serve_forever(self) -> None:
        host, port = self.address
        log.info("TCP server listening on %s:%d, root %s", host, port, self.root)
        while True:
            self.serve_one()

    def handle_connection(self, channel: StreamChannel) -> None:
        cwd = self.root
        while not channel.at_eof():
            try:
                request = channel.read_request()
            except DecodeError as e:
                # no way to find the next message boundary; answer and hang up
                log.warning("decode error: %s", e)
                channel.send_message(Error(f"Invalid request: {e}"))
                return

            log.debug("%s in %s", type(request).__name__, cwd)
            match request:
                case Upload():
                    serve_upload(channel, cwd, request)
                case Download():
                    serve_download(channel, cwd, request)
                case UploadChunk() | DownloadChunk():
                    channel.send_message(
                        Error(f"{type(request).__name__} is only valid on the datagram transport")
                    )
                case Dir() | CdUp() | Cd() | Mkdir() | Copy():
                    cwd, response = handle_fs_request(cwd, self.root, request)
                    channel.send_message(response)
                case _:
                    assert_never(request)

    def close(self) -> None:
        self.sock.close()
