"""Bulk transfer over the stream transport.

After the Upload/Ok or Download/FileMetadata exchange, exactly ``size`` raw
bytes follow on the same connection with no further framing. A transfer that
fails halfway leaves the connection out of step, so callers close it.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import BinaryIO

from .constants import CHUNK_SIZE
from .errors import RemoteError, TransportError, UnexpectedResponse
from .messages import Download, Error, FileMetadata, Ok, Upload
from .net import StreamChannel
from .sandbox import join_under, upload_destination, wire_name

log = logging.getLogger(__name__)


def _receive_into(channel: StreamChannel, out: BinaryIO | None, size: int) -> None:
    remaining = size
    while remaining > 0:
        block = channel.read_exact(min(CHUNK_SIZE, remaining))
        if out is not None:
            out.write(block)
        remaining -= len(block)


def _send_from(channel: StreamChannel, f: BinaryIO, size: int) -> int:
    sent = 0
    while sent < size:
        block = f.read(min(CHUNK_SIZE, size - sent))
        if not block:
            raise TransportError(f"source ended after {sent} of {size} bytes")
        channel.send(block)
        sent += len(block)
    return sent


def serve_upload(channel: StreamChannel, cwd: Path, request: Upload) -> None:
    dest = upload_destination(cwd, request.dst_path, request.file_name)
    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
    except (OSError, ValueError) as e:
        log.debug("could not create %s: %s", dest.parent, e)

    try:
        f = open(dest, "wb")
    except (OSError, ValueError) as e:
        channel.send_message(Error(f"Cannot create file: {e}"))
        return

    try:
        with f:
            channel.send_message(Ok())
            _receive_into(channel, f, request.size)
    except (TransportError, OSError):
        dest.unlink(missing_ok=True)
        raise
    log.info("uploaded %s to %s (%d bytes)", request.file_name, dest, request.size)


def serve_download(channel: StreamChannel, cwd: Path, request: Download) -> None:
    path = join_under(cwd, request.src_path)
    try:
        f = open(path, "rb")
    except (OSError, ValueError) as e:
        channel.send_message(Error(f"Open failed: {e}"))
        return

    with f:
        size = os.fstat(f.fileno()).st_size
        name = wire_name(path.name) or "file"
        channel.send_message(FileMetadata(name=name, size=size))
        sent = _send_from(channel, f, size)
    log.info("sent file %s (%d bytes)", name, sent)


def upload_stream(channel: StreamChannel, local_path: str | os.PathLike[str], remote_dir: str = ".") -> int:
    local_path = Path(local_path)
    if not local_path.name:
        raise ValueError(f"invalid file name: {local_path}")

    with open(local_path, "rb") as f:
        size = os.fstat(f.fileno()).st_size
        channel.send_message(Upload(dst_path=remote_dir, file_name=local_path.name, size=size))
        resp = channel.read_response()
        match resp:
            case Ok():
                pass
            case Error(message=message):
                raise RemoteError(message)
            case _:
                raise UnexpectedResponse(f"unexpected response to upload: {resp!r}")
        sent = _send_from(channel, f, size)

    log.info("uploaded %s (%d bytes)", local_path.name, sent)
    return sent


def download_stream(channel: StreamChannel, remote_path: str, local_dir: str | os.PathLike[str] = ".") -> Path:
    channel.send_message(Download(src_path=remote_path))
    resp = channel.read_response()
    match resp:
        case FileMetadata(name=name, size=size):
            pass
        case Error(message=message):
            raise RemoteError(message)
        case _:
            raise UnexpectedResponse(f"unexpected response to download: {resp!r}")

    # only the last component of the server-supplied name is used
    local_path = Path(local_dir) / (Path(name).name or "file")
    try:
        local_path.parent.mkdir(parents=True, exist_ok=True)
        f = open(local_path, "wb")
    except OSError:
        # the file bytes are already on their way; consume them
        _receive_into(channel, None, size)
        raise

    try:
        with f:
            _receive_into(channel, f, size)
    except (TransportError, OSError):
        local_path.unlink(missing_ok=True)
        raise

    log.info("downloaded %s (%d bytes) -> %s", name, size, local_path)
    return local_path
