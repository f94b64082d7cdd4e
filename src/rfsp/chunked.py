"""Bulk transfer over the datagram transport.

Every chunk is its own request/response exchange. The client numbers chunks
from 0 and checks that each reply carries the id it asked about; the server
keeps the open file in the client's session between exchanges.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import BinaryIO, Callable, Iterator, Tuple

from .constants import CHUNK_SIZE
from .errors import RemoteError, SequenceError, UnexpectedResponse
from .messages import (
    ChunkAck,
    Download,
    DownloadChunk,
    Error,
    FileChunk,
    FileMetadata,
    Ok,
    Request,
    Response,
    Upload,
    UploadChunk,
)
from .sandbox import join_under, upload_destination, wire_name
from .session import DownloadState, Session, UploadState

log = logging.getLogger(__name__)

Roundtrip = Callable[[Request], Response]


# -- server side --------------------------------------------------------------


def _drop_upload(session: Session) -> None:
    try:
        session.clear_upload()
    except OSError as e:
        log.warning("closing abandoned upload failed: %s", e)


def _drop_download(session: Session) -> None:
    try:
        session.clear_download()
    except OSError as e:
        log.warning("closing abandoned download failed: %s", e)


def begin_upload(session: Session, request: Upload) -> Response:
    _drop_upload(session)
    dest = upload_destination(session.cwd, request.dst_path, request.file_name)
    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
    except (OSError, ValueError) as e:
        log.debug("could not create %s: %s", dest.parent, e)

    try:
        f = open(dest, "wb")
    except (OSError, ValueError) as e:
        return Error(f"Cannot create file: {e}")

    session.upload = UploadState(file=f, path=dest, expected_size=request.size)
    log.info("starting upload: %s (%d bytes)", dest, request.size)
    return Ok()


def accept_chunk(session: Session, request: UploadChunk) -> Response:
    upload = session.upload
    if upload is None:
        return Error("No active upload session")

    try:
        upload.file.write(request.data)
        upload.received_bytes += len(request.data)
        if request.is_last:
            session.clear_upload()
    except OSError as e:
        log.error("write error on %s: %s", upload.path, e)
        _drop_upload(session)
        return Error(f"Write error: {e}")

    log.debug(
        "received chunk %d (%d bytes, total %d/%d)",
        request.chunk_id,
        len(request.data),
        upload.received_bytes,
        upload.expected_size,
    )
    if request.is_last:
        if upload.received_bytes != upload.expected_size:
            log.warning(
                "upload %s finished with %d bytes, %d declared",
                upload.path,
                upload.received_bytes,
                upload.expected_size,
            )
        log.info("upload complete: %s (%d bytes)", upload.path, upload.received_bytes)
    return ChunkAck(chunk_id=request.chunk_id)


def begin_download(session: Session, request: Download) -> Response:
    path = join_under(session.cwd, request.src_path)
    try:
        f = open(path, "rb")
    except (OSError, ValueError) as e:
        return Error(f"Open failed: {e}")

    try:
        size = os.fstat(f.fileno()).st_size
    except OSError as e:
        f.close()
        return Error(f"Metadata error: {e}")

    _drop_download(session)
    name = wire_name(path.name) or "file"
    session.download = DownloadState(file=f, file_name=name, file_size=size)
    log.info("starting download: %s (%d bytes)", name, size)
    return FileMetadata(name=name, size=size)


def next_chunk(session: Session, request: DownloadChunk, chunk_size: int = CHUNK_SIZE) -> Response:
    # Reads continue from the current file position; the requested id is only echoed back.
    download = session.download
    if download is None:
        return Error("No active download session")

    try:
        data = download.file.read(chunk_size)
    except OSError as e:
        log.error("read error on %s: %s", download.file_name, e)
        _drop_download(session)
        return Error(f"Read error: {e}")

    is_last = len(data) < chunk_size
    download.sent_chunks += 1
    log.debug("sending chunk %d (%d bytes, last: %s)", request.chunk_id, len(data), is_last)
    if is_last:
        _drop_download(session)
        log.info("download complete: %s (%d chunks)", download.file_name, download.sent_chunks)
    return FileChunk(chunk_id=request.chunk_id, data=data, is_last=is_last)


# -- client side --------------------------------------------------------------


def iter_chunks(f: BinaryIO, chunk_size: int = CHUNK_SIZE) -> Iterator[Tuple[int, bytes, bool]]:
    """Yield ``(chunk_id, data, is_last)`` for the rest of ``f``.

    One block of look-ahead marks the final chunk even when the size is an
    exact multiple of ``chunk_size``. An empty file yields a single empty
    final chunk so the server still closes its side.
    """
    chunk_id = 0
    current = f.read(chunk_size)
    while True:
        following = f.read(chunk_size) if len(current) == chunk_size else b""
        is_last = not following
        yield chunk_id, current, is_last
        if is_last:
            return
        current = following
        chunk_id += 1


def upload_chunks(
    roundtrip: Roundtrip,
    local_path: str | os.PathLike[str],
    remote_dir: str = ".",
    chunk_size: int = CHUNK_SIZE,
) -> int:
    local_path = Path(local_path)
    if not local_path.name:
        raise ValueError(f"invalid file name: {local_path}")

    with open(local_path, "rb") as f:
        size = os.fstat(f.fileno()).st_size
        resp = roundtrip(Upload(dst_path=remote_dir, file_name=local_path.name, size=size))
        match resp:
            case Ok():
                pass
            case Error(message=message):
                raise RemoteError(message)
            case _:
                raise UnexpectedResponse(f"unexpected response to upload: {resp!r}")

        sent = 0
        for chunk_id, data, is_last in iter_chunks(f, chunk_size):
            resp = roundtrip(UploadChunk(chunk_id=chunk_id, data=data, is_last=is_last))
            match resp:
                case ChunkAck(chunk_id=ack_id):
                    if ack_id != chunk_id:
                        raise SequenceError(f"Chunk ID mismatch: expected {chunk_id}, got {ack_id}")
                case Error(message=message):
                    raise RemoteError(message)
                case _:
                    raise UnexpectedResponse(f"unexpected response to chunk {chunk_id}: {resp!r}")
            sent += len(data)
            log.debug("uploading %s: %d/%d bytes", local_path.name, sent, size)

    log.info("upload complete: %s (%d bytes)", local_path.name, sent)
    return sent


def download_chunks(
    roundtrip: Roundtrip,
    remote_path: str,
    local_dir: str | os.PathLike[str] = ".",
) -> Path:
    resp = roundtrip(Download(src_path=remote_path))
    match resp:
        case FileMetadata(name=name, size=size):
            pass
        case Error(message=message):
            raise RemoteError(message)
        case _:
            raise UnexpectedResponse(f"unexpected response to download: {resp!r}")

    # only the last component of the server-supplied name is used
    local_path = Path(local_dir) / (Path(name).name or "file")
    local_path.parent.mkdir(parents=True, exist_ok=True)

    received = 0
    chunk_id = 0
    try:
        with open(local_path, "wb") as f:
            while True:
                resp = roundtrip(DownloadChunk(chunk_id=chunk_id))
                match resp:
                    case FileChunk(chunk_id=got_id, data=data, is_last=is_last):
                        if got_id != chunk_id:
                            raise SequenceError(f"Chunk ID mismatch: expected {chunk_id}, got {got_id}")
                    case Error(message=message):
                        raise RemoteError(message)
                    case _:
                        raise UnexpectedResponse(f"unexpected response to chunk {chunk_id}: {resp!r}")
                f.write(data)
                received += len(data)
                log.debug("downloading %s: %d/%d bytes", name, received, size)
                if is_last:
                    break
                chunk_id += 1
    except Exception:
        local_path.unlink(missing_ok=True)
        raise

    log.info("download complete: %s (%d bytes) -> %s", name, received, local_path)
    return local_path
