from __future__ import annotations

import io
import os
import math

import pytest

from rfsp.chunked import download_chunks, iter_chunks, upload_chunks
from rfsp.constants import CHUNK_SIZE
from rfsp.errors import RemoteError, SequenceError
from rfsp.messages import (
    Cd,
    ChunkAck,
    Dir,
    DirEntry,
    DirList,
    Download,
    DownloadChunk,
    Error,
    FileChunk,
    FileMetadata,
    Mkdir,
    Ok,
    Upload,
    UploadChunk,
    decode_response,
    encode,
)

ADDR = ("127.0.0.1", 40000)


@pytest.fixture
def send(dgram):
    def roundtrip(request, addr=ADDR):
        return decode_response(dgram.handle_datagram(encode(request), addr))

    return roundtrip


@pytest.mark.parametrize("size", [1, 8191, 8192, 8193, 3 * 8192, 100_000])
def test_iter_chunks_plan(size):
    chunks = list(iter_chunks(io.BytesIO(b"x" * size)))
    assert len(chunks) == math.ceil(size / CHUNK_SIZE)
    assert [c[0] for c in chunks] == list(range(len(chunks)))
    assert [c[2] for c in chunks] == [False] * (len(chunks) - 1) + [True]
    assert b"".join(c[1] for c in chunks) == b"x" * size
    assert all(len(c[1]) == CHUNK_SIZE for c in chunks[:-1])


def test_iter_chunks_empty_file():
    assert list(iter_chunks(io.BytesIO(b""))) == [(0, b"", True)]


@pytest.mark.parametrize("size", [0, 1, 8191, 8192, 8193, 1 << 20])
def test_upload_then_download(send, root, make_file, tmp_path, size):
    src, data = make_file("blob.bin", size)
    assert upload_chunks(send, src, "incoming") == size
    assert (root / "incoming" / "blob.bin").read_bytes() == data

    out = download_chunks(send, "incoming/blob.bin", tmp_path / "back")
    assert out == tmp_path / "back" / "blob.bin"
    assert out.read_bytes() == data


def test_upload_sends_one_exchange_per_chunk(send, make_file):
    src, _ = make_file("f.bin", 2 * CHUNK_SIZE + 5)
    seen = []

    def recording(request):
        seen.append(request)
        return send(request)

    upload_chunks(recording, src)
    assert isinstance(seen[0], Upload) and seen[0].size == 2 * CHUNK_SIZE + 5
    chunks = seen[1:]
    assert [c.chunk_id for c in chunks] == [0, 1, 2]
    assert [c.is_last for c in chunks] == [False, False, True]


def test_upload_chunk_without_session(send):
    resp = send(UploadChunk(chunk_id=0, data=b"x", is_last=True))
    assert resp == Error(message="No active upload session")


def test_download_chunk_without_session(send):
    assert send(DownloadChunk(chunk_id=0)) == Error(message="No active download session")


def test_download_chunks_follow_file_position_not_id(send, root):
    (root / "f.bin").write_bytes(b"a" * CHUNK_SIZE + b"b" * 10)
    assert send(Download(src_path="f.bin")) == FileMetadata(name="f.bin", size=CHUNK_SIZE + 10)
    first = send(DownloadChunk(chunk_id=5))
    assert first == FileChunk(chunk_id=5, data=b"a" * CHUNK_SIZE, is_last=False)
    second = send(DownloadChunk(chunk_id=5))
    assert second == FileChunk(chunk_id=5, data=b"b" * 10, is_last=True)
    assert send(DownloadChunk(chunk_id=6)) == Error(message="No active download session")


def test_exact_multiple_download_ends_with_empty_chunk(send, root):
    (root / "f.bin").write_bytes(b"z" * CHUNK_SIZE)
    send(Download(src_path="f.bin"))
    assert send(DownloadChunk(chunk_id=0)).is_last is False
    assert send(DownloadChunk(chunk_id=1)) == FileChunk(chunk_id=1, data=b"", is_last=True)


def test_download_missing_file(send):
    resp = send(Download(src_path="missing.bin"))
    assert isinstance(resp, Error) and resp.message.startswith("Open failed")


def test_upload_into_unwritable_destination(send, root):
    (root / "taken").write_text("a file, not a dir")
    resp = send(Upload(dst_path="taken", file_name="f.bin", size=1))
    assert isinstance(resp, Error) and resp.message.startswith("Cannot create file")


def test_ack_id_mismatch_aborts_upload(send, make_file):
    src, _ = make_file("f.bin", CHUNK_SIZE + 1)

    def skewed(request):
        resp = send(request)
        if isinstance(resp, ChunkAck):
            return ChunkAck(chunk_id=resp.chunk_id + 1)
        return resp

    with pytest.raises(SequenceError, match="expected 0, got 1"):
        upload_chunks(skewed, src)


def test_chunk_id_mismatch_aborts_download(send, root, tmp_path):
    (root / "f.bin").write_bytes(b"q" * (CHUNK_SIZE + 1))

    def skewed(request):
        resp = send(request)
        if isinstance(resp, FileChunk):
            return FileChunk(chunk_id=resp.chunk_id + 1, data=resp.data, is_last=resp.is_last)
        return resp

    with pytest.raises(SequenceError):
        download_chunks(skewed, "f.bin", tmp_path / "back")
    assert not (tmp_path / "back" / "f.bin").exists()


def test_download_error_surfaces_remote_message(send, tmp_path):
    with pytest.raises(RemoteError, match="Open failed"):
        download_chunks(send, "missing.bin", tmp_path)


def test_sessions_are_per_client(send, root):
    (root / "a").mkdir()
    other = ("127.0.0.1", 40001)
    assert send(Cd(path="a")) == Ok()
    assert send(Mkdir(name="only-in-a")) == Ok()
    listing = send(Dir(), addr=other)
    assert isinstance(listing, DirList)
    assert [e.name for e in listing.entries] == ["a"]


def test_idle_session_is_evicted_mid_transfer(send, dgram, clock, root):
    (root / "sub").mkdir()
    (root / "f.bin").write_bytes(b"d" * (3 * CHUNK_SIZE))
    assert send(Cd(path="sub")) == Ok()
    assert send(Download(src_path="../f.bin")).size == 3 * CHUNK_SIZE
    assert send(DownloadChunk(chunk_id=0)).chunk_id == 0

    clock.advance(301)
    assert send(DownloadChunk(chunk_id=1)) == Error(message="No active download session")
    # the replacement session starts over at root
    assert dgram.store.get_or_create(ADDR).cwd == root


def test_active_session_survives_sweep(send, dgram, clock, root):
    (root / "f.bin").write_bytes(b"d" * (2 * CHUNK_SIZE))
    send(Download(src_path="f.bin"))
    clock.advance(200)
    assert send(DownloadChunk(chunk_id=0)).is_last is False
    clock.advance(200)
    assert isinstance(send(DownloadChunk(chunk_id=1)), FileChunk)


def test_undecodable_datagram_gets_error_without_session(dgram):
    resp = decode_response(dgram.handle_datagram(b"\xff\x00", ADDR))
    assert isinstance(resp, Error) and resp.message.startswith("Invalid request")
    assert ADDR not in dgram.store


def test_oversize_response_is_replaced(send, root):
    for i in range(300):
        (root / (f"{i:03d}" + "n" * 240)).mkdir()
    assert send(Dir()) == Error(message="Response too large for UDP")


def test_dir_with_undecodable_name_still_lists(send, undecodable_entry):
    assert send(Dir()) == DirList(entries=(DirEntry(name="bad�.txt", is_dir=False),))


@pytest.mark.skipif(not os.path.exists("/dev/full"), reason="needs /dev/full")
def test_replacing_an_upload_whose_close_fails(send, dgram, root):
    assert send(Upload(dst_path=".", file_name="/dev/full", size=10)) == Ok()
    assert send(UploadChunk(chunk_id=0, data=b"x" * 10, is_last=False)) == ChunkAck(chunk_id=0)

    # closing the first upload flushes into a full device
    assert send(Upload(dst_path=".", file_name="again.bin", size=1)) == Ok()
    assert send(UploadChunk(chunk_id=0, data=b"y", is_last=True)) == ChunkAck(chunk_id=0)
    assert (root / "again.bin").read_bytes() == b"y"


def test_handler_crash_becomes_error_reply(send, monkeypatch):
    def boom(*args):
        raise RuntimeError("boom")

    monkeypatch.setattr("rfsp.server.dispatch_datagram", boom)
    assert send(Dir()) == Error(message="Internal error: boom")
    monkeypatch.undo()
    assert isinstance(send(Dir()), DirList)
