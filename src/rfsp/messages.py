from __future__ import annotations

import enum
import struct
from dataclasses import dataclass
from typing import Callable, Tuple, Union, assert_never

from .constants import MAX_FIELD_LEN, U8, U32, U64
from .errors import DecodeError

# Every message is a one-byte tag followed by its fields in declaration order:
# integers big-endian, bool as one byte, str/bytes as a u32 length + payload,
# lists as a u32 count + items. The encoding is self-delimiting, so messages
# can be read back-to-back off a byte stream without extra framing.


class RequestKind(enum.IntEnum):
    DIR = 0
    CD_UP = 1
    CD = 2
    MKDIR = 3
    COPY = 4
    UPLOAD = 5
    DOWNLOAD = 6
    UPLOAD_CHUNK = 7
    DOWNLOAD_CHUNK = 8


class ResponseKind(enum.IntEnum):
    OK = 0
    DIR_LIST = 1
    COPY_RESULT = 2
    FILE_METADATA = 3
    ERROR = 4
    CHUNK_ACK = 5
    FILE_CHUNK = 6


@dataclass(frozen=True, slots=True)
class Dir:
    pass


@dataclass(frozen=True, slots=True)
class CdUp:
    pass


@dataclass(frozen=True, slots=True)
class Cd:
    path: str


@dataclass(frozen=True, slots=True)
class Mkdir:
    name: str


@dataclass(frozen=True, slots=True)
class Copy:
    src: str
    dst: str


@dataclass(frozen=True, slots=True)
class Upload:
    """Start an upload; the file lands in ``dst_path/file_name``."""

    dst_path: str
    file_name: str
    size: int


@dataclass(frozen=True, slots=True)
class Download:
    src_path: str


@dataclass(frozen=True, slots=True)
class UploadChunk:
    chunk_id: int
    data: bytes
    is_last: bool


@dataclass(frozen=True, slots=True)
class DownloadChunk:
    chunk_id: int


Request = Union[Dir, CdUp, Cd, Mkdir, Copy, Upload, Download, UploadChunk, DownloadChunk]


@dataclass(frozen=True, slots=True)
class DirEntry:
    name: str
    is_dir: bool


@dataclass(frozen=True, slots=True)
class Ok:
    pass


@dataclass(frozen=True, slots=True)
class DirList:
    entries: Tuple[DirEntry, ...] = ()


@dataclass(frozen=True, slots=True)
class CopyResult:
    bytes_copied: int


@dataclass(frozen=True, slots=True)
class FileMetadata:
    name: str
    size: int


@dataclass(frozen=True, slots=True)
class Error:
    message: str


@dataclass(frozen=True, slots=True)
class ChunkAck:
    chunk_id: int


@dataclass(frozen=True, slots=True)
class FileChunk:
    chunk_id: int
    data: bytes
    is_last: bool


Response = Union[Ok, DirList, CopyResult, FileMetadata, Error, ChunkAck, FileChunk]

ReadExact = Callable[[int], bytes]


class _Writer:
    __slots__ = ("buf",)

    def __init__(self, tag: int):
        self.buf = bytearray(U8.pack(tag))

    def _pack(self, st: struct.Struct, value: int) -> None:
        try:
            self.buf += st.pack(value)
        except struct.error as e:
            raise ValueError(f"{value!r} does not fit {st.format}") from e

    def u32(self, value: int) -> None:
        self._pack(U32, value)

    def u64(self, value: int) -> None:
        self._pack(U64, value)

    def boolean(self, value: bool) -> None:
        self.buf += U8.pack(1 if value else 0)

    def blob(self, value: bytes) -> None:
        if len(value) > MAX_FIELD_LEN:
            raise ValueError(f"field too large: {len(value)} bytes")
        self.u32(len(value))
        self.buf += value

    def string(self, value: str) -> None:
        self.blob(value.encode("utf-8"))


class _Reader:
    __slots__ = ("_read",)

    def __init__(self, read_exact: ReadExact):
        self._read = read_exact

    def u8(self) -> int:
        return U8.unpack(self._read(1))[0]

    def u32(self) -> int:
        return U32.unpack(self._read(4))[0]

    def u64(self) -> int:
        return U64.unpack(self._read(8))[0]

    def boolean(self) -> bool:
        value = self.u8()
        if value > 1:
            raise DecodeError(f"invalid bool byte {value}")
        return value == 1

    def blob(self) -> bytes:
        n = self.u32()
        if n > MAX_FIELD_LEN:
            raise DecodeError(f"length prefix too large: {n}")
        return self._read(n) if n else b""

    def string(self) -> str:
        try:
            return self.blob().decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecodeError(f"invalid utf-8 in string field: {e}") from e


class _Cursor:
    """read_exact over an in-memory buffer."""

    __slots__ = ("raw", "pos")

    def __init__(self, raw: bytes):
        self.raw = raw
        self.pos = 0

    def read(self, n: int) -> bytes:
        end = self.pos + n
        if end > len(self.raw):
            raise DecodeError("truncated message")
        out = self.raw[self.pos : end]
        self.pos = end
        return bytes(out)

    def finish(self) -> None:
        if self.pos != len(self.raw):
            raise DecodeError(f"{len(self.raw) - self.pos} trailing bytes after message")


def encode(message: Request | Response) -> bytes:
    match message:
        case Dir():
            w = _Writer(RequestKind.DIR)
        case CdUp():
            w = _Writer(RequestKind.CD_UP)
        case Cd(path=path):
            w = _Writer(RequestKind.CD)
            w.string(path)
        case Mkdir(name=name):
            w = _Writer(RequestKind.MKDIR)
            w.string(name)
        case Copy(src=src, dst=dst):
            w = _Writer(RequestKind.COPY)
            w.string(src)
            w.string(dst)
        case Upload(dst_path=dst_path, file_name=file_name, size=size):
            w = _Writer(RequestKind.UPLOAD)
            w.string(dst_path)
            w.string(file_name)
            w.u64(size)
        case Download(src_path=src_path):
            w = _Writer(RequestKind.DOWNLOAD)
            w.string(src_path)
        case UploadChunk(chunk_id=chunk_id, data=data, is_last=is_last):
            w = _Writer(RequestKind.UPLOAD_CHUNK)
            w.u32(chunk_id)
            w.blob(data)
            w.boolean(is_last)
        case DownloadChunk(chunk_id=chunk_id):
            w = _Writer(RequestKind.DOWNLOAD_CHUNK)
            w.u32(chunk_id)
        case Ok():
            w = _Writer(ResponseKind.OK)
        case DirList(entries=entries):
            w = _Writer(ResponseKind.DIR_LIST)
            w.u32(len(entries))
            for entry in entries:
                w.string(entry.name)
                w.boolean(entry.is_dir)
        case CopyResult(bytes_copied=bytes_copied):
            w = _Writer(ResponseKind.COPY_RESULT)
            w.u64(bytes_copied)
        case FileMetadata(name=name, size=size):
            w = _Writer(ResponseKind.FILE_METADATA)
            w.string(name)
            w.u64(size)
        case Error(message=text):
            w = _Writer(ResponseKind.ERROR)
            w.string(text)
        case ChunkAck(chunk_id=chunk_id):
            w = _Writer(ResponseKind.CHUNK_ACK)
            w.u32(chunk_id)
        case FileChunk(chunk_id=chunk_id, data=data, is_last=is_last):
            w = _Writer(ResponseKind.FILE_CHUNK)
            w.u32(chunk_id)
            w.blob(data)
            w.boolean(is_last)
        case _:
            assert_never(message)
    return bytes(w.buf)


def _read_request(r: _Reader) -> Request:
    tag = r.u8()
    try:
        kind = RequestKind(tag)
    except ValueError:
        raise DecodeError(f"unknown request tag {tag}") from None

    match kind:
        case RequestKind.DIR:
            return Dir()
        case RequestKind.CD_UP:
            return CdUp()
        case RequestKind.CD:
            return Cd(path=r.string())
        case RequestKind.MKDIR:
            return Mkdir(name=r.string())
        case RequestKind.COPY:
            src = r.string()
            return Copy(src=src, dst=r.string())
        case RequestKind.UPLOAD:
            dst_path = r.string()
            file_name = r.string()
            return Upload(dst_path=dst_path, file_name=file_name, size=r.u64())
        case RequestKind.DOWNLOAD:
            return Download(src_path=r.string())
        case RequestKind.UPLOAD_CHUNK:
            chunk_id = r.u32()
            data = r.blob()
            return UploadChunk(chunk_id=chunk_id, data=data, is_last=r.boolean())
        case RequestKind.DOWNLOAD_CHUNK:
            return DownloadChunk(chunk_id=r.u32())
        case _:
            assert_never(kind)


def _read_response(r: _Reader) -> Response:
    tag = r.u8()
    try:
        kind = ResponseKind(tag)
    except ValueError:
        raise DecodeError(f"unknown response tag {tag}") from None

    match kind:
        case ResponseKind.OK:
            return Ok()
        case ResponseKind.DIR_LIST:
            count = r.u32()
            if count > MAX_FIELD_LEN:
                raise DecodeError(f"entry count too large: {count}")
            entries = []
            for _ in range(count):
                name = r.string()
                entries.append(DirEntry(name=name, is_dir=r.boolean()))
            return DirList(entries=tuple(entries))
        case ResponseKind.COPY_RESULT:
            return CopyResult(bytes_copied=r.u64())
        case ResponseKind.FILE_METADATA:
            name = r.string()
            return FileMetadata(name=name, size=r.u64())
        case ResponseKind.ERROR:
            return Error(message=r.string())
        case ResponseKind.CHUNK_ACK:
            return ChunkAck(chunk_id=r.u32())
        case ResponseKind.FILE_CHUNK:
            chunk_id = r.u32()
            data = r.blob()
            return FileChunk(chunk_id=chunk_id, data=data, is_last=r.boolean())
        case _:
            assert_never(kind)


def decode_request(raw: bytes) -> Request:
    cur = _Cursor(raw)
    req = _read_request(_Reader(cur.read))
    cur.finish()
    return req


def decode_response(raw: bytes) -> Response:
    cur = _Cursor(raw)
    resp = _read_response(_Reader(cur.read))
    cur.finish()
    return resp


def read_request(read_exact: ReadExact) -> Request:
    return _read_request(_Reader(read_exact))


def read_response(read_exact: ReadExact) -> Response:
    return _read_response(_Reader(read_exact))
