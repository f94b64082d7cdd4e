from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path
from typing import Tuple, assert_never

from .errors import SandboxError
from .messages import (
    Cd,
    CdUp,
    Copy,
    CopyResult,
    Dir,
    DirEntry,
    DirList,
    Download,
    DownloadChunk,
    Error,
    Mkdir,
    Ok,
    Request,
    Response,
    Upload,
    UploadChunk,
)
from .sandbox import join_under, resolve_down, resolve_up, wire_name

log = logging.getLogger(__name__)


def list_dir(path: Path) -> Tuple[DirEntry, ...]:
    entries = []
    with os.scandir(path) as it:
        for e in it:
            try:
                is_dir = e.is_dir()
            except OSError:
                is_dir = False
            entries.append(DirEntry(name=wire_name(e.name), is_dir=is_dir))
    return tuple(entries)


def handle_fs_request(cwd: Path, root: Path, request: Request) -> Tuple[Path, Response]:
    """Run a navigation or filesystem request.

    Returns the (possibly new) current directory with the response. The
    directory only changes on success.
    """
    match request:
        case Dir():
            try:
                return cwd, DirList(entries=list_dir(cwd))
            except OSError as e:
                return cwd, Error(f"read_dir failed: {e}")

        case CdUp():
            try:
                return resolve_up(root, cwd), Ok()
            except SandboxError as e:
                return cwd, Error(str(e))

        case Cd(path=path):
            try:
                return resolve_down(root, cwd, path), Ok()
            except SandboxError as e:
                return cwd, Error(str(e))
            except (OSError, RuntimeError, ValueError) as e:
                log.debug("cd %r failed: %s", path, e)
                return cwd, Error("Invalid path or not a directory")

        case Mkdir(name=name):
            try:
                join_under(cwd, name).mkdir()
            except (OSError, ValueError) as e:
                return cwd, Error(f"mkdir failed: {e}")
            return cwd, Ok()

        case Copy(src=src, dst=dst):
            src_p = join_under(cwd, src)
            dst_p = join_under(cwd, dst)
            try:
                shutil.copyfile(src_p, dst_p)
                copied = dst_p.stat().st_size
            except (OSError, ValueError) as e:
                return cwd, Error(f"copy failed: {e}")
            return cwd, CopyResult(bytes_copied=copied)

        case Upload() | Download() | UploadChunk() | DownloadChunk():
            return cwd, Error(f"{type(request).__name__} is not a filesystem request")

        case _:
            assert_never(request)
