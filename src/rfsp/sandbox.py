"""Path containment under the served root.

Only ``cd`` and ``cd ..`` are checked against the root. ``mkdir``, ``copy`` and
the transfer requests join their arguments onto the current directory as
given; keep it that way unless the protocol's guarantees are widened on
purpose.
"""
from __future__ import annotations

import os
from pathlib import Path

from .errors import SandboxError


def is_within(root: Path, path: Path) -> bool:
    return path == root or root in path.parents


def resolve_down(root: Path, base: Path, rel: str) -> Path:
    candidate = base
    for part in Path(rel).parts:
        if part == "..":
            candidate = candidate.parent
            # stepping above root is refused even if later parts come back in
            if not is_within(root, candidate):
                raise SandboxError("Invalid path or not a directory")
        else:
            candidate = candidate / part

    # resolve() follows symlinks before the final check
    candidate = candidate.resolve()
    if not candidate.is_dir() or not is_within(root, candidate):
        raise SandboxError("Invalid path or not a directory")
    return candidate


def resolve_up(root: Path, base: Path) -> Path:
    parent = base.parent
    if parent == base:
        raise SandboxError("No parent")
    if not is_within(root, parent):
        raise SandboxError("Cannot go above root")
    return parent


def join_under(base: Path, rel: str) -> Path:
    return base / rel


def upload_destination(base: Path, dst_path: str, file_name: str) -> Path:
    if dst_path in ("", "."):
        return base / file_name
    return base / dst_path / file_name


def resolve_root(path: str | Path) -> Path:
    root = Path(path).resolve()
    if not root.is_dir():
        raise NotADirectoryError(f"root is not a directory: {path}")
    return root


def wire_name(name: str) -> str:
    """``name`` as sendable UTF-8; bytes the filesystem gave us that are not UTF-8 become U+FFFD."""
    return os.fsencode(name).decode("utf-8", "replace")
