from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Callable, Dict, Hashable, Tuple

from .constants import SESSION_IDLE_TIMEOUT_S

log = logging.getLogger(__name__)

ClientId = Hashable


@dataclass(slots=True)
class UploadState:
    file: BinaryIO
    path: Path
    expected_size: int
    received_bytes: int = 0

    def close(self) -> None:
        self.file.close()


@dataclass(slots=True)
class DownloadState:
    file: BinaryIO
    file_name: str
    file_size: int
    sent_chunks: int = 0

    def close(self) -> None:
        self.file.close()


@dataclass(slots=True)
class Session:
    """Navigation and transfer state for one datagram client.

    ``upload`` and ``download`` may both be set at once; each owns its file
    handle until the transfer finishes, fails, or the session is evicted.
    """

    cwd: Path
    last_activity: float
    upload: UploadState | None = None
    download: DownloadState | None = None

    def clear_upload(self) -> None:
        upload, self.upload = self.upload, None
        if upload is not None:
            upload.close()

    def clear_download(self) -> None:
        download, self.download = self.download, None
        if download is not None:
            download.close()

    def close(self) -> None:
        self.clear_upload()
        self.clear_download()


def evict_idle(
    table: Dict[ClientId, Session], now: float, idle_timeout: float
) -> Tuple[Dict[ClientId, Session], Dict[ClientId, Session]]:
    """Split ``table`` into (kept, evicted) without touching either session."""
    kept: Dict[ClientId, Session] = {}
    evicted: Dict[ClientId, Session] = {}
    for client_id, session in table.items():
        if now - session.last_activity > idle_timeout:
            evicted[client_id] = session
        else:
            kept[client_id] = session
    return kept, evicted


class SessionStore:
    def __init__(
        self,
        root: Path,
        idle_timeout: float = SESSION_IDLE_TIMEOUT_S,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.root = root
        self.idle_timeout = idle_timeout
        self.clock = clock
        self.sessions: Dict[ClientId, Session] = {}

    def __len__(self) -> int:
        return len(self.sessions)

    def __contains__(self, client_id: ClientId) -> bool:
        return client_id in self.sessions

    def get_or_create(self, client_id: ClientId) -> Session:
        session = self.sessions.get(client_id)
        if session is None:
            log.info("new session from %s", client_id)
            session = Session(cwd=self.root, last_activity=self.clock())
            self.sessions[client_id] = session
        return session

    def touch(self, session: Session) -> None:
        session.last_activity = self.clock()

    def sweep(self) -> int:
        kept, evicted = evict_idle(self.sessions, self.clock(), self.idle_timeout)
        self.sessions = kept
        for client_id, session in evicted.items():
            if session.upload is not None or session.download is not None:
                log.warning("evicting idle session %s with a transfer in progress", client_id)
            else:
                log.info("evicting idle session %s", client_id)
            _release(client_id, session)
        return len(evicted)

    def close(self) -> None:
        for client_id, session in self.sessions.items():
            _release(client_id, session)
        self.sessions = {}


def _release(client_id: ClientId, session: Session) -> None:
    try:
        session.close()
    except OSError as e:
        log.error("error closing files of session %s: %s", client_id, e)
