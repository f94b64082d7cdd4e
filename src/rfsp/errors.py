from __future__ import annotations


class RfspError(Exception):
    pass


class DecodeError(RfspError, ValueError):
    """Bytes that do not form a valid message."""


class SandboxError(RfspError):
    """A path that leaves the served root, or is not a directory for cd."""


class RemoteError(RfspError):
    """The server answered with an Error response."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class SequenceError(RfspError):
    """Chunk ids out of step between client and server."""


class UnexpectedResponse(RfspError):
    pass


class TransportError(RfspError):
    pass


class ConnectionClosed(TransportError):
    pass
