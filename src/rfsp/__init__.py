"""Remote File Shell Protocol (RFSP)

Browse and transfer files under a served root over one small binary protocol,
carried either on a TCP stream or on UDP datagrams:
- messages: the request/response schema and its self-delimiting encoding
- sandbox, fsops: path containment and the directory operations
- streaming, chunked: raw-stream vs. per-chunk acknowledged transfers
- session, server: datagram sessions and the two dispatch loops
- client: the same operations from the calling side
"""

from .client import DatagramClient, RemoteShell, StreamClient
from .server import DatagramServer, StreamServer

__all__ = ["DatagramClient", "DatagramServer", "RemoteShell", "StreamClient", "StreamServer"]
