from __future__ import annotations

import struct

U8 = struct.Struct("!B")
U32 = struct.Struct("!I")
U64 = struct.Struct("!Q")

MAX_DATAGRAM_SIZE = 65507  # largest UDP payload over IPv4
MAX_PAYLOAD_SIZE = 65000  # leaves headroom under MAX_DATAGRAM_SIZE
MAX_FIELD_LEN = 64 * 1024 * 1024

CHUNK_SIZE = 8192

SESSION_IDLE_TIMEOUT_S = 300
DEFAULT_TIMEOUT_MS = 5000
