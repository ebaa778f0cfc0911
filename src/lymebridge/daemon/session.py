from __future__ import annotations

import codecs
import socket
import time
from enum import Enum
from typing import List

from pydantic import BaseModel

from ..contracts.v1.wire import LINE_TERMINATOR, encode_line


class SessionState(str, Enum):
    PENDING = "pending"
    NAMED = "named"
    CLOSED = "closed"


class Session:
    """
    One CLI client connected to the session socket.

    Created PENDING on accept, promoted to NAMED by a successful register,
    CLOSED exactly once. The session owns its socket.
    """

    def __init__(self, conn: socket.socket):
        self.conn = conn
        self.fd = conn.fileno()
        self.name = ""
        self.channel = ""
        self.state = SessionState.PENDING
        self.last_active = time.time()

        # Undecodable bytes are dropped; split multi-byte sequences carry over between reads.
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="ignore")
        self._buffer = ""

    def __repr__(self) -> str:
        label = self.name or f"fd={self.fd}"
        return f"Session({label}, {self.state.value})"

    @property
    def is_named(self) -> bool:
        return self.state is SessionState.NAMED

    @property
    def is_closed(self) -> bool:
        return self.state is SessionState.CLOSED

    def promote(self, name: str, channel: str) -> None:
        self.name = name
        self.channel = channel
        self.state = SessionState.NAMED
        self.touch()

    def touch(self) -> None:
        self.last_active = time.time()

    def append_to_buffer(self, data: bytes) -> None:
        self._buffer += self._decoder.decode(data)

    def extract_lines(self) -> List[str]:
        """Pop every complete line; a trailing partial line stays buffered."""
        lines: List[str] = []
        while True:
            idx = self._buffer.find(LINE_TERMINATOR)
            if idx < 0:
                break
            lines.append(self._buffer[:idx])
            self._buffer = self._buffer[idx + len(LINE_TERMINATOR):]
        return lines

    def send(self, msg: BaseModel) -> bool:
        """Write one protocol line. A short write counts as failure and is not retried."""
        if self.is_closed:
            return False
        data = encode_line(msg)
        try:
            written = self.conn.send(data)
        except OSError:
            return False
        return written == len(data)

    def close(self) -> None:
        if self.is_closed:
            return
        self.state = SessionState.CLOSED
        try:
            self.conn.close()
        except OSError:
            pass
