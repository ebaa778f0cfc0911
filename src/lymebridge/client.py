"""
Interactive session client (`lymebridge connect <channel> <name>`).

Attaches the current terminal to the daemon as a named session: routed chat
messages are printed, typed lines go back as responses.
"""

from __future__ import annotations

import logging
import os
import selectors
import socket
import sys
from pathlib import Path
from typing import Optional, TextIO, Union

from pydantic import BaseModel

from .contracts.v1.wire import (
    AckMessage,
    DeliverMessage,
    DisconnectMessage,
    ErrorMessage,
    ProtocolError,
    RegisterMessage,
    ResponseMessage,
    decode_server_message,
    encode_line,
)

log = logging.getLogger("lymebridge.client")

POLL_TIMEOUT = 0.1
READ_CHUNK = 4096
PROMPT = "> "


class ClientError(RuntimeError):
    """Daemon unreachable or the connection broke."""


class SessionClient:
    def __init__(
        self,
        socket_path: Union[str, Path],
        channel: str,
        name: str,
        *,
        stdin: Optional[TextIO] = None,
        stdout: Optional[TextIO] = None,
    ):
        self.socket_path = Path(socket_path)
        self.channel = channel
        self.name = name
        self.stdin = stdin or sys.stdin
        self.stdout = stdout or sys.stdout

        self.sock: Optional[socket.socket] = None
        self.registered = False
        self._buf = b""
        self._input_buf = b""

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    def connect(self) -> None:
        if not self.socket_path.exists():
            raise ClientError("lymebridge daemon not running\nStart it with: lymebridge")
        s = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            s.connect(str(self.socket_path))
        except OSError as e:
            s.close()
            raise ClientError(f"Failed to connect to daemon: {e}") from e
        self.sock = s

    def attach(self, sock: socket.socket) -> None:
        """Use an already connected socket."""
        self.sock = sock

    def close(self) -> None:
        if self.sock is not None:
            try:
                self.sock.close()
            except OSError:
                pass
            self.sock = None

    def _send(self, msg: BaseModel) -> bool:
        if self.sock is None:
            return False
        try:
            self.sock.sendall(encode_line(msg))
            return True
        except OSError as e:
            log.debug("send failed: %s", e)
            return False

    def register(self) -> bool:
        return self._send(RegisterMessage(name=self.name, channel=self.channel))

    def send_response(self, text: str) -> bool:
        text = text.strip()
        if not text:
            return True
        return self._send(ResponseMessage(text=text))

    def disconnect(self) -> None:
        self._send(DisconnectMessage())
        self.close()

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def _print(self, text: str = "", end: str = "\n") -> None:
        self.stdout.write(text + end)
        self.stdout.flush()

    def _prompt(self) -> None:
        self._print(PROMPT, end="")

    def handle_server_line(self, line: str) -> Optional[int]:
        """Handle one daemon line. Returns an exit code when the client should stop."""
        try:
            msg = decode_server_message(line)
        except ProtocolError as e:
            log.debug("ignoring malformed line from daemon: %s", e)
            return None

        if isinstance(msg, AckMessage):
            self.registered = True
            self._print(f"Connected! Messages to @{self.name} will appear here.")
            self._print("Type responses and press Enter to send back.")
            self._print()
            self._prompt()
        elif isinstance(msg, DeliverMessage):
            self._print()
            self._print(f"[{self.channel}] {msg.text}")
            self._prompt()
        elif isinstance(msg, ErrorMessage):
            self._print(f"Error: {msg.message}")
            if not self.registered:
                return 1
            self._prompt()
        return None

    def feed(self, data: bytes) -> Optional[int]:
        """Buffer socket bytes and handle every complete line."""
        self._buf += data
        while b"\n" in self._buf:
            raw, self._buf = self._buf.split(b"\n", 1)
            line = raw.decode("utf-8", errors="replace")
            if not line.strip():
                continue
            code = self.handle_server_line(line)
            if code is not None:
                return code
        return None

    def feed_input(self, data: bytes) -> int:
        """Buffer raw stdin bytes and send each complete line as a response.

        Returns the number of lines handled; a trailing partial line stays buffered.
        """
        self._input_buf += data
        handled = 0
        while b"\n" in self._input_buf:
            raw, self._input_buf = self._input_buf.split(b"\n", 1)
            handled += 1
            if not self.send_response(raw.decode("utf-8", errors="replace")):
                raise ClientError("Connection lost while sending")
            self._prompt()
        return handled

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    def run(self) -> int:
        if self.sock is None:
            self.connect()
        assert self.sock is not None

        if not self.register():
            raise ClientError("Failed to send registration")
        self._print("Connecting to lymebridge...")
        self._print(f"  Channel: {self.channel}")
        self._print(f"  Session: {self.name}")
        self._print()

        sel = selectors.DefaultSelector()
        sel.register(self.sock, selectors.EVENT_READ, "sock")
        stdin_registered = False
        try:
            while True:
                # Only read the terminal once the daemon accepted the name.
                if self.registered and not stdin_registered:
                    sel.register(self.stdin, selectors.EVENT_READ, "stdin")
                    stdin_registered = True

                for key, _ in sel.select(POLL_TIMEOUT):
                    if key.data == "sock":
                        try:
                            data = self.sock.recv(READ_CHUNK)
                        except OSError as e:
                            raise ClientError(f"Connection lost: {e}") from e
                        if not data:
                            self._print()
                            self._print("Connection closed by daemon")
                            return 0
                        code = self.feed(data)
                        if code is not None:
                            return code
                    else:
                        data = os.read(self.stdin.fileno(), READ_CHUNK)
                        if not data:
                            self.feed_input(b"\n" if self._input_buf else b"")
                            self.disconnect()
                            return 0
                        self.feed_input(data)
        except KeyboardInterrupt:
            self._print()
            self._print("Disconnecting...")
            self.disconnect()
            return 0
        finally:
            sel.close()
            self.close()


def run_connect(socket_path: Union[str, Path], channel: str, name: str) -> int:
    client = SessionClient(socket_path, channel, name)
    try:
        return client.run()
    except ClientError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
