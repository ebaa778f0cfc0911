"""
Session socket server.

Owns the listening Unix socket and every session connection. `poll()` does one
bounded readiness wait over the listener plus all session sockets, accepts new
connections, drains readable sessions and dispatches each complete line.
Not thread-safe: call everything from the daemon's control loop.
"""

from __future__ import annotations

import logging
import os
import selectors
import socket
from pathlib import Path
from typing import Callable, FrozenSet, Optional, Union

from pydantic import BaseModel

from ..contracts.v1.wire import (
    AckMessage,
    DeliverMessage,
    DisconnectMessage,
    ErrorMessage,
    ProtocolError,
    RegisterMessage,
    ResponseMessage,
    decode_client_message,
)
from ..util.obslog import preview
from .registry import RegistrationConflict, SessionRegistry
from .session import Session

log = logging.getLogger("lymebridge.socket")

READ_CHUNK = 4096
# recv() calls per ready session per poll.
MAX_READS_PER_POLL = 16
LISTEN_BACKLOG = 5

ResponseHandler = Callable[[str, Session], None]
SessionHandler = Callable[[Session], None]


class SocketStartError(OSError):
    """The listening socket could not be brought up. Fatal for the daemon."""


def is_socket_alive(sock_path: Path) -> bool:
    try:
        with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as s:
            s.settimeout(0.2)
            s.connect(str(sock_path))
            return True
    except OSError:
        return False


class SocketServer:
    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self.registry = SessionRegistry()

        self.on_response: Optional[ResponseHandler] = None
        self.on_session_registered: Optional[SessionHandler] = None
        self.on_session_disconnected: Optional[SessionHandler] = None

        self._listener: Optional[socket.socket] = None
        self._selector: Optional[selectors.BaseSelector] = None

    @property
    def running(self) -> bool:
        return self._listener is not None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self.running:
            return
        if self.path.exists():
            if is_socket_alive(self.path):
                raise SocketStartError(f"another daemon is already listening on {self.path}")
            try:
                self.path.unlink()
            except OSError as e:
                raise SocketStartError(f"cannot remove stale socket {self.path}: {e}") from e

        self.path.parent.mkdir(parents=True, exist_ok=True)
        listener = None
        try:
            listener = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
            listener.bind(str(self.path))
            os.chmod(self.path, 0o600)
            listener.listen(LISTEN_BACKLOG)
            listener.setblocking(False)
        except OSError as e:
            if listener is not None:
                listener.close()
            raise SocketStartError(f"cannot listen on {self.path}: {e}") from e

        self._listener = listener
        self._selector = selectors.DefaultSelector()
        self._selector.register(listener, selectors.EVENT_READ, None)
        log.info("Listening on %s", self.path)

    def stop(self) -> None:
        if not self.running:
            return
        for session in self.registry.all_sessions():
            self._unregister(session)
            session.close()
        self.registry.clear()

        assert self._listener is not None and self._selector is not None
        try:
            self._selector.unregister(self._listener)
        except (KeyError, ValueError):
            pass
        self._selector.close()
        self._listener.close()
        self._selector = None
        self._listener = None
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            log.warning("Failed to remove socket %s: %s", self.path, e)
        log.info("Socket server stopped")

    # ------------------------------------------------------------------
    # Event loop step
    # ------------------------------------------------------------------

    def poll(self, timeout: float = 0.1) -> None:
        """One bounded wait; accept, read and dispatch whatever is ready."""
        if self._selector is None:
            return
        try:
            ready = self._selector.select(timeout)
        except InterruptedError:
            return

        readable = []
        for key, _ in ready:
            if key.fileobj is self._listener:
                self._accept_all()
            else:
                readable.append(key.data)

        for session in readable:
            if not session.is_closed:
                self._read_session(session)

    def _accept_all(self) -> None:
        assert self._listener is not None and self._selector is not None
        while True:
            try:
                conn, _ = self._listener.accept()
            except (BlockingIOError, InterruptedError):
                return
            except OSError as e:
                log.warning("Accept failed: %s", e)
                return
            conn.setblocking(False)
            session = Session(conn)
            self.registry.add_pending(session)
            self._selector.register(conn, selectors.EVENT_READ, session)
            log.info("New connection", extra={"fd": session.fd})

    def _read_session(self, session: Session) -> None:
        for _ in range(MAX_READS_PER_POLL):
            try:
                data = session.conn.recv(READ_CHUNK)
            except (BlockingIOError, InterruptedError):
                return
            except OSError as e:
                log.info("Read failed (%s), dropping connection", e, extra={"fd": session.fd, "session": session.name})
                self.disconnect(session)
                return
            if not data:
                self.disconnect(session)
                return

            session.append_to_buffer(data)
            for line in session.extract_lines():
                if session.is_closed:
                    return
                if not line.strip():
                    continue
                self._handle_line(line, session)
            if session.is_closed or len(data) < READ_CHUNK:
                return

    def _handle_line(self, line: str, session: Session) -> None:
        session.touch()
        try:
            msg = decode_client_message(line)
        except ProtocolError as e:
            log.warning("Protocol error: %s", e, extra={"fd": session.fd, "session": session.name})
            self._reply(session, ErrorMessage(message=f"Invalid message: {e}"))
            return

        if isinstance(msg, RegisterMessage):
            self._register(session, msg.name, msg.channel)
        elif isinstance(msg, ResponseMessage):
            if not session.is_named:
                log.debug("Ignoring response from unregistered connection", extra={"fd": session.fd})
                return
            self._emit_response(msg.text, session)
        elif isinstance(msg, DisconnectMessage):
            self.disconnect(session)

    def _register(self, session: Session, name: str, channel: str) -> None:
        try:
            self.registry.register(session, name, channel)
        except RegistrationConflict as e:
            log.warning("Registration refused: %s", e, extra={"fd": session.fd})
            self._reply(session, ErrorMessage(message=str(e)))
            return
        log.info("Session registered", extra={"session": session.name, "channel": session.channel})
        if not self._reply(session, AckMessage(channel=session.channel)):
            return
        self._emit(self.on_session_registered, session)

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def send_to_session(self, name: str, text: str) -> bool:
        session = self.registry.get(name)
        if session is None:
            return False
        self.registry.mark_most_recent(name)
        session.touch()
        return self._reply(session, DeliverMessage(text=text, channel=session.channel))

    def send_to_most_recent(self, text: str) -> bool:
        name = self.registry.most_recent
        if name is None:
            return False
        return self.send_to_session(name, text)

    def get_session_names(self) -> FrozenSet[str]:
        return self.registry.names()

    def disconnect(self, session: Session) -> None:
        if session.is_closed:
            return
        was_named = session.is_named
        self._unregister(session)
        session.close()
        self.registry.remove(session)
        log.info("Session disconnected", extra={"session": session.name, "fd": session.fd})
        if was_named:
            self._emit(self.on_session_disconnected, session)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _reply(self, session: Session, msg: BaseModel) -> bool:
        """Write to a session; a failed write tears the session down."""
        if session.send(msg):
            return True
        log.warning("Write failed, closing connection", extra={"session": session.name, "fd": session.fd})
        self.disconnect(session)
        return False

    def _unregister(self, session: Session) -> None:
        if self._selector is None:
            return
        try:
            self._selector.unregister(session.conn)
        except (KeyError, ValueError):
            pass

    def _emit_response(self, text: str, session: Session) -> None:
        log.info("Response: %s", preview(text), extra={"session": session.name})
        cb = self.on_response
        if cb is None:
            return
        try:
            cb(text, session)
        except Exception:
            log.exception("Response handler failed", extra={"session": session.name})

    def _emit(self, cb: Optional[SessionHandler], session: Session) -> None:
        if cb is None:
            return
        try:
            cb(session)
        except Exception:
            log.exception("Session hook failed", extra={"session": session.name})
