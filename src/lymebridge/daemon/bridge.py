"""
Bridge daemon - composes channels, router and socket server.

Handles:
- Inbound: channel message -> router -> named or most-recent session
- Outbound: session response -> "[<name>] text" -> originating channel
- The control loop and shutdown

Adapters call back from their own threads. Their messages are queued and
drained on the control loop, the only thread that touches the registry.
"""

from __future__ import annotations

import logging
import queue
import threading
from typing import List, Optional

from ..channels import ChannelAdapter, ChannelManager, create_adapters
from ..config import Config
from ..contracts.v1.message import IncomingMessage
from ..util.obslog import preview
from . import router
from .session import Session
from .socket_server import SocketServer, SocketStartError

log = logging.getLogger("lymebridge.daemon")

POLL_TIMEOUT = 0.1


def format_response(session_name: str, text: str) -> str:
    return f"[{session_name}] {text}"


def format_session_not_found(name: str, available: List[str]) -> str:
    listed = ", ".join(available) if available else "none"
    return f"[error] Session '{name}' not found. Available: {listed}"


NO_ACTIVE_SESSIONS = "[error] No active sessions. Connect with: lymebridge connect <channel> <name>"


class Daemon:
    def __init__(
        self,
        config: Config,
        *,
        adapters: Optional[List[ChannelAdapter]] = None,
        stop_event: Optional[threading.Event] = None,
        poll_timeout: float = POLL_TIMEOUT,
    ):
        self.config = config
        self.stop_event = stop_event if stop_event is not None else threading.Event()
        self.poll_timeout = poll_timeout

        self.channels = ChannelManager()
        self.server = SocketServer(config.socket_path)
        self._adapters = list(adapters) if adapters is not None else create_adapters(config)
        self._inbox: "queue.Queue[IncomingMessage]" = queue.Queue()
        self._started = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Wire callbacks, start channels, then the socket server."""
        if self._started:
            return
        for adapter in self._adapters:
            self.channels.register(adapter)

        self.channels.on_message = self.submit
        self.server.on_response = self.handle_response
        self.server.on_session_registered = self._on_registered
        self.server.on_session_disconnected = self._on_disconnected

        self.channels.start()
        try:
            self.server.start()
        except SocketStartError:
            self.channels.stop()
            raise
        self._started = True
        log.info("Ready. Channels: %s", ", ".join(self.channels.running_channel_ids()) or "none")

    def run(self) -> None:
        """Run until `stop_event` is set, then shut everything down."""
        self.start()
        try:
            while not self.stop_event.is_set():
                self.run_once()
        finally:
            self.shutdown()

    def run_once(self) -> None:
        self.server.poll(self.poll_timeout)
        self.drain_inbox()

    def shutdown(self) -> None:
        if not self._started:
            return
        self._started = False
        log.info("Shutting down...")
        self.server.stop()
        self.channels.stop()

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def submit(self, msg: IncomingMessage) -> None:
        """Thread-safe entry point for adapter callbacks."""
        self._inbox.put(msg)

    def drain_inbox(self) -> int:
        handled = 0
        while True:
            try:
                msg = self._inbox.get_nowait()
            except queue.Empty:
                return handled
            handled += 1
            try:
                self.handle_incoming(msg)
            except Exception:
                log.exception("Failed to route inbound message", extra={"channel": msg.channel_id})

    def handle_incoming(self, msg: IncomingMessage) -> bool:
        """Route one inbound message. Returns True if a session received it."""
        routed = router.parse(msg.text)
        log.info("Received: %s", preview(msg.text), extra={"channel": msg.channel_id, "sender": msg.sender})

        if not routed.text:
            return False

        if routed.session_name is not None:
            if self.server.send_to_session(routed.session_name, routed.text):
                return True
            available = sorted(self.server.get_session_names())
            self._reply(msg, format_session_not_found(routed.session_name, available))
            return False

        if self.server.send_to_most_recent(routed.text):
            return True
        self._reply(msg, NO_ACTIVE_SESSIONS)
        return False

    def _reply(self, msg: IncomingMessage, text: str) -> bool:
        return self.channels.send(text, msg.channel_id, msg.sender)

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    def handle_response(self, text: str, session: Session) -> bool:
        adapter = self.channels.get(session.channel)
        recipient = adapter.default_recipient if adapter is not None else ""
        return self.channels.send(format_response(session.name, text), session.channel, recipient)

    def _on_registered(self, session: Session) -> None:
        log.info("Session connected: %s", session.name, extra={"channel": session.channel})

    def _on_disconnected(self, session: Session) -> None:
        log.info("Session disconnected: %s", session.name, extra={"channel": session.channel})
