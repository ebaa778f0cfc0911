"""
Base class for chat channel adapters.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Callable, Optional

from ..contracts.v1.message import IncomingMessage

MessageHandler = Callable[[IncomingMessage], None]

log = logging.getLogger("lymebridge.channels")


class ChannelError(Exception):
    """Base error for channel adapters."""


class ChannelStartError(ChannelError):
    """Adapter could not start (bad config, missing permission, unreachable API)."""


def looks_like_bridge_reply(text: str) -> bool:
    """Outbound replies are formatted "[<session>] ..."; stores and chats echo them back."""
    return text.startswith("[") and "]" in text


class ChannelAdapter(ABC):
    """
    Abstract base class for chat channel adapters.

    Each adapter handles:
    - Starting/stopping its own background activity
    - Delivering inbound text through `on_message` (may be called from any thread)
    - Sending outbound text, returning success as a bool
    """

    id: str = "unknown"
    display_name: str = "Unknown"

    def __init__(self) -> None:
        self.on_message: Optional[MessageHandler] = None
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    @abstractmethod
    def default_recipient(self) -> str:
        """Configured contact that session replies go to."""

    @abstractmethod
    def start(self) -> None:
        """
        Begin receiving messages.
        Raises ChannelStartError when the channel cannot run.
        """

    @abstractmethod
    def stop(self) -> None:
        """Stop background activity and release resources."""

    @abstractmethod
    def send(self, text: str, recipient: str) -> bool:
        """
        Send text to a channel-specific recipient.
        Returns True if delivered; never raises.
        """

    def emit(self, text: str, sender: str) -> None:
        """Hand an inbound message to the registered handler."""
        handler = self.on_message
        if handler is None:
            return
        msg = IncomingMessage(channel_id=self.id, text=text, sender=sender)
        try:
            handler(msg)
        except Exception:
            log.exception("Inbound handler failed", extra={"channel": self.id})
