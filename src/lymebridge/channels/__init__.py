"""
Chat channel adapters.

Each adapter handles one chat surface:
- iMessage: watch the local Messages store, send via AppleScript
- Telegram: short-poll getUpdates, send via Bot API
"""

from __future__ import annotations

from typing import TYPE_CHECKING, List

from .base import ChannelAdapter, ChannelError, ChannelStartError, MessageHandler
from .manager import ChannelManager

if TYPE_CHECKING:
    from ..config import Config

SUPPORTED_CHANNELS = ("imessage", "telegram")

__all__ = [
    "ChannelAdapter",
    "ChannelError",
    "ChannelManager",
    "ChannelStartError",
    "MessageHandler",
    "SUPPORTED_CHANNELS",
    "create_adapters",
]


def create_adapters(config: Config) -> List[ChannelAdapter]:
    """Build one adapter per enabled channel in the config."""
    adapters: List[ChannelAdapter] = []
    if config.is_imessage_enabled and config.imessage is not None:
        from .imessage import IMessageAdapter

        adapters.append(IMessageAdapter(apple_id=config.imessage.apple_id))
    if config.is_telegram_enabled and config.telegram is not None:
        from .telegram import TelegramAdapter

        adapters.append(
            TelegramAdapter(
                bot_token=config.telegram.resolve_token(),
                chat_id=config.telegram.chat_id,
            )
        )
    return adapters
