from __future__ import annotations

import logging
from typing import Dict, List, Optional, Tuple

from ..contracts.v1.message import IncomingMessage
from .base import ChannelAdapter, ChannelStartError, MessageHandler

log = logging.getLogger("lymebridge.channels")


class ChannelManager:
    """
    Registry of channel adapters keyed by channel id.

    Fans every adapter's inbound callback into `on_message` and dispatches
    outbound sends to the adapter named by the caller.
    """

    def __init__(self) -> None:
        self._channels: Dict[str, ChannelAdapter] = {}
        self.on_message: Optional[MessageHandler] = None

    def register(self, adapter: ChannelAdapter) -> None:
        self._channels[adapter.id] = adapter
        adapter.on_message = self._forward
        log.info("Registered channel", extra={"channel": adapter.id})

    def _forward(self, msg: IncomingMessage) -> None:
        handler = self.on_message
        if handler is not None:
            handler(msg)

    def get(self, channel_id: str) -> Optional[ChannelAdapter]:
        return self._channels.get(channel_id)

    def channel_ids(self) -> List[str]:
        return list(self._channels)

    def running_channel_ids(self) -> List[str]:
        return [cid for cid, ch in self._channels.items() if ch.is_running]

    def start(self) -> List[Tuple[str, Exception]]:
        """
        Start every registered adapter that is not already running.

        A failing adapter is logged and skipped so the rest still start.
        Returns the (channel id, error) pairs of failures; raises
        ChannelStartError only when adapters were registered and none is running.
        """
        failures: List[Tuple[str, Exception]] = []
        for cid, adapter in self._channels.items():
            if adapter.is_running:
                continue
            try:
                adapter.start()
            except Exception as e:
                log.error("Channel failed to start: %s", e, extra={"channel": cid})
                failures.append((cid, e))
                continue
            log.info("Channel started", extra={"channel": cid})

        if self._channels and not self.running_channel_ids():
            detail = "; ".join(f"{cid}: {err}" for cid, err in failures)
            raise ChannelStartError(f"no channel could be started ({detail})")
        return failures

    def stop(self) -> None:
        for cid, adapter in self._channels.items():
            try:
                adapter.stop()
            except Exception:
                log.exception("Channel failed to stop", extra={"channel": cid})

    def send(self, text: str, channel_id: str, recipient: str) -> bool:
        adapter = self._channels.get(channel_id)
        if adapter is None:
            log.warning("Channel not found", extra={"channel": channel_id})
            return False
        try:
            ok = bool(adapter.send(text, recipient))
        except Exception:
            log.exception("Channel send raised", extra={"channel": channel_id})
            return False
        if not ok:
            log.warning("Channel send failed", extra={"channel": channel_id, "recipient": recipient})
        return ok
