"""
Telegram Bot API channel.

- Inbound: short-poll getUpdates on a background thread, one fixed chat only
- Outbound: sendMessage with a bounded timeout, one retry
"""

from __future__ import annotations

import json
import logging
import threading
import time
import urllib.error
import urllib.request
from typing import Any, Dict, List, Optional

from ..util.obslog import preview
from .base import ChannelAdapter, ChannelStartError, looks_like_bridge_reply

log = logging.getLogger("lymebridge.telegram")

API_BASE = "https://api.telegram.org"
TELEGRAM_MAX_MESSAGE_LENGTH = 4096
POLL_INTERVAL = 2.0
POLL_REQUEST_TIMEOUT = 5.0
SEND_TIMEOUT = 10.0


class RateLimiter:
    """
    Per-chat send spacing.

    Telegram allows roughly one message per second to the same chat.
    """

    def __init__(self, max_per_second: float = 1.0):
        self.min_interval = 1.0 / max_per_second
        self.last_send: Dict[str, float] = {}
        self.lock = threading.Lock()

    def acquire(self, chat_id: str) -> float:
        """Returns seconds to wait (0 if the send may go now, and records it)."""
        with self.lock:
            now = time.time()
            elapsed = now - self.last_send.get(chat_id, 0.0)
            if elapsed >= self.min_interval:
                self.last_send[chat_id] = now
                return 0.0
            return self.min_interval - elapsed

    def wait_and_acquire(self, chat_id: str) -> None:
        wait_time = self.acquire(chat_id)
        if wait_time > 0:
            time.sleep(wait_time)
            self.acquire(chat_id)


class TelegramAdapter(ChannelAdapter):
    id = "telegram"
    display_name = "Telegram"

    def __init__(
        self,
        bot_token: str,
        chat_id: str,
        poll_interval: float = POLL_INTERVAL,
        api_base: str = API_BASE,
    ):
        super().__init__()
        self.bot_token = bot_token
        self.chat_id = str(chat_id or "").strip()
        self.poll_interval = poll_interval
        self.api_base = api_base.rstrip("/")

        self._offset = 0
        self._bot_username = ""
        self._rate_limiter = RateLimiter(max_per_second=1.0)
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def default_recipient(self) -> str:
        return self.chat_id

    def _api(self, method: str, params: Optional[Dict[str, Any]] = None, timeout: float = 10.0) -> Dict[str, Any]:
        """
        Call a Bot API method with a JSON body.

        Never raises: transport and HTTP errors come back as {"ok": False, "error": ...}.
        """
        url = f"{self.api_base}/bot{self.bot_token}/{method}"
        data = json.dumps(params or {}, ensure_ascii=False).encode("utf-8")

        req = urllib.request.Request(url, data=data, method="POST")
        req.add_header("Content-Type", "application/json; charset=utf-8")
        req.add_header("Accept", "application/json")

        try:
            with urllib.request.urlopen(req, timeout=timeout) as resp:
                body = resp.read().decode("utf-8", errors="replace")
                return json.loads(body)
        except urllib.error.HTTPError as e:
            err_text = ""
            try:
                err_text = e.read().decode("utf-8", "ignore")[:300]
            except Exception:
                pass
            log.warning("api %s: HTTP %s - %s", method, e.code, err_text)
            return {"ok": False, "error": str(e), "http_status": e.code}
        except Exception as e:
            log.warning("api %s: %s", method, e)
            return {"ok": False, "error": str(e)}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self._running:
            return
        if not self.bot_token or ":" not in self.bot_token:
            raise ChannelStartError("Invalid Telegram bot token")
        if not self.chat_id:
            raise ChannelStartError("Telegram chat ID required")

        resp = self._api("getMe", timeout=10)
        if not resp.get("ok"):
            raise ChannelStartError(f"Telegram Bot API unreachable: {resp.get('error', 'unknown error')}")
        self._bot_username = str((resp.get("result") or {}).get("username") or "")

        self._stop_event.clear()
        self._running = True
        self._thread = threading.Thread(target=self._poll_loop, name="lymebridge-telegram", daemon=True)
        self._thread.start()
        log.info("Started polling for chat %s as @%s", self.chat_id, self._bot_username)

    def stop(self) -> None:
        self._running = False
        self._stop_event.set()
        thread = self._thread
        self._thread = None
        if thread is not None and thread is not threading.current_thread():
            # An in-flight getUpdates is bounded by POLL_REQUEST_TIMEOUT.
            thread.join(timeout=POLL_REQUEST_TIMEOUT + 1.0)
        log.info("Stopped")

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def _poll_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.poll_once()
            except Exception:
                log.exception("Poll failed")
            self._stop_event.wait(self.poll_interval)

    def poll_once(self) -> List[str]:
        """Fetch pending updates and emit the ones from the configured chat."""
        resp = self._api(
            "getUpdates",
            {"offset": self._offset, "timeout": 1, "allowed_updates": ["message"]},
            timeout=POLL_REQUEST_TIMEOUT,
        )
        if not resp.get("ok") or not isinstance(resp.get("result"), list):
            return []

        delivered: List[str] = []
        for update in resp["result"]:
            try:
                update_id = int(update.get("update_id", 0))
            except (TypeError, ValueError):
                continue
            self._offset = max(self._offset, update_id + 1)

            msg = update.get("message")
            if not isinstance(msg, dict):
                continue
            text = msg.get("text")
            chat = msg.get("chat") or {}
            if not isinstance(text, str) or not text or "id" not in chat:
                continue
            if str(chat.get("id")) != self.chat_id:
                continue
            if looks_like_bridge_reply(text):
                continue

            log.info("New message: %s", preview(text))
            delivered.append(text)
            self.emit(text, self.chat_id)
        return delivered

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    def send(self, text: str, recipient: str) -> bool:
        target = str(recipient or "").strip() or self.chat_id
        if not text:
            return True
        safe_text = self._compose_safe(text)
        self._rate_limiter.wait_and_acquire(target)
        return self._send_with_retry(target, safe_text)

    def _compose_safe(self, text: str) -> str:
        if len(text) > TELEGRAM_MAX_MESSAGE_LENGTH:
            return text[: TELEGRAM_MAX_MESSAGE_LENGTH - 1] + "…"
        return text

    def _send_with_retry(self, chat_id: str, text: str, retries: int = 1) -> bool:
        params = {"chat_id": chat_id, "text": text, "disable_web_page_preview": True}
        resp = self._api("sendMessage", params, timeout=SEND_TIMEOUT)
        if resp.get("ok"):
            return True
        if retries > 0:
            time.sleep(1.0)
            return self._send_with_retry(chat_id, text, retries=retries - 1)
        log.warning("Send failed to chat %s: %s", chat_id, resp.get("error", "unknown"))
        return False
