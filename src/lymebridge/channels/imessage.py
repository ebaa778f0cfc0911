"""
iMessage channel (macOS).

Inbound: the Messages store (~/Library/Messages/chat.db) is opened read-only and
watched with watchdog. Bursts of file events are collapsed with a trailing
debounce, then rows newer than the last seen ROWID that the user sent to the
configured contact are emitted.

Outbound: AppleScript through `osascript`.
"""

from __future__ import annotations

import logging
import sqlite3
import subprocess
import threading
from pathlib import Path
from typing import List, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from ..util.obslog import preview
from .base import ChannelAdapter, ChannelStartError, looks_like_bridge_reply

log = logging.getLogger("lymebridge.imessage")

DEBOUNCE_INTERVAL = 0.5
SEND_TIMEOUT = 10.0

_NEW_MESSAGES_SQL = """
SELECT m.ROWID, m.text
FROM message m
JOIN chat_message_join cmj ON m.ROWID = cmj.message_id
JOIN chat c ON cmj.chat_id = c.ROWID
WHERE m.is_from_me = 1
  AND m.ROWID > ?
  AND (c.chat_identifier = ? OR c.chat_identifier LIKE ?)
  AND m.text IS NOT NULL
  AND m.text != ''
ORDER BY m.ROWID ASC
"""


def default_db_path() -> Path:
    return Path.home() / "Library" / "Messages" / "chat.db"


def escape_applescript(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def build_send_script(apple_id: str, text: str) -> str:
    return (
        'tell application "Messages"\n'
        "    set targetService to 1st account whose service type = iMessage\n"
        f'    set targetBuddy to participant "{escape_applescript(apple_id)}" of targetService\n'
        f'    send "{escape_applescript(text)}" to targetBuddy\n'
        "end tell\n"
    )


class _StoreChangeHandler(FileSystemEventHandler):
    def __init__(self, adapter: "IMessageAdapter"):
        super().__init__()
        self._adapter = adapter

    def on_any_event(self, event: FileSystemEvent) -> None:
        self._adapter.schedule_check()


class IMessageAdapter(ChannelAdapter):
    id = "imessage"
    display_name = "iMessage"

    def __init__(
        self,
        apple_id: str,
        db_path: Optional[Path] = None,
        debounce: float = DEBOUNCE_INTERVAL,
    ):
        super().__init__()
        self.apple_id = str(apple_id or "").strip()
        self.db_path = Path(db_path) if db_path else default_db_path()
        self.debounce = debounce

        self._db: Optional[sqlite3.Connection] = None
        self._db_lock = threading.Lock()
        self._last_rowid = 0
        self._observer: Optional[Observer] = None
        self._timer: Optional[threading.Timer] = None
        self._timer_lock = threading.Lock()

    @property
    def default_recipient(self) -> str:
        return self.apple_id

    @property
    def last_rowid(self) -> int:
        return self._last_rowid

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self._running:
            return
        if not self.apple_id:
            raise ChannelStartError("iMessage contact (apple_id) required")
        try:
            self._db = sqlite3.connect(f"file:{self.db_path}?mode=ro", uri=True, check_same_thread=False)
            self._last_rowid = self._current_max_rowid()
        except sqlite3.Error as e:
            self._close_db()
            raise ChannelStartError(f"Cannot open Messages database ({e}). Grant Full Disk Access.") from e

        try:
            self._start_watching()
        except Exception as e:
            self._close_db()
            raise ChannelStartError(f"Cannot watch {self.db_path.parent}: {e}") from e

        self._running = True
        log.info("Started, watching from ROWID > %d", self._last_rowid)

    def stop(self) -> None:
        self._running = False
        with self._timer_lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
        observer = self._observer
        self._observer = None
        if observer is not None:
            observer.stop()
            observer.join(timeout=2.0)
        self._close_db()
        log.info("Stopped")

    def _close_db(self) -> None:
        with self._db_lock:
            if self._db is not None:
                self._db.close()
                self._db = None

    def _start_watching(self) -> None:
        observer = Observer()
        observer.schedule(_StoreChangeHandler(self), str(self.db_path.parent), recursive=False)
        observer.daemon = True
        observer.start()
        self._observer = observer
        log.info("Watching %s for changes", self.db_path.parent)

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def _current_max_rowid(self) -> int:
        assert self._db is not None
        row = self._db.execute("SELECT MAX(ROWID) FROM message").fetchone()
        return int(row[0] or 0) if row else 0

    def schedule_check(self) -> None:
        """Re-arm the debounce timer; the check runs once events go quiet."""
        with self._timer_lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.debounce, self._on_quiet)
            self._timer.daemon = True
            self._timer.start()

    def _on_quiet(self) -> None:
        with self._timer_lock:
            self._timer = None
        try:
            self.check_for_new_messages()
        except Exception:
            log.exception("Message store check failed")

    def check_for_new_messages(self) -> List[str]:
        rows = []
        with self._db_lock:
            if self._db is None:
                return []
            try:
                rows = self._db.execute(
                    _NEW_MESSAGES_SQL,
                    (self._last_rowid, self.apple_id, f"%{self.apple_id}%"),
                ).fetchall()
            except sqlite3.Error as e:
                log.warning("Query failed: %s", e)
                return []

        delivered: List[str] = []
        for rowid, text in rows:
            self._last_rowid = max(self._last_rowid, int(rowid))
            text = str(text or "")
            if not text or looks_like_bridge_reply(text):
                continue
            log.info("New message: %s", preview(text))
            delivered.append(text)
            self.emit(text, self.apple_id)
        return delivered

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    def send(self, text: str, recipient: str) -> bool:
        target = str(recipient or "").strip() or self.apple_id
        script = build_send_script(target, text)
        try:
            result = subprocess.run(
                ["osascript", "-e", script],
                capture_output=True,
                text=True,
                timeout=SEND_TIMEOUT,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            log.warning("osascript failed: %s", e)
            return False
        if result.returncode != 0:
            log.warning("AppleScript error: %s", (result.stderr or "").strip()[:300])
            return False
        return True
